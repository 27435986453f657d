"""
Pydantic models for Novu webhook logs.

Models:
  EmailPayload        - the `data` column: to/from/subject/html plus extras
  CapturedHeaders     - request headers stored alongside each payload
  NewWebhookRecord    - a row about to be inserted (no id yet)
  WebhookRecord       - a row as read back from the store
  FeedState           - reconciled feed plus the resolved selection
  WebhookResponse     - JSON body returned to the webhook sender

The `to` field has no fixed shape in Novu payloads. It is parsed into a
small tagged union (PlainAddress / AddressObject / RecipientList) by
parse_recipient() and flattened for display by format_recipients().
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlainAddress:
    address: str


@dataclass(frozen=True)
class AddressObject:
    email: Optional[str]


@dataclass(frozen=True)
class RecipientList:
    items: tuple["Recipient", ...]


Recipient = Union[PlainAddress, AddressObject, RecipientList]


def parse_recipient(value: Any) -> Optional[Recipient]:
    """
    Parse a raw `to` value into a Recipient.

    Returns None for shapes that carry no address (numbers, null, objects
    without an `email` key). Nested lists are parsed recursively.
    """
    if isinstance(value, str):
        return PlainAddress(value)
    if isinstance(value, dict):
        if "email" not in value:
            return None
        email = value.get("email")
        return AddressObject(email if isinstance(email, str) else None)
    if isinstance(value, (list, tuple)):
        parsed = (parse_recipient(item) for item in value)
        return RecipientList(tuple(item for item in parsed if item is not None))
    return None


def _flatten(recipient: Recipient) -> list[str]:
    if isinstance(recipient, PlainAddress):
        return [recipient.address]
    if isinstance(recipient, AddressObject):
        return [recipient.email or ""]
    addresses: list[str] = []
    for item in recipient.items:
        addresses.extend(_flatten(item))
    return addresses


def format_recipients(value: Any) -> str:
    """Flatten any `to` shape into "a@x.com, b@y.com"; empty entries are dropped."""
    recipient = parse_recipient(value)
    if recipient is None:
        return ""
    return ", ".join(address for address in _flatten(recipient) if address)


# ---------------------------------------------------------------------------
# Stored rows
# ---------------------------------------------------------------------------

class EmailPayload(BaseModel):
    """
    Logical view of a webhook payload.

    Novu sends many more fields; they are kept as extras so a record can be
    written back or re-served unchanged.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    to: Any = None
    from_: Optional[str] = Field(default=None, alias="from")
    subject: Optional[str] = None
    html: Optional[str] = None

    @field_validator("from_", "subject", "html", mode="before")
    @classmethod
    def _drop_non_strings(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    @property
    def display_subject(self) -> str:
        return self.subject if self.subject is not None else "(no subject)"

    @property
    def display_to(self) -> str:
        return format_recipients(self.to)

    @property
    def has_body(self) -> bool:
        return bool(self.html)


class CapturedHeaders(BaseModel):
    """Headers captured at ingestion, stored with camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)

    signature: str = ""
    content_type: str = Field(default="", alias="contentType")
    user_agent: str = Field(default="", alias="userAgent")


class NewWebhookRecord(BaseModel):
    received_at: str
    headers: CapturedHeaders
    data: dict[str, Any]

    def to_row(self) -> dict:
        return {
            "received_at": self.received_at,
            "headers": self.headers.model_dump(by_alias=True),
            "data": self.data,
        }


class WebhookRecord(BaseModel):
    """A NovuWebhookLogs row. `id` is the only identity key."""

    id: int
    received_at: Optional[str] = None
    headers: dict[str, Any] = {}
    data: EmailPayload = Field(default_factory=EmailPayload)

    @field_validator("data", mode="before")
    @classmethod
    def _default_payload(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, EmailPayload)) else {}

    @field_validator("headers", mode="before")
    @classmethod
    def _default_headers(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @classmethod
    def from_row(cls, row: Any) -> Optional["WebhookRecord"]:
        """
        Build a record from a raw store row.

        Returns None for rows that have no integer id, since nothing can be
        keyed on them.
        """
        if not isinstance(row, dict):
            return None
        row_id = row.get("id")
        if not isinstance(row_id, int) or isinstance(row_id, bool):
            return None
        received_at = row.get("received_at")
        return cls(
            id=row_id,
            received_at=received_at if isinstance(received_at, str) else None,
            headers=row.get("headers") or {},
            data=row.get("data") or {},
        )

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "received_at": self.received_at,
            "data": self.data.model_dump(by_alias=True, exclude_unset=True),
        }


class FeedState(BaseModel):
    emails: list[WebhookRecord] = []
    selected_id: Optional[int] = None

    @property
    def selected(self) -> Optional[WebhookRecord]:
        for email in self.emails:
            if email.id == self.selected_id:
                return email
        return None

    def to_api(self) -> dict:
        return {
            "emails": [email.to_api() for email in self.emails],
            "selected_id": self.selected_id,
        }


# ---------------------------------------------------------------------------
# Webhook response
# ---------------------------------------------------------------------------

class WebhookResponse(BaseModel):
    ok: bool
    error: Optional[str] = None
