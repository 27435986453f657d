#!/usr/bin/env python3
"""
Dev helper: send a signed test Novu email webhook to the local backend.

Builds a sample email payload, signs the exact JSON bytes with
HMAC-SHA256 (NOVU_WEBHOOK_SECRET), and POST-s them to
/api/novu/email-webhook with the x-novu-signature header.

Usage
-----
# Basic - sample email, targeting localhost:8000
python scripts/send_test_webhook.py

# Custom subject / recipients
python scripts/send_test_webhook.py --subject "Hi" --to b@y.com --to c@z.com

# Send an HTML file as the body
python scripts/send_test_webhook.py --html-file path/to/mail.html

# Check that a wrong signature is rejected with 401
python scripts/send_test_webhook.py --bad-signature

# Print the payload and signature without sending
python scripts/send_test_webhook.py --dry-run

Environment / .env
------------------
NOVU_WEBHOOK_SECRET   Shared webhook secret (required unless --dry-run).
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv

from mailfeed.services.signature import compute_signature

WEBHOOK_PATH = "/api/novu/email-webhook"


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------

def _build_payload(from_email: str, to: list[str], subject: str, html: str) -> dict:
    """
    Build a Novu email webhook payload.

    `to` is sent as a list of {"email": ...} objects, the shape Novu uses
    for multi-recipient deliveries.
    """
    return {
        "subject": subject,
        "from": from_email,
        "to": [{"email": address} for address in to],
        "html": html,
    }


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        body = response.json()
        print(json.dumps(body, indent=2, ensure_ascii=False))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    # Locate project root (scripts/ lives one level below the root)
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_webhook.py",
        description=textwrap.dedent("""\
            Send a signed test Novu email webhook to the mailfeed backend.

            Reads NOVU_WEBHOOK_SECRET from the environment or a .env file
            in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_webhook.py
              python scripts/send_test_webhook.py --subject Hi --to b@y.com
              python scripts/send_test_webhook.py --bad-signature
              python scripts/send_test_webhook.py --url http://localhost:8000
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Backend base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--from",
        dest="from_email",
        default="a@x.com",
        help="Sender email address (default: a@x.com)",
    )
    parser.add_argument(
        "--to",
        action="append",
        default=None,
        metavar="ADDRESS",
        help="Recipient address; repeat for several (default: b@y.com)",
    )
    parser.add_argument(
        "--subject",
        default="Hi",
        help='Email subject (default: "Hi")',
    )
    parser.add_argument(
        "--html-file",
        default=None,
        metavar="PATH",
        help="HTML file to use as the body. A one-line body is used if omitted.",
    )
    parser.add_argument(
        "--secret",
        default=None,
        metavar="SECRET",
        help="Override the webhook secret. Defaults to NOVU_WEBHOOK_SECRET.",
    )
    parser.add_argument(
        "--bad-signature",
        action="store_true",
        help="Send the signature 'deadbeef' instead of the real one.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the payload and signature without sending.",
    )

    args = parser.parse_args()

    secret = args.secret or os.getenv("NOVU_WEBHOOK_SECRET", "")
    if not secret and not args.dry_run:
        print(
            "ERROR: No webhook secret found.\n"
            "Set NOVU_WEBHOOK_SECRET in your environment or .env file, "
            "or pass --secret.",
            file=sys.stderr,
        )
        return 1

    if args.html_file:
        html_path = Path(args.html_file)
        if not html_path.exists():
            print(f"ERROR: File not found: {html_path}", file=sys.stderr)
            return 1
        html = html_path.read_text(encoding="utf-8")
    else:
        html = "<p>hi</p>"

    payload = _build_payload(args.from_email, args.to or ["b@y.com"], args.subject, html)
    raw_body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    signature = "deadbeef" if args.bad_signature else compute_signature(raw_body, secret)

    endpoint = f"{args.url.rstrip('/')}{WEBHOOK_PATH}"

    print(f"Endpoint  : {endpoint}")
    print(f"From      : {args.from_email}")
    print(f"To        : {', '.join(args.to or ['b@y.com'])}")
    print(f"Subject   : {args.subject}")
    print(f"Signature : {signature}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(raw_body.decode("utf-8"))
        return 0

    try:
        response = httpx.post(
            endpoint,
            content=raw_body,
            headers={
                "Content-Type": "application/json",
                "x-novu-signature": signature,
            },
            timeout=30,
        )
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the backend running? Start it with:\n"
            "  cd backend && uvicorn mailfeed.main:app --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    expected = 401 if args.bad_signature else 200
    return 0 if response.status_code == expected else 1


if __name__ == "__main__":
    sys.exit(main())
