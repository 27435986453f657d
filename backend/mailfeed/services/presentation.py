"""
HTML rendering for the email viewer.

The page is a sidebar list of emails plus a detail pane for the selected
one. Email bodies are passed through untouched into a sandboxed iframe
(srcdoc); everything else is HTML-escaped here.

render_email_list() and render_email_detail() are also used by the live
stream, which ships the two fragments to the browser on every rebuild.
"""

from html import escape
from typing import Optional
from zoneinfo import ZoneInfo

from mailfeed.models.webhook_log import FeedState, WebhookRecord
from mailfeed.services.feed import parse_received_at

_EMPTY_LIST = "保存されたメールがありません。"
_EMPTY_BODY = "HTML ボディが空です。"
_NOTHING_SELECTED = "メールが選択されていません。"


def format_received_at(value: Optional[str], tz: str = "UTC") -> str:
    """
    Format a timestamp as "YYYY/MM/DD HH:MM" in the given zone.

    None gives "", an unparseable value is returned as-is.
    """
    if not value:
        return ""
    parsed = parse_received_at(value)
    if parsed is None:
        return value
    try:
        local = parsed.astimezone(ZoneInfo(tz))
    except OverflowError:
        return value
    return local.strftime("%Y/%m/%d %H:%M")


def _list_item(email: WebhookRecord, active: bool, tz: str) -> str:
    payload = email.data
    to_line = (
        f'<span class="to">To: {escape(payload.display_to)}</span>'
        if payload.display_to
        else ""
    )
    css = "email active" if active else "email"
    return (
        f'<li><a class="{css}" href="/?selected={email.id}" data-id="{email.id}">'
        f'<span class="received">{escape(format_received_at(email.received_at, tz))}</span>'
        f'<span class="subject">{escape(payload.display_subject)}</span>'
        f'<span class="from">From: {escape(payload.from_ or "")}</span>'
        f"{to_line}"
        f"</a></li>"
    )


def render_email_list(state: FeedState, tz: str = "UTC") -> str:
    header = (
        '<div class="list-header"><h1>メール一覧</h1>'
        f'<span class="count">{len(state.emails)}件</span></div>'
    )
    if not state.emails:
        return f'{header}<p class="empty">{_EMPTY_LIST}</p>'

    items = "".join(
        _list_item(email, email.id == state.selected_id, tz) for email in state.emails
    )
    return f'{header}<ul class="emails">{items}</ul>'


def render_email_detail(state: FeedState, tz: str = "UTC") -> str:
    email = state.selected
    if email is None:
        return f'<div class="placeholder">{_NOTHING_SELECTED}</div>'

    payload = email.data
    meta = []
    if payload.from_:
        meta.append(f"<p><strong>From:</strong> {escape(payload.from_)}</p>")
    if payload.display_to:
        meta.append(f"<p><strong>To:</strong> {escape(payload.display_to)}</p>")

    if payload.has_body:
        body = (
            f'<iframe title="Email content {email.id}" sandbox="allow-same-origin" '
            f'srcdoc="{escape(payload.html, quote=True)}"></iframe>'
        )
    else:
        body = f'<div class="placeholder">{_EMPTY_BODY}</div>'

    return (
        "<header>"
        f'<p class="received">{escape(format_received_at(email.received_at, tz))}</p>'
        f"<h2>{escape(payload.display_subject)}</h2>"
        f'<div class="meta">{"".join(meta)}</div>'
        "</header>"
        f'<div class="body">{body}</div>'
    )


_PAGE = """<!DOCTYPE html>
<html lang="ja">
<head>
<meta charset="utf-8">
<title>Novu Email Viewer</title>
<style>
body {{ margin: 0; display: flex; height: 100vh; font-family: sans-serif; background: #f4f4f5; }}
aside {{ width: 24rem; overflow-y: auto; background: #fff; border-right: 1px solid #e4e4e7; }}
section {{ flex: 1; display: flex; flex-direction: column; }}
.list-header {{ display: flex; justify-content: space-between; align-items: center; padding: 1rem 1.25rem; }}
.emails {{ list-style: none; margin: 0; padding: 0; }}
.email {{ display: flex; flex-direction: column; gap: .25rem; padding: 1rem 1.25rem; color: inherit; text-decoration: none; }}
.email.active {{ background: #f4f4f5; }}
.body {{ flex: 1; padding: 1rem; background: #e4e4e7; }}
iframe {{ width: 100%; height: 100%; border: 1px solid #d4d4d8; background: #fff; }}
.placeholder, .empty {{ padding: 1.5rem; color: #71717a; }}
</style>
</head>
<body>
<aside id="email-list">{email_list}</aside>
<section id="email-detail">{email_detail}</section>
<script>
(function () {{
  var source = new EventSource("/api/emails/stream?selected={selected}");
  source.addEventListener("feed", function (event) {{
    var update = JSON.parse(event.data);
    document.getElementById("email-list").innerHTML = update.list_html;
    if (update.detail_changed) {{
      document.getElementById("email-detail").innerHTML = update.detail_html;
    }}
  }});
}})();
</script>
</body>
</html>
"""


def render_page(state: FeedState, tz: str = "UTC") -> str:
    selected = "" if state.selected_id is None else str(state.selected_id)
    return _PAGE.format(
        email_list=render_email_list(state, tz),
        email_detail=render_email_detail(state, tz),
        selected=selected,
    )
