"""
Outbound delivery for notification handlers.

Each handler type has a sender that takes (handler, payload) and raises
NotificationDeliveryError on failure. Senders never touch the database;
success/failure bookkeeping happens in the service layer.
"""
from __future__ import annotations

import hashlib
import hmac
import http.client
import json
import smtplib
import time
import urllib.error
import urllib.parse
import urllib.request
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from app.biohost.modules.notifications.models import NotificationHandler


USER_AGENT = "BioHost-Notifications/1.0"
DEFAULT_SUBJECT_PREFIX = "BioHost"

EVENT_SUBJECTS = {
    "click": "New page view on /{url}",
    "block_click": "Block clicked on /{url}",
    "form_submit": "New form submission on /{url}",
    "payment": "Payment received on /{url}",
}
EVENT_TITLES = {
    "click": "New page view",
    "block_click": "Block clicked",
    "form_submit": "New form submission",
    "payment": "Payment received",
    "test": "Test notification",
}
SLACK_EMOJI = {
    "click": ":eyes:",
    "block_click": ":point_up:",
    "form_submit": ":incoming_envelope:",
    "payment": ":moneybag:",
}
DISCORD_COLOURS = {
    "click": 0x3B82F6,
    "block_click": 0x8B5CF6,
    "form_submit": 0x10B981,
    "payment": 0xF59E0B,
}
DISCORD_DEFAULT_COLOUR = 0x6B7280


class NotificationDeliveryError(RuntimeError):
    pass


@dataclass(frozen=True)
class HttpClient:
    timeout_seconds: int = 10
    retries: int = 1

    def _backoff(self, attempt: int) -> None:
        # no sleep after the final attempt
        if attempt < self.retries:
            time.sleep(min(attempt + 1, 3))

    def post(self, url: str, body: bytes, headers: dict[str, str]) -> tuple[int, bytes]:
        last_err: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                req = urllib.request.Request(url, data=body, method="POST")
                for k, v in headers.items():
                    req.add_header(k, v)
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    return resp.status, resp.read()
            except urllib.error.HTTPError as e:
                if e.code == 429 or e.code >= 500:
                    last_err = NotificationDeliveryError(f"HTTP {e.code} from {_host(url)}")
                    self._backoff(attempt)
                    continue
                try:
                    detail = e.read().decode("utf-8", errors="ignore")
                except (OSError, http.client.HTTPException):
                    detail = ""
                raise NotificationDeliveryError(f"HTTP {e.code} from {_host(url)}: {detail[:300]}") from e
            except (OSError, http.client.HTTPException) as e:
                # URLError and socket timeouts are OSErrors; malformed responses are HTTPExceptions
                last_err = e
                self._backoff(attempt)
                continue
            except ValueError as e:
                raise NotificationDeliveryError(f"Invalid URL {url!r}: {e}") from e
        raise NotificationDeliveryError(f"Request to {_host(url)} failed after retries: {last_err!r}")

    def post_json(self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> tuple[int, bytes]:
        body = json.dumps(payload).encode("utf-8")
        all_headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        all_headers.update(headers or {})
        return self.post(url, body, all_headers)


def _host(url: str) -> str:
    return urllib.parse.urlparse(url).netloc or url


def sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _page_url(payload: dict) -> str:
    return (payload.get("biolink") or {}).get("full_url") or ""


def _slug(payload: dict) -> str:
    return (payload.get("biolink") or {}).get("url") or ""


def _detail_lines(data: dict) -> list[str]:
    lines = []
    if data.get("country_code"):
        lines.append(f"Country: {data['country_code']}")
    if data.get("device_type"):
        lines.append(f"Device: {data['device_type']}")
    if data.get("referrer"):
        lines.append(f"Referrer: {data['referrer']}")
    if data.get("block_type"):
        lines.append(f"Block: {data['block_type']}")
    if data.get("submission"):
        for k, v in (data["submission"] or {}).items():
            lines.append(f"{k}: {v}")
    if data.get("amount"):
        lines.append(f"Amount: {data['amount']} {data.get('currency') or ''}".rstrip())
    if data.get("message"):
        lines.append(str(data["message"]))
    return lines


# ---------- Webhook ----------
def send_webhook(handler: "NotificationHandler", payload: dict, client: HttpClient) -> None:
    url = handler.get_setting("url")
    if not url:
        raise NotificationDeliveryError("Webhook URL is not configured.")
    body = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-BioHost-Event": payload.get("event") or "",
        "X-BioHost-Delivery": str(uuid.uuid4()),
    }
    secret = handler.get_setting("secret")
    if secret:
        headers["X-BioHost-Signature"] = sign(body, secret)
    status, _ = client.post(url, body, headers)
    if not 200 <= status < 300:
        raise NotificationDeliveryError(f"Webhook returned HTTP {status}")


# ---------- Email ----------
def email_subject(payload: dict, prefix: str | None) -> str:
    template = EVENT_SUBJECTS.get(payload.get("event") or "", "Notification for /{url}")
    return f"[{prefix or DEFAULT_SUBJECT_PREFIX}] " + template.format(url=_slug(payload))


def email_body(payload: dict) -> str:
    lines = [
        EVENT_TITLES.get(payload.get("event") or "", "Notification"),
        "",
        f"Page: {_page_url(payload)}",
    ]
    details = _detail_lines(payload.get("data") or {})
    if details:
        lines.append("")
        lines.append("Details:")
        lines.extend(f"  {d}" for d in details)
    lines.append("")
    lines.append(f"Time: {payload.get('timestamp')}")
    return "\n".join(lines) + "\n"


def recipients(handler: "NotificationHandler") -> list[str]:
    raw = handler.get_setting("recipients") or ""
    if isinstance(raw, list):
        return [r.strip() for r in raw if r and r.strip()]
    return [r.strip() for r in str(raw).split(",") if r.strip()]


def send_email(handler: "NotificationHandler", payload: dict, smtp_config: dict) -> None:
    server = (smtp_config.get("SMTP_SERVER") or "").strip()
    email_from = (smtp_config.get("EMAIL_FROM") or "").strip()
    if not server:
        raise NotificationDeliveryError("SMTP server not configured (SMTP_SERVER missing)")
    if not email_from:
        raise NotificationDeliveryError("Email from address not configured (EMAIL_FROM missing)")
    to = recipients(handler)
    if not to:
        raise NotificationDeliveryError("No recipients configured.")

    msg = EmailMessage()
    msg["Subject"] = email_subject(payload, handler.get_setting("subject_prefix"))
    msg["From"] = email_from
    msg["To"] = ", ".join(to)
    msg.set_content(email_body(payload))

    port = smtp_config.get("SMTP_PORT")
    username = (smtp_config.get("SMTP_USERNAME") or "").strip()
    password = (smtp_config.get("SMTP_PASSWORD") or "").strip()
    timeout = int(smtp_config.get("NOTIFICATIONS_TIMEOUT") or 10)
    try:
        with smtplib.SMTP(server, int(port) if port else 0, timeout=timeout) as smtp:
            if smtp_config.get("SMTP_USE_TLS", True):
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)
    except smtplib.SMTPAuthenticationError as e:
        raise NotificationDeliveryError(f"SMTP authentication failed: {e}") from e
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationDeliveryError(f"SMTP error: {e}") from e


# ---------- Slack ----------
def slack_message(payload: dict) -> dict[str, Any]:
    event = payload.get("event") or ""
    data = payload.get("data") or {}
    emoji = SLACK_EMOJI.get(event, ":bell:")
    title = EVENT_TITLES.get(event, "Notification")
    text = f"{emoji} *{title}* on /{_slug(payload)}"
    context = [f"<{_page_url(payload)}|View Page>"]
    if data.get("country_code"):
        context.append(f"Country: {data['country_code']}")
    if data.get("device_type"):
        context.append(f"Device: {data['device_type']}")
    return {
        "text": text,
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": text}},
            {"type": "context", "elements": [{"type": "mrkdwn", "text": " | ".join(context)}]},
        ],
    }


def send_slack(handler: "NotificationHandler", payload: dict, client: HttpClient) -> None:
    url = handler.get_setting("webhook_url")
    if not url:
        raise NotificationDeliveryError("Slack webhook URL is not configured.")
    status, _ = client.post_json(url, slack_message(payload))
    if not 200 <= status < 300:
        raise NotificationDeliveryError(f"Slack returned HTTP {status}")


# ---------- Discord ----------
def discord_message(payload: dict) -> dict[str, Any]:
    event = payload.get("event") or ""
    data = payload.get("data") or {}
    fields = [
        {"name": "Country", "value": data.get("country_code") or "Unknown", "inline": True},
        {"name": "Device", "value": data.get("device_type") or "Unknown", "inline": True},
        {"name": "Referrer", "value": data.get("referrer") or "Direct", "inline": True},
    ]
    return {
        "embeds": [
            {
                "title": EVENT_TITLES.get(event, "Notification"),
                "description": "\n".join(_detail_lines(data)) or f"Activity on /{_slug(payload)}",
                "url": _page_url(payload),
                "color": DISCORD_COLOURS.get(event, DISCORD_DEFAULT_COLOUR),
                "fields": fields,
                "timestamp": payload.get("timestamp"),
                "footer": {"text": "BioHost"},
            }
        ]
    }


def send_discord(handler: "NotificationHandler", payload: dict, client: HttpClient) -> None:
    url = handler.get_setting("webhook_url")
    if not url:
        raise NotificationDeliveryError("Discord webhook URL is not configured.")
    status, _ = client.post_json(url, discord_message(payload))
    if not 200 <= status < 300:
        raise NotificationDeliveryError(f"Discord returned HTTP {status}")


# ---------- Telegram ----------
def telegram_text(payload: dict) -> str:
    from html import escape

    event = payload.get("event") or ""
    lines = [f"<b>{escape(EVENT_TITLES.get(event, 'Notification'))}</b>"]
    lines.append(f'<a href="{escape(_page_url(payload))}">/{escape(_slug(payload))}</a>')
    lines.extend(escape(d) for d in _detail_lines(payload.get("data") or {}))
    return "\n".join(lines)


def send_telegram(handler: "NotificationHandler", payload: dict, client: HttpClient) -> None:
    token = handler.get_setting("bot_token")
    chat_id = handler.get_setting("chat_id")
    if not token or not chat_id:
        raise NotificationDeliveryError("Telegram bot token and chat id are required.")
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    status, raw = client.post_json(
        url,
        {
            "chat_id": chat_id,
            "text": telegram_text(payload),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        },
    )
    try:
        result = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise NotificationDeliveryError("Invalid JSON from Telegram") from e
    if not result.get("ok"):
        raise NotificationDeliveryError(f"Telegram error: {result.get('description') or status}")


HTTP_SENDERS: dict[str, Callable[["NotificationHandler", dict, HttpClient], None]] = {
    "webhook": send_webhook,
    "slack": send_slack,
    "discord": send_discord,
    "telegram": send_telegram,
}


def deliver(handler: "NotificationHandler", payload: dict, config: dict, client: HttpClient | None = None) -> None:
    if handler.type == "email":
        send_email(handler, payload, config)
        return
    sender = HTTP_SENDERS.get(handler.type)
    if sender is None:
        raise NotificationDeliveryError(f"Unknown handler type: {handler.type}")
    sender(handler, payload, client or client_from_config(config))


def client_from_config(config: dict, *, retries: int = 1) -> HttpClient:
    return HttpClient(timeout_seconds=int(config.get("NOTIFICATIONS_TIMEOUT") or 10), retries=retries)
