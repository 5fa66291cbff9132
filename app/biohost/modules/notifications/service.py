from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from app.biohost import entitlements
from app.biohost.audit import record_event
from app.biohost.modules.notifications import delivery
from app.biohost.modules.notifications.delivery import NotificationDeliveryError
from app.biohost.modules.notifications.models import EVENTS, HANDLER_TYPES, NotificationHandler
from app.biohost.utils import clean, flag, is_http_url, is_valid_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User
    from app.biohost.modules.biolinks.models import BioLink


logger = logging.getLogger(__name__)

SLACK_PREFIX = "https://hooks.slack.com/"
DISCORD_PREFIXES = ("https://discord.com/api/webhooks/", "https://discordapp.com/api/webhooks/")

# form field names per handler type
SETTINGS_FIELDS = {
    "webhook": ("url", "secret"),
    "email": ("recipients", "subject_prefix"),
    "slack": ("webhook_url",),
    "discord": ("webhook_url",),
    "telegram": ("bot_token", "chat_id"),
}


def validate_handler_payload(payload: dict) -> list[str]:
    errors = []
    name = clean(payload.get("name"))
    if not name:
        errors.append("Name is required.")
    elif len(name) > 128:
        errors.append("Name must be 128 characters or fewer.")

    handler_type = clean(payload.get("type"))
    if handler_type not in HANDLER_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(HANDLER_TYPES)}")

    events = payload.get("events") or []
    if not events:
        errors.append("Select at least one event.")
    elif any(e not in EVENTS for e in events):
        errors.append(f"Invalid event. Must be one of: {', '.join(EVENTS)}")

    if handler_type == "webhook":
        url = clean(payload.get("url"))
        if not url or not is_http_url(url):
            errors.append("Webhook URL must be a valid http(s) URL.")
    elif handler_type == "email":
        raw = clean(payload.get("recipients")) or ""
        addresses = [a.strip() for a in raw.split(",") if a.strip()]
        if not addresses:
            errors.append("At least one recipient email is required.")
        for a in addresses:
            if not is_valid_email(a):
                errors.append(f"Invalid recipient email: {a}")
    elif handler_type == "slack":
        url = clean(payload.get("webhook_url")) or ""
        if not url.startswith(SLACK_PREFIX):
            errors.append(f"Slack webhook URL must start with {SLACK_PREFIX}")
    elif handler_type == "discord":
        url = clean(payload.get("webhook_url")) or ""
        if not url.startswith(DISCORD_PREFIXES):
            errors.append("Discord webhook URL must be a discord.com/api/webhooks URL.")
    elif handler_type == "telegram":
        if not clean(payload.get("bot_token")):
            errors.append("Telegram bot token is required.")
        if not clean(payload.get("chat_id")):
            errors.append("Telegram chat id is required.")
    return errors


def build_handler_settings(handler_type: str, payload: dict) -> dict[str, Any]:
    settings: dict[str, Any] = {}
    for key in SETTINGS_FIELDS.get(handler_type, ()):
        settings[key] = clean(payload.get(key))
    if handler_type == "email":
        settings["recipients"] = [a.strip() for a in (settings.get("recipients") or "").split(",") if a.strip()]
        settings["subject_prefix"] = settings.get("subject_prefix") or delivery.DEFAULT_SUBJECT_PREFIX
    return settings


def create_handler(s: "Session", biolink: "BioLink", payload: dict, user: "User") -> NotificationHandler:
    entitlements.require(s, user, "bio.notifications", scope_id=biolink.id)
    handler_type = clean(payload.get("type"))
    now = datetime.utcnow()
    handler = NotificationHandler(
        biolink_id=biolink.id,
        user_id=user.id,
        name=clean(payload.get("name")),
        type=handler_type,
        settings=build_handler_settings(handler_type, payload),
        events=list(payload.get("events") or ["click"]),
        is_enabled=True,
        trigger_count=0,
        consecutive_failures=0,
        created_at=now,
        updated_at=now,
    )
    s.add(handler)
    s.flush()

    record_event(
        s,
        actor=user,
        action="notification_handler.create",
        entity_type="NotificationHandler",
        entity_id=str(handler.id),
        metadata={"biolink_id": biolink.id, "name": handler.name, "type": handler.type},
    )
    return handler


def update_handler(s: "Session", handler: NotificationHandler, payload: dict, user: "User") -> NotificationHandler:
    """The type is fixed after creation; a blank secret/token keeps the stored one."""
    changes: dict[str, Any] = {}

    new_name = clean(payload.get("name"))
    if new_name and new_name != handler.name:
        changes["name"] = {"old": handler.name, "new": new_name}
        handler.name = new_name

    new_events = list(payload.get("events") or [])
    if new_events and new_events != list(handler.events or []):
        changes["events"] = {"old": handler.events, "new": new_events}
        handler.events = new_events

    new_settings = build_handler_settings(handler.type, payload)
    for secret_key in ("secret", "bot_token"):
        if secret_key in new_settings and not new_settings[secret_key]:
            new_settings[secret_key] = handler.get_setting(secret_key)
    if new_settings != (handler.settings or {}):
        changes["settings"] = sorted(new_settings.keys())
        handler.settings = new_settings

    handler.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="notification_handler.edit",
        entity_type="NotificationHandler",
        entity_id=str(handler.id),
        metadata={"name": handler.name, "changes": changes},
    )
    return handler


def delete_handler(s: "Session", handler: NotificationHandler, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="notification_handler.delete",
        entity_type="NotificationHandler",
        entity_id=str(handler.id),
        metadata={"biolink_id": handler.biolink_id, "name": handler.name},
    )
    s.delete(handler)
    s.flush()


def toggle_handler(s: "Session", handler: NotificationHandler, user: "User") -> NotificationHandler:
    handler.is_enabled = not handler.is_enabled
    handler.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="notification_handler.toggle",
        entity_type="NotificationHandler",
        entity_id=str(handler.id),
        metadata={"name": handler.name, "is_enabled": handler.is_enabled},
    )
    return handler


def reset_failures(s: "Session", handler: NotificationHandler, user: "User") -> NotificationHandler:
    handler.reset_failures()
    handler.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="notification_handler.reset",
        entity_type="NotificationHandler",
        entity_id=str(handler.id),
        metadata={"name": handler.name},
    )
    return handler


# ---------- Delivery ----------
def build_payload(biolink: "BioLink", event: str, data: dict | None = None, now: datetime | None = None) -> dict[str, Any]:
    ts = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return {
        "event": event,
        "biolink": {
            "id": biolink.id,
            "url": biolink.url,
            "full_url": biolink.full_url,
            "type": biolink.type,
        },
        "data": data or {},
        "timestamp": ts.isoformat().replace("+00:00", "Z"),
    }


def _config() -> dict:
    from flask import current_app

    return current_app.config


def _record_failure(handler: NotificationHandler) -> None:
    if handler.record_failure():
        logger.warning(
            "Notification handler %s disabled after %s consecutive failures",
            handler.id,
            handler.consecutive_failures,
        )


def _send(handler: NotificationHandler, payload: dict, config: dict, client: delivery.HttpClient | None = None) -> bool:
    try:
        delivery.deliver(handler, payload, config, client)
    except NotificationDeliveryError as e:
        logger.warning("Notification delivery failed (handler_id=%s type=%s): %s", handler.id, handler.type, e)
        _record_failure(handler)
        return False
    except Exception:
        logger.exception("Notification delivery crashed (handler_id=%s type=%s)", handler.id, handler.type)
        _record_failure(handler)
        return False
    handler.record_success()
    return True


def dispatch(biolink: "BioLink", event: str, data: dict | None = None) -> int:
    """
    Send event to every enabled handler of biolink that subscribes to it.
    Returns the number of handlers attempted. Never raises delivery errors.

    Runs inside the visitor's request, so HTTP handlers get a single attempt.
    """
    config = _config()
    if not config.get("NOTIFICATIONS_ENABLED", True):
        return 0
    handlers = [h for h in biolink.notification_handlers if h.handles(event)]
    if not handlers:
        return 0
    payload = build_payload(biolink, event, data)
    client = delivery.client_from_config(config, retries=0)
    for handler in handlers:
        _send(handler, payload, config, client)
    return len(handlers)


def send_test(s: "Session", handler: NotificationHandler, user: "User") -> bool:
    payload = build_payload(
        handler.biolink,
        "test",
        {"message": "This is a test notification from BioHost.", "country_code": "GB", "device_type": "desktop"},
    )
    ok = _send(handler, payload, _config())
    record_event(
        s,
        actor=user,
        action="notification_handler.test",
        entity_type="NotificationHandler",
        entity_id=str(handler.id),
        metadata={"name": handler.name, "ok": ok},
    )
    return ok


def handler_payload_from_form(form: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": form.get("name"),
        "type": form.get("type"),
        "events": form.getlist("events"),
    }
    for fields in SETTINGS_FIELDS.values():
        for key in fields:
            payload[key] = form.get(key)
    payload["is_enabled"] = flag(form.get("is_enabled"))
    return payload
