import os
import smtplib
from email.message import EmailMessage
from typing import Any

import redis

from . import config
from .pubsub import serialize_event, user_channel

EMAIL_OUTBOX: list[tuple[str, str, str]] = []
PUSH_OUTBOX: list[tuple[str, dict[str, Any]]] = []

_push_client = None


def send_email(to_email: str, subject: str, message: str):
    if config.testing():
        EMAIL_OUTBOX.append((to_email, subject, message))
        return
    server = os.getenv("SMTP_SERVER")
    if not server:
        return
    from_addr = os.getenv("EMAIL_FROM", "noreply@example.com")
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_email
    msg.set_content(message)
    with smtplib.SMTP(server) as s:
        s.send_message(msg)


def _get_push_client():
    global _push_client
    if _push_client is None:
        _push_client = redis.Redis.from_url(config.redis_url())
    return _push_client


def send_push(user_id: str, event: dict[str, Any]):
    """Deliver a transient alert to the user's open clients."""

    if config.testing():
        PUSH_OUTBOX.append((user_id, event))
        return
    _get_push_client().publish(user_channel(user_id), serialize_event(event))
