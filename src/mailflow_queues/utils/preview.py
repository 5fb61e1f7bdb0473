"""
Module: preview.py
Description: One-line summaries of queue message bodies.

Bodies are opaque to the queue core; the preview is a best-effort
human-readable hint shown next to each message and included in text
search. Strategies are tried in order: email envelope, typed message,
subject-like field, JSON key listing, plain-text truncation.
"""

import json
from typing import Any, Dict, Optional

MAX_PREVIEW_LENGTH = 200
MAX_SUBJECT_PREVIEW_LENGTH = 100
MAX_JSON_KEYS_IN_PREVIEW = 5


def create_message_preview(body: str) -> str:
    """
    Build a preview string for a message body.

    Args:
        body: Raw message body

    Returns:
        Preview of at most MAX_PREVIEW_LENGTH characters plus an ellipsis

    Example:
        >>> create_message_preview('{"messageType": "ORDER_CREATED", "id": "order-123"}')
        'Message type: ORDER_CREATED, ID: order-123'
    """
    body = body or ""
    try:
        data = json.loads(body)
    except ValueError:
        data = None

    if isinstance(data, dict):
        preview = _preview_json(data)
        if preview is not None:
            return preview

    return _truncate(body, MAX_PREVIEW_LENGTH)


def _preview_json(data: Dict[str, Any]) -> Optional[str]:
    email = data.get("email")
    if isinstance(email, dict):
        sender = email.get("from")
        address = sender.get("address") if isinstance(sender, dict) else None
        subject = email.get("subject")
        return "Email from: {}, Subject: {}".format(
            address if isinstance(address, str) else "unknown",
            subject if isinstance(subject, str) else "(no subject)",
        )

    message_type = _first_string(data, "messageType", "type", "eventType")
    if message_type is not None:
        message_id = _first_string(data, "id", "messageId", "eventId")
        if message_id:
            return f"Message type: {message_type}, ID: {message_id}"
        return f"Message type: {message_type}"

    subject = _first_string(data, "subject", "description", "message")
    if subject is not None:
        return f"Subject: {_truncate(subject, MAX_SUBJECT_PREVIEW_LENGTH)}"

    keys = list(data.keys())[:MAX_JSON_KEYS_IN_PREVIEW]
    return f"JSON with keys: {', '.join(keys)}"


def _first_string(data: Dict[str, Any], *keys: str) -> Optional[str]:
    # First present key wins, even when its value is not a string
    for key in keys:
        if key in data:
            value = data[key]
            return value if isinstance(value, str) else None
    return None


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text
