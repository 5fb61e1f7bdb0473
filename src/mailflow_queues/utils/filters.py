"""
Module: filters.py
Description: Client-side text filtering of inspected messages.

Filtering runs over messages already received; it never issues broker
calls, so narrowing a view does not consume additional receives.
"""

from typing import List, Optional

from mailflow_queues.models.message import QueueMessage


def message_matches(message: QueueMessage, search: str) -> bool:
    """Case-insensitive substring match over message ID, body and preview."""
    needle = search.lower()
    return (
        needle in message.message_id.lower()
        or needle in message.body.lower()
        or needle in message.preview.lower()
    )


def filter_messages(messages: List[QueueMessage], search: Optional[str]) -> List[QueueMessage]:
    """
    Keep messages matching a search string, preserving order.

    Args:
        messages: Inspected messages
        search: Text to look for; blank or None keeps everything

    Returns:
        Matching messages

    Example:
        >>> filter_messages(messages, "order-123")
    """
    if search is None or not search.strip():
        return list(messages)
    search = search.strip()
    return [message for message in messages if message_matches(message, search)]
