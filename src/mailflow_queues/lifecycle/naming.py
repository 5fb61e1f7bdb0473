"""
Module: naming.py
Description: Queue naming conventions.

Recovers the source queue of a dead-letter queue from its name and
classifies queues that are not declared in the topology.
"""

from mailflow_queues.errors import NamingConventionError
from mailflow_queues.models.queue import QueueKind

DLQ_SUFFIX = "-dlq"
DLQ_PREFIX = "dlq-"


def derive_source_queue_name(dead_letter_queue_name: str) -> str:
    """
    Derive the presumed source queue of a dead-letter queue.

    Strips a case-insensitive '-dlq' suffix or 'dlq-' prefix. Names that
    follow neither convention are refused rather than guessed, so a
    redrive can never pick an arbitrary target.

    Args:
        dead_letter_queue_name: Name of the dead-letter queue

    Returns:
        Source queue name

    Raises:
        NamingConventionError: If the name matches neither convention

    Example:
        >>> derive_source_queue_name("orders-dlq")
        'orders'
        >>> derive_source_queue_name("DLQ-orders")
        'orders'
    """
    name = dead_letter_queue_name or ""
    lowered = name.lower()

    if lowered.endswith(DLQ_SUFFIX):
        source = name[:-len(DLQ_SUFFIX)]
    elif lowered.startswith(DLQ_PREFIX):
        source = name[len(DLQ_PREFIX):]
    else:
        raise NamingConventionError(
            f"Queue '{name}' does not follow the '-dlq' suffix or 'dlq-' prefix convention"
        )

    if not source:
        raise NamingConventionError(f"Queue '{name}' has no source name around the DLQ marker")
    return source


def is_dead_letter_name(queue_name: str) -> bool:
    lowered = queue_name.lower()
    return DLQ_SUFFIX in lowered or lowered.startswith(DLQ_PREFIX)


def classify_queue_name(queue_name: str) -> QueueKind:
    """
    Guess the kind of a queue from its name.

    Only used for queues absent from the topology.

    Example:
        >>> classify_queue_name("mailflow-DLQ-app2")
        <QueueKind.DEAD_LETTER: 'dead-letter'>
    """
    lowered = queue_name.lower()
    if is_dead_letter_name(queue_name):
        return QueueKind.DEAD_LETTER
    if "outbound" in lowered:
        return QueueKind.OUTBOUND
    if "default" in lowered:
        return QueueKind.DEFAULT
    return QueueKind.INBOUND
