"""
Module: message.py
Description: Queue message models.

Defines the message record returned by inspection and consumed by the
delete/redrive operations, plus the presentation-only receive count
severity bands.

Key Components:
- MessageAttributes: broker system attributes (sent time, receive count)
- QueueMessage: one received delivery of a message
- ReceiveCountSeverity: display bands for approximate receive counts
- MessagePage: result of one inspection call

Dependencies: pydantic, datetime, typing
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from mailflow_queues.models.queue import QueueInfo
from mailflow_queues.utils.preview import create_message_preview

# Display bands only; receive counts never trigger any automated action
RECEIVE_COUNT_THRESHOLD_INFO = 1
RECEIVE_COUNT_THRESHOLD_WARNING = 3
RECEIVE_COUNT_THRESHOLD_CRITICAL = 5


class ReceiveCountSeverity(str, Enum):
    """Presentation band of a message's approximate receive count."""

    NONE = "none"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


def receive_count_severity(count: Optional[int]) -> ReceiveCountSeverity:
    """
    Classify a receive count into a display band.

    Example:
        >>> receive_count_severity(4)
        <ReceiveCountSeverity.WARNING: 'warning'>
    """
    count = count or 0
    if count > RECEIVE_COUNT_THRESHOLD_CRITICAL:
        return ReceiveCountSeverity.CRITICAL
    if count > RECEIVE_COUNT_THRESHOLD_WARNING:
        return ReceiveCountSeverity.WARNING
    if count > RECEIVE_COUNT_THRESHOLD_INFO:
        return ReceiveCountSeverity.INFO
    return ReceiveCountSeverity.NONE


class MessageAttributes(BaseModel):
    """
    Broker system attributes of a received message.

    Attributes:
        sent_at: When the producer sent the message
        approximate_receive_count: Receives so far, including inspections
        first_received_at: When the message was first received
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sent_at: Optional[datetime] = None
    approximate_receive_count: Optional[int] = Field(default=None, ge=0)
    first_received_at: Optional[datetime] = None

    @classmethod
    def from_sqs(cls, attributes: Dict[str, str]) -> 'MessageAttributes':
        """Parse SQS system attributes (epoch milliseconds as strings)."""
        count = attributes.get('ApproximateReceiveCount')
        return cls(
            sent_at=_from_epoch_millis(attributes.get('SentTimestamp')),
            approximate_receive_count=int(count) if count is not None and str(count).isdigit() else None,
            first_received_at=_from_epoch_millis(attributes.get('ApproximateFirstReceiveTimestamp')),
        )


class QueueMessage(BaseModel):
    """
    One received delivery of a queue message.

    The same message_id may be received more than once within one
    inspection window; each delivery carries its own receipt handle, and
    only a live handle can delete or redrive the message.

    Attributes:
        message_id: Broker-assigned identifier
        receipt_handle: Single-use, time-bound lease token of this delivery
        body: Raw payload, opaque to the queue core
        attributes: Broker system attributes
        message_attributes: Producer metadata, passed through unchanged on redrive
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message_id: str = Field(..., min_length=1)
    receipt_handle: str = Field(..., min_length=1)
    body: str = ""
    attributes: MessageAttributes = Field(default_factory=MessageAttributes)
    message_attributes: Optional[Dict[str, Any]] = None

    @computed_field(alias="preview")
    @property
    def preview(self) -> str:
        return create_message_preview(self.body)

    @computed_field(alias="receiveCountSeverity")
    @property
    def receive_count_severity(self) -> ReceiveCountSeverity:
        return receive_count_severity(self.attributes.approximate_receive_count)

    @classmethod
    def from_sqs(cls, message: Dict[str, Any]) -> 'QueueMessage':
        """Build a QueueMessage from one entry of an SQS ReceiveMessage response."""
        return cls(
            message_id=message['MessageId'],
            receipt_handle=message['ReceiptHandle'],
            body=message.get('Body', ''),
            attributes=MessageAttributes.from_sqs(message.get('Attributes') or {}),
            message_attributes=message.get('MessageAttributes') or None,
        )


class MessagePage(BaseModel):
    """Result of one inspection call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    queue_name: str
    messages: List[QueueMessage]
    queue_info: QueueInfo
    total_count: int = Field(..., ge=0)
    duplicates_dropped: int = Field(default=0, ge=0)


def _from_epoch_millis(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None
