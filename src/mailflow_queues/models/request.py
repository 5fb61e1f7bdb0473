"""
Module: request.py
Description: API request models for the Queues API.

Defines request bodies for message mutations. JSON keys are camelCase;
Python attributes are snake_case.

Key Components:
- DeleteMessageRequest: POST /queues/{name}/messages/delete
- RedriveMessageRequest: POST /queues/{name}/messages/redrive
- BatchMutationRequest: POST /queues/{name}/messages/batch

Dependencies: pydantic, typing
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from mailflow_queues.models.batch import BatchOperation, DeleteOperation, RedriveOperation
from mailflow_queues.models.message import QueueMessage

_REQUEST_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    str_strip_whitespace=True
)


class DeleteMessageRequest(BaseModel):
    """
    Request model for deleting a message.

    Attributes:
        receipt_handle: Receipt handle returned when the message was listed
    """

    model_config = _REQUEST_CONFIG

    receipt_handle: str = Field(
        ...,
        min_length=1,
        description="Receipt handle of the delivery to delete"
    )


class RedriveMessageRequest(BaseModel):
    """
    Request model for redriving a message.

    The body is republished as-is; it is not re-read from the queue.

    Attributes:
        receipt_handle: Receipt handle returned when the message was listed
        body: Message body to publish to the target queue
        message_id: Original message ID (for logging and results)
        target_queue_name: Explicit target; derived from the queue name when omitted
        message_attributes: Producer metadata to carry over
    """

    model_config = _REQUEST_CONFIG

    receipt_handle: str = Field(..., min_length=1)
    body: str = Field(..., description="Message body to republish")
    message_id: Optional[str] = Field(default=None)
    target_queue_name: Optional[str] = Field(default=None, max_length=80)
    message_attributes: Optional[Dict[str, Any]] = Field(default=None)

    @field_validator('target_queue_name')
    @classmethod
    def validate_target_queue_name(cls, v: Optional[str]) -> Optional[str]:
        """Treat a blank target as no target."""
        if v is not None and not v.strip():
            return None
        return v

    def to_message(self) -> QueueMessage:
        return QueueMessage(
            message_id=self.message_id or "unknown",
            receipt_handle=self.receipt_handle,
            body=self.body,
            message_attributes=self.message_attributes,
        )


class BatchMessageItem(BaseModel):
    """One message of a batch mutation request."""

    model_config = _REQUEST_CONFIG

    message_id: str = Field(..., min_length=1)
    receipt_handle: str = Field(..., min_length=1)
    body: Optional[str] = None
    message_attributes: Optional[Dict[str, Any]] = None

    def to_message(self) -> QueueMessage:
        return QueueMessage(
            message_id=self.message_id,
            receipt_handle=self.receipt_handle,
            body=self.body or "",
            message_attributes=self.message_attributes,
        )


class BatchMutationRequest(BaseModel):
    """
    Request model for batch delete or redrive.

    Attributes:
        operation: 'delete' or 'redrive'
        target_queue_name: Redrive target (redrive only, optional)
        messages: Messages to mutate (1-100)
    """

    model_config = _REQUEST_CONFIG

    operation: Literal["delete", "redrive"]
    target_queue_name: Optional[str] = Field(default=None, max_length=80)
    messages: List[BatchMessageItem] = Field(..., min_length=1, max_length=100)

    @model_validator(mode='after')
    def validate_redrive_bodies(self) -> 'BatchMutationRequest':
        """Redrive republishes bodies, so every item must carry one."""
        if self.operation == "redrive":
            missing = [item.message_id for item in self.messages if item.body is None]
            if missing:
                raise ValueError(f"redrive requires a body for every message (missing: {', '.join(missing[:5])})")
        elif self.target_queue_name:
            raise ValueError("targetQueueName is only valid for redrive")
        return self

    def to_operation(self) -> BatchOperation:
        if self.operation == "redrive":
            return RedriveOperation(target_queue_name=self.target_queue_name or None)
        return DeleteOperation()

    def to_messages(self) -> List[QueueMessage]:
        return [item.to_message() for item in self.messages]
