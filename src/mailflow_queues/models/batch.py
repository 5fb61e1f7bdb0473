"""
Module: batch.py
Description: Batch mutation operations and their results.

Key Components:
- DeleteOperation / RedriveOperation: closed set of batch operations
- BatchItemOutcome: result of one item
- BatchResult: aggregate of a batch run, never all-or-nothing

Dependencies: pydantic, dataclasses, typing
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mailflow_queues.errors import FailureKind


@dataclass(frozen=True)
class DeleteOperation:
    """Delete each message from its queue."""

    name = "delete"


@dataclass(frozen=True)
class RedriveOperation:
    """Move each message to a target queue (explicit or derived)."""

    target_queue_name: Optional[str] = None
    name = "redrive"


BatchOperation = Union[DeleteOperation, RedriveOperation]


class RedriveOutcome(str, Enum):
    """Final placement of a redriven message."""

    MOVED = "moved"
    DUPLICATED = "duplicated"


class BatchItemOutcome(BaseModel):
    """
    Result for a single item of a batch.

    Attributes:
        index: Position in the submitted item list (0-based)
        message_id: Message the item refers to
        success: Whether the operation took effect
        failure_kind: Failure category (only when success is False)
        message: Success message or error description
        redrive_outcome: Placement of a redriven message
        delete_error: Failure of the source delete after a successful publish
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    index: int = Field(..., ge=0)
    message_id: str
    success: bool
    failure_kind: Optional[FailureKind] = None
    message: str
    redrive_outcome: Optional[RedriveOutcome] = None
    delete_error: Optional[FailureKind] = None


class BatchResult(BaseModel):
    """
    Aggregate result of a batch operation.

    Attributes:
        operation: 'delete' or 'redrive'
        queue_name: Queue the items were received from
        total: Number of submitted items
        succeeded: Items that took effect
        failed: Items that were attempted and failed
        skipped: Items never attempted (cancelled or aborted batch)
        cancelled: Whether the batch stopped early on request
        outcomes: Per-item outcomes of attempted items, in submission order
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    operation: str
    queue_name: str
    total: int = Field(..., ge=0)
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    cancelled: bool = False
    outcomes: List[BatchItemOutcome] = Field(default_factory=list)

    @property
    def failed_items(self) -> List[BatchItemOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @classmethod
    def from_slots(
        cls,
        operation: str,
        queue_name: str,
        slots: List[Optional[BatchItemOutcome]],
        cancelled: bool = False
    ) -> 'BatchResult':
        """Merge per-item slots; empty slots are items that were never attempted."""
        outcomes = [slot for slot in slots if slot is not None]
        succeeded = sum(1 for outcome in outcomes if outcome.success)
        return cls(
            operation=operation,
            queue_name=queue_name,
            total=len(slots),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            skipped=len(slots) - len(outcomes),
            cancelled=cancelled,
            outcomes=outcomes,
        )
