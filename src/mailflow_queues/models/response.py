"""
Module: response.py
Description: API response models for the Queues API.

Key Components:
- QueuesResponse: GET /queues
- TopologyResponse: GET /topology
- OperationResponse: single delete / redrive / purge
- BatchMutationResponse: POST /queues/{name}/messages/batch

Dependencies: pydantic, typing
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mailflow_queues.errors import FailureKind
from mailflow_queues.models.batch import BatchItemOutcome, BatchResult, RedriveOutcome
from mailflow_queues.models.queue import QueueDefinition, QueueInfo

_RESPONSE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueuesResponse(BaseModel):
    """Response model for queue listing."""

    model_config = _RESPONSE_CONFIG

    queues: List[QueueInfo]
    total: int = Field(..., ge=0)


class TopologyResponse(BaseModel):
    """Declared queues of the environment and their dead-letter wiring."""

    model_config = _RESPONSE_CONFIG

    environment: str
    queues: List[QueueDefinition]


class OperationResponse(BaseModel):
    """
    Response model for single-message mutations and purges.

    Attributes:
        success: Whether the operation took effect
        message: Human-readable summary
        target_queue_name: Redrive target (redrive only)
        published_message_id: Message ID assigned by the target (redrive only)
        outcome: 'moved' or 'duplicated' (redrive only)
        delete_error: Failure kind of the source delete (duplicated redrive only)
    """

    model_config = _RESPONSE_CONFIG

    success: bool
    message: str
    target_queue_name: Optional[str] = None
    published_message_id: Optional[str] = None
    outcome: Optional[RedriveOutcome] = None
    delete_error: Optional[FailureKind] = None


class BatchOperationSummary(BaseModel):
    """Counts of a batch run."""

    model_config = _RESPONSE_CONFIG

    total: int = Field(..., ge=0)
    succeeded: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    skipped: int = Field(default=0, ge=0)


class BatchMutationResponse(BaseModel):
    """
    Response model for batch mutations.

    Attributes:
        results: Per-item outcomes of attempted items, in submission order
        summary: Aggregate counts
        cancelled: Whether the batch stopped early
    """

    model_config = _RESPONSE_CONFIG

    results: List[BatchItemOutcome]
    summary: BatchOperationSummary
    cancelled: bool = False

    @classmethod
    def from_result(cls, result: BatchResult) -> 'BatchMutationResponse':
        return cls(
            results=result.outcomes,
            summary=BatchOperationSummary(
                total=result.total,
                succeeded=result.succeeded,
                failed=result.failed,
                skipped=result.skipped,
            ),
            cancelled=result.cancelled,
        )
