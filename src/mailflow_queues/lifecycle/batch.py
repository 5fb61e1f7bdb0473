"""
Module: batch.py
Description: Batch delete and redrive with per-item failure accounting.

Each item is processed independently; one item's failure never stops
the others. Items run concurrently up to a fan-out limit, and each item
task writes exactly one slot of a result arena. The slots are merged
into a BatchResult only after every task has finished, so no counter is
shared between tasks.

Key Components:
- BatchMutationCoordinator.apply_batch(): run a DeleteOperation or
  RedriveOperation over a list of messages

Dependencies: asyncio, typing, models, lifecycle, utils
"""

import asyncio
from typing import List, Optional

from mailflow_queues.errors import (
    FATAL_BATCH_ERRORS,
    PartialBatchFailure,
    QueueAdminError,
    failure_kind_of,
)
from mailflow_queues.lifecycle.redrive import RedriveEngine
from mailflow_queues.models.batch import (
    BatchItemOutcome,
    BatchOperation,
    BatchResult,
    DeleteOperation,
    RedriveOperation,
)
from mailflow_queues.models.message import QueueMessage
from mailflow_queues.utils.batch_helpers import find_duplicate_handles, validate_batch_size
from mailflow_queues.utils.logger import get_logger
from mailflow_queues.utils.metrics import MetricsClient

logger = get_logger(__name__)


class BatchMutationCoordinator:
    """
    Applies one operation to many messages of a queue.

    Attributes:
        engine: RedriveEngine performing the single-item operations
        max_concurrency: Maximum number of item calls in flight
        max_items: Maximum batch size
        metrics_client: Optional CloudWatch metrics publisher
    """

    def __init__(
        self,
        engine: RedriveEngine,
        max_concurrency: int = 5,
        max_items: int = 100,
        metrics_client: Optional[MetricsClient] = None
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.engine = engine
        self.max_concurrency = max_concurrency
        self.max_items = max_items
        self.metrics_client = metrics_client

    async def apply_batch(
        self,
        queue_name: str,
        operation: BatchOperation,
        items: List[QueueMessage],
        cancel_event: Optional[asyncio.Event] = None
    ) -> BatchResult:
        """
        Apply a delete or redrive to every item.

        Item failures are classified and recorded in the result, never
        raised. Setting cancel_event stops new item calls; calls already
        in flight finish and unstarted items are counted as skipped.

        Args:
            queue_name: Queue the items were received from
            operation: DeleteOperation or RedriveOperation
            items: Messages to mutate
            cancel_event: Optional event that requests cancellation

        Returns:
            BatchResult with succeeded/failed/skipped counts and per-item outcomes

        Raises:
            ValueError: If the batch is empty or too large
            TargetUndeterminable: If a redrive has no target (before any broker call)
            PartialBatchFailure: If the broker became unreachable or access was
                denied; carries the outcomes recorded so far
        """
        validate_batch_size(items, self.max_items)

        match operation:
            case DeleteOperation():
                target = None
            case RedriveOperation(target_queue_name=explicit_target):
                target = self.engine.resolve_target(queue_name, explicit_target)
            case _:
                raise ValueError(f"unsupported batch operation: {operation!r}")

        duplicates = find_duplicate_handles([item.receipt_handle for item in items])
        if duplicates:
            logger.warning(
                "Batch contains repeated receipt handles; repeats will fail",
                queue_name=queue_name,
                repeated=len(duplicates)
            )

        logger.warning(
            "Starting batch operation",
            operation=operation.name,
            queue_name=queue_name,
            target_queue=target,
            items=len(items),
            max_concurrency=self.max_concurrency
        )

        slots: List[Optional[BatchItemOutcome]] = [None] * len(items)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        halt = asyncio.Event()
        fatal: List[QueueAdminError] = []

        async def run_item(index: int, item: QueueMessage) -> None:
            async with semaphore:
                if halt.is_set() or (cancel_event is not None and cancel_event.is_set()):
                    return
                try:
                    slots[index] = await self._apply_one(queue_name, operation, target, index, item)
                except QueueAdminError as e:
                    slots[index] = self._failure(index, item, e)
                    if isinstance(e, FATAL_BATCH_ERRORS):
                        fatal.append(e)
                        halt.set()
                except Exception as e:
                    logger.error(
                        "Unexpected error in batch item",
                        queue_name=queue_name,
                        message_id=item.message_id,
                        error=str(e),
                        error_type=type(e).__name__
                    )
                    slots[index] = self._failure(index, item, e)

        tasks = [asyncio.ensure_future(run_item(index, item)) for index, item in enumerate(items)]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            logger.warning("Batch operation cancelled by caller", queue_name=queue_name)
            raise

        cancelled = cancel_event is not None and cancel_event.is_set() and any(slot is None for slot in slots)
        result = BatchResult.from_slots(operation.name, queue_name, slots, cancelled=cancelled)

        logger.info(
            "Batch operation completed",
            operation=operation.name,
            queue_name=queue_name,
            total=result.total,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
            cancelled=result.cancelled
        )
        if self.metrics_client is not None and result.failed:
            self.metrics_client.put_metric(
                "BatchItemFailures",
                float(result.failed),
                dimensions={'QueueName': queue_name, 'Operation': operation.name}
            )

        if fatal:
            raise PartialBatchFailure(
                f"Batch {operation.name} aborted after {result.succeeded + result.failed} "
                f"of {result.total} items: {fatal[0].message}",
                result=result,
                cause=fatal[0]
            )
        return result

    async def _apply_one(
        self,
        queue_name: str,
        operation: BatchOperation,
        target: Optional[str],
        index: int,
        item: QueueMessage
    ) -> BatchItemOutcome:
        match operation:
            case DeleteOperation():
                result = await self.engine.delete(queue_name, item.receipt_handle)
                return BatchItemOutcome(
                    index=index,
                    message_id=item.message_id,
                    success=True,
                    message=result.message,
                )
            case RedriveOperation():
                result = await self.engine.redrive(queue_name, item, target)
                return BatchItemOutcome(
                    index=index,
                    message_id=item.message_id,
                    success=True,
                    message=result.message,
                    redrive_outcome=result.outcome,
                    delete_error=result.delete_error,
                )
        raise ValueError(f"unsupported batch operation: {operation!r}")

    @staticmethod
    def _failure(index: int, item: QueueMessage, error: Exception) -> BatchItemOutcome:
        return BatchItemOutcome(
            index=index,
            message_id=item.message_id,
            success=False,
            failure_kind=failure_kind_of(error),
            message=getattr(error, 'message', None) or str(error),
        )
