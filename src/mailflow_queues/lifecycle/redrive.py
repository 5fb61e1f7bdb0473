"""
Module: redrive.py
Description: Single-message delete and redrive.

Key Components:
- LeaseLedger: spent receipt handles, so a handle is used at most once
- RedriveEngine.delete(): delete one message by receipt handle
- RedriveEngine.resolve_target(): pick the redrive target of a queue
- RedriveEngine.redrive(): publish to the target, then delete at the source

Redrive always publishes before it deletes. If the publish fails the
source message is untouched; if the delete fails after a publish, the
message exists in both queues and the result says so. A redrive never
leaves the message in neither queue.

Dependencies: collections, typing, models, sqs_queue, utils
"""

from collections import OrderedDict
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from mailflow_queues.errors import (
    FATAL_BATCH_ERRORS,
    FailureKind,
    LeaseExpired,
    NamingConventionError,
    PublishFailed,
    QueueAdminError,
    TargetUndeterminable,
)
from mailflow_queues.lifecycle.naming import derive_source_queue_name
from mailflow_queues.models.batch import RedriveOutcome
from mailflow_queues.models.message import QueueMessage
from mailflow_queues.models.queue import QueueKind, QueueTopology
from mailflow_queues.utils.logger import get_logger, handle_prefix
from mailflow_queues.utils.metrics import MetricsClient

logger = get_logger(__name__)


class DeleteResult(BaseModel):
    """Outcome of a single delete."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    queue_name: str
    success: bool = True
    message: str = "Message deleted successfully"


class RedriveResult(BaseModel):
    """
    Outcome of a single redrive.

    Attributes:
        source_queue_name: Queue the message was received from
        target_queue_name: Queue the message was published to
        message_id: Original message ID (if known)
        published_message_id: ID assigned by the target queue
        outcome: 'moved', or 'duplicated' when the source delete failed
        delete_error: Failure kind of the source delete, if it failed
        message: Human-readable summary
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_queue_name: str
    target_queue_name: str
    message_id: Optional[str] = None
    published_message_id: str
    outcome: RedriveOutcome
    delete_error: Optional[FailureKind] = None
    message: str

    @property
    def deleted(self) -> bool:
        return self.outcome == RedriveOutcome.MOVED


class LeaseLedger:
    """
    Bounded record of receipt handles already used for a delete attempt.

    The broker is the authority on lease validity across processes; the
    ledger only guarantees that this process never reuses a handle, so a
    repeated attempt fails with LeaseExpired instead of silently doing
    nothing.
    """

    def __init__(self, max_entries: int = 10000):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._spent: "OrderedDict[tuple[str, str], None]" = OrderedDict()

    def is_spent(self, queue_name: str, receipt_handle: str) -> bool:
        return (queue_name, receipt_handle) in self._spent

    def spend(self, queue_name: str, receipt_handle: str) -> None:
        """
        Mark a handle as used.

        Raises:
            LeaseExpired: If the handle was already used against this queue
        """
        key = (queue_name, receipt_handle)
        if key in self._spent:
            raise LeaseExpired(
                "Receipt handle was already used; receive the message again",
                code='ReceiptHandleAlreadyUsed',
                queue_name=queue_name
            )
        self._spent[key] = None
        if len(self._spent) > self.max_entries:
            self._spent.popitem(last=False)

    def release(self, queue_name: str, receipt_handle: str) -> None:
        """Return a reserved handle whose mutation never reached the broker."""
        self._spent.pop((queue_name, receipt_handle), None)

    def __len__(self) -> int:
        return len(self._spent)


class RedriveEngine:
    """
    Deletes and redrives individual messages.

    Attributes:
        topology: Declared queues, consulted for redrive wiring
        broker: SQSBroker (or compatible)
        ledger: Spent receipt handles
        metrics_client: Optional CloudWatch metrics publisher
    """

    def __init__(
        self,
        topology: QueueTopology,
        broker,
        ledger: Optional[LeaseLedger] = None,
        metrics_client: Optional[MetricsClient] = None
    ):
        self.topology = topology
        self.broker = broker
        self.ledger = ledger or LeaseLedger()
        self.metrics_client = metrics_client

    async def delete(self, queue_name: str, receipt_handle: str) -> DeleteResult:
        """
        Delete one message.

        Args:
            queue_name: Queue that issued the receipt handle
            receipt_handle: Lease of the delivery to delete

        Returns:
            DeleteResult

        Raises:
            LeaseExpired: If the handle is stale, invalid or already used
            NotFound: If the queue does not exist
            BrokerUnavailable: If the broker cannot be reached
        """
        if not receipt_handle or not isinstance(receipt_handle, str):
            raise ValueError("receipt_handle must be a non-empty string")

        queue_url = await self.broker.get_queue_url(queue_name)
        self.ledger.spend(queue_name, receipt_handle)

        logger.info(
            "Deleting message from queue",
            queue_name=queue_name,
            receipt_handle_prefix=handle_prefix(receipt_handle)
        )
        await self.broker.delete_message(queue_url, receipt_handle)
        self._metric("MessagesDeleted", queue_name)

        return DeleteResult(queue_name=queue_name)

    def resolve_target(self, source_queue_name: str, target_queue_name: Optional[str] = None) -> str:
        """
        Decide where a message from source_queue_name is redriven to.

        Order: explicit target, then the topology queue wired to this
        dead-letter queue (when exactly one is), then the naming
        convention. Pure: issues no broker call.

        Raises:
            TargetUndeterminable: If no target can be determined
        """
        if target_queue_name:
            target = target_queue_name
        else:
            target = self._target_from_topology(source_queue_name)
            if target is None:
                try:
                    target = derive_source_queue_name(source_queue_name)
                except NamingConventionError as e:
                    raise TargetUndeterminable(
                        f"No redrive target for '{source_queue_name}': {e.message}"
                    ) from e

        if target == source_queue_name:
            raise TargetUndeterminable(f"Redrive target of '{source_queue_name}' is the queue itself")
        return target

    def _target_from_topology(self, source_queue_name: str) -> Optional[str]:
        definition = self.topology.get(source_queue_name)
        if definition is None or definition.kind != QueueKind.DEAD_LETTER:
            return None
        sources = self.topology.dead_letter_sources(source_queue_name)
        if len(sources) == 1:
            return sources[0].name
        return None

    async def redrive(
        self,
        source_queue_name: str,
        message: QueueMessage,
        target_queue_name: Optional[str] = None
    ) -> RedriveResult:
        """
        Move a message to its target queue: publish first, then delete.

        Args:
            source_queue_name: Queue the message was received from
            message: Received message (body, attributes, receipt handle)
            target_queue_name: Explicit target; derived when omitted

        Returns:
            RedriveResult; outcome 'duplicated' when the publish succeeded
            but the source delete failed

        Raises:
            TargetUndeterminable: If no target can be determined (no broker call made)
            NotFound: If the source or target queue does not exist (nothing published)
            PublishFailed: If publishing failed (source message untouched)
            BrokerUnavailable, AccessDenied: Raised unchanged from the publish step
        """
        target = self.resolve_target(source_queue_name, target_queue_name)

        # Reserved before the first await; concurrent reuse of the handle fails here
        self.ledger.spend(source_queue_name, message.receipt_handle)
        published = False
        try:
            source_url = await self.broker.get_queue_url(source_queue_name)
            target_url = await self.broker.get_queue_url(target)

            logger.info(
                "Redriving message",
                source_queue=source_queue_name,
                target_queue=target,
                message_id=message.message_id
            )

            try:
                published_id = await self.broker.send_message(
                    target_url,
                    message.body,
                    message.message_attributes
                )
            except QueueAdminError as e:
                logger.error(
                    "Redrive publish failed, source message left in place",
                    source_queue=source_queue_name,
                    target_queue=target,
                    message_id=message.message_id,
                    error_type=type(e).__name__,
                    error=e.message
                )
                if isinstance(e, FATAL_BATCH_ERRORS):
                    raise
                raise PublishFailed(
                    f"Failed to send message to target queue {target}: {e.message}",
                    code=getattr(e, 'code', None),
                    queue_name=target
                ) from e
            published = True
        finally:
            if not published:
                self.ledger.release(source_queue_name, message.receipt_handle)

        try:
            await self.broker.delete_message(source_url, message.receipt_handle)
        except QueueAdminError as e:
            logger.warning(
                "Redrive delete failed after publish, message duplicated",
                source_queue=source_queue_name,
                target_queue=target,
                message_id=message.message_id,
                published_message_id=published_id,
                error_type=type(e).__name__,
                error=e.message
            )
            self._metric("RedriveDuplicates", source_queue_name)
            return RedriveResult(
                source_queue_name=source_queue_name,
                target_queue_name=target,
                message_id=message.message_id,
                published_message_id=published_id,
                outcome=RedriveOutcome.DUPLICATED,
                delete_error=e.kind,
                message=(
                    f"Message published to {target} but not deleted from "
                    f"{source_queue_name}: {e.message}"
                ),
            )

        self._metric("MessagesRedriven", source_queue_name)
        return RedriveResult(
            source_queue_name=source_queue_name,
            target_queue_name=target,
            message_id=message.message_id,
            published_message_id=published_id,
            outcome=RedriveOutcome.MOVED,
            message=f"Message moved from {source_queue_name} to {target}",
        )

    def _metric(self, metric_name: str, queue_name: str) -> None:
        if self.metrics_client is not None:
            self.metrics_client.put_metric(metric_name, 1.0, dimensions={'QueueName': queue_name})
