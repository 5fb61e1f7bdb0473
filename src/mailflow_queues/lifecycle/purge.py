"""
Module: purge.py
Description: Confirmation-gated queue purge.

A purge deletes every message in a queue and cannot be undone. The
caller must re-enter the queue name; anything other than an exact,
case-sensitive match is refused before the broker is contacted.
"""

from typing import Optional

from pydantic import BaseModel

from mailflow_queues.errors import ConfirmationMismatch
from mailflow_queues.utils.logger import get_logger
from mailflow_queues.utils.metrics import MetricsClient

logger = get_logger(__name__)


class PurgeResult(BaseModel):
    success: bool
    message: str


class PurgeGuard:
    """Issues queue purges only against an exact confirmation."""

    def __init__(self, broker, metrics_client: Optional[MetricsClient] = None):
        self.broker = broker
        self.metrics_client = metrics_client

    async def purge(self, queue_name: str, confirmation_text: Optional[str]) -> PurgeResult:
        """
        Purge a queue if the confirmation text equals its name.

        Args:
            queue_name: Queue to purge
            confirmation_text: Queue name as re-entered by the operator

        Returns:
            PurgeResult on success

        Raises:
            ConfirmationMismatch: If confirmation_text != queue_name (no broker call made)
            NotFound: If the queue does not exist
            BrokerError: Any broker failure, unmodified (e.g. PurgeQueueInProgress)
        """
        if not queue_name or confirmation_text != queue_name:
            logger.warning(
                "Purge refused: confirmation does not match queue name",
                queue_name=queue_name
            )
            raise ConfirmationMismatch(
                f"Confirmation text must exactly match the queue name '{queue_name}'"
            )

        logger.warning("Purging queue - all messages will be deleted", queue_name=queue_name)

        queue_url = await self.broker.get_queue_url(queue_name)
        await self.broker.purge_queue(queue_url)

        if self.metrics_client is not None:
            self.metrics_client.put_metric("QueuePurged", 1.0, dimensions={'QueueName': queue_name})

        return PurgeResult(
            success=True,
            message=f"Queue '{queue_name}' has been purged successfully"
        )
