"""
Module: inspector.py
Description: Queue listing with live broker metrics.

Key Components:
- QueueInspector.list_queues(): every declared queue with its metrics
- QueueInspector.describe_queue(): one queue, declared or not

Metrics are read from queue attributes only; listing queues never
receives messages and never changes receive counts.

Dependencies: asyncio, typing, models, sqs_queue, utils
"""

import asyncio
from typing import Dict, List, Optional

from mailflow_queues.errors import BrokerUnavailable, NotFound, QueueAdminError
from mailflow_queues.lifecycle.naming import classify_queue_name
from mailflow_queues.models.queue import QueueDefinition, QueueInfo, QueueTopology
from mailflow_queues.utils.logger import get_logger
from mailflow_queues.utils.metrics import MetricsClient

logger = get_logger(__name__)


class QueueInspector:
    """
    Lists topology queues enriched with broker metrics.

    Attributes:
        topology: Declared queues of the environment
        broker: SQSBroker (or compatible) used for metadata calls
        metrics_client: Optional CloudWatch client for oldest-message age
    """

    def __init__(
        self,
        topology: QueueTopology,
        broker,
        metrics_client: Optional[MetricsClient] = None
    ):
        self.topology = topology
        self.broker = broker
        self.metrics_client = metrics_client

    async def list_queues(self) -> List[QueueInfo]:
        """
        List declared queues with live metrics.

        A failure while describing one queue does not prevent the others
        from being reported: that queue is returned with zero counts and
        metrics_available=False.

        Returns:
            QueueInfo per declared queue, in topology order

        Raises:
            BrokerUnavailable: If the broker cannot be reached at all
            AccessDenied: If the credentials are not authorized
        """
        urls = await self.broker.list_queue_urls(prefix=self.topology.name_prefix)

        results = await asyncio.gather(
            *[self._describe_isolated(definition, urls.get(definition.name))
              for definition in self.topology.queues]
        )

        queues = [info for info, _ in results]
        errors = [error for _, error in results if error is not None]
        if queues and len(errors) == len(queues) and all(
            isinstance(error, BrokerUnavailable) for error in errors
        ):
            raise errors[0]

        logger.info(
            "Queues listed",
            count=len(queues),
            degraded=len(errors),
            environment=self.topology.environment
        )
        return queues

    async def describe_queue(self, queue_name: str) -> QueueInfo:
        """
        Describe one queue.

        Queues absent from the topology are still described; their kind
        is inferred from the name.

        Raises:
            NotFound: If the broker has no such queue
            BrokerUnavailable: If the broker cannot be reached
        """
        if not queue_name or not isinstance(queue_name, str):
            raise ValueError("queue_name must be a non-empty string")

        definition = self.topology.get(queue_name)
        url = await self.broker.get_queue_url(queue_name)
        attributes = await self.broker.get_queue_attributes(url)

        if definition is not None:
            info = QueueInfo.from_attributes(
                name=queue_name,
                kind=definition.kind,
                url=url,
                attributes=attributes,
                redrive_policy=definition.redrive_policy,
            )
        else:
            info = QueueInfo.from_attributes(
                name=queue_name,
                kind=classify_queue_name(queue_name),
                url=url,
                attributes=attributes,
                declared=False,
            )
        info.oldest_message_age_seconds = await self._oldest_age(queue_name)
        return info

    async def _describe_isolated(
        self,
        definition: QueueDefinition,
        url: Optional[str]
    ) -> tuple[QueueInfo, Optional[QueueAdminError]]:
        try:
            if url is None:
                raise NotFound(f"Queue not found: {definition.name}", queue_name=definition.name)
            attributes: Dict[str, str] = await self.broker.get_queue_attributes(url)
        except QueueAdminError as e:
            logger.warning(
                "Queue metrics unavailable",
                queue_name=definition.name,
                error_type=type(e).__name__,
                error=e.message
            )
            return QueueInfo(
                name=definition.name,
                kind=definition.kind,
                url=url,
                redrive_policy=definition.redrive_policy,
                metrics_available=False,
            ), e

        info = QueueInfo.from_attributes(
            name=definition.name,
            kind=definition.kind,
            url=url,
            attributes=attributes,
            redrive_policy=definition.redrive_policy,
        )
        info.oldest_message_age_seconds = await self._oldest_age(definition.name)
        return info, None

    async def _oldest_age(self, queue_name: str) -> Optional[int]:
        if self.metrics_client is None:
            return None
        # boto3 CloudWatch client is synchronous
        return await asyncio.to_thread(self.metrics_client.get_oldest_message_age, queue_name)
