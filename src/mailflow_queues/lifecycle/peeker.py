"""
Module: peeker.py
Description: Message inspection for queue administration.

SQS has no true peek. Inspecting a queue receives its messages: every
inspection increments ApproximateReceiveCount and hides the returned
messages for the peek visibility timeout. On a queue with a redrive
policy, repeated inspection can therefore push messages into the
dead-letter queue. Queues meant for frequent inspection are provisioned
without a redrive policy (see models.queue.build_topology).

Key Components:
- MessagePeeker.list_messages(): receive, deduplicate and filter messages
- dedupe_messages(): first-seen-wins deduplication by message ID

Dependencies: math, typing, models, sqs_queue, utils
"""

import math
from typing import Iterable, List, Optional, Tuple

from mailflow_queues.config.settings import Settings
from mailflow_queues.lifecycle.inspector import QueueInspector
from mailflow_queues.models.message import MessagePage, QueueMessage
from mailflow_queues.sqs_queue.sqs import MAX_MESSAGES_PER_RECEIVE
from mailflow_queues.utils.filters import filter_messages
from mailflow_queues.utils.logger import get_logger

logger = get_logger(__name__)


def dedupe_messages(messages: Iterable[QueueMessage]) -> Tuple[List[QueueMessage], int]:
    """
    Deduplicate messages by message ID, keeping first-seen order.

    A message received twice in one window keeps its first position, but
    adopts the receipt handle and receive count of the latest delivery:
    SQS only honours the most recently issued handle for a delete.

    Returns:
        Tuple of (unique messages, number of duplicates dropped)
    """
    unique: List[QueueMessage] = []
    positions = {}
    duplicates = 0

    for message in messages:
        index = positions.get(message.message_id)
        if index is None:
            positions[message.message_id] = len(unique)
            unique.append(message)
            continue

        duplicates += 1
        first = unique[index]
        unique[index] = first.model_copy(update={
            'receipt_handle': message.receipt_handle,
            'attributes': message.attributes,
        })

    return unique, duplicates


class MessagePeeker:
    """
    Reads messages from a queue for inspection.

    Attributes:
        inspector: QueueInspector used for queue metadata
        broker: SQSBroker (or compatible)
        settings: Limits and peek timeouts
    """

    def __init__(self, inspector: QueueInspector, broker, settings: Settings):
        self.inspector = inspector
        self.broker = broker
        self.settings = settings

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.settings.default_message_limit
        return max(1, min(limit, self.settings.max_message_limit))

    async def list_messages(
        self,
        queue_name: str,
        limit: Optional[int] = None,
        search: Optional[str] = None
    ) -> MessagePage:
        """
        Receive up to `limit` messages from a queue for inspection.

        Side effect: every returned message has been received. Its
        ApproximateReceiveCount went up by one and it stays invisible to
        other consumers for the peek visibility timeout, which keeps the
        returned receipt handles usable for a follow-up delete or redrive.

        Args:
            queue_name: Queue to inspect
            limit: Maximum number of messages (clamped to the configured range)
            search: Optional text filter over ID, body and preview, applied
                locally after the receive calls

        Returns:
            MessagePage with unique messages, queue info and the broker's
            approximate visible message count

        Raises:
            NotFound: If the queue does not exist
            BrokerUnavailable: If the broker cannot be reached
        """
        limit = self.clamp_limit(limit)
        queue_info = await self.inspector.describe_queue(queue_name)

        if queue_info.redrive_policy is not None:
            logger.warning(
                "Inspecting a queue with a redrive policy increments receive counts",
                queue_name=queue_name,
                max_receive_count=queue_info.redrive_policy.max_receive_count
            )

        received: List[QueueMessage] = []
        unique_count = 0
        for _ in range(math.ceil(limit / MAX_MESSAGES_PER_RECEIVE)):
            wanted = min(MAX_MESSAGES_PER_RECEIVE, limit - unique_count)
            batch = await self.broker.receive_messages(
                queue_info.url,
                max_messages=wanted,
                visibility_timeout=self.settings.peek_visibility_timeout,
                wait_time_seconds=self.settings.peek_wait_time_seconds
            )
            received.extend(QueueMessage.from_sqs(raw) for raw in batch)
            unique_count = len({message.message_id for message in received})

            # Queue exhausted or enough collected
            if len(batch) < wanted or unique_count >= limit:
                break

        messages, duplicates = dedupe_messages(received)
        messages = messages[:limit]
        filtered = filter_messages(messages, search)

        logger.info(
            "Messages inspected",
            queue_name=queue_name,
            limit=limit,
            received=len(received),
            unique=len(messages),
            duplicates_dropped=duplicates,
            returned=len(filtered),
            search=bool(search)
        )

        return MessagePage(
            queue_name=queue_name,
            messages=filtered,
            queue_info=queue_info,
            total_count=queue_info.message_count,
            duplicates_dropped=duplicates,
        )
