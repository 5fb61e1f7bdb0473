"""
Module: test_inspector.py
Description: Unit tests for QueueInspector.

Tests queue listing against the in-memory broker, including per-queue
failure isolation and undeclared queues.
"""

import threading
from unittest.mock import MagicMock

import pytest

from mailflow_queues.errors import AccessDenied, BrokerUnavailable, NotFound
from mailflow_queues.lifecycle.inspector import QueueInspector
from mailflow_queues.models.queue import QueueKind


class TestListQueues:
    """Test cases for QueueInspector.list_queues."""

    @pytest.mark.asyncio
    async def test_lists_every_declared_queue_in_order(self, inspector, topology, broker, dlq_name):
        """Test that every topology queue is reported with its counts."""
        broker.add_message(dlq_name, "a")
        broker.add_message(dlq_name, "b")

        queues = await inspector.list_queues()

        assert [queue.name for queue in queues] == topology.names
        dlq = queues[-1]
        assert dlq.kind == QueueKind.DEAD_LETTER
        assert dlq.message_count == 2
        assert dlq.messages_in_flight == 0
        assert dlq.metrics_available is True
        assert dlq.url == broker.url_for(dlq_name)

    @pytest.mark.asyncio
    async def test_listing_never_receives_messages(self, inspector, broker, dlq_name):
        """Test that listing does not change receive counts."""
        broker.add_message(dlq_name, "a")

        await inspector.list_queues()

        assert broker.count_calls('ReceiveMessage') == 0
        assert broker.queues[dlq_name][0]['receive_count'] == 0

    @pytest.mark.asyncio
    async def test_outbound_queue_reports_redrive_policy(self, inspector, outbound_name, dlq_name):
        queues = {queue.name: queue for queue in await inspector.list_queues()}

        policy = queues[outbound_name].redrive_policy
        assert policy is not None
        assert policy.target_dead_letter_queue == dlq_name
        assert policy.max_receive_count == 3
        assert queues["mailflow-app1-test"].redrive_policy is None

    @pytest.mark.asyncio
    async def test_one_failing_queue_does_not_hide_the_others(self, inspector, broker, outbound_name):
        """Test per-queue failure isolation."""
        broker.fail('GetQueueAttributes', BrokerUnavailable("throttled"), queue_name=outbound_name)

        queues = {queue.name: queue for queue in await inspector.list_queues()}

        assert queues[outbound_name].metrics_available is False
        assert queues[outbound_name].message_count == 0
        assert all(
            queue.metrics_available for name, queue in queues.items() if name != outbound_name
        )

    @pytest.mark.asyncio
    async def test_missing_queue_is_reported_degraded(self, inspector, broker):
        """Test that a declared but unprovisioned queue is still listed."""
        del broker.queues["mailflow-default-test"]

        queues = {queue.name: queue for queue in await inspector.list_queues()}

        assert queues["mailflow-default-test"].metrics_available is False
        assert queues["mailflow-default-test"].url is None

    @pytest.mark.asyncio
    async def test_broker_unreachable_raises(self, inspector, broker):
        broker.fail('ListQueues', BrokerUnavailable("connection refused"))

        with pytest.raises(BrokerUnavailable):
            await inspector.list_queues()

    @pytest.mark.asyncio
    async def test_access_denied_raises(self, inspector, broker):
        broker.fail('ListQueues', AccessDenied("not authorized"))

        with pytest.raises(AccessDenied):
            await inspector.list_queues()

    @pytest.mark.asyncio
    async def test_every_queue_unavailable_raises(self, inspector, broker):
        """Test that a total outage is not reported as a list of zero counts."""
        broker.fail('GetQueueAttributes', BrokerUnavailable("down"), times=None)

        with pytest.raises(BrokerUnavailable):
            await inspector.list_queues()

    @pytest.mark.asyncio
    async def test_oldest_message_age_from_metrics_client(self, topology, broker):
        metrics_client = MagicMock()
        metrics_client.get_oldest_message_age.return_value = 42
        inspector = QueueInspector(topology, broker, metrics_client)

        queues = await inspector.list_queues()

        assert all(queue.oldest_message_age_seconds == 42 for queue in queues)

    @pytest.mark.asyncio
    async def test_oldest_message_age_read_off_the_event_loop(self, topology, broker, dlq_name):
        loop_thread = threading.get_ident()
        callers = []

        def oldest_age(queue_name):
            callers.append(threading.get_ident())
            return 7

        metrics_client = MagicMock()
        metrics_client.get_oldest_message_age.side_effect = oldest_age
        inspector = QueueInspector(topology, broker, metrics_client)

        info = await inspector.describe_queue(dlq_name)

        assert info.oldest_message_age_seconds == 7
        assert callers and loop_thread not in callers

    @pytest.mark.asyncio
    async def test_oldest_message_age_absent_without_metrics(self, inspector):
        queues = await inspector.list_queues()

        assert all(queue.oldest_message_age_seconds is None for queue in queues)


class TestDescribeQueue:
    """Test cases for QueueInspector.describe_queue."""

    @pytest.mark.asyncio
    async def test_describe_declared_queue(self, inspector, broker, dlq_name):
        broker.add_message(dlq_name, "a")

        info = await inspector.describe_queue(dlq_name)

        assert info.declared is True
        assert info.kind == QueueKind.DEAD_LETTER
        assert info.message_count == 1

    @pytest.mark.asyncio
    async def test_describe_undeclared_queue(self, inspector, broker):
        """Test that queues outside the topology are classified by name."""
        broker.create_queue("legacy-orders-dlq")

        info = await inspector.describe_queue("legacy-orders-dlq")

        assert info.declared is False
        assert info.kind == QueueKind.DEAD_LETTER

    @pytest.mark.asyncio
    async def test_describe_unknown_queue(self, inspector):
        with pytest.raises(NotFound):
            await inspector.describe_queue("does-not-exist")

    @pytest.mark.asyncio
    async def test_describe_requires_name(self, inspector):
        with pytest.raises(ValueError):
            await inspector.describe_queue("")
