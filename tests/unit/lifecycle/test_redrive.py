"""
Module: test_redrive.py
Description: Unit tests for RedriveEngine and LeaseLedger.

Covers single deletes, target resolution, publish-before-delete
ordering, the duplicated outcome, and receipt handle reuse.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from mailflow_queues.errors import (
    AccessDenied,
    BrokerError,
    BrokerUnavailable,
    FailureKind,
    LeaseExpired,
    NotFound,
    PublishFailed,
    TargetUndeterminable,
)
from mailflow_queues.lifecycle.redrive import LeaseLedger, RedriveEngine
from mailflow_queues.models.batch import RedriveOutcome


class TestLeaseLedger:
    """Test cases for LeaseLedger."""

    def test_spend_once(self):
        ledger = LeaseLedger()
        ledger.spend("q", "h1")

        assert ledger.is_spent("q", "h1")
        assert not ledger.is_spent("other", "h1")
        assert len(ledger) == 1

    def test_second_spend_raises_lease_expired(self):
        ledger = LeaseLedger()
        ledger.spend("q", "h1")

        with pytest.raises(LeaseExpired) as exc_info:
            ledger.spend("q", "h1")
        assert exc_info.value.code == 'ReceiptHandleAlreadyUsed'

    def test_release_allows_spending_again(self):
        ledger = LeaseLedger()
        ledger.spend("q", "h1")
        ledger.release("q", "h1")
        ledger.release("q", "unknown")

        assert not ledger.is_spent("q", "h1")
        ledger.spend("q", "h1")
        assert ledger.is_spent("q", "h1")

    def test_oldest_entries_evicted(self):
        ledger = LeaseLedger(max_entries=2)
        for handle in ("h1", "h2", "h3"):
            ledger.spend("q", handle)

        assert len(ledger) == 2
        assert not ledger.is_spent("q", "h1")
        assert ledger.is_spent("q", "h3")

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LeaseLedger(max_entries=0)


class TestDelete:
    """Test cases for RedriveEngine.delete."""

    @pytest.mark.asyncio
    async def test_delete_with_live_handle(self, engine, broker, dlq_name, receive_all):
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)

        result = await engine.delete(dlq_name, message.receipt_handle)

        assert result.success is True
        assert broker.queues[dlq_name] == []

    @pytest.mark.asyncio
    async def test_delete_with_stale_handle(self, engine, broker, dlq_name, receive_all):
        """Test that a handle superseded by a later receive is refused."""
        broker.add_message(dlq_name, "body")
        [stale] = await receive_all(dlq_name, visibility_timeout=0)
        await receive_all(dlq_name, visibility_timeout=0)

        with pytest.raises(LeaseExpired):
            await engine.delete(dlq_name, stale.receipt_handle)
        assert len(broker.queues[dlq_name]) == 1

    @pytest.mark.asyncio
    async def test_handle_reuse_fails_without_broker_call(self, engine, broker, dlq_name, receive_all):
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)
        await engine.delete(dlq_name, message.receipt_handle)
        deletes_before = broker.count_calls('DeleteMessage')

        with pytest.raises(LeaseExpired):
            await engine.delete(dlq_name, message.receipt_handle)
        assert broker.count_calls('DeleteMessage') == deletes_before

    @pytest.mark.asyncio
    async def test_delete_unknown_queue(self, engine):
        with pytest.raises(NotFound):
            await engine.delete("nope", "handle")

    @pytest.mark.asyncio
    async def test_delete_requires_handle(self, engine, dlq_name):
        with pytest.raises(ValueError):
            await engine.delete(dlq_name, "")

    @pytest.mark.asyncio
    async def test_delete_publishes_metric(self, topology, broker, dlq_name, receive_all):
        metrics_client = MagicMock()
        engine = RedriveEngine(topology, broker, metrics_client=metrics_client)
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)

        await engine.delete(dlq_name, message.receipt_handle)

        metrics_client.put_metric.assert_called_once_with(
            "MessagesDeleted", 1.0, dimensions={'QueueName': dlq_name}
        )


class TestResolveTarget:
    """Test cases for RedriveEngine.resolve_target."""

    def test_explicit_target_wins(self, engine, dlq_name):
        assert engine.resolve_target(dlq_name, "mailflow-app1-test") == "mailflow-app1-test"

    def test_topology_wiring(self, engine, dlq_name, outbound_name):
        """Test that the declared source of a dead-letter queue is the default target."""
        assert engine.resolve_target(dlq_name) == outbound_name

    def test_naming_convention(self, engine):
        assert engine.resolve_target("orders-dlq") == "orders"
        assert engine.resolve_target("dlq-orders") == "orders"

    def test_undeterminable(self, engine):
        with pytest.raises(TargetUndeterminable):
            engine.resolve_target("orders")

    def test_target_equal_to_source(self, engine, dlq_name):
        with pytest.raises(TargetUndeterminable):
            engine.resolve_target(dlq_name, dlq_name)

    def test_no_broker_call(self, engine, broker):
        with pytest.raises(TargetUndeterminable):
            engine.resolve_target("orders")
        assert broker.calls == []


class TestRedrive:
    """Test cases for RedriveEngine.redrive."""

    @pytest.mark.asyncio
    async def test_moves_message(self, engine, broker, dlq_name, outbound_name, receive_all):
        attributes = {'EventId': {'DataType': 'String', 'StringValue': 'evt_1'}}
        broker.add_message(dlq_name, '{"id": 1}', message_attributes=attributes)
        [message] = await receive_all(dlq_name)

        result = await engine.redrive(dlq_name, message)

        assert result.outcome == RedriveOutcome.MOVED
        assert result.deleted is True
        assert result.target_queue_name == outbound_name
        assert broker.queues[dlq_name] == []
        assert broker.bodies(outbound_name) == ['{"id": 1}']
        assert broker.queues[outbound_name][0]['message_attributes'] == attributes

    @pytest.mark.asyncio
    async def test_publish_happens_before_delete(self, engine, broker, dlq_name, outbound_name, receive_all):
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)
        broker.calls.clear()

        await engine.redrive(dlq_name, message)

        mutations = [call for call in broker.calls if call[0] in ('SendMessage', 'DeleteMessage')]
        assert mutations == [('SendMessage', outbound_name), ('DeleteMessage', dlq_name)]

    @pytest.mark.asyncio
    async def test_publish_failure_leaves_source_untouched(self, engine, broker, dlq_name, receive_all):
        """Test that a failed publish never deletes the source message."""
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)
        broker.fail('SendMessage', BrokerError("InvalidMessageContents", code='InvalidMessageContents'))

        with pytest.raises(PublishFailed):
            await engine.redrive(dlq_name, message)

        assert broker.count_calls('DeleteMessage') == 0
        assert len(broker.queues[dlq_name]) == 1
        assert not engine.ledger.is_spent(dlq_name, message.receipt_handle)

    @pytest.mark.asyncio
    async def test_publish_failure_can_be_retried_with_same_handle(self, engine, broker, dlq_name, outbound_name, receive_all):
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)
        broker.fail('SendMessage', BrokerError("boom"))

        with pytest.raises(PublishFailed):
            await engine.redrive(dlq_name, message)
        result = await engine.redrive(dlq_name, message)

        assert result.outcome == RedriveOutcome.MOVED
        assert broker.bodies(outbound_name) == ["body"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [BrokerUnavailable("down"), AccessDenied("denied")])
    async def test_fatal_publish_errors_pass_through(self, engine, broker, dlq_name, receive_all, error):
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)
        broker.fail('SendMessage', error)

        with pytest.raises(type(error)):
            await engine.redrive(dlq_name, message)
        assert len(broker.queues[dlq_name]) == 1

    @pytest.mark.asyncio
    async def test_delete_failure_reports_duplicate(self, engine, broker, dlq_name, outbound_name, receive_all):
        """Test that a failed delete after publish is reported, not hidden."""
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)
        broker.fail('DeleteMessage', LeaseExpired("expired", code='ReceiptHandleIsInvalid'))

        result = await engine.redrive(dlq_name, message)

        assert result.outcome == RedriveOutcome.DUPLICATED
        assert result.deleted is False
        assert result.delete_error == FailureKind.LEASE_EXPIRED
        assert broker.bodies(outbound_name) == ["body"]
        assert broker.bodies(dlq_name) == ["body"]

    @pytest.mark.asyncio
    async def test_undeterminable_target_makes_no_broker_call(self, engine, broker, receive_all):
        broker.create_queue("orders")
        broker.add_message("orders", "body")
        [message] = await receive_all("orders")
        broker.calls.clear()

        with pytest.raises(TargetUndeterminable):
            await engine.redrive("orders", message)
        assert broker.calls == []

    @pytest.mark.asyncio
    async def test_missing_target_queue_publishes_nothing(self, engine, broker, receive_all):
        broker.create_queue("orders-dlq")
        broker.add_message("orders-dlq", "body")
        [message] = await receive_all("orders-dlq")

        with pytest.raises(NotFound):
            await engine.redrive("orders-dlq", message)
        assert broker.count_calls('SendMessage') == 0
        assert broker.bodies("orders-dlq") == ["body"]

    @pytest.mark.asyncio
    async def test_reused_handle_is_refused_before_publish(self, engine, broker, dlq_name, receive_all):
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)
        await engine.redrive(dlq_name, message)
        sends_before = broker.count_calls('SendMessage')

        with pytest.raises(LeaseExpired):
            await engine.redrive(dlq_name, message)
        assert broker.count_calls('SendMessage') == sends_before

    @pytest.mark.asyncio
    async def test_concurrent_redrives_of_one_handle_publish_once(self, engine, broker, dlq_name, outbound_name, receive_all):
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)
        broker.delay = 0.01

        first, second = await asyncio.gather(
            engine.redrive(dlq_name, message),
            engine.redrive(dlq_name, message),
            return_exceptions=True
        )

        assert first.outcome == RedriveOutcome.MOVED
        assert isinstance(second, LeaseExpired)
        assert broker.count_calls('SendMessage') == 1
        assert broker.bodies(outbound_name) == ["body"]

    @pytest.mark.asyncio
    async def test_missing_target_queue_releases_handle(self, engine, broker, receive_all):
        broker.create_queue("orders-dlq")
        broker.add_message("orders-dlq", "body")
        [message] = await receive_all("orders-dlq")

        with pytest.raises(NotFound):
            await engine.redrive("orders-dlq", message)
        assert not engine.ledger.is_spent("orders-dlq", message.receipt_handle)

    @pytest.mark.asyncio
    async def test_explicit_target(self, engine, broker, dlq_name, receive_all):
        broker.add_message(dlq_name, "body")
        [message] = await receive_all(dlq_name)

        result = await engine.redrive(dlq_name, message, "mailflow-default-test")

        assert result.target_queue_name == "mailflow-default-test"
        assert broker.bodies("mailflow-default-test") == ["body"]
