"""
Module: test_peeker.py
Description: Unit tests for MessagePeeker and message deduplication.
"""

import json

import pytest

from mailflow_queues.errors import NotFound
from mailflow_queues.lifecycle.peeker import dedupe_messages
from mailflow_queues.models.message import MessageAttributes, QueueMessage


def _message(message_id, handle, body="", receive_count=1):
    return QueueMessage(
        message_id=message_id,
        receipt_handle=handle,
        body=body,
        attributes=MessageAttributes(approximate_receive_count=receive_count),
    )


class TestDedupeMessages:
    """Test cases for dedupe_messages."""

    def test_first_position_kept(self):
        messages = [_message("a", "h1"), _message("b", "h2"), _message("a", "h3")]

        unique, duplicates = dedupe_messages(messages)

        assert [message.message_id for message in unique] == ["a", "b"]
        assert duplicates == 1

    def test_latest_receipt_handle_adopted(self):
        """Test that the surviving record carries the newest, still valid handle."""
        messages = [_message("a", "h1", receive_count=1), _message("a", "h2", receive_count=2)]

        unique, _ = dedupe_messages(messages)

        assert unique[0].receipt_handle == "h2"
        assert unique[0].attributes.approximate_receive_count == 2

    def test_no_duplicates(self):
        unique, duplicates = dedupe_messages([_message("a", "h1")])

        assert len(unique) == 1
        assert duplicates == 0


class TestListMessages:
    """Test cases for MessagePeeker.list_messages."""

    @pytest.mark.asyncio
    async def test_returns_messages_with_queue_info(self, peeker, broker, dlq_name):
        for index in range(3):
            broker.add_message(dlq_name, json.dumps({"type": "ORDER", "id": f"o-{index}"}))

        page = await peeker.list_messages(dlq_name, limit=10)

        assert page.queue_name == dlq_name
        assert len(page.messages) == 3
        assert page.total_count == 3
        assert page.queue_info.name == dlq_name
        assert page.messages[0].preview == "Message type: ORDER, ID: o-0"

    @pytest.mark.asyncio
    async def test_inspection_increments_receive_count(self, peeker, broker, dlq_name):
        """Test that inspecting is a receive: counts go up and messages are hidden."""
        broker.add_message(dlq_name, "body")

        first = await peeker.list_messages(dlq_name)
        assert first.messages[0].attributes.approximate_receive_count == 1

        hidden = await peeker.list_messages(dlq_name)
        assert hidden.messages == []

        broker.advance(301)
        second = await peeker.list_messages(dlq_name)
        assert second.messages[0].attributes.approximate_receive_count == 2

    @pytest.mark.asyncio
    async def test_limit_spans_several_receive_calls(self, peeker, broker, dlq_name):
        """Test that limits above 10 are served by repeated receives."""
        for index in range(25):
            broker.add_message(dlq_name, f"m{index}")

        page = await peeker.list_messages(dlq_name, limit=25)

        assert len(page.messages) == 25
        assert broker.count_calls('ReceiveMessage') == 3

    @pytest.mark.asyncio
    async def test_limit_is_clamped_to_maximum(self, peeker, broker, dlq_name):
        for index in range(60):
            broker.add_message(dlq_name, f"m{index}")

        page = await peeker.list_messages(dlq_name, limit=500)

        assert len(page.messages) == 50

    @pytest.mark.asyncio
    async def test_default_limit(self, peeker, broker, dlq_name):
        for index in range(15):
            broker.add_message(dlq_name, f"m{index}")

        page = await peeker.list_messages(dlq_name)

        assert len(page.messages) == 10

    @pytest.mark.asyncio
    async def test_stops_when_queue_is_exhausted(self, peeker, broker, dlq_name):
        broker.add_message(dlq_name, "only")

        page = await peeker.list_messages(dlq_name, limit=50)

        assert len(page.messages) == 1
        assert broker.count_calls('ReceiveMessage') == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery_collapsed(self, peeker, broker, dlq_name):
        """Test that a message delivered twice appears once with its latest handle."""
        first_id = broker.add_message(dlq_name, "first")
        broker.add_message(dlq_name, "second")
        broker.deliver_twice(dlq_name, first_id)

        page = await peeker.list_messages(dlq_name)

        assert [message.message_id for message in page.messages].count(first_id) == 1
        assert page.messages[0].message_id == first_id
        assert page.messages[0].receipt_handle == broker.queues[dlq_name][0]['handle']
        assert page.duplicates_dropped == 1

    @pytest.mark.asyncio
    async def test_search_filters_locally(self, peeker, broker, dlq_name):
        broker.add_message(dlq_name, json.dumps({"subject": "Invoice 42"}))
        broker.add_message(dlq_name, json.dumps({"subject": "Welcome"}))

        page = await peeker.list_messages(dlq_name, search="invoice")

        assert len(page.messages) == 1
        assert page.messages[0].preview == "Subject: Invoice 42"
        assert broker.count_calls('ReceiveMessage') == 1

    @pytest.mark.asyncio
    async def test_unknown_queue(self, peeker):
        with pytest.raises(NotFound):
            await peeker.list_messages("nope")

    @pytest.mark.asyncio
    async def test_uses_peek_visibility_timeout(self, peeker, broker, dlq_name, test_settings):
        broker.add_message(dlq_name, "body")

        await peeker.list_messages(dlq_name)

        assert broker.queues[dlq_name][0]['invisible_until'] == test_settings.peek_visibility_timeout
