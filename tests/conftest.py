"""
Module: conftest.py
Description: Shared pytest fixtures for Mailflow Queues tests.

Provides test settings, the test topology, and an in-memory broker that
behaves like SQS where the lifecycle services depend on it: receipt
handles are reissued on every receive, only the latest handle deletes a
message, receives increment the receive count and hide the message for
the visibility timeout. Failures and latency can be injected per call.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest
from pydantic_settings import SettingsConfigDict

from mailflow_queues.config.settings import Settings
from mailflow_queues.errors import LeaseExpired, NotFound
from mailflow_queues.lifecycle.batch import BatchMutationCoordinator
from mailflow_queues.lifecycle.inspector import QueueInspector
from mailflow_queues.lifecycle.peeker import MessagePeeker
from mailflow_queues.lifecycle.purge import PurgeGuard
from mailflow_queues.lifecycle.redrive import RedriveEngine
from mailflow_queues.models.message import QueueMessage
from mailflow_queues.models.queue import build_topology

QUEUE_URL_BASE = "https://sqs.us-east-1.amazonaws.com/123456789012"


class TestSettings(Settings):
    """Test settings that don't read a .env file."""

    model_config = SettingsConfigDict(
        env_file=None,  # Disable .env file loading for tests
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = "Mailflow Queues API Test"
    app_version: str = "0.3.0-test"
    log_level: str = "DEBUG"
    stage: str = "test"
    app_names: str = "app1,app2"
    peek_wait_time_seconds: int = 0
    broker_call_timeout: float = 2.0


class FakeBroker:
    """
    In-memory stand-in for SQSBroker.

    Time is manual: call advance(seconds) to let visibility timeouts
    expire. Every call is appended to `calls` as (operation, queue_name).
    """

    def __init__(self):
        self.queues: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.now = 0.0
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self._failures: List[Dict[str, Any]] = []
        self._duplicates: Dict[str, set] = {}
        self._ids = itertools.count(1)

    # Test helpers

    def create_queue(self, name: str) -> str:
        self.queues.setdefault(name, [])
        return self.url_for(name)

    @staticmethod
    def url_for(name: str) -> str:
        return f"{QUEUE_URL_BASE}/{name}"

    def add_message(
        self,
        queue_name: str,
        body: str,
        message_id: Optional[str] = None,
        message_attributes: Optional[Dict[str, Any]] = None,
        receive_count: int = 0
    ) -> str:
        message_id = message_id or f"msg-{next(self._ids)}"
        self.queues[queue_name].append({
            'id': message_id,
            'body': body,
            'message_attributes': message_attributes,
            'receive_count': receive_count,
            'invisible_until': 0.0,
            'handle': None,
            'sent_at': 1700000000000 + len(self.queues[queue_name]),
        })
        return message_id

    def bodies(self, queue_name: str) -> List[str]:
        return [message['body'] for message in self.queues[queue_name]]

    def fail(
        self,
        operation: str,
        error: Exception,
        queue_name: Optional[str] = None,
        times: Optional[int] = 1
    ) -> None:
        """Make the next `times` matching calls raise `error` (None = every call)."""
        self._failures.append({
            'operation': operation,
            'queue_name': queue_name,
            'error': error,
            'remaining': times,
        })

    def deliver_twice(self, queue_name: str, message_id: str) -> None:
        """Return message_id twice (with two handles) on the next receive."""
        self._duplicates.setdefault(queue_name, set()).add(message_id)

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def count_calls(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    # Broker interface

    async def _enter(self, operation: str, queue_name: Optional[str]) -> None:
        self.calls.append((operation, queue_name))
        for failure in self._failures:
            if failure['operation'] != operation:
                continue
            if failure['queue_name'] is not None and failure['queue_name'] != queue_name:
                continue
            if failure['remaining'] is not None:
                if failure['remaining'] <= 0:
                    continue
                failure['remaining'] -= 1
            raise failure['error']
        if self.delay:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                await asyncio.sleep(self.delay)
            finally:
                self.in_flight -= 1

    def _queue(self, queue_name: str) -> List[Dict[str, Any]]:
        if queue_name not in self.queues:
            raise NotFound(f"Queue not found: {queue_name}", code='QueueDoesNotExist', queue_name=queue_name)
        return self.queues[queue_name]

    @staticmethod
    def _name(queue_url: str) -> str:
        return queue_url.rsplit('/', 1)[-1]

    async def list_queue_urls(self, prefix: str = "") -> Dict[str, str]:
        await self._enter('ListQueues', None)
        return {name: self.url_for(name) for name in self.queues if name.startswith(prefix)}

    async def get_queue_url(self, queue_name: str) -> str:
        await self._enter('GetQueueUrl', queue_name)
        self._queue(queue_name)
        return self.url_for(queue_name)

    async def get_queue_attributes(self, queue_url: str) -> Dict[str, str]:
        name = self._name(queue_url)
        await self._enter('GetQueueAttributes', name)
        messages = self._queue(name)
        visible = sum(1 for message in messages if message['invisible_until'] <= self.now)
        return {
            'ApproximateNumberOfMessages': str(visible),
            'ApproximateNumberOfMessagesNotVisible': str(len(messages) - visible),
        }

    async def receive_messages(
        self,
        queue_url: str,
        max_messages: int = 10,
        visibility_timeout: Optional[int] = None,
        wait_time_seconds: int = 0
    ) -> List[Dict[str, Any]]:
        name = self._name(queue_url)
        await self._enter('ReceiveMessage', name)
        messages = self._queue(name)
        visible = [message for message in messages if message['invisible_until'] <= self.now]

        deliveries = []
        for message in visible[:max_messages]:
            deliveries.append(self._deliver(message, visibility_timeout))
        for message in visible[:max_messages]:
            if message['id'] in self._duplicates.get(name, set()):
                self._duplicates[name].discard(message['id'])
                deliveries.append(self._deliver(message, visibility_timeout))
        return deliveries

    def _deliver(self, message: Dict[str, Any], visibility_timeout: Optional[int]) -> Dict[str, Any]:
        message['receive_count'] += 1
        message['handle'] = f"{message['id']}-handle-{message['receive_count']}"
        message['invisible_until'] = self.now + (visibility_timeout or 0)
        delivery = {
            'MessageId': message['id'],
            'ReceiptHandle': message['handle'],
            'Body': message['body'],
            'Attributes': {
                'SentTimestamp': str(message['sent_at']),
                'ApproximateReceiveCount': str(message['receive_count']),
            },
        }
        if message['message_attributes']:
            delivery['MessageAttributes'] = message['message_attributes']
        return delivery

    async def send_message(
        self,
        queue_url: str,
        body: str,
        message_attributes: Optional[Dict[str, Any]] = None
    ) -> str:
        name = self._name(queue_url)
        await self._enter('SendMessage', name)
        self._queue(name)
        return self.add_message(name, body, message_attributes=message_attributes)

    async def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        name = self._name(queue_url)
        await self._enter('DeleteMessage', name)
        messages = self._queue(name)
        for message in messages:
            if message['handle'] is not None and message['handle'] == receipt_handle:
                messages.remove(message)
                return
        raise LeaseExpired(
            "The input receipt handle is invalid.",
            code='ReceiptHandleIsInvalid',
            queue_name=name
        )

    async def purge_queue(self, queue_url: str) -> None:
        name = self._name(queue_url)
        await self._enter('PurgeQueue', name)
        self._queue(name).clear()


@pytest.fixture
def test_settings():
    """
    Provide test configuration settings.

    Topology: mailflow-app1-test, mailflow-app2-test, mailflow-outbound-test,
    mailflow-default-test, mailflow-dlq-test.
    """
    return TestSettings()


@pytest.fixture
def topology(test_settings):
    return build_topology(test_settings.stage, test_settings.app_name_list, test_settings)


@pytest.fixture
def broker(topology):
    """FakeBroker with every topology queue created (empty)."""
    fake = FakeBroker()
    for name in topology.names:
        fake.create_queue(name)
    return fake


@pytest.fixture
def inspector(topology, broker):
    return QueueInspector(topology, broker)


@pytest.fixture
def peeker(inspector, broker, test_settings):
    return MessagePeeker(inspector, broker, test_settings)


@pytest.fixture
def engine(topology, broker):
    return RedriveEngine(topology, broker)


@pytest.fixture
def coordinator(engine):
    return BatchMutationCoordinator(engine, max_concurrency=3, max_items=100)


@pytest.fixture
def purge_guard(broker):
    return PurgeGuard(broker)


@pytest.fixture
def dlq_name():
    return "mailflow-dlq-test"


@pytest.fixture
def outbound_name():
    return "mailflow-outbound-test"


@pytest.fixture
def receive_all(broker):
    """Receive every visible message of a queue as QueueMessage records."""
    async def receive(queue_name: str, visibility_timeout: int = 300) -> List[QueueMessage]:
        url = broker.url_for(queue_name)
        received = []
        while True:
            batch = await broker.receive_messages(url, max_messages=10, visibility_timeout=visibility_timeout)
            received.extend(QueueMessage.from_sqs(raw) for raw in batch)
            if len(batch) < 10:
                return received
    return receive
