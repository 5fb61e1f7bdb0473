"""
Module: sqs.py
Description: SQS broker adapter for queue administration.

Wraps the SQS API calls the lifecycle services need and translates
botocore failures into the queue administration error taxonomy at a
single seam. Every call opens a short-lived aioboto3 client.

Key Components:
- SQSBroker: async SQS operations (list, describe, receive, send, delete, purge)
- translate_client_error(): ClientError -> QueueAdminError mapping
- normalize_message_attributes(): make message attributes safe to re-send

Dependencies: aioboto3, botocore, tenacity, asyncio
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from aioboto3 import Session
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mailflow_queues.errors import (
    AccessDenied,
    BrokerError,
    BrokerTimeout,
    BrokerUnavailable,
    LeaseExpired,
    NotFound,
)
from mailflow_queues.utils.logger import get_logger, handle_prefix

logger = get_logger(__name__)

# SQS hard limit per ReceiveMessage call
MAX_MESSAGES_PER_RECEIVE = 10

_NOT_FOUND_CODES = {
    'AWS.SimpleQueueService.NonExistentQueue',
    'QueueDoesNotExist',
    'NonExistentQueue',
}
_LEASE_CODES = {
    'ReceiptHandleIsInvalid',
    'InvalidReceiptHandle',
    'AWS.SimpleQueueService.ReceiptHandleIsInvalid',
}
_ACCESS_CODES = {
    'AccessDenied',
    'AccessDeniedException',
    'InvalidClientTokenId',
    'UnrecognizedClientException',
    'ExpiredToken',
    'SignatureDoesNotMatch',
    'InvalidSecurity',
}
_UNAVAILABLE_CODES = {
    'ServiceUnavailable',
    'InternalError',
    'InternalFailure',
    'RequestThrottled',
    'ThrottlingException',
    'Throttling',
}
_CONNECTION_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)

# Retry policy for idempotent read calls only; mutations are never retried
read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type(BrokerUnavailable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


def translate_client_error(error: ClientError, queue_name: Optional[str] = None) -> BrokerError:
    """
    Translate a botocore ClientError into the error taxonomy.

    Args:
        error: ClientError raised by an SQS call
        queue_name: Queue the call targeted, for context

    Returns:
        The matching BrokerError subclass instance (not raised)
    """
    details = error.response.get('Error', {})
    code = details.get('Code', 'Unknown')
    message = details.get('Message') or str(error)

    if code in _NOT_FOUND_CODES:
        return NotFound(f"Queue not found: {queue_name or message}", code=code, queue_name=queue_name)
    if code in _LEASE_CODES:
        return LeaseExpired(message, code=code, queue_name=queue_name)
    if code == 'InvalidParameterValue' and 'receipt handle' in message.lower():
        return LeaseExpired(message, code=code, queue_name=queue_name)
    if code in _ACCESS_CODES:
        return AccessDenied(message, code=code, queue_name=queue_name)
    if code in _UNAVAILABLE_CODES:
        return BrokerUnavailable(message, code=code, queue_name=queue_name)
    return BrokerError(message, code=code, queue_name=queue_name)


def normalize_message_attributes(attributes: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Convert message attributes into a SendMessage-compatible mapping.

    Received SQS attributes are passed through with only the fields
    SendMessage accepts. Plain values are wrapped: strings as 'String',
    numbers as 'Number', bytes as 'Binary'.

    Example:
        >>> normalize_message_attributes({"EventId": "evt_1", "Attempt": 2})
        {'EventId': {'DataType': 'String', 'StringValue': 'evt_1'}, 'Attempt': {'DataType': 'Number', 'StringValue': '2'}}
    """
    normalized: Dict[str, Dict[str, Any]] = {}
    for name, value in (attributes or {}).items():
        if isinstance(value, dict) and 'DataType' in value:
            entry = {'DataType': value['DataType']}
            if value.get('StringValue') is not None:
                entry['StringValue'] = value['StringValue']
            if value.get('BinaryValue') is not None:
                entry['BinaryValue'] = value['BinaryValue']
            normalized[name] = entry
        elif isinstance(value, bool):
            normalized[name] = {'DataType': 'String', 'StringValue': str(value).lower()}
        elif isinstance(value, (int, float)):
            normalized[name] = {'DataType': 'Number', 'StringValue': str(value)}
        elif isinstance(value, bytes):
            normalized[name] = {'DataType': 'Binary', 'BinaryValue': value}
        elif value is not None:
            normalized[name] = {'DataType': 'String', 'StringValue': str(value)}
    return normalized


def queue_name_from_url(queue_url: str) -> str:
    return queue_url.rstrip('/').rsplit('/', 1)[-1]


class SQSBroker:
    """
    Async SQS adapter used by the lifecycle services.

    Queue URLs are resolved by name and cached for the lifetime of the
    broker. All methods raise QueueAdminError subclasses only.

    Example:
        >>> broker = SQSBroker(region_name="us-east-1")
        >>> url = await broker.get_queue_url("mailflow-dlq-dev")
        >>> await broker.receive_messages(url, max_messages=10, visibility_timeout=300)
    """

    def __init__(
        self,
        region_name: str,
        endpoint_url: Optional[str] = None,
        call_timeout: float = 10.0,
        session: Optional[Session] = None
    ):
        """
        Initialize SQS broker.

        Args:
            region_name: AWS region of the queues
            endpoint_url: Optional endpoint override (LocalStack)
            call_timeout: Timeout in seconds for one SQS call
            session: Optional aioboto3 session to reuse
        """
        if not region_name or not isinstance(region_name, str):
            raise ValueError("region_name must be a non-empty string")
        if call_timeout <= 0:
            raise ValueError("call_timeout must be positive")

        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.call_timeout = call_timeout
        self.session = session or Session()
        self._queue_urls: Dict[str, str] = {}

        logger.info(
            "SQS broker initialized",
            region=region_name,
            endpoint_url=endpoint_url,
            call_timeout=call_timeout
        )

    @asynccontextmanager
    async def _sqs(self, operation: str, queue_name: Optional[str] = None) -> AsyncIterator[Any]:
        """Open an SQS client and translate any failure raised while using it."""
        try:
            async with self.session.client(
                'sqs',
                region_name=self.region_name,
                endpoint_url=self.endpoint_url
            ) as sqs:
                yield sqs

        except ClientError as e:
            error = translate_client_error(e, queue_name)
            logger.error(
                "SQS call failed",
                operation=operation,
                queue_name=queue_name,
                error_code=error.code,
                error_type=type(error).__name__,
                error_message=error.message
            )
            raise error from e

        except _CONNECTION_ERRORS as e:
            logger.error(
                "SQS endpoint unreachable",
                operation=operation,
                queue_name=queue_name,
                error=str(e)
            )
            raise BrokerUnavailable(f"SQS endpoint unreachable: {e}", queue_name=queue_name) from e

        except NoCredentialsError as e:
            logger.error("No AWS credentials available", operation=operation)
            raise AccessDenied("No AWS credentials available", queue_name=queue_name) from e

        except asyncio.TimeoutError as e:
            logger.warning(
                "SQS call timed out",
                operation=operation,
                queue_name=queue_name,
                timeout_seconds=self.call_timeout
            )
            raise BrokerTimeout(
                f"{operation} timed out after {self.call_timeout}s",
                queue_name=queue_name
            ) from e

    async def _call(self, coro: Any, extra_seconds: float = 0) -> Any:
        return await asyncio.wait_for(coro, timeout=self.call_timeout + extra_seconds)

    @read_retry
    async def list_queue_urls(self, prefix: str = "") -> Dict[str, str]:
        """
        List queues visible to the caller.

        Args:
            prefix: Only queues whose name starts with this prefix

        Returns:
            Mapping of queue name to queue URL

        Raises:
            BrokerUnavailable: If SQS cannot be reached
            AccessDenied: If the credentials are not authorized
        """
        urls: Dict[str, str] = {}
        async with self._sqs('ListQueues') as sqs:
            kwargs: Dict[str, Any] = {'MaxResults': 1000}
            if prefix:
                kwargs['QueueNamePrefix'] = prefix
            while True:
                response = await self._call(sqs.list_queues(**kwargs))
                for url in response.get('QueueUrls', []):
                    urls[queue_name_from_url(url)] = url
                next_token = response.get('NextToken')
                if not next_token:
                    break
                kwargs['NextToken'] = next_token

        self._queue_urls.update(urls)
        logger.debug("Queues listed", prefix=prefix, count=len(urls))
        return urls

    @read_retry
    async def get_queue_url(self, queue_name: str) -> str:
        """
        Resolve a queue URL by name.

        Raises:
            NotFound: If the queue does not exist
        """
        if not queue_name or not isinstance(queue_name, str):
            raise ValueError("queue_name must be a non-empty string")

        cached = self._queue_urls.get(queue_name)
        if cached:
            return cached

        async with self._sqs('GetQueueUrl', queue_name) as sqs:
            response = await self._call(sqs.get_queue_url(QueueName=queue_name))

        url = response.get('QueueUrl')
        if not url:
            raise NotFound(f"Queue URL not found for {queue_name}", queue_name=queue_name)
        self._queue_urls[queue_name] = url
        return url

    @read_retry
    async def get_queue_attributes(self, queue_url: str) -> Dict[str, str]:
        """Return all attributes of a queue."""
        queue_name = queue_name_from_url(queue_url)
        async with self._sqs('GetQueueAttributes', queue_name) as sqs:
            response = await self._call(
                sqs.get_queue_attributes(QueueUrl=queue_url, AttributeNames=['All'])
            )
        return response.get('Attributes', {})

    async def receive_messages(
        self,
        queue_url: str,
        max_messages: int = MAX_MESSAGES_PER_RECEIVE,
        visibility_timeout: Optional[int] = None,
        wait_time_seconds: int = 0
    ) -> List[Dict[str, Any]]:
        """
        Receive up to max_messages messages.

        Each returned message has been received: its receive count was
        incremented and it stays hidden for visibility_timeout seconds.

        Returns:
            Raw SQS message dictionaries
        """
        if not 1 <= max_messages <= MAX_MESSAGES_PER_RECEIVE:
            raise ValueError(f"max_messages must be between 1 and {MAX_MESSAGES_PER_RECEIVE}")

        queue_name = queue_name_from_url(queue_url)
        kwargs: Dict[str, Any] = {
            'QueueUrl': queue_url,
            'MaxNumberOfMessages': max_messages,
            'WaitTimeSeconds': wait_time_seconds,
            'AttributeNames': ['All'],
            'MessageAttributeNames': ['All'],
        }
        if visibility_timeout is not None:
            kwargs['VisibilityTimeout'] = visibility_timeout

        async with self._sqs('ReceiveMessage', queue_name) as sqs:
            response = await self._call(sqs.receive_message(**kwargs), extra_seconds=wait_time_seconds)

        messages = response.get('Messages', [])
        logger.debug(
            "Messages received",
            queue_name=queue_name,
            requested=max_messages,
            received=len(messages)
        )
        return messages

    async def send_message(
        self,
        queue_url: str,
        body: str,
        message_attributes: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Publish a message.

        Returns:
            Message ID assigned by SQS
        """
        queue_name = queue_name_from_url(queue_url)
        kwargs: Dict[str, Any] = {'QueueUrl': queue_url, 'MessageBody': body}
        attributes = normalize_message_attributes(message_attributes)
        if attributes:
            kwargs['MessageAttributes'] = attributes

        async with self._sqs('SendMessage', queue_name) as sqs:
            response = await self._call(sqs.send_message(**kwargs))

        message_id = response['MessageId']
        logger.info("Message sent to SQS", queue_name=queue_name, message_id=message_id)
        return message_id

    async def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """
        Delete the message a receipt handle was issued for.

        Raises:
            LeaseExpired: If the receipt handle is stale or invalid
        """
        queue_name = queue_name_from_url(queue_url)
        async with self._sqs('DeleteMessage', queue_name) as sqs:
            await self._call(sqs.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle))

        logger.info(
            "Message deleted from SQS",
            queue_name=queue_name,
            receipt_handle_prefix=handle_prefix(receipt_handle)
        )

    async def purge_queue(self, queue_url: str) -> None:
        """Delete every message currently in the queue. Irreversible."""
        queue_name = queue_name_from_url(queue_url)
        async with self._sqs('PurgeQueue', queue_name) as sqs:
            await self._call(sqs.purge_queue(QueueUrl=queue_url))

        logger.warning("Queue purged", queue_name=queue_name)
