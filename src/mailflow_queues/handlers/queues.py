"""
Module: queues.py
Description: Queue administration endpoints.

Implements the queue endpoints of the Queues API:
- GET /queues: declared queues with live metrics
- GET /queues/{name}: one queue
- GET /queues/{name}/messages: inspect (receive) messages
- POST /queues/{name}/messages/delete: delete one message
- POST /queues/{name}/messages/redrive: move one message to its target
- POST /queues/{name}/messages/batch: batch delete or redrive
- POST /queues/{name}/purge?confirm={name}: purge a queue

Key Components:
- get_*(): cached dependency providers, overridable in tests
- raise_queue_error(): QueueAdminError to HTTPException mapping

Dependencies: FastAPI, functools, typing
"""

from functools import lru_cache
from typing import Dict, NoReturn, Optional, Type

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as status_codes

from mailflow_queues.config.settings import settings
from mailflow_queues.errors import (
    AccessDenied,
    BrokerError,
    BrokerTimeout,
    BrokerUnavailable,
    ConfirmationMismatch,
    LeaseExpired,
    NamingConventionError,
    NotFound,
    PartialBatchFailure,
    PublishFailed,
    QueueAdminError,
    TargetUndeterminable,
)
from mailflow_queues.lifecycle.batch import BatchMutationCoordinator
from mailflow_queues.lifecycle.inspector import QueueInspector
from mailflow_queues.lifecycle.peeker import MessagePeeker
from mailflow_queues.lifecycle.purge import PurgeGuard
from mailflow_queues.lifecycle.redrive import RedriveEngine
from mailflow_queues.models.message import MessagePage
from mailflow_queues.models.queue import QueueInfo, QueueTopology, build_topology
from mailflow_queues.models.request import (
    BatchMutationRequest,
    DeleteMessageRequest,
    RedriveMessageRequest,
)
from mailflow_queues.models.response import (
    BatchMutationResponse,
    OperationResponse,
    QueuesResponse,
    TopologyResponse,
)
from mailflow_queues.sqs_queue.sqs import SQSBroker
from mailflow_queues.utils.logger import get_logger, handle_prefix
from mailflow_queues.utils.metrics import MetricsClient

router = APIRouter(prefix="/queues", tags=["queues"])
topology_router = APIRouter(tags=["topology"])
logger = get_logger(__name__)

# Most specific class first
ERROR_STATUS: Dict[Type[QueueAdminError], int] = {
    NotFound: status_codes.HTTP_404_NOT_FOUND,
    LeaseExpired: status_codes.HTTP_409_CONFLICT,
    NamingConventionError: status_codes.HTTP_400_BAD_REQUEST,
    TargetUndeterminable: status_codes.HTTP_400_BAD_REQUEST,
    ConfirmationMismatch: status_codes.HTTP_400_BAD_REQUEST,
    PublishFailed: status_codes.HTTP_502_BAD_GATEWAY,
    BrokerUnavailable: status_codes.HTTP_503_SERVICE_UNAVAILABLE,
    BrokerTimeout: status_codes.HTTP_504_GATEWAY_TIMEOUT,
    AccessDenied: status_codes.HTTP_403_FORBIDDEN,
    PartialBatchFailure: status_codes.HTTP_503_SERVICE_UNAVAILABLE,
    BrokerError: status_codes.HTTP_502_BAD_GATEWAY,
}


def status_for_error(error: QueueAdminError) -> int:
    for error_class, status_code in ERROR_STATUS.items():
        if isinstance(error, error_class):
            return status_code
    return status_codes.HTTP_500_INTERNAL_SERVER_ERROR


def raise_queue_error(error: QueueAdminError) -> NoReturn:
    """
    Convert a QueueAdminError into an HTTPException.

    The detail carries the error type, so clients can tell a stale
    receipt handle (409 lease_expired) from a missing queue (404).
    PartialBatchFailure also carries the partial batch result.
    """
    detail = {"type": error.kind.value, "message": error.message}
    code = getattr(error, 'code', None)
    if code:
        detail["brokerCode"] = code
    if isinstance(error, PartialBatchFailure):
        detail["result"] = BatchMutationResponse.from_result(error.result).model_dump(mode='json', by_alias=True)
    raise HTTPException(status_code=status_for_error(error), detail=detail) from error


@lru_cache
def get_topology() -> QueueTopology:
    """Dependency returning the topology of the configured environment."""
    return build_topology(settings.stage, settings.app_name_list, settings)


@lru_cache
def get_broker() -> SQSBroker:
    """Dependency returning the shared SQS broker adapter."""
    return SQSBroker(
        region_name=settings.aws_region,
        endpoint_url=settings.aws_endpoint_url,
        call_timeout=settings.broker_call_timeout
    )


@lru_cache
def get_metrics_client() -> Optional[MetricsClient]:
    """Dependency returning the CloudWatch metrics client, or None when metrics are disabled."""
    if not settings.metrics_enabled:
        return None
    return MetricsClient(namespace=settings.metrics_namespace, region_name=settings.aws_region)


@lru_cache
def get_inspector() -> QueueInspector:
    return QueueInspector(get_topology(), get_broker(), get_metrics_client())


@lru_cache
def get_peeker() -> MessagePeeker:
    return MessagePeeker(get_inspector(), get_broker(), settings)


@lru_cache
def get_redrive_engine() -> RedriveEngine:
    """Dependency returning the process-wide redrive engine (and its lease ledger)."""
    return RedriveEngine(get_topology(), get_broker(), metrics_client=get_metrics_client())


@lru_cache
def get_batch_coordinator() -> BatchMutationCoordinator:
    return BatchMutationCoordinator(
        get_redrive_engine(),
        max_concurrency=settings.batch_max_concurrency,
        max_items=settings.batch_max_items,
        metrics_client=get_metrics_client()
    )


@lru_cache
def get_purge_guard() -> PurgeGuard:
    return PurgeGuard(get_broker(), get_metrics_client())


@topology_router.get("/topology", response_model=TopologyResponse)
async def get_queue_topology(topology: QueueTopology = Depends(get_topology)) -> TopologyResponse:
    """Return the declared queues and their dead-letter wiring."""
    return TopologyResponse(environment=topology.environment, queues=list(topology.queues))


@router.get("", response_model=QueuesResponse)
async def list_queues(inspector: QueueInspector = Depends(get_inspector)) -> QueuesResponse:
    """
    List declared queues with live metrics.

    Queues whose metrics could not be read are returned with zero counts
    and metricsAvailable=false.

    Raises:
        HTTPException: 503 if the broker cannot be reached
        HTTPException: 403 if access is denied
    """
    try:
        queues = await inspector.list_queues()
    except QueueAdminError as e:
        logger.error("Failed to list queues", error_code=e.kind.value, error_message=e.message)
        raise_queue_error(e)

    return QueuesResponse(queues=queues, total=len(queues))


@router.get("/{queue_name}", response_model=QueueInfo)
async def describe_queue(
    queue_name: str,
    inspector: QueueInspector = Depends(get_inspector)
) -> QueueInfo:
    """Describe one queue."""
    try:
        return await inspector.describe_queue(queue_name)
    except QueueAdminError as e:
        logger.error(
            "Failed to describe queue",
            queue_name=queue_name,
            error_code=e.kind.value,
            error_message=e.message
        )
        raise_queue_error(e)


@router.get("/{queue_name}/messages", response_model=MessagePage)
async def list_messages(
    queue_name: str,
    limit: Optional[int] = Query(default=None, ge=1, le=1000, description="Maximum messages (capped at 50)"),
    search: Optional[str] = Query(default=None, max_length=500),
    peeker: MessagePeeker = Depends(get_peeker)
) -> MessagePage:
    """
    Inspect messages of a queue.

    Every returned message has been received: its receive count went up
    and it stays hidden from consumers for the peek visibility timeout.

    Example:
        GET /queues/mailflow-dlq-dev/messages?limit=20&search=invoice

        Response (200 OK):
        {
            "queueName": "mailflow-dlq-dev",
            "messages": [{"messageId": "...", "receiptHandle": "...", "preview": "..."}],
            "queueInfo": {"name": "mailflow-dlq-dev", "messageCount": 42, ...},
            "totalCount": 42
        }
    """
    try:
        return await peeker.list_messages(queue_name, limit=limit, search=search)
    except QueueAdminError as e:
        logger.error(
            "Failed to list messages",
            queue_name=queue_name,
            error_code=e.kind.value,
            error_message=e.message
        )
        raise_queue_error(e)


@router.post("/{queue_name}/messages/delete", response_model=OperationResponse)
async def delete_message(
    queue_name: str,
    request: DeleteMessageRequest,
    engine: RedriveEngine = Depends(get_redrive_engine)
) -> OperationResponse:
    """
    Delete one message by receipt handle.

    Raises:
        HTTPException: 409 if the receipt handle is stale or already used
        HTTPException: 404 if the queue does not exist
    """
    try:
        result = await engine.delete(queue_name, request.receipt_handle)
    except QueueAdminError as e:
        logger.error(
            "Failed to delete message",
            queue_name=queue_name,
            receipt_handle_prefix=handle_prefix(request.receipt_handle),
            error_code=e.kind.value,
            error_message=e.message
        )
        raise_queue_error(e)

    return OperationResponse(success=result.success, message=result.message)


@router.post("/{queue_name}/messages/redrive", response_model=OperationResponse)
async def redrive_message(
    queue_name: str,
    request: RedriveMessageRequest,
    engine: RedriveEngine = Depends(get_redrive_engine)
) -> OperationResponse:
    """
    Move one message to its target queue (publish, then delete).

    A 200 response with outcome 'duplicated' means the message was
    published but the source copy could not be deleted.

    Raises:
        HTTPException: 400 if no target can be determined
        HTTPException: 502 if publishing failed (source message untouched)
    """
    try:
        result = await engine.redrive(queue_name, request.to_message(), request.target_queue_name)
    except QueueAdminError as e:
        logger.error(
            "Failed to redrive message",
            queue_name=queue_name,
            target_queue=request.target_queue_name,
            error_code=e.kind.value,
            error_message=e.message
        )
        raise_queue_error(e)

    return OperationResponse(
        success=True,
        message=result.message,
        target_queue_name=result.target_queue_name,
        published_message_id=result.published_message_id,
        outcome=result.outcome,
        delete_error=result.delete_error,
    )


@router.post("/{queue_name}/messages/batch", response_model=BatchMutationResponse)
async def batch_mutate(
    queue_name: str,
    request: BatchMutationRequest,
    coordinator: BatchMutationCoordinator = Depends(get_batch_coordinator)
) -> BatchMutationResponse:
    """
    Delete or redrive many messages; each item succeeds or fails on its own.

    Example:
        POST /queues/mailflow-dlq-dev/messages/batch
        {
            "operation": "redrive",
            "messages": [{"messageId": "m-1", "receiptHandle": "...", "body": "..."}]
        }

        Response (200 OK):
        {
            "results": [{"index": 0, "messageId": "m-1", "success": true, ...}],
            "summary": {"total": 1, "succeeded": 1, "failed": 0, "skipped": 0}
        }
    """
    try:
        result = await coordinator.apply_batch(
            queue_name,
            request.to_operation(),
            request.to_messages()
        )
    except QueueAdminError as e:
        logger.error(
            "Batch operation failed",
            queue_name=queue_name,
            operation=request.operation,
            error_code=e.kind.value,
            error_message=e.message
        )
        raise_queue_error(e)
    except ValueError as e:
        raise HTTPException(
            status_code=status_codes.HTTP_400_BAD_REQUEST,
            detail=f"Invalid batch request: {str(e)}"
        ) from e

    return BatchMutationResponse.from_result(result)


@router.post("/{queue_name}/purge", response_model=OperationResponse)
async def purge_queue(
    queue_name: str,
    confirm: Optional[str] = Query(default=None, description="Must equal the queue name"),
    guard: PurgeGuard = Depends(get_purge_guard)
) -> OperationResponse:
    """
    Purge every message from a queue. Irreversible.

    Raises:
        HTTPException: 400 if confirm does not exactly equal the queue name
    """
    try:
        result = await guard.purge(queue_name, confirm)
    except QueueAdminError as e:
        logger.error(
            "Failed to purge queue",
            queue_name=queue_name,
            error_code=e.kind.value,
            error_message=e.message
        )
        raise_queue_error(e)

    return OperationResponse(success=result.success, message=result.message)
