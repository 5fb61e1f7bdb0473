"""
Module: errors.py
Description: Error taxonomy for queue administration operations.

Every failure surfaced by the broker adapter or the lifecycle services is
one of the classes below. Each class carries a FailureKind so batch
operations can record a typed per-item outcome without inspecting
exception messages.

Key Components:
- FailureKind: Closed set of failure categories
- QueueAdminError: Base class of the hierarchy
- BrokerError and subclasses: failures reported by (or reaching) the broker
- Validation errors raised before any broker call
- PartialBatchFailure: aborted batch carrying its partial result
"""

from enum import Enum
from typing import Any, Optional


class FailureKind(str, Enum):
    """Category of a failed queue operation."""

    BROKER_UNAVAILABLE = "broker_unavailable"
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    LEASE_EXPIRED = "lease_expired"
    PUBLISH_FAILED = "publish_failed"
    TIMEOUT = "timeout"
    NAMING_CONVENTION = "naming_convention"
    TARGET_UNDETERMINABLE = "target_undeterminable"
    CONFIRMATION_MISMATCH = "confirmation_mismatch"
    PARTIAL_BATCH_FAILURE = "partial_batch_failure"
    BROKER_ERROR = "broker_error"
    UNEXPECTED = "unexpected"


class QueueAdminError(Exception):
    """Base class for all queue administration errors."""

    kind = FailureKind.UNEXPECTED

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BrokerError(QueueAdminError):
    """
    Failure reported by the queue broker.

    Attributes:
        code: Broker error code (e.g. 'PurgeQueueInProgress'), if known
        queue_name: Queue the failing call targeted, if known
    """

    kind = FailureKind.BROKER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        queue_name: Optional[str] = None
    ):
        super().__init__(message)
        self.code = code
        self.queue_name = queue_name


class BrokerUnavailable(BrokerError):
    """The broker could not be reached (connectivity, throttling, outage)."""

    kind = FailureKind.BROKER_UNAVAILABLE


class BrokerTimeout(BrokerError):
    """A single broker call exceeded its timeout."""

    kind = FailureKind.TIMEOUT


class AccessDenied(BrokerError):
    """The caller's credentials are missing or not authorized."""

    kind = FailureKind.ACCESS_DENIED


class NotFound(BrokerError):
    """Queue or message does not exist."""

    kind = FailureKind.NOT_FOUND


class LeaseExpired(BrokerError):
    """Receipt handle is stale, invalid, or already spent."""

    kind = FailureKind.LEASE_EXPIRED


class PublishFailed(BrokerError):
    """Publishing a message to the redrive target failed."""

    kind = FailureKind.PUBLISH_FAILED


class NamingConventionError(QueueAdminError, ValueError):
    """Dead-letter queue name follows neither the '-dlq' nor the 'dlq-' convention."""

    kind = FailureKind.NAMING_CONVENTION


class TargetUndeterminable(QueueAdminError):
    """No redrive target was given and none could be derived."""

    kind = FailureKind.TARGET_UNDETERMINABLE


class ConfirmationMismatch(QueueAdminError):
    """Purge confirmation text does not equal the queue name."""

    kind = FailureKind.CONFIRMATION_MISMATCH


class PartialBatchFailure(QueueAdminError):
    """
    Batch aborted by a fatal error after some items were processed.

    Attributes:
        result: BatchResult accumulated before the abort
        cause: The fatal error that stopped the batch
    """

    kind = FailureKind.PARTIAL_BATCH_FAILURE

    def __init__(self, message: str, result: Any, cause: Optional[QueueAdminError] = None):
        super().__init__(message)
        self.result = result
        self.cause = cause


FATAL_BATCH_ERRORS = (BrokerUnavailable, AccessDenied)


def failure_kind_of(error: BaseException) -> FailureKind:
    """Map any exception to its FailureKind."""
    if isinstance(error, QueueAdminError):
        return error.kind
    return FailureKind.UNEXPECTED
