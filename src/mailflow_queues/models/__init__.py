"""
Module: models
Description: Package initialization for Pydantic data models.

This package contains the data models used by the Queues API:
- queue: QueueTopology, QueueDefinition, QueueInfo
- message: QueueMessage, MessagePage
- batch: batch operations and BatchResult
- request / response: HTTP request and response bodies

All models serialize with camelCase aliases.
"""

from .batch import BatchResult, DeleteOperation, RedriveOperation
from .message import MessagePage, QueueMessage
from .queue import QueueDefinition, QueueInfo, QueueKind, QueueTopology, build_topology

__all__ = [
    "BatchResult",
    "DeleteOperation",
    "RedriveOperation",
    "MessagePage",
    "QueueMessage",
    "QueueDefinition",
    "QueueInfo",
    "QueueKind",
    "QueueTopology",
    "build_topology",
]
