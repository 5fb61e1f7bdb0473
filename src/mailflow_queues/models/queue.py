"""
Module: queue.py
Description: Queue topology and queue state models.

Declares the queues of one Mailflow environment and their delivery
contracts. The topology is built once at startup and handed to every
component that needs it; it is immutable after construction.

Key Components:
- QueueKind: inbound, outbound, default, dead-letter
- RedrivePolicy: dead-letter wiring of a source queue
- QueueDefinition: declared (provisioning-time) shape of a queue
- QueueTopology: immutable set of declared queues with lookups
- build_topology(): produce the topology for an environment
- QueueInfo: observed queue state returned to callers

Dependencies: pydantic, typing
"""

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from mailflow_queues.config.settings import Settings


class QueueKind(str, Enum):
    """Role of a queue in the email routing pipeline."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    DEFAULT = "default"
    DEAD_LETTER = "dead-letter"


class RedrivePolicy(BaseModel):
    """
    Link from a source queue to its dead-letter queue.

    Attributes:
        target_dead_letter_queue: Name of the dead-letter queue
        max_receive_count: Receives after which the broker dead-letters a message
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    target_dead_letter_queue: str = Field(..., min_length=1)
    max_receive_count: int = Field(..., ge=1, le=1000)


class QueueDefinition(BaseModel):
    """
    Declared shape of one queue.

    Attributes:
        name: Queue name, unique within the environment
        kind: Queue role
        app_name: Owning application (inbound queues only)
        visibility_timeout_seconds: Lease duration of a received message
        retention_seconds: Maximum lifetime of an undelivered message
        receive_wait_time_seconds: Long polling wait (0 disables it)
        redrive_policy: Dead-letter wiring, absent for inbound queues
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=80)
    kind: QueueKind
    app_name: Optional[str] = None
    visibility_timeout_seconds: int = Field(..., ge=0, le=43200)
    retention_seconds: int = Field(..., ge=60, le=1209600)
    receive_wait_time_seconds: int = Field(default=0, ge=0, le=20)
    redrive_policy: Optional[RedrivePolicy] = None

    @model_validator(mode='after')
    def validate_redrive_policy(self) -> 'QueueDefinition':
        """Inbound and dead-letter queues are inspected directly and never dead-letter."""
        if self.redrive_policy is not None and self.kind in (QueueKind.INBOUND, QueueKind.DEAD_LETTER):
            raise ValueError(f"{self.kind.value} queues must not carry a redrive policy")
        return self


class QueueTopology(BaseModel):
    """
    Immutable set of queues declared for one environment.

    Attributes:
        environment: Environment (stage) name
        name_prefix: Prefix shared by every queue name
        queues: Declared queues, dead-letter queue last
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    environment: str
    name_prefix: str
    queues: Tuple[QueueDefinition, ...]

    @model_validator(mode='after')
    def validate_wiring(self) -> 'QueueTopology':
        """Queue names are unique and every redrive target is declared as a dead-letter queue."""
        names = [queue.name for queue in self.queues]
        if len(names) != len(set(names)):
            raise ValueError("queue names must be unique within a topology")

        kinds = {queue.name: queue.kind for queue in self.queues}
        for queue in self.queues:
            if queue.redrive_policy is None:
                continue
            target = queue.redrive_policy.target_dead_letter_queue
            if kinds.get(target) != QueueKind.DEAD_LETTER:
                raise ValueError(
                    f"redrive target '{target}' of '{queue.name}' is not a declared dead-letter queue"
                )
        return self

    def get(self, name: str) -> Optional[QueueDefinition]:
        """Return the declared queue with this name, if any."""
        for queue in self.queues:
            if queue.name == name:
                return queue
        return None

    def by_kind(self, kind: QueueKind) -> List[QueueDefinition]:
        """Return declared queues of one kind, in declaration order."""
        return [queue for queue in self.queues if queue.kind == kind]

    def dead_letter_sources(self, dead_letter_queue_name: str) -> List[QueueDefinition]:
        """Return the queues whose redrive policy targets this dead-letter queue."""
        return [
            queue for queue in self.queues
            if queue.redrive_policy is not None
            and queue.redrive_policy.target_dead_letter_queue == dead_letter_queue_name
        ]

    @property
    def names(self) -> List[str]:
        return [queue.name for queue in self.queues]


def build_topology(environment: str, app_names: List[str], settings: Settings) -> QueueTopology:
    """
    Produce the queue topology of one environment.

    One inbound queue per application, one shared outbound queue, one
    default (catch-all) queue and one dead-letter queue. Only the outbound
    queue is wired to the dead-letter queue. Inbound queues are read by
    external consumers and by administrative inspection; their receive
    counts must never reach a dead-lettering threshold, so they carry no
    redrive policy.

    Args:
        environment: Environment (stage) name, e.g. 'dev'
        app_names: Logical application names
        settings: Settings providing timeouts, retention and prefix

    Returns:
        Immutable QueueTopology

    Raises:
        ValueError: If environment or an application name is invalid or duplicated

    Example:
        >>> topology = build_topology("dev", ["app1"], settings)
        >>> [q.name for q in topology.queues]
        ['mailflow-app1-dev', 'mailflow-outbound-dev', 'mailflow-default-dev', 'mailflow-dlq-dev']
    """
    if not environment or not re.match(r'^[a-zA-Z0-9_-]+$', environment):
        raise ValueError("environment must be a non-empty name of letters, numbers, hyphens, underscores")

    seen = set()
    for app_name in app_names:
        if not app_name or not re.match(r'^[a-zA-Z0-9_-]+$', app_name):
            raise ValueError(f"invalid application name: {app_name!r}")
        if app_name in seen:
            raise ValueError(f"duplicate application name: {app_name}")
        seen.add(app_name)

    prefix = settings.queue_name_prefix
    retention = settings.message_retention_seconds
    dlq_name = f"{prefix}-dlq-{environment}"

    queues: List[QueueDefinition] = [
        QueueDefinition(
            name=f"{prefix}-{app_name}-{environment}",
            kind=QueueKind.INBOUND,
            app_name=app_name,
            visibility_timeout_seconds=settings.inbound_visibility_timeout,
            retention_seconds=retention,
            receive_wait_time_seconds=settings.receive_wait_time_seconds,
        )
        for app_name in app_names
    ]

    queues.append(QueueDefinition(
        name=f"{prefix}-outbound-{environment}",
        kind=QueueKind.OUTBOUND,
        visibility_timeout_seconds=settings.outbound_visibility_timeout,
        retention_seconds=retention,
        receive_wait_time_seconds=settings.receive_wait_time_seconds,
        redrive_policy=RedrivePolicy(
            target_dead_letter_queue=dlq_name,
            max_receive_count=settings.max_receive_count,
        ),
    ))
    queues.append(QueueDefinition(
        name=f"{prefix}-default-{environment}",
        kind=QueueKind.DEFAULT,
        visibility_timeout_seconds=settings.default_visibility_timeout,
        retention_seconds=retention,
        receive_wait_time_seconds=settings.receive_wait_time_seconds,
    ))
    queues.append(QueueDefinition(
        name=dlq_name,
        kind=QueueKind.DEAD_LETTER,
        visibility_timeout_seconds=settings.inbound_visibility_timeout,
        retention_seconds=retention,
    ))

    return QueueTopology(environment=environment, name_prefix=prefix, queues=tuple(queues))


class QueueInfo(BaseModel):
    """
    Observed state of a queue.

    Counts are the broker's approximate values at the time of the call.
    When metrics could not be fetched, counts are zero and
    metrics_available is False.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    kind: QueueKind
    url: Optional[str] = None
    message_count: int = Field(default=0, ge=0)
    messages_in_flight: int = Field(default=0, ge=0)
    oldest_message_age_seconds: Optional[int] = Field(default=None, ge=0)
    redrive_policy: Optional[RedrivePolicy] = None
    declared: bool = True
    metrics_available: bool = True

    @classmethod
    def from_attributes(
        cls,
        name: str,
        kind: QueueKind,
        url: Optional[str],
        attributes: Dict[str, Any],
        redrive_policy: Optional[RedrivePolicy] = None,
        declared: bool = True
    ) -> 'QueueInfo':
        """Build QueueInfo from SQS GetQueueAttributes output."""
        return cls(
            name=name,
            kind=kind,
            url=url,
            message_count=_int_attribute(attributes, 'ApproximateNumberOfMessages'),
            messages_in_flight=_int_attribute(attributes, 'ApproximateNumberOfMessagesNotVisible'),
            redrive_policy=redrive_policy,
            declared=declared,
        )


def _int_attribute(attributes: Dict[str, Any], key: str) -> int:
    try:
        return max(int(attributes.get(key, 0)), 0)
    except (TypeError, ValueError):
        return 0
