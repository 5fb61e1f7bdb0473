"""
Module: provision.py
Description: Create the queues of a topology in SQS.

Used for local development (LocalStack) and tests. Production queues
are provisioned by the infrastructure stack from the same declarations.
The dead-letter queue is created first so its ARN can be referenced by
the redrive policy of the outbound queue.

Dependencies: boto3, botocore, json
"""

import json
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

from mailflow_queues.models.queue import QueueDefinition, QueueKind, QueueTopology
from mailflow_queues.utils.logger import get_logger

logger = get_logger(__name__)


def queue_attributes(definition: QueueDefinition, dead_letter_arn: Optional[str] = None) -> Dict[str, str]:
    """
    Render a queue definition as SQS CreateQueue attributes.

    Args:
        definition: Declared queue
        dead_letter_arn: ARN of the redrive target, required when the
            definition carries a redrive policy

    Returns:
        Attribute mapping with string values, as SQS expects

    Raises:
        ValueError: If a redrive policy is declared but no ARN is given
    """
    attributes = {
        'VisibilityTimeout': str(definition.visibility_timeout_seconds),
        'MessageRetentionPeriod': str(definition.retention_seconds),
        'ReceiveMessageWaitTimeSeconds': str(definition.receive_wait_time_seconds),
    }

    if definition.redrive_policy is not None:
        if not dead_letter_arn:
            raise ValueError(f"dead-letter queue ARN required for {definition.name}")
        attributes['RedrivePolicy'] = json.dumps({
            'deadLetterTargetArn': dead_letter_arn,
            'maxReceiveCount': definition.redrive_policy.max_receive_count,
        })

    return attributes


def queue_tags(definition: QueueDefinition, environment: str) -> Dict[str, str]:
    tags = {'Environment': environment, 'Service': 'mailflow'}
    if definition.app_name:
        tags['App'] = definition.app_name
    return tags


def provision_queues(topology: QueueTopology, sqs_client: Optional[Any] = None) -> Dict[str, str]:
    """
    Create every queue of the topology.

    CreateQueue is idempotent for identical attributes, so running this
    against an already provisioned environment is safe.

    Args:
        topology: Topology to provision
        sqs_client: boto3 SQS client (created from the default session if omitted)

    Returns:
        Mapping of queue name to queue URL

    Raises:
        ClientError: If SQS rejects a queue (e.g. attributes differ from an existing queue)
    """
    sqs = sqs_client or boto3.client('sqs')
    urls: Dict[str, str] = {}
    arns: Dict[str, str] = {}

    # Dead-letter queues first so their ARNs exist for the redrive policies
    ordered = sorted(topology.queues, key=lambda q: q.kind != QueueKind.DEAD_LETTER)

    for definition in ordered:
        dead_letter_arn = None
        if definition.redrive_policy is not None:
            dead_letter_arn = arns[definition.redrive_policy.target_dead_letter_queue]

        try:
            response = sqs.create_queue(
                QueueName=definition.name,
                Attributes=queue_attributes(definition, dead_letter_arn),
                tags=queue_tags(definition, topology.environment)
            )
            url = response['QueueUrl']
            arn = sqs.get_queue_attributes(
                QueueUrl=url,
                AttributeNames=['QueueArn']
            )['Attributes']['QueueArn']

        except ClientError as e:
            logger.error(
                "Failed to provision queue",
                queue_name=definition.name,
                error_code=e.response['Error']['Code'],
                error_message=e.response['Error']['Message']
            )
            raise

        urls[definition.name] = url
        arns[definition.name] = arn
        logger.info(
            "Queue provisioned",
            queue_name=definition.name,
            kind=definition.kind.value,
            has_redrive_policy=definition.redrive_policy is not None
        )

    return urls
