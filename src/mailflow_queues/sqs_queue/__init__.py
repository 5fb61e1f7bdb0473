"""
Module: sqs_queue
Description: SQS integration.

- sqs: async broker adapter (aioboto3) with error translation
- provision: queue creation from a topology (boto3)
"""

from .sqs import SQSBroker

__all__ = ["SQSBroker"]
