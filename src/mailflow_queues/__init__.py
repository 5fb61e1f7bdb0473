"""
Package: mailflow_queues
Description: Queue lifecycle and dead-letter redrive management for Mailflow.

Subpackages:
- config: pydantic-settings configuration
- models: topology, message and batch models
- sqs_queue: SQS broker adapter and provisioning
- lifecycle: inspection, redrive, batch mutation and purge services
- handlers: FastAPI routes
"""

__version__ = "0.3.0"
