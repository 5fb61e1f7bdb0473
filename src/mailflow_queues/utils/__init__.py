"""
Module: utils
Description: Package initialization for utility functions.

Current utilities:
- logger: Structured logging configuration and helpers
- metrics: CloudWatch metrics client
- preview: Message preview text
- filters: Local message search
- batch_helpers: Batch size and receipt handle checks
"""

__all__ = []
