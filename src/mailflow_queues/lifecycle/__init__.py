"""
Module: lifecycle
Description: Queue lifecycle services.

- naming: dead-letter naming convention
- inspector: queue listing with live metrics
- peeker: message inspection
- redrive: single-message delete and redrive
- batch: concurrent batch delete and redrive
- purge: confirmation-gated purge
- scheduler: opt-in single-flight refresh
"""

__all__ = []
