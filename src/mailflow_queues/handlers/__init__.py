"""
Module: handlers
Description: Package initialization for API endpoint handlers.

This package contains FastAPI route handlers for the Queues API:
- queues: queue listing, message inspection, redrive, batch and purge

Handlers obtain their services through dependency providers so tests
can replace them with app.dependency_overrides.
"""

__all__ = []
