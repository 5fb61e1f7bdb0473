"""
Module: config
Description: Application configuration loaded from environment variables.
"""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
