"""
Application configuration.

One pydantic Settings object feeds both the Sheets proxy and the
training log client; mock modes swap Google services for in-memory
stand-ins.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
