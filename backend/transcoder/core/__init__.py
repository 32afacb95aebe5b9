"""Core module for configuration and utilities."""

from transcoder.core.config import settings
from transcoder.core.database import Base, async_session_maker
from transcoder.core.redis import redis_client

__all__ = [
    "settings",
    "Base",
    "async_session_maker",
    "redis_client",
]
