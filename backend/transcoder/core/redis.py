"""Redis connection configuration."""

import redis.asyncio as redis

from transcoder.core.config import settings

# Connections are opened lazily on first command
redis_client: redis.Redis = redis.from_url(settings.REDIS_URL, decode_responses=True)
