"""Redis configuration for ARQ workers and project locks."""
from urllib.parse import urlparse

from arq.connections import RedisSettings

from wisp.config import settings


def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into RedisSettings."""
    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path[1:]) if parsed.path and len(parsed.path) > 1 else 0,
        ssl=parsed.scheme == "rediss",
    )


redis_settings = parse_redis_url(settings.redis_url)
