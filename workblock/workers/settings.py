"""Arq worker settings."""

from urllib.parse import urlparse

from arq.connections import RedisSettings

from workblock.config import get_settings

settings = get_settings()


def parse_redis_url(url: str) -> RedisSettings:
    """Parse a redis:// or rediss:// URL into RedisSettings."""
    parsed = urlparse(url)
    database = 0
    if parsed.path and parsed.path.strip("/"):
        database = int(parsed.path.strip("/"))
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        username=parsed.username or None,
        password=parsed.password or None,
        database=database,
        ssl=parsed.scheme == "rediss",
    )


redis_settings = parse_redis_url(settings.redis_url)


# Fixed job ids let arq drop duplicates while a job is queued or running
def sync_job_id(connection_id) -> str:
    return f"calendar-sync:{connection_id}"


def reconcile_job_id(organization_id) -> str:
    return f"calendar-reconcile:{organization_id}"
