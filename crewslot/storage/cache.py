import logging

import redis

from crewslot.config.settings import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class EscalationCache:
    """Remembers which jobs were already escalated as exhausted."""

    def __init__(self, redis_url: str = settings.redis_url, ttl_seconds: int = settings.escalation_ttl_seconds, client=None):
        self.redis_client = client if client is not None else redis.from_url(redis_url, decode_responses=True)
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(job_id: str) -> str:
        return f"escalation:exhausted:{job_id}"

    def mark_escalated(self, job_id: str) -> bool:
        """Record the escalation; True only for the first call per job."""
        return bool(self.redis_client.set(self.key(job_id), "1", nx=True, ex=self.ttl_seconds))

    def is_escalated(self, job_id: str) -> bool:
        return bool(self.redis_client.exists(self.key(job_id)))

    def clear(self, job_id: str) -> None:
        """Forget an escalation, e.g. once an operator assigned the job by hand."""
        self.redis_client.delete(self.key(job_id))

    def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            self.redis_client.ping()
            return True
        except redis.RedisError as exc:
            logger.warning(f"Redis health check failed: {exc}")
            return False
