"""
Message channel for delivery trigger messages.

Backed by an arq queue on Redis: deferred visibility is arq's _defer_by and
the outbox message id doubles as the arq job id, so publishing the same
outbox row twice enqueues a single job.
"""
import asyncio
from datetime import timedelta

from arq import ArqRedis
from redis.asyncio import ConnectionPool
from redis.exceptions import RedisError

from ublsender.config import Settings, settings as default_settings
from ublsender.exceptions import ChannelError
from ublsender.logging_config import get_logger

logger = get_logger(component="channel")

# arq function run by the delivery worker for every trigger message
DELIVER_FILE_FUNCTION = "deliver_file"


class MessageChannel:
    """Publishes trigger messages; safe for concurrent use by many requests."""

    def __init__(self, redis: ArqRedis, timeout: float):
        self.redis = redis
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "MessageChannel":
        """Create a channel with its own bounded Redis connection pool."""
        pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_POOL_SIZE,
            socket_connect_timeout=settings.CHANNEL_TIMEOUT_SECONDS,
        )
        redis = ArqRedis(pool, default_queue_name=settings.SEND_FILE_QUEUE)
        return cls(redis, timeout=settings.CHANNEL_TIMEOUT_SECONDS)

    async def publish(
        self,
        queue_name: str,
        payload: str,
        delay_ms: int,
        message_id: str | None = None,
    ) -> bool:
        """
        Publish payload to queue_name, visible to consumers after delay_ms.

        Args:
            queue_name: Destination queue
            payload: Message body (the file delivery id)
            delay_ms: Non-negative delay before the message can be consumed
            message_id: Deduplication key; a second publish with the same key is dropped

        Returns:
            True if a new message was enqueued, False if message_id was already queued

        Raises:
            ValueError: delay_ms is negative
            ChannelError: broker failure or timeout
        """
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be non-negative, got {delay_ms}")

        try:
            job = await asyncio.wait_for(
                self.redis.enqueue_job(
                    DELIVER_FILE_FUNCTION,
                    payload,
                    _job_id=message_id,
                    _queue_name=queue_name,
                    _defer_by=timedelta(milliseconds=delay_ms),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("publish_timeout", queue=queue_name, payload=payload)
            raise ChannelError(f"Publish to {queue_name} timed out after {self.timeout}s") from e
        except (RedisError, OSError) as e:
            logger.error("publish_failed", queue=queue_name, payload=payload, error=str(e))
            raise ChannelError(f"Could not publish to {queue_name}: {e}") from e

        if job is None:
            logger.info("publish_duplicate", queue=queue_name, payload=payload, message_id=message_id)
            return False

        logger.info("published", queue=queue_name, payload=payload, delay_ms=delay_ms, job_id=job.job_id)
        return True

    async def close(self):
        await self.redis.aclose()
