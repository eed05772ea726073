from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from redis.exceptions import LockError

from app.config.settings import settings
from app.utils.logging import get_logger

logger = get_logger()


def get_redis_client() -> redis.Redis:
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD or None,
        socket_connect_timeout=5,
    )


@contextmanager
def single_flight(
    name: str,
    timeout: int = settings.PING_LOCK_TIMEOUT_SECONDS,
    client: Optional[redis.Redis] = None,
) -> Iterator[bool]:
    """
    Hold a non-blocking Redis lock for the duration of the block.

    Yields True when this caller owns the lock and False when another run
    already holds it. The lock expires after `timeout` seconds so a crashed
    run cannot block later ones forever.
    """
    lock = (client or get_redis_client()).lock(name, timeout=timeout, blocking=False)
    acquired = lock.acquire()

    try:
        yield acquired
    finally:
        if acquired:
            try:
                lock.release()
            except LockError as e:
                logger.warning(f"Lock '{name}' expired before release: {str(e)}")
