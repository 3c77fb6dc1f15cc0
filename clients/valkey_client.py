"""
Valkey (Redis-compatible) counters for document numbering.

Thin redis-py wrapper; the URL comes from Vault. Connection problems raise
immediately, there is no in-process fallback counter.
"""

import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Usage:
        valkey = ValkeyClient("redis://localhost:6379/0")
        n = valkey.incr_with_ttl("docseq:ORD:20250314", 172800)
    """

    def __init__(self, url: str):
        """
        Raises:
            redis.ConnectionError: Valkey is unreachable
        """
        self._redis = redis.from_url(url, decode_responses=True)
        self._redis.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """True if Valkey answers; raises redis.ConnectionError otherwise."""
        return bool(self._redis.ping())

    def incr_with_ttl(self, key: str, ttl_seconds: int) -> int:
        """
        Atomically add 1 to key (created at 0) and return the result,
        setting an expiry only when the key has none yet. Both commands run
        in one MULTI/EXEC.
        """
        pipe = self._redis.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, ttl_seconds, nx=True)
        value, _ = pipe.execute()
        return value

    def close(self) -> None:
        self._redis.close()
        logger.info("ValkeyClient closed")
