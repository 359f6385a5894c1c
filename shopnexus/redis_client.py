"""
Redis access for the guest cart store.

Every command goes through RedisClient._retrying, which retries connection and
timeout failures with exponential backoff and surfaces anything else as
StoreConnectionError.
"""
import redis
import time
import random
import logging
from typing import Any, Callable, Dict, List, Optional
from redis.exceptions import (
    ConnectionError,
    TimeoutError,
    RedisError,
    AuthenticationError
)

from shopnexus.config import Config
from shopnexus.exceptions import StoreConnectionError

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (ConnectionError, TimeoutError)


class RedisClient:
    """Pooled Redis connection with retrying commands"""

    max_retries = 3
    initial_backoff = 0.1
    max_backoff = 2.0

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None):
        self.url = url or Config.redis_url()
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = client
        self._scripts: Dict[str, Any] = {}
        if self.client is None:
            self._connect()

    def _connect(self):
        options = dict(
            max_connections=Config.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
            socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
            retry_on_timeout=Config.REDIS_RETRY_ON_TIMEOUT,
            decode_responses=True,
        )
        if self.url.startswith("rediss://"):
            # ElastiCache uses self-signed certs
            options["ssl_cert_reqs"] = None

        try:
            self.pool = redis.ConnectionPool.from_url(self.url, **options)
            self.client = redis.Redis(connection_pool=self.pool)
            self.client.ping()
        except (ConnectionError, AuthenticationError) as e:
            raise StoreConnectionError(f"Failed to connect to Redis: {e}")

    def _backoff(self, attempt: int) -> float:
        delay = min(self.initial_backoff * (2 ** attempt), self.max_backoff)
        return delay + random.uniform(0, delay * 0.1)

    def _retrying(self, label: str, func: Callable[[], Any]) -> Any:
        """
        Call func, retrying connection and timeout failures with backoff.

        func must read self.client on every call so a reconnect takes effect.

        Raises:
            StoreConnectionError: retries exhausted or a non-retryable error
        """
        for attempt in range(self.max_retries):
            try:
                return func()
            except RETRYABLE_ERRORS as e:
                if attempt == self.max_retries - 1:
                    raise StoreConnectionError(
                        f"Redis {label} failed after {self.max_retries} retries: {e}"
                    )
                logger.warning(f"Redis {label} failed (attempt {attempt + 1}), retrying: {e}")
                time.sleep(self._backoff(attempt))

                if self.pool is not None:
                    try:
                        self._connect()
                    except StoreConnectionError as reconnect_error:
                        logger.warning(f"Redis reconnect failed: {reconnect_error}")
            except RedisError as e:
                raise StoreConnectionError(f"Redis error: {e}")

    def run(self, command: str, *args) -> Any:
        """Run a Redis command by name, e.g. run("hget", key, field)"""
        return self._retrying(command, lambda: getattr(self.client, command)(*args))

    def run_script(self, script: str, keys: List[str], args: List[Any]) -> Any:
        """Run a Lua script, registering it on first use"""
        if script not in self._scripts:
            self._scripts[script] = self.client.register_script(script)
        registered = self._scripts[script]
        return self._retrying("evalsha", lambda: registered(keys=keys, args=args, client=self.client))

    # Hash commands used by guest carts

    def hgetall(self, key: str) -> Dict[str, str]:
        return self.run("hgetall", key)

    def hlen(self, key: str) -> int:
        return self.run("hlen", key)

    def hdel(self, key: str, *fields: str) -> int:
        return self.run("hdel", key, *fields)

    def delete(self, *keys: str) -> int:
        return self.run("delete", *keys)

    def expire(self, key: str, seconds: int) -> bool:
        return self.run("expire", key, seconds)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self):
        if self.pool:
            self.pool.disconnect()
