import threading
import uuid
from contextlib import contextmanager
from typing import Iterable, Iterator

import redis
from tenacity import Retrying, retry_if_result, stop_after_delay, wait_fixed

from storefront.utils.retry import redis_retry
from storefront.utils.settings import (
    IDENTITY_LOCK_TTL_SECONDS,
    IDENTITY_LOCK_WAIT_SECONDS,
    REDIS_URL,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

# compare-and-delete: only the holder may release
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockTimeout(Exception):
    def __init__(self, key: str):
        super().__init__(f"Could not acquire lock {key}")
        self.key = key


class LockService:
    """
    Per-identity locks in Redis.

    - SET NX EX per identity key, released by a Lua compare-and-delete
    - acquisition polls until wait_seconds runs out
    - re-entrant inside one worker thread (depth counter)
    - several keys are always taken in sorted order
    """

    def __init__(
        self,
        url: str | None = None,
        client=None,
        ttl: int = IDENTITY_LOCK_TTL_SECONDS,
        wait_seconds: float = IDENTITY_LOCK_WAIT_SECONDS,
        poll_interval: float = 0.05,
    ):
        self.redis = client if client is not None else redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )
        self.ttl = ttl
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self._local = threading.local()

    @staticmethod
    def lock_key(identity_key: str) -> str:
        return f"cart:lock:{identity_key}"

    def _held(self) -> dict:
        held = getattr(self._local, "held", None)
        if held is None:
            held = self._local.held = {}
        return held

    @redis_retry()
    def _try_acquire(self, key: str, token: str) -> bool:
        return bool(self.redis.set(name=key, value=token, nx=True, ex=self.ttl))

    @redis_retry()
    def _release(self, key: str, token: str) -> bool:
        return bool(self.redis.eval(_RELEASE_LUA, 1, key, token))

    def _acquire(self, key: str, token: str) -> None:
        retrying = Retrying(
            stop=stop_after_delay(self.wait_seconds),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda acquired: not acquired),
            retry_error_callback=lambda state: False,
        )
        if not retrying(self._try_acquire, key, token):
            logger.warning(f"Lock {key} not acquired within {self.wait_seconds}s")
            raise LockTimeout(key)

    @contextmanager
    def hold(self, identity_key: str) -> Iterator[None]:
        key = self.lock_key(identity_key)
        held = self._held()

        if key in held:
            token, depth = held[key]
            held[key] = (token, depth + 1)
            try:
                yield
            finally:
                token, depth = held[key]
                held[key] = (token, depth - 1)
            return

        token = uuid.uuid4().hex
        self._acquire(key, token)
        held[key] = (token, 1)
        logger.debug(f"Acquired lock {key}")
        try:
            yield
        finally:
            held.pop(key, None)
            try:
                if not self._release(key, token):
                    logger.warning(f"Lock {key} expired before release")
            except redis.RedisError as e:
                logger.warning(f"Failed to release lock {key}: {e}")

    @contextmanager
    def hold_many(self, identity_keys: Iterable[str]) -> Iterator[None]:
        keys = sorted(set(identity_keys))
        if not keys:
            yield
            return
        with self.hold(keys[0]):
            with self.hold_many(keys[1:]):
                yield
