import asyncio
import logging
import uuid
from contextlib import suppress

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from ..authz.enforcer import EnforcementEngine

logger = logging.getLogger("procurement.redis")

POLICY_CHANGED_CHANNEL = "authz:policy-changed"


def get_async_redis_client(redis_url: str) -> AsyncRedis:
    if not redis_url:
        raise ValueError("REDIS_URL must be set")
    return AsyncRedis.from_url(redis_url, decode_responses=True)


class DistributedLock:
    """
    Distributed lock using Redis SET NX EX.
    Ensures only one worker runs a startup task such as catalog seeding.
    """

    def __init__(self, redis_client: AsyncRedis, lock_key: str, ttl_seconds: int = 30):
        self._redis = redis_client
        self._lock_key = f"lock:{lock_key}"
        self._ttl = ttl_seconds
        self._token = uuid.uuid4().hex
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    async def acquire(self) -> bool:
        try:
            result = await self._redis.set(self._lock_key, self._token, nx=True, ex=self._ttl)
        except RedisError as exc:
            logger.error(
                "Redis operation failed operation=SET key=%s error=%s", self._lock_key, exc
            )
            return False
        self._acquired = bool(result)
        if self._acquired:
            logger.debug("Acquired lock: %s (TTL=%ds)", self._lock_key, self._ttl)
        return self._acquired

    async def release(self) -> bool:
        if not self._acquired:
            return False
        try:
            # Only the holder may delete; an expired lock may belong to someone else now
            if await self._redis.get(self._lock_key) != self._token:
                self._acquired = False
                return False
            deleted = await self._redis.delete(self._lock_key)
        except RedisError as exc:
            logger.error(
                "Redis operation failed operation=DEL key=%s error=%s", self._lock_key, exc
            )
            return False
        self._acquired = False
        if deleted:
            logger.debug("Released lock: %s", self._lock_key)
        return bool(deleted)

    async def __aenter__(self) -> "DistributedLock":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()


class PolicyChangeNotifier:
    """Keeps the engines of all workers in step.

    A successful local mutation publishes this worker's id on the channel;
    every other worker reloads its snapshot from the policy store.
    """

    def __init__(
        self,
        redis_client: AsyncRedis,
        engine: EnforcementEngine,
        *,
        channel: str = POLICY_CHANGED_CHANNEL,
        instance_id: str | None = None,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
    ) -> None:
        self._redis = redis_client
        self._engine = engine
        self._channel = channel
        self.instance_id = instance_id or uuid.uuid4().hex
        self._backoff = backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._failures = 0
        self._task: asyncio.Task | None = None

    def attach(self) -> None:
        self._engine.add_listener(self.publish)

    async def publish(self) -> None:
        try:
            await self._redis.publish(self._channel, self.instance_id)
        except RedisError as exc:
            logger.error(
                "Redis operation failed operation=PUBLISH channel=%s error=%s",
                self._channel,
                exc,
            )

    async def handle_message(self, message: dict) -> bool:
        """Reload on a change announced by another worker; returns True if reloaded."""
        if message.get("type") != "message":
            return False
        if message.get("data") == self.instance_id:
            return False
        reloaded = await self._engine.reload()
        if not reloaded:
            logger.warning("Policy reload after change notification failed")
        return reloaded

    async def _resync(self) -> None:
        if not await self._engine.reload():
            logger.warning("Policy reload after resubscribing failed channel=%s", self._channel)

    async def _listen_once(self) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            if self._failures:
                # Notifications published while disconnected are lost
                await self._resync()
                logger.info("Policy change subscription restored channel=%s", self._channel)
            self._failures = 0
            async for message in pubsub.listen():
                try:
                    await self.handle_message(message)
                except Exception:
                    logger.exception(
                        "Policy change notification handling failed channel=%s", self._channel
                    )
        finally:
            with suppress(RedisError):
                await pubsub.unsubscribe(self._channel)
            with suppress(RedisError):
                await pubsub.aclose()

    async def _listen(self) -> None:
        while True:
            try:
                await self._listen_once()
            except RedisError as exc:
                logger.error(
                    "Policy change subscription failed channel=%s error=%s", self._channel, exc
                )
            except Exception:
                logger.exception("Policy change subscription crashed channel=%s", self._channel)
            self._failures += 1
            delay = min(self._backoff * self._failures, self._max_backoff)
            await asyncio.sleep(delay)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
