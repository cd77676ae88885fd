import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from procurement_auth.authz.model import PolicyRecords, PolicyTuple
from procurement_auth.infra.redis import (
    POLICY_CHANGED_CHANNEL,
    DistributedLock,
    PolicyChangeNotifier,
    get_async_redis_client,
)
from tests.authz_helpers import InMemoryPolicyStore, loaded_engine


class FakePubSub:
    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.subscribed: list[str] = []
        self.closed = False

    async def subscribe(self, channel: str) -> None:
        self.subscribed.append(channel)
        await self.queue.put({"type": "subscribe", "channel": channel, "data": 1})

    async def unsubscribe(self, channel: str) -> None:
        self.subscribed.remove(channel)

    async def listen(self):
        while True:
            yield await self.queue.get()

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.pubsub_instance = FakePubSub()
        self.fail = False

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        if self.fail:
            raise RedisConnectionError("redis down")
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def get(self, key: str):
        return self.values.get(key)

    async def delete(self, key: str) -> int:
        return 1 if self.values.pop(key, None) is not None else 0

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise RedisConnectionError("redis down")
        self.published.append((channel, message))
        await self.pubsub_instance.queue.put({"type": "message", "channel": channel, "data": message})
        return 1

    def pubsub(self) -> FakePubSub:
        return self.pubsub_instance


def test_client_requires_url() -> None:
    with pytest.raises(ValueError):
        get_async_redis_client("")


@pytest.mark.anyio
async def test_lock_is_exclusive_until_released() -> None:
    redis = FakeRedis()
    first = DistributedLock(redis, "catalog-seed", ttl_seconds=120)
    second = DistributedLock(redis, "catalog-seed", ttl_seconds=120)

    assert await first.acquire() is True
    assert await second.acquire() is False
    assert "lock:catalog-seed" in redis.values

    assert await first.release() is True
    assert await second.acquire() is True


@pytest.mark.anyio
async def test_lock_does_not_release_someone_elses_lock() -> None:
    redis = FakeRedis()
    lock = DistributedLock(redis, "catalog-seed")
    await lock.acquire()

    # the lock expired and another worker took it
    redis.values["lock:catalog-seed"] = "other-token"

    assert await lock.release() is False
    assert redis.values["lock:catalog-seed"] == "other-token"


@pytest.mark.anyio
async def test_lock_context_manager_and_redis_errors() -> None:
    redis = FakeRedis()

    async with DistributedLock(redis, "catalog-seed") as lock:
        assert lock.acquired
    assert "lock:catalog-seed" not in redis.values

    redis.fail = True
    async with DistributedLock(redis, "catalog-seed") as lock:
        assert not lock.acquired


@pytest.mark.anyio
async def test_mutation_publishes_instance_id() -> None:
    redis = FakeRedis()
    engine = await loaded_engine()
    notifier = PolicyChangeNotifier(redis, engine, instance_id="worker-a")
    notifier.attach()

    await engine.add_policy(PolicyTuple.of("buyer", "/api/rfq", "GET", "t1"))
    await engine.add_policy(PolicyTuple.of("buyer", "/api/rfq", "GET", "t1"))

    assert redis.published == [(POLICY_CHANGED_CHANNEL, "worker-a")]


@pytest.mark.anyio
async def test_publish_failure_does_not_fail_the_mutation() -> None:
    redis = FakeRedis()
    redis.fail = True
    engine = await loaded_engine()
    PolicyChangeNotifier(redis, engine).attach()

    assert await engine.add_policy(PolicyTuple.of("buyer", "/api/rfq", "GET", "t1")) is True


@pytest.mark.anyio
async def test_handle_message_reloads_only_for_other_workers() -> None:
    store = InMemoryPolicyStore()
    engine = await loaded_engine(store)
    notifier = PolicyChangeNotifier(FakeRedis(), engine, instance_id="worker-a")
    store.records = PolicyRecords(
        policies=frozenset({PolicyTuple.of("buyer", "/api/rfq", "GET", "t1")})
    )

    assert await notifier.handle_message({"type": "subscribe", "data": 1}) is False
    assert await notifier.handle_message({"type": "message", "data": "worker-a"}) is False
    assert engine.policies() == []

    assert await notifier.handle_message({"type": "message", "data": "worker-b"}) is True
    assert engine.policies() == [PolicyTuple.of("buyer", "/api/rfq", "GET", "t1")]


@pytest.mark.anyio
async def test_failed_reload_keeps_serving() -> None:
    store = InMemoryPolicyStore()
    engine = await loaded_engine(store)
    notifier = PolicyChangeNotifier(FakeRedis(), engine, instance_id="worker-a")
    store.fail_load = True

    assert await notifier.handle_message({"type": "message", "data": "worker-b"}) is False
    assert engine.loaded


@pytest.mark.anyio
async def test_listener_task_applies_remote_changes() -> None:
    shared = InMemoryPolicyStore()
    redis = FakeRedis()
    writer = await loaded_engine(shared)
    reader = await loaded_engine(shared)
    PolicyChangeNotifier(redis, writer, instance_id="writer").attach()
    listener = PolicyChangeNotifier(redis, reader, instance_id="reader")

    listener.start()
    await writer.add_policy(PolicyTuple.of("buyer", "/api/rfq", "GET", "t1"))
    for _ in range(50):
        if reader.policies():
            break
        await asyncio.sleep(0.01)
    await listener.stop()

    assert reader.enforce("buyer", "/api/rfq", "GET", "t1")
    assert redis.pubsub_instance.closed
    assert redis.pubsub_instance.subscribed == []


class DroppingPubSub(FakePubSub):
    async def listen(self):
        yield await self.queue.get()
        raise RedisConnectionError("connection reset by peer")


class ReconnectingRedis(FakeRedis):
    def __init__(self) -> None:
        super().__init__()
        self.pubsub_instance = DroppingPubSub()
        self.connections = 0

    def pubsub(self) -> FakePubSub:
        self.connections += 1
        if self.connections > 1:
            self.pubsub_instance = FakePubSub()
        return self.pubsub_instance


async def _wait_for(condition) -> None:
    for _ in range(100):
        if condition():
            return
        await asyncio.sleep(0.01)


@pytest.mark.anyio
async def test_listener_resubscribes_and_resyncs_after_connection_drop() -> None:
    shared = InMemoryPolicyStore()
    redis = ReconnectingRedis()
    writer = await loaded_engine(shared)
    reader = await loaded_engine(shared)
    listener = PolicyChangeNotifier(
        redis, reader, instance_id="reader", backoff_seconds=0.01, max_backoff_seconds=0.01
    )

    # the writer never announces this change
    await writer.add_policy(PolicyTuple.of("buyer", "/api/rfq", "GET", "t1"))

    listener.start()
    await _wait_for(lambda: bool(reader.policies()))
    task_alive = not listener._task.done()
    await listener.stop()

    assert task_alive
    assert redis.connections == 2
    assert reader.enforce("buyer", "/api/rfq", "GET", "t1")


@pytest.mark.anyio
async def test_listener_survives_unexpected_handler_errors() -> None:
    shared = InMemoryPolicyStore()
    redis = FakeRedis()
    writer = await loaded_engine(shared)
    reader = await loaded_engine(shared)
    PolicyChangeNotifier(redis, writer, instance_id="writer").attach()
    listener = PolicyChangeNotifier(redis, reader, instance_id="reader")
    original_reload = reader.reload
    calls = 0

    async def reload_failing_once() -> bool:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("unexpected")
        return await original_reload()

    reader.reload = reload_failing_once
    listener.start()
    await writer.add_policy(PolicyTuple.of("buyer", "/api/rfq", "GET", "t1"))
    await writer.add_policy(PolicyTuple.of("buyer", "/api/orders", "GET", "t1"))
    await _wait_for(lambda: len(reader.policies()) == 2)
    await listener.stop()

    assert calls == 2
    assert reader.enforce("buyer", "/api/orders", "GET", "t1")
