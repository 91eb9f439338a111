import asyncio
from typing import Awaitable, Callable, Dict, Optional, Set

import redis.asyncio as redis
import structlog

from campus_chat.config import get_settings


logger = structlog.get_logger()

OnMessage = Callable[[str], Awaitable[None]]


class LocalBus:
    """Fan-out inside one process. Used when no REDIS_URL is configured."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}
        self._presence: Dict[str, Dict[str, str]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._subscribers.get(channel, ())):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: OnMessage):
        # registered before returning so nothing published afterwards is missed
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(channel, set()).add(queue)
        bus = self

        class _Sub:
            async def run(self_inner):
                while True:
                    data = await queue.get()
                    if data is None:
                        return
                    await on_message(data)

            async def cancel(self_inner):
                listeners = bus._subscribers.get(channel)
                if listeners is not None:
                    listeners.discard(queue)
                    if not listeners:
                        del bus._subscribers[channel]
                queue.put_nowait(None)

        return _Sub()

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    async def track_presence(self, channel: str, user_id: str, payload: str, ttl_seconds: int = 60) -> None:
        self._presence.setdefault(channel, {})[user_id] = payload

    async def untrack_presence(self, channel: str, user_id: str) -> None:
        state = self._presence.get(channel)
        if state is not None:
            state.pop(user_id, None)
            if not state:
                del self._presence[channel]

    async def presence_state(self, channel: str) -> Dict[str, str]:
        return dict(self._presence.get(channel, {}))

    async def close(self) -> None:
        for channel in list(self._subscribers):
            for queue in self._subscribers.pop(channel):
                queue.put_nowait(None)


class RedisBus:

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url, decode_responses=True)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except redis.RedisError as exc:
                        logger.warning("bus_receive_failed", channel=channel, error=str(exc))
                        await asyncio.sleep(0.5)
                        continue
                    if msg and msg.get("type") == "message":
                        await on_message(msg.get("data"))

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except redis.RedisError as exc:
                    logger.warning("bus_unsubscribe_failed", channel=channel, error=str(exc))

        return _Sub()

    async def track_presence(self, channel: str, user_id: str, payload: str, ttl_seconds: int = 60) -> None:
        key = f"presence:{channel}"
        await self._redis.hset(key, user_id, payload)
        # a client that vanished without untracking stops counting after the ttl
        await self._redis.expire(key, ttl_seconds)

    async def untrack_presence(self, channel: str, user_id: str) -> None:
        await self._redis.hdel(f"presence:{channel}", user_id)

    async def presence_state(self, channel: str) -> Dict[str, str]:
        return await self._redis.hgetall(f"presence:{channel}")

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    if not url:
        _bus = LocalBus()
        logger.info("bus_started", backend="local")
        return _bus
    _bus = RedisBus(url)
    logger.info("bus_started", backend="redis")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None


def set_bus(bus: Optional[object]) -> None:
    global _bus
    _bus = bus
