"""Redis pub/sub change feed with auto-reconnect and exponential backoff."""

import asyncio

import orjson
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.logging import get_logger
from app.realtime.events import ChangeEvent
from app.realtime.feed import ChangeFeed, Dispatch, Reconnected

log = get_logger(__name__)

# Control message: every listener refreshes its subscribers, as after a reconnect.
RESYNC_MESSAGE = orjson.dumps({"resync": True})


class RedisChangeFeed(ChangeFeed):
    def __init__(
        self,
        redis_url: str,
        channel: str,
        reconnect_min_sec: float = 1.0,
        reconnect_max_sec: float = 60.0,
    ) -> None:
        self._redis = aioredis.from_url(redis_url)
        self._channel = channel
        self._reconnect_min_sec = reconnect_min_sec
        self._reconnect_max_sec = reconnect_max_sec
        self._connected = False
        self._task: asyncio.Task | None = None
        self._resync_pending = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def publish(self, event: ChangeEvent) -> None:
        """
        Publish after commit. A failed publish loses the event; the next successful
        publish is preceded by a resync message so listeners refresh their mirrors.
        """
        try:
            if self._resync_pending:
                await self._redis.publish(self._channel, RESYNC_MESSAGE)
                self._resync_pending = False
                log.info("realtime_resync_published", channel=self._channel)
            await self._redis.publish(self._channel, orjson.dumps(event.model_dump(mode="json")))
        except (RedisError, OSError) as e:
            self._resync_pending = True
            log.warning(
                "realtime_publish_failed",
                resource=event.resource.value,
                kind=event.kind,
                owner_id=event.owner_id,
                reason=str(e),
            )

    async def start(self, dispatch: Dispatch, on_reconnect: Reconnected) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(dispatch, on_reconnect))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._connected = False
        await self._redis.aclose()

    async def _handle(self, data: bytes, dispatch: Dispatch, on_reconnect: Reconnected) -> None:
        try:
            payload = orjson.loads(data)
            resync = isinstance(payload, dict) and payload.get("resync") is True
            event = None if resync else ChangeEvent.model_validate(payload)
        except ValueError as e:
            log.warning("realtime_bad_message", channel=self._channel, reason=str(e))
            return
        if event is None:
            log.info("realtime_resync_requested", channel=self._channel)
            await on_reconnect()
            return
        await dispatch(event)

    async def _run(self, dispatch: Dispatch, on_reconnect: Reconnected) -> None:
        backoff = self._reconnect_min_sec
        dropped = False
        while True:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(self._channel)
                self._connected = True
                backoff = self._reconnect_min_sec
                if dropped:
                    log.info("realtime_reconnected", channel=self._channel)
                    await on_reconnect()
                    dropped = False
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self._handle(message["data"], dispatch, on_reconnect)
            except (RedisError, OSError) as e:
                self._connected = False
                dropped = True
                log.warning(
                    "realtime_reconnect",
                    channel=self._channel,
                    reason=str(e),
                    backoff_sec=round(backoff, 1),
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self._reconnect_max_sec)
            finally:
                try:
                    await pubsub.aclose()
                except (RedisError, OSError):
                    pass
