"""Change-feed transports. The notifier only sees `ChangeFeed`."""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from app.core.logging import get_logger
from app.realtime.events import ChangeEvent

log = get_logger(__name__)

Dispatch = Callable[[ChangeEvent], Awaitable[None]]
Reconnected = Callable[[], Awaitable[None]]


class ChangeFeed(ABC):
    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        """Emit a committed change. Called by stores after each mutation."""
        ...

    @abstractmethod
    async def start(self, dispatch: Dispatch, on_reconnect: Reconnected) -> None:
        """Begin delivering events to `dispatch`; call `on_reconnect` after a dropped connection is restored."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...


class MemoryChangeFeed(ChangeFeed):
    """In-process feed: events reach subscribers inline, in publish order."""

    def __init__(self) -> None:
        self._dispatch: Dispatch | None = None
        self._on_reconnect: Reconnected | None = None
        self._connected = False
        self.dropped = 0

    @property
    def connected(self) -> bool:
        return self._connected

    async def publish(self, event: ChangeEvent) -> None:
        if self._dispatch is None:
            return
        if not self._connected:
            self.dropped += 1
            return
        await self._dispatch(event)

    async def start(self, dispatch: Dispatch, on_reconnect: Reconnected) -> None:
        self._dispatch = dispatch
        self._on_reconnect = on_reconnect
        self._connected = True

    async def stop(self) -> None:
        self._dispatch = None
        self._on_reconnect = None
        self._connected = False

    def disconnect(self) -> None:
        """Drop the connection; events published meanwhile are lost, not buffered."""
        if self._connected:
            self._connected = False
            log.warning("realtime_disconnected", transport="memory")

    async def reconnect(self) -> None:
        if self._connected or self._dispatch is None:
            return
        self._connected = True
        log.info("realtime_reconnected", transport="memory", dropped=self.dropped)
        if self._on_reconnect is not None:
            await self._on_reconnect()
