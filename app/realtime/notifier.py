"""Owner-scoped subscriptions over a change feed."""

import inspect
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from app.core.exceptions import NotAuthenticatedError
from app.core.logging import get_logger
from app.realtime.events import ChangeEvent, ResourceKind
from app.realtime.feed import ChangeFeed

log = get_logger(__name__)

OnChange = Callable[[ChangeEvent], Awaitable[None] | None]
OnResync = Callable[[], Awaitable[None] | None]
Predicate = Callable[[ChangeEvent], bool]


@dataclass
class Subscription:
    resource: ResourceKind
    owner_id: str
    on_change: OnChange
    predicate: Predicate | None = None
    on_resync: OnResync | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    active: bool = True

    def matches(self, event: ChangeEvent) -> bool:
        if not self.active or event.resource != self.resource or event.owner_id != self.owner_id:
            return False
        return self.predicate is None or self.predicate(event)


async def _call(fn: Callable[..., Any], *args: Any) -> None:
    out = fn(*args)
    if inspect.isawaitable(out):
        await out


class RealtimeNotifier:
    """
    Routes change events to subscribers of the same resource kind and owner.
    Delivery is sequential, so each subscriber sees events in feed order.
    """

    def __init__(self, feed: ChangeFeed) -> None:
        self.feed = feed
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def connected(self) -> bool:
        return self.feed.connected

    async def start(self) -> None:
        await self.feed.start(self.dispatch, self._resync_all)

    async def stop(self) -> None:
        await self.feed.stop()
        for sub in self._subscriptions.values():
            sub.active = False
        self._subscriptions.clear()

    def subscribe(
        self,
        resource: ResourceKind,
        owner_id: str | None,
        on_change: OnChange,
        predicate: Predicate | None = None,
        on_resync: OnResync | None = None,
    ) -> Subscription:
        if not owner_id:
            raise NotAuthenticatedError("Subscriptions require a signed-in owner")
        sub = Subscription(
            resource=resource,
            owner_id=owner_id,
            on_change=on_change,
            predicate=predicate,
            on_resync=on_resync,
        )
        self._subscriptions[sub.id] = sub
        log.debug("realtime_subscribed", resource=resource.value, owner_id=owner_id, subscription_id=sub.id)
        return sub

    def unsubscribe(self, sub: Subscription | None) -> None:
        """Release a subscription. Safe to call more than once."""
        if sub is None:
            return
        sub.active = False
        if self._subscriptions.pop(sub.id, None) is not None:
            log.debug("realtime_unsubscribed", resource=sub.resource.value, subscription_id=sub.id)

    def subscription_count(self, owner_id: str | None = None) -> int:
        if owner_id is None:
            return len(self._subscriptions)
        return sum(1 for s in self._subscriptions.values() if s.owner_id == owner_id)

    async def dispatch(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions.values()):
            if not sub.matches(event):
                continue
            try:
                await _call(sub.on_change, event)
            except Exception:
                log.exception(
                    "realtime_handler_failed",
                    resource=event.resource.value,
                    kind=event.kind,
                    subscription_id=sub.id,
                )

    async def _resync_all(self) -> None:
        for sub in list(self._subscriptions.values()):
            if sub.on_resync is None or not sub.active:
                continue
            try:
                await _call(sub.on_resync)
            except Exception:
                log.exception("realtime_resync_failed", subscription_id=sub.id)
