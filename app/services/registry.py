"""Wires stores, change feed and services for one process."""

from dataclasses import dataclass

from app.core.config import Settings
from app.core.logging import get_logger
from app.realtime.feed import ChangeFeed, MemoryChangeFeed
from app.realtime.notifier import RealtimeNotifier
from app.services.billing import BillingService
from app.services.credits import LedgerService
from app.services.features import FeatureService
from app.services.notifications import NotificationService
from app.services.package_queue import QueueService
from app.stores.base import LedgerStore, NotificationStore, QueueStore

log = get_logger(__name__)


@dataclass
class Services:
    ledger: LedgerService
    queue: QueueService
    notifications: NotificationService
    features: FeatureService
    billing: BillingService
    notifier: RealtimeNotifier

    async def start(self) -> None:
        await self.notifier.start()

    async def stop(self) -> None:
        await self.notifier.stop()


def build_feed(settings: Settings) -> ChangeFeed:
    if settings.realtime_backend == "redis":
        from app.realtime.redis_feed import RedisChangeFeed
        return RedisChangeFeed(
            settings.redis_url,
            settings.realtime_channel,
            reconnect_min_sec=settings.realtime_reconnect_min_sec,
            reconnect_max_sec=settings.realtime_reconnect_max_sec,
        )
    return MemoryChangeFeed()


def build_stores(settings: Settings, feed: ChangeFeed) -> tuple[LedgerStore, QueueStore, NotificationStore]:
    if settings.store_backend == "mongo":
        from app.stores.mongo import MongoLedgerStore, MongoNotificationStore, MongoQueueStore
        return MongoLedgerStore(feed), MongoQueueStore(feed), MongoNotificationStore(feed)
    from app.stores.memory import MemoryLedgerStore, MemoryNotificationStore, MemoryQueueStore
    return MemoryLedgerStore(feed), MemoryQueueStore(feed), MemoryNotificationStore(feed)


def build_services(settings: Settings, feed: ChangeFeed | None = None) -> Services:
    """Construct services; Mongo backends additionally need `init_db()` before use."""
    feed = feed or build_feed(settings)
    ledger_store, queue_store, notification_store = build_stores(settings, feed)
    ledger = LedgerService(
        ledger_store,
        low_credit_threshold=settings.low_credit_threshold,
        signup_general_credits=settings.signup_general_credits,
        signup_health_score_credits=settings.signup_health_score_credits,
    )
    queue = QueueService(queue_store, default_estimated_minutes=settings.default_estimated_minutes)
    notifications = NotificationService(notification_store)
    log.info("services_built", store_backend=settings.store_backend, realtime_backend=settings.realtime_backend)
    return Services(
        ledger=ledger,
        queue=queue,
        notifications=notifications,
        features=FeatureService(ledger, queue, notifications),
        billing=BillingService(ledger, notifications, settings.billing_webhook_secret),
        notifier=RealtimeNotifier(feed),
    )
