"""
Удаленное хранилище и realtime-канал на базе SQLAlchemy

ChangeFeed - канал изменений внутри процесса: запись в synced_data (через
SqlRemoteStore или HTTP API) публикует событие всем подписчикам владельца строки.
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from habitsync import repository
from habitsync.database import SessionLocal
from habitsync.errors import NetworkError, NotFoundError
from habitsync.models import ChangeEvent, ChangeType, SyncedData
from habitsync.sync import (
    SYNCED_DATA_TABLE,
    RealtimeChannel,
    RemoteStore,
    Subscription,
    TableFilter,
)

logger = logging.getLogger(__name__)


class FeedSubscription(Subscription):
    def __init__(
        self,
        feed: "ChangeFeed",
        table_filter: TableFilter,
        on_event: Callable[[ChangeEvent], None],
        loop: Optional[asyncio.AbstractEventLoop],
    ):
        self.feed = feed
        self.table_filter = table_filter
        self.on_event = on_event
        self.loop = loop

    @property
    def active(self) -> bool:
        return self.feed.is_subscribed(self)

    def unsubscribe(self) -> None:
        self.feed.remove(self)

    def deliver(self, event: ChangeEvent) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self.loop is None or running is self.loop:
            self.on_event(event)
        elif not self.loop.is_closed():
            # Событие из другого потока: обработчик выполняется в цикле подписчика
            self.loop.call_soon_threadsafe(self.on_event, event)


class ChangeFeed(RealtimeChannel):
    """Канал изменений внутри процесса"""

    def __init__(self):
        self._subscriptions: list[FeedSubscription] = []
        self._lock = threading.Lock()

    def subscribe(
        self,
        table_filter: TableFilter,
        on_event: Callable[[ChangeEvent], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> FeedSubscription:
        subscription = FeedSubscription(self, table_filter, on_event, loop)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s for user %s", table_filter.table, table_filter.user_id)
        return subscription

    def remove(self, subscription: FeedSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def is_subscribed(self, subscription: FeedSubscription) -> bool:
        with self._lock:
            return subscription in self._subscriptions

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, table: str, event: ChangeEvent) -> int:
        """Разослать событие подписчикам; возвращает число получателей"""
        with self._lock:
            targets = [
                subscription
                for subscription in self._subscriptions
                if subscription.table_filter.matches(table, event.user_id)
            ]
        for subscription in targets:
            try:
                subscription.deliver(event)
            except Exception:
                # Сбой одного подписчика не мешает остальным
                logger.exception("Change handler failed for %s event", event.event_type.value)
        return len(targets)


# Общий канал процесса: его используют HTTP API и SqlRemoteStore по умолчанию
change_feed = ChangeFeed()


def publish_synced_change(
    event_type: ChangeType,
    user_id: str,
    item: Optional[SyncedData] = None,
    item_id: Optional[str] = None,
    feed: Optional[ChangeFeed] = None,
) -> int:
    feed = feed or change_feed
    if event_type == ChangeType.DELETE:
        event = ChangeEvent(event_type=event_type, old={"id": item_id}, user_id=user_id)
    else:
        event = ChangeEvent(event_type=event_type, new=item, user_id=user_id)
    return feed.publish(SYNCED_DATA_TABLE, event)


class SqlRemoteStore(RemoteStore):
    """RemoteStore поверх таблицы synced_data"""

    def __init__(self, session_factory=SessionLocal, feed: Optional[ChangeFeed] = None):
        self._session_factory = session_factory
        self._feed = feed or change_feed

    async def _run(self, operation: Callable, *args):
        def work():
            db = self._session_factory()
            try:
                return operation(db, *args)
            except SQLAlchemyError:
                db.rollback()
                raise
            finally:
                db.close()

        try:
            return await asyncio.to_thread(work)
        except SQLAlchemyError as exc:
            raise NetworkError(f"Remote store failure: {exc}") from exc

    async def fetch_all(self, user_id: str) -> list[SyncedData]:
        return await self._run(repository.list_synced_items, user_id)

    async def insert(self, user_id: str, item: SyncedData) -> SyncedData:
        stored = await self._run(repository.create_synced_item, user_id, item)
        publish_synced_change(ChangeType.INSERT, user_id, item=stored, feed=self._feed)
        return stored

    async def update(self, user_id: str, item: SyncedData) -> SyncedData:
        stored, conflict = await self._run(repository.update_synced_item, user_id, item)
        if stored is None:
            raise NotFoundError(item.id)
        if conflict is None:
            publish_synced_change(ChangeType.UPDATE, user_id, item=stored, feed=self._feed)
        return stored

    async def delete(self, user_id: str, item_id: str) -> None:
        existed = await self._run(repository.delete_synced_item, user_id, item_id)
        if existed:
            publish_synced_change(ChangeType.DELETE, user_id, item_id=item_id, feed=self._feed)
