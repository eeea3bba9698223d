"""
Синхронизация данных между устройствами

SyncReconciler держит локальное зеркало элементов SyncedData пользователя и
согласует его с удаленным хранилищем:
- запись сначала уходит в удаленное хранилище, зеркало обновляется только
  после успеха (write-then-confirm);
- конфликты решаются по правилу last-writer-wins (по last_modified);
- realtime-события от собственного устройства (self-echo) отбрасываются;
- ошибки удаленных вызовов не выбрасываются наружу: статус переходит в
  ERROR, пользователь получает уведомление, результат - OperationResult.

Статусы: DISCONNECTED -> SYNCING -> CONNECTED; любая операция переводит в
SYNCING; сбой - в ERROR; из ERROR выводит следующая операция пользователя.
"""

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from habitsync.config import (
    SYNC_BACKOFF_BASE_SECONDS,
    SYNC_BACKOFF_MAX_SECONDS,
    SYNC_MAX_RETRIES,
)
from habitsync.errors import ConflictIgnored, NotFoundError, SyncError
from habitsync.models import ChangeEvent, ChangeType, SyncedData
from habitsync.retry import call_with_backoff
from habitsync.session import SyncSession

logger = logging.getLogger(__name__)

SYNCED_DATA_TABLE = "synced_data"


class SyncStatus(str, Enum):
    DISCONNECTED = "disconnected"
    SYNCING = "syncing"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class TableFilter:
    """Фильтр подписки: таблица и владелец строк"""

    table: str
    user_id: str

    def matches(self, table: str, user_id: Optional[str]) -> bool:
        return self.table == table and self.user_id == user_id


class Subscription(ABC):
    @abstractmethod
    def unsubscribe(self) -> None:
        """Отменить подписку (повторный вызов безопасен)"""


class RealtimeChannel(ABC):
    """Канал realtime-изменений"""

    @abstractmethod
    def subscribe(
        self,
        table_filter: TableFilter,
        on_event: Callable[[ChangeEvent], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> Subscription:
        """Подписаться на события insert/update/delete по фильтру"""


class RemoteStore(ABC):
    """Удаленное хранилище элементов SyncedData"""

    @abstractmethod
    async def fetch_all(self, user_id: str) -> list[SyncedData]:
        """Все элементы пользователя"""

    @abstractmethod
    async def insert(self, user_id: str, item: SyncedData) -> SyncedData:
        """Создать элемент"""

    @abstractmethod
    async def update(self, user_id: str, item: SyncedData) -> SyncedData:
        """Обновить элемент; вернуть состояние-победитель"""

    @abstractmethod
    async def delete(self, user_id: str, item_id: str) -> None:
        """Удалить элемент (идемпотентно)"""


@dataclass
class OperationResult:
    ok: bool
    error: Optional[SyncError] = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: SyncError) -> "OperationResult":
        return cls(ok=False, error=error)


Notifier = Callable[[str, str, str], None]


def log_notifier(title: str, message: str, level: str = "info") -> None:
    """Уведомление по умолчанию: запись в лог"""
    log_level = logging.WARNING if level == "error" else logging.INFO
    logger.log(log_level, "%s: %s", title, message)


def generate_item_id(timestamp_ms: Optional[int] = None) -> str:
    """Идентификатор нового элемента: время создания + случайный суффикс"""
    timestamp_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    return f"data_{timestamp_ms}_{secrets.token_hex(4)}"


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class SyncReconciler:
    """Локальное зеркало SyncedData, согласованное с удаленным хранилищем"""

    def __init__(
        self,
        session: SyncSession,
        remote: RemoteStore,
        channel: RealtimeChannel,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], int]] = None,
        max_retries: int = SYNC_MAX_RETRIES,
        backoff_base: float = SYNC_BACKOFF_BASE_SECONDS,
        backoff_max: float = SYNC_BACKOFF_MAX_SECONDS,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self._session = session
        self._remote = remote
        self._channel = channel
        self._notify = notifier or log_notifier
        self._clock = clock or _wall_clock_ms
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._sleep = sleep

        self._items: list[SyncedData] = []
        self._status = SyncStatus.DISCONNECTED
        self.last_synced: Optional[datetime] = None
        self.connected_devices: list[str] = []
        self.pending_changes = 0

        self._locks: dict[str, asyncio.Lock] = {}
        self._load_task: Optional[asyncio.Task] = None
        # изменения зеркала за время загрузки: ("apply", item) | ("delete", item_id)
        self._load_journal: Optional[list[tuple[str, Any]]] = None
        # растет при каждом stop(); ответы, начатые раньше, в зеркало не попадают
        self._generation = 0
        self._subscription: Optional[Subscription] = None
        self._last_timestamp = 0

    # === Состояние ===

    @property
    def session(self) -> SyncSession:
        return self._session

    @property
    def device_id(self) -> str:
        return self._session.device_id

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def items(self) -> list[SyncedData]:
        return list(self._items)

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    def get(self, item_id: str) -> Optional[SyncedData]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def _set_status(self, status: SyncStatus) -> None:
        if status != self._status:
            logger.info("Sync status %s -> %s", self._status.value, status.value)
            self._status = status

    def _now_ms(self) -> int:
        # last_modified не убывает вместе с version даже при откате часов
        timestamp = max(self._clock(), self._last_timestamp + 1)
        self._last_timestamp = timestamp
        return timestamp

    def _mark_synced(self) -> None:
        self.last_synced = datetime.now(timezone.utc)
        self._set_status(SyncStatus.CONNECTED)

    def _fail(self, error: SyncError, title: str, message: str) -> OperationResult:
        logger.warning("%s: %s", title, error)
        self._set_status(SyncStatus.ERROR)
        self._notify(title, message, "error")
        return OperationResult.failure(error)

    def _lock_for(self, item_id: str) -> asyncio.Lock:
        lock = self._locks.get(item_id)
        if lock is None:
            lock = self._locks[item_id] = asyncio.Lock()
        return lock

    async def _remote_call(self, operation: Callable, *args):
        return await call_with_backoff(
            lambda: operation(*args),
            retries=self._max_retries,
            base_delay=self._backoff_base,
            max_delay=self._backoff_max,
            sleep=self._sleep,
        )

    def _apply(self, item: SyncedData) -> Optional[ConflictIgnored]:
        """Положить элемент в зеркало: новый - в начало, существующий - по last-writer-wins"""
        for index, current in enumerate(self._items):
            if current.id != item.id:
                continue
            if item.last_modified < current.last_modified:
                conflict = ConflictIgnored(
                    item_id=item.id,
                    incoming_last_modified=item.last_modified,
                    current_last_modified=current.last_modified,
                )
                logger.info("%s", conflict)
                return conflict
            self._items[index] = item
            self._journal("apply", item)
            return None
        self._items.insert(0, item)
        self._journal("apply", item)
        return None

    def _remove(self, item_id: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.id != item_id]
        self._journal("delete", item_id)
        return len(self._items) != before

    def _journal(self, action: str, payload: Any) -> None:
        if self._load_journal is not None:
            self._load_journal.append((action, payload))

    def _is_stale(self, generation: int, user_id: str) -> bool:
        if generation == self._generation:
            return False
        logger.info("Response for user %s arrived after session teardown, discarded", user_id)
        return True

    # === Операции ===

    async def load(self) -> OperationResult:
        """
        Полная загрузка коллекции пользователя с заменой зеркала

        Повторный вызов во время незавершенной загрузки присоединяется к ней.
        Записи и realtime-события, принятые зеркалом во время загрузки,
        накладываются на полученный снимок по last-writer-wins. Загрузка,
        пережившая stop() или смену сессии, в зеркало не попадает.
        """
        task = self._load_task
        if task is None or task.done():
            task = self._load_task = asyncio.ensure_future(self._load())
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._load_task is task:
                self._load_task = None

    async def _load(self) -> OperationResult:
        generation = self._generation
        user_id = self._session.user_id
        journal: list[tuple[str, Any]] = []
        self._load_journal = journal
        self._set_status(SyncStatus.SYNCING)
        try:
            items = await self._remote_call(self._remote.fetch_all, user_id)
        except SyncError as exc:
            if self._is_stale(generation, user_id):
                return OperationResult.failure(exc)
            return self._fail(
                exc,
                "Sync error",
                "Could not load your data. Please try again later.",
            )
        finally:
            if self._load_journal is journal:
                self._load_journal = None

        if self._is_stale(generation, user_id):
            return OperationResult.failure(SyncError(f"Load for user {user_id} was superseded"))

        self._items = sorted(items, key=lambda item: item.last_modified, reverse=True)
        for action, payload in journal:
            if action == "delete":
                self._remove(payload)
            else:
                self._apply(payload)
        devices = dict.fromkeys(item.device_id for item in self._items)
        self.connected_devices = [device for device in devices if device != self.device_id]
        self._mark_synced()
        logger.info(
            "Loaded %d items for user %s (%d other devices)",
            len(self._items),
            self._session.user_id,
            len(self.connected_devices),
        )
        return OperationResult.success(self.items)

    async def force_synchronize(self) -> OperationResult:
        """Принудительная полная сверка (эквивалент load)"""
        return await self.load()

    async def add(self, content: str) -> OperationResult:
        """Создать элемент: сначала удаленно, затем в зеркале"""
        timestamp = self._now_ms()
        item = SyncedData(
            id=generate_item_id(timestamp),
            content=content,
            device_id=self.device_id,
            last_modified=timestamp,
            version=1,
        )

        generation, user_id = self._generation, self._session.user_id
        self._set_status(SyncStatus.SYNCING)
        self.pending_changes += 1
        try:
            stored = await self._remote_call(self._remote.insert, user_id, item)
        except SyncError as exc:
            if self._is_stale(generation, user_id):
                return OperationResult.failure(exc)
            return self._fail(exc, "Save failed", "Could not save your content. Please try again.")
        finally:
            self.pending_changes -= 1

        if self._is_stale(generation, user_id):
            return OperationResult.success(stored)
        self._apply(stored)
        self._mark_synced()
        return OperationResult.success(stored)

    async def update(self, item_id: str, content: str) -> OperationResult:
        """
        Обновить существующий элемент

        Вызовы для одного id выполняются строго по очереди, поэтому итог
        соответствует последнему вызову, а не последнему ответу сети.
        """
        async with self._lock_for(item_id):
            existing = self.get(item_id)
            if existing is None:
                return self._fail(
                    NotFoundError(item_id),
                    "Update failed",
                    "The item no longer exists on this device.",
                )

            item = existing.model_copy(
                update={
                    "content": content,
                    "device_id": self.device_id,
                    "last_modified": self._now_ms(),
                    "version": existing.version + 1,
                }
            )

            generation, user_id = self._generation, self._session.user_id
            self._set_status(SyncStatus.SYNCING)
            self.pending_changes += 1
            try:
                stored = await self._remote_call(self._remote.update, user_id, item)
            except SyncError as exc:
                if self._is_stale(generation, user_id):
                    return OperationResult.failure(exc)
                return self._fail(
                    exc, "Update failed", "Could not update your content. Please try again."
                )
            finally:
                self.pending_changes -= 1

            if self._is_stale(generation, user_id):
                return OperationResult.success(stored)
            self._apply(stored)
            self._mark_synced()
            return OperationResult.success(stored)

    async def delete(self, item_id: str) -> OperationResult:
        """Удалить элемент: сначала удаленно, затем из зеркала (идемпотентно)"""
        async with self._lock_for(item_id):
            generation, user_id = self._generation, self._session.user_id
            self._set_status(SyncStatus.SYNCING)
            self.pending_changes += 1
            try:
                await self._remote_call(self._remote.delete, user_id, item_id)
            except SyncError as exc:
                if self._is_stale(generation, user_id):
                    return OperationResult.failure(exc)
                return self._fail(
                    exc, "Delete failed", "Could not delete your content. Please try again."
                )
            finally:
                self.pending_changes -= 1

            if self._is_stale(generation, user_id):
                return OperationResult.success()
            self._remove(item_id)
            self._mark_synced()
            return OperationResult.success()

    def on_remote_change(self, event: ChangeEvent) -> None:
        """
        Обработчик realtime-события

        insert/update с device_id текущего устройства - это эхо собственной
        записи, зеркало не меняется. delete применяется всегда.
        """
        if event.event_type == ChangeType.DELETE:
            item_id = event.record_id
            if item_id is None:
                logger.warning("Delete event without id ignored")
                return
            existed = self._remove(item_id)
            self._refresh_after_event()
            if existed:
                self._notify("Item deleted", "An item was deleted on another device", "info")
            return

        item = event.new
        if item is None:
            logger.warning("%s event without payload ignored", event.event_type.value)
            return
        if item.device_id == self.device_id:
            logger.debug("Self-echo %s for %s discarded", event.event_type.value, item.id)
            return

        if event.event_type == ChangeType.UPDATE and self.get(item.id) is None:
            logger.debug("Update for unknown item %s ignored", item.id)
            return

        if self._apply(item) is None:
            if event.event_type == ChangeType.INSERT:
                self._notify("New item synced", "An item was added on another device", "info")
            else:
                self._notify("Item updated", "An item was updated on another device", "info")
        self._refresh_after_event()

    def _refresh_after_event(self) -> None:
        self.last_synced = datetime.now(timezone.utc)
        if self._status == SyncStatus.CONNECTED:
            self._set_status(SyncStatus.SYNCING)
            self._set_status(SyncStatus.CONNECTED)

    # === Жизненный цикл подписки ===

    async def start(self) -> OperationResult:
        """Подписаться на изменения пользователя и загрузить данные"""
        if self._subscription is None:
            self._subscription = self._channel.subscribe(
                TableFilter(SYNCED_DATA_TABLE, self._session.user_id),
                self.on_remote_change,
                loop=asyncio.get_running_loop(),
            )
        return await self.load()

    async def stop(self) -> None:
        """Отписаться от изменений; незавершенные загрузки и записи больше не меняют зеркало"""
        self._generation += 1
        self._load_task = None
        self._load_journal = None
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.unsubscribe()
        self._set_status(SyncStatus.DISCONNECTED)

    async def switch_session(self, session: SyncSession) -> OperationResult:
        """Смена пользователя: старая подписка снимается, зеркало очищается"""
        await self.stop()
        self._session = session
        self._items = []
        self.connected_devices = []
        self.last_synced = None
        return await self.start()

    async def __aenter__(self) -> "SyncReconciler":
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
