"""
Локальное хранилище устройства

Привычки и записи потребления живут только на устройстве: локальная копия
авторитетна, конфликтов нет, каждое изменение сразу записывается (write-through)
в key-value хранилище.
"""

import json
import logging
import os
import platform
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional, Union

from habitsync.config import LOCAL_STORE_PATH
from habitsync.models import ConsumptionKind, ConsumptionRecord, Habit, HabitCategory
from habitsync.streaks import DateLike, to_date

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"
HABITS_KEY = "habits"
CONSUMPTION_KEY = "consumptionRecords"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class KeyValueStore(ABC):
    """Интерфейс локального key-value хранилища"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Вернуть значение по ключу или None"""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Сохранить значение"""


class MemoryStore(KeyValueStore):
    """Хранилище в памяти (тесты, временные сессии)"""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore(KeyValueStore):
    """Хранилище в одном JSON-файле; запись атомарная (через временный файл)"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._data: dict[str, str] = {}
        if self.path.exists():
            with self.path.open("r", encoding="utf-8") as fh:
                self._data = json.load(fh)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(self._data, fh, ensure_ascii=False)
        os.replace(tmp_path, self.path)


def open_device_store(path: Optional[Union[str, Path]] = None) -> JsonFileStore:
    """Файловое хранилище устройства (по умолчанию LOCAL_STORE_PATH)"""
    return JsonFileStore(path or LOCAL_STORE_PATH)


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def get_or_create_device_id(store: KeyValueStore, device_kind: str = "desktop") -> str:
    """
    Стабильный идентификатор устройства

    Формат: <тип устройства>_<платформа>_<время в мс, base36>; сохраняется в
    хранилище под ключом device_id и далее переиспользуется.
    """
    stored = store.get(DEVICE_ID_KEY)
    if stored:
        return stored

    system = (platform.system() or "unknown").lower()
    device_id = f"{device_kind}_{system}_{_to_base36(int(time.time() * 1000))}"
    store.set(DEVICE_ID_KEY, device_id)
    logger.info("Generated device id %s", device_id)
    return device_id


class HabitBook:
    """Локальный журнал привычек и потребления с немедленной записью в хранилище"""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._habits: list[Habit] = [
            Habit.model_validate(raw) for raw in self._load_list(HABITS_KEY)
        ]
        records = [ConsumptionRecord.model_validate(raw) for raw in self._load_list(CONSUMPTION_KEY)]
        # При повторе даты остается последняя запись
        self._consumption: dict = {record.date: record for record in records}

    def _load_list(self, key: str) -> list:
        raw = self._store.get(key)
        if not raw:
            return []
        return json.loads(raw)

    def _save(self) -> None:
        self._store.set(
            HABITS_KEY,
            json.dumps([habit.model_dump(mode="json", by_alias=True) for habit in self._habits]),
        )
        self._store.set(
            CONSUMPTION_KEY,
            json.dumps([record.model_dump(mode="json") for record in self.consumption_records]),
        )

    @property
    def habits(self) -> list[Habit]:
        return list(self._habits)

    @property
    def consumption_records(self) -> list[ConsumptionRecord]:
        return [self._consumption[day] for day in sorted(self._consumption)]

    def get_habit(self, habit_id: str) -> Habit:
        for habit in self._habits:
            if habit.id == habit_id:
                return habit
        raise KeyError(habit_id)

    def _replace(self, habit_id: str, **changes) -> Habit:
        current = self.get_habit(habit_id)
        updated = Habit.model_validate({**current.model_dump(), **changes})
        self._habits = [updated if habit.id == habit_id else habit for habit in self._habits]
        self._save()
        return updated

    def add_habit(
        self,
        name: str,
        category: HabitCategory = HabitCategory.OTHER,
        recurring_days: Iterable[int] = range(7),
    ) -> Habit:
        habit_id = str(int(time.time() * 1000))
        existing_ids = {habit.id for habit in self._habits}
        suffix = 1
        while habit_id in existing_ids:
            habit_id = f"{habit_id.split('_')[0]}_{suffix}"
            suffix += 1

        habit = Habit(
            id=habit_id,
            name=name,
            category=category,
            recurring_days=set(recurring_days),
        )
        self._habits.append(habit)
        self._save()
        return habit

    def remove_habit(self, habit_id: str) -> None:
        self.get_habit(habit_id)
        self._habits = [habit for habit in self._habits if habit.id != habit_id]
        self._save()

    def toggle_completion(self, habit_id: str, day: DateLike) -> bool:
        """Переключить отметку выполнения за дату; возвращает новое значение"""
        key = to_date(day).isoformat()
        habit = self.get_habit(habit_id)
        completed = dict(habit.completed)
        completed[key] = not completed.get(key, False)
        self._replace(habit_id, completed=completed)
        return completed[key]

    def set_recurring_days(self, habit_id: str, recurring_days: Iterable[int]) -> Habit:
        return self._replace(habit_id, recurring_days=set(recurring_days))

    def toggle_paused(self, habit_id: str) -> bool:
        habit = self._replace(habit_id, paused=not self.get_habit(habit_id).paused)
        return habit.paused

    def set_category(self, habit_id: str, category: HabitCategory) -> Habit:
        return self._replace(habit_id, category=category)

    def set_reminder(self, habit_id: str, reminder_time: str, reminder_enabled: bool) -> Habit:
        return self._replace(
            habit_id, reminder_time=reminder_time, reminder_enabled=reminder_enabled
        )

    def consumption_for(self, day: DateLike) -> ConsumptionRecord:
        day = to_date(day)
        return self._consumption.get(day, ConsumptionRecord(date=day))

    def record_consumption(self, day: DateLike, kind: ConsumptionKind, value: int) -> ConsumptionRecord:
        """Записать потребление за дату (upsert: одна запись на дату)"""
        day = to_date(day)
        current = self.consumption_for(day)
        record = ConsumptionRecord.model_validate({**current.model_dump(), kind.value: value})
        self._consumption[day] = record
        self._save()
        return record
