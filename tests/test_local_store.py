"""Тесты локального хранилища устройства"""

import json
from datetime import date

import pytest

from habitsync.local_store import (
    CONSUMPTION_KEY,
    DEVICE_ID_KEY,
    HABITS_KEY,
    HabitBook,
    JsonFileStore,
    MemoryStore,
    get_or_create_device_id,
    open_device_store,
)
from habitsync.models import ConsumptionKind, HabitCategory


class TestDeviceId:
    """Тесты идентификатора устройства"""

    def test_device_id_is_generated_once(self):
        store = MemoryStore()

        first = get_or_create_device_id(store)
        second = get_or_create_device_id(store)

        assert first == second
        assert store.get(DEVICE_ID_KEY) == first
        assert first.startswith("desktop_")
        assert len(first.split("_")) == 3

    def test_existing_device_id_is_reused(self):
        store = MemoryStore({DEVICE_ID_KEY: "mobile_ios_abc123"})
        assert get_or_create_device_id(store, device_kind="mobile") == "mobile_ios_abc123"


class TestHabitBook:
    """Тесты локального журнала привычек"""

    def test_fresh_store_has_no_habits(self):
        book = HabitBook(MemoryStore())
        assert book.habits == []
        assert book.consumption_records == []

    def test_add_habit_writes_through(self):
        store = MemoryStore()
        book = HabitBook(store)

        habit = book.add_habit("Morning run", HabitCategory.HEALTH, recurring_days=[1, 3, 5])

        saved = json.loads(store.get(HABITS_KEY))
        assert saved[0]["id"] == habit.id
        assert sorted(saved[0]["recurringDays"]) == [1, 3, 5]
        assert saved[0]["category"] == "health"
        assert HabitBook(store).get_habit(habit.id).name == "Morning run"

    def test_habit_ids_are_unique(self):
        book = HabitBook(MemoryStore())
        ids = {book.add_habit(f"Habit {i}").id for i in range(5)}
        assert len(ids) == 5

    def test_toggle_completion(self):
        book = HabitBook(MemoryStore())
        habit = book.add_habit("Read")

        assert book.toggle_completion(habit.id, "2025-03-03") is True
        assert book.get_habit(habit.id).completed == {"2025-03-03": True}
        assert book.toggle_completion(habit.id, date(2025, 3, 3)) is False

    def test_habit_settings(self):
        book = HabitBook(MemoryStore())
        habit = book.add_habit("Meditate")

        assert book.toggle_paused(habit.id) is True
        book.set_recurring_days(habit.id, [0, 6])
        book.set_category(habit.id, HabitCategory.LEARNING)
        book.set_reminder(habit.id, "07:30", True)

        updated = book.get_habit(habit.id)
        assert updated.paused is True
        assert updated.recurring_days == {0, 6}
        assert updated.category == HabitCategory.LEARNING
        assert (updated.reminder_time, updated.reminder_enabled) == ("07:30", True)

    def test_invalid_changes_are_rejected(self):
        book = HabitBook(MemoryStore())
        habit = book.add_habit("Walk")

        with pytest.raises(ValueError):
            book.set_recurring_days(habit.id, [7])
        with pytest.raises(ValueError):
            book.set_reminder(habit.id, "25:00", True)
        assert book.get_habit(habit.id).recurring_days == set(range(7))

    def test_remove_habit(self):
        book = HabitBook(MemoryStore())
        habit = book.add_habit("Walk")

        book.remove_habit(habit.id)

        assert book.habits == []
        with pytest.raises(KeyError):
            book.remove_habit(habit.id)

    def test_legacy_habits_get_defaults(self):
        store = MemoryStore({HABITS_KEY: json.dumps([{"id": "1", "name": "Old", "completed": {}}])})

        habit = HabitBook(store).get_habit("1")

        assert habit.recurring_days == set(range(7))
        assert habit.paused is False


class TestConsumption:
    """Тесты записей потребления"""

    def test_record_consumption_upserts_by_date(self):
        store = MemoryStore()
        book = HabitBook(store)

        book.record_consumption("2025-03-03", ConsumptionKind.CIGARETTES, 4)
        book.record_consumption("2025-03-03", ConsumptionKind.JOINTS, 1)
        book.record_consumption("2025-03-03", ConsumptionKind.CIGARETTES, 2)

        records = book.consumption_records
        assert len(records) == 1
        assert (records[0].cigarettes, records[0].joints) == (2, 1)
        assert len(json.loads(store.get(CONSUMPTION_KEY))) == 1

    def test_consumption_for_missing_day_is_zero(self):
        record = HabitBook(MemoryStore()).consumption_for("2025-03-03")
        assert (record.cigarettes, record.joints) == (0, 0)

    def test_negative_consumption_is_rejected(self):
        with pytest.raises(ValueError):
            HabitBook(MemoryStore()).record_consumption(
                "2025-03-03", ConsumptionKind.CIGARETTES, -1
            )


class TestJsonFileStore:
    """Тесты файлового хранилища"""

    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        book = HabitBook(JsonFileStore(path))
        habit = book.add_habit("Stretch")
        book.record_consumption("2025-03-03", ConsumptionKind.JOINTS, 1)

        reopened = HabitBook(JsonFileStore(path))

        assert reopened.get_habit(habit.id).name == "Stretch"
        assert reopened.consumption_for("2025-03-03").joints == 1
        assert not path.with_suffix(".json.tmp").exists()

    def test_open_device_store_uses_given_path(self, tmp_path):
        path = tmp_path / "device.json"
        store = open_device_store(path)

        device_id = get_or_create_device_id(store, device_kind="mobile")

        assert store.path == path
        assert get_or_create_device_id(open_device_store(path)) == device_id
