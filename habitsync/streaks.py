"""
Движок расписания привычек и серий (streaks)

Чистые функции над списками привычек и записей потребления. Входные данные
не изменяются, ошибки не выбрасываются: некорректные данные (например, пустое
расписание) трактуются как "никогда не запланировано".

Правила:
- привычка на паузе не участвует ни в одном расчете;
- отметка о выполнении в день вне расписания игнорируется;
- обход назад ограничен окном lookback_days (по умолчанию STREAK_LOOKBACK_DAYS).
"""

import calendar
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, NamedTuple, Optional, Sequence, Union

from habitsync.config import STREAK_LOOKBACK_DAYS
from habitsync.models import (
    ConsumptionKind,
    ConsumptionRecord,
    Habit,
    HabitCategory,
    StatsPeriod,
)
from habitsync.session import SyncSession

logger = logging.getLogger(__name__)

DateLike = Union[date, str]


def to_date(value: DateLike) -> date:
    """Привести date/datetime/"yyyy-MM-dd" к календарной дате"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def weekday_index(day: date) -> int:
    """Индекс дня недели: 0 = воскресенье ... 6 = суббота"""
    return (day.weekday() + 1) % 7


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _lookback(lookback_days: Optional[int]) -> int:
    return STREAK_LOOKBACK_DAYS if lookback_days is None else max(0, lookback_days)


def _walk_back(reference: date, lookback_days: int) -> Iterator[date]:
    for offset in range(lookback_days):
        yield reference - timedelta(days=offset)


def _active(habits: Iterable[Habit]) -> list[Habit]:
    return [habit for habit in habits if not habit.paused]


def is_scheduled(habit: Habit, day: DateLike) -> bool:
    """Запланирована ли привычка на этот день недели"""
    return weekday_index(to_date(day)) in habit.recurring_days


def is_completed_on(habit: Habit, day: DateLike) -> bool:
    """Выполнена ли привычка в этот день (только для дней по расписанию)"""
    day = to_date(day)
    return is_scheduled(habit, day) and bool(habit.completed.get(day.isoformat(), False))


class CompletionRatio(NamedTuple):
    completed: int
    scheduled: int

    @property
    def ratio(self) -> float:
        return self.completed / self.scheduled if self.scheduled else 0.0

    @property
    def percentage(self) -> int:
        return int(_round_half_up(self.ratio * 100))


def daily_completion_ratio(habits: Sequence[Habit], day: DateLike) -> CompletionRatio:
    """
    Доля выполненных привычек за день

    Знаменатель - привычки не на паузе, запланированные на этот день;
    числитель - те из них, что отмечены выполненными. Если ничего не
    запланировано, результат (0, 0) с ratio == 0.
    """
    day = to_date(day)
    scheduled = [habit for habit in _active(habits) if is_scheduled(habit, day)]
    completed = sum(1 for habit in scheduled if habit.completed.get(day.isoformat(), False))
    return CompletionRatio(completed=completed, scheduled=len(scheduled))


def habit_chain(
    habit: Habit, reference_date: DateLike, lookback_days: Optional[int] = None
) -> int:
    """
    Цепочка выполнений одной привычки, назад от reference_date

    Дни вне расписания пропускаются (не рвут и не продлевают цепочку);
    первый запланированный, но не выполненный день завершает обход.
    """
    if habit.paused:
        return 0

    chain = 0
    for day in _walk_back(to_date(reference_date), _lookback(lookback_days)):
        if not is_scheduled(habit, day):
            continue
        if habit.completed.get(day.isoformat(), False):
            chain += 1
        else:
            break
    return chain


def strict_streak(
    habits: Sequence[Habit], reference_date: DateLike, lookback_days: Optional[int] = None
) -> int:
    """
    Серия дней, в которые выполнены все запланированные привычки

    День без единой запланированной привычки не засчитывается и
    прерывает серию.
    """
    active = _active(habits)
    streak = 0
    for day in _walk_back(to_date(reference_date), _lookback(lookback_days)):
        key = day.isoformat()
        scheduled = [habit for habit in active if is_scheduled(habit, day)]
        if scheduled and all(habit.completed.get(key, False) for habit in scheduled):
            streak += 1
        else:
            break
    return streak


def any_completion_streak(
    habits: Sequence[Habit], reference_date: DateLike, lookback_days: Optional[int] = None
) -> int:
    """
    Облегченная общая серия: день засчитывается, если выполнена хотя бы одна
    запланированная привычка

    День без запланированных привычек тоже засчитывается. Если ни одна
    активная привычка ни разу не запланирована, серия равна 0.
    """
    active = [habit for habit in _active(habits) if habit.recurring_days]
    if not active:
        return 0

    streak = 0
    for day in _walk_back(to_date(reference_date), _lookback(lookback_days)):
        scheduled = [habit for habit in active if is_scheduled(habit, day)]
        if not scheduled or any(is_completed_on(habit, day) for habit in scheduled):
            streak += 1
        else:
            break
    return streak


def consumption_free_streak(
    records: Sequence[ConsumptionRecord],
    kind: ConsumptionKind,
    reference_date: DateLike,
    lookback_days: Optional[int] = None,
) -> int:
    """
    Серия дней без потребления указанного вида

    День без записи считается днем без потребления, но обход не уходит
    раньше самой старой записи. Без записей серия равна 0.
    """
    by_date = {record.date: record for record in records}
    if not by_date:
        return 0
    oldest = min(by_date)

    streak = 0
    for day in _walk_back(to_date(reference_date), _lookback(lookback_days)):
        if day < oldest:
            break
        record = by_date.get(day)
        if record is not None and record.amount(kind) > 0:
            break
        streak += 1
    return streak


@dataclass
class WeekdayStats:
    """Агрегат по дню недели"""

    day_index: int
    completed: int = 0
    total: int = 0
    cigarettes: int = 0
    joints: int = 0
    record_count: int = 0

    @property
    def percentage(self) -> int:
        if not self.total:
            return 0
        return int(_round_half_up(self.completed / self.total * 100))

    @property
    def avg_cigarettes(self) -> float:
        if not self.record_count:
            return 0.0
        return _round_half_up(self.cigarettes / self.record_count, 1)

    @property
    def avg_joints(self) -> float:
        if not self.record_count:
            return 0.0
        return _round_half_up(self.joints / self.record_count, 1)


def day_of_week_aggregate(
    habits: Sequence[Habit],
    consumption_records: Sequence[ConsumptionRecord],
    category: Optional[HabitCategory] = None,
) -> list[WeekdayStats]:
    """
    Статистика по дням недели (7 элементов, индекс 0 = воскресенье)

    Выполнение: по всем датам из карт completed, на которые привычка
    запланирована. Потребление: сумма за день недели, деленная на число
    различных дат с записью в этот день недели.
    """
    days = [WeekdayStats(day_index=index) for index in range(7)]

    for habit in _active(habits):
        if category is not None and habit.category != category:
            continue
        for key, done in habit.completed.items():
            day = to_date(key)
            if not is_scheduled(habit, day):
                continue
            stats = days[weekday_index(day)]
            stats.total += 1
            if done:
                stats.completed += 1

    by_date = {record.date: record for record in consumption_records}
    for day, record in by_date.items():
        stats = days[weekday_index(day)]
        stats.cigarettes += record.cigarettes
        stats.joints += record.joints
        stats.record_count += 1

    return days


def best_and_worst_days(
    days: Sequence[WeekdayStats],
) -> tuple[Optional[WeekdayStats], Optional[WeekdayStats]]:
    """Лучший и худший день недели среди дней с данными (при равенстве - более ранний)"""
    with_data = [day for day in days if day.total > 0]
    if not with_data:
        return None, None
    best = max(with_data, key=lambda day: (day.percentage, -day.day_index))
    worst = min(with_data, key=lambda day: (day.percentage, day.day_index))
    return best, worst


def period_bounds(reference_date: DateLike, period: StatsPeriod) -> Optional[tuple[date, date]]:
    """Границы периода вокруг даты; для ALL - None (без ограничений)"""
    reference = to_date(reference_date)
    if period == StatsPeriod.DAY:
        return reference, reference
    if period == StatsPeriod.WEEK:
        start = reference - timedelta(days=reference.weekday())
        return start, start + timedelta(days=6)
    if period == StatsPeriod.MONTH:
        last_day = calendar.monthrange(reference.year, reference.month)[1]
        return reference.replace(day=1), reference.replace(day=last_day)
    return None


def _in_period(day: date, bounds: Optional[tuple[date, date]]) -> bool:
    return bounds is None or bounds[0] <= day <= bounds[1]


@dataclass
class HistoryEntry:
    date: date
    completed: int
    scheduled: int

    @property
    def percentage(self) -> int:
        return CompletionRatio(self.completed, self.scheduled).percentage


def completion_history(
    habits: Sequence[Habit], reference_date: DateLike, period: StatsPeriod
) -> list[HistoryEntry]:
    """История выполнения по датам периода (по возрастанию даты)"""
    bounds = period_bounds(reference_date, period)
    dates = {to_date(key) for habit in _active(habits) for key in habit.completed}

    entries = []
    for day in sorted(d for d in dates if _in_period(d, bounds)):
        ratio = daily_completion_ratio(habits, day)
        entries.append(HistoryEntry(date=day, completed=ratio.completed, scheduled=ratio.scheduled))
    return entries


@dataclass
class ConsumptionSummary:
    records: list[ConsumptionRecord] = field(default_factory=list)
    cigarettes_total: int = 0
    joints_total: int = 0


def consumption_summary(
    records: Sequence[ConsumptionRecord], reference_date: DateLike, period: StatsPeriod
) -> ConsumptionSummary:
    """Записи потребления за период (по возрастанию даты) и итоги за этот период"""
    bounds = period_bounds(reference_date, period)
    selected = sorted(
        (record for record in records if _in_period(record.date, bounds)),
        key=lambda record: record.date,
    )
    return ConsumptionSummary(
        records=selected,
        cigarettes_total=sum(record.cigarettes for record in selected),
        joints_total=sum(record.joints for record in selected),
    )


class StreakEngine:
    """
    Движок статистики, привязанный к сессии пользователя

    Хранит окно обхода; все вычисления делегирует чистым функциям модуля.
    Сессия - только дескриптор владельца данных: на результаты она не влияет
    и используется лишь для отладочного лога.
    """

    def __init__(self, session: Optional[SyncSession] = None, lookback_days: Optional[int] = None):
        self.session = session
        self.lookback_days = _lookback(lookback_days)

    def daily(self, habits: Sequence[Habit], day: DateLike) -> CompletionRatio:
        return daily_completion_ratio(habits, day)

    def chain(self, habit: Habit, reference_date: DateLike) -> int:
        return habit_chain(habit, reference_date, self.lookback_days)

    def chains(self, habits: Sequence[Habit], reference_date: DateLike) -> dict[str, int]:
        return {habit.id: self.chain(habit, reference_date) for habit in habits}

    def strict_streak(self, habits: Sequence[Habit], reference_date: DateLike) -> int:
        return strict_streak(habits, reference_date, self.lookback_days)

    def any_completion_streak(self, habits: Sequence[Habit], reference_date: DateLike) -> int:
        return any_completion_streak(habits, reference_date, self.lookback_days)

    def consumption_free_streak(
        self,
        records: Sequence[ConsumptionRecord],
        kind: ConsumptionKind,
        reference_date: DateLike,
    ) -> int:
        return consumption_free_streak(records, kind, reference_date, self.lookback_days)

    def patterns(
        self,
        habits: Sequence[Habit],
        records: Sequence[ConsumptionRecord],
        category: Optional[HabitCategory] = None,
    ) -> list[WeekdayStats]:
        days = day_of_week_aggregate(habits, records, category)
        if self.session is not None:
            logger.debug(
                "Computed weekday patterns for user %s (%d habits)",
                self.session.user_id,
                len(habits),
            )
        return days

    def history(
        self, habits: Sequence[Habit], reference_date: DateLike, period: StatsPeriod
    ) -> list[HistoryEntry]:
        return completion_history(habits, reference_date, period)
