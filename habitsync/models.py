"""
Модели данных HabitSync
- ORM-таблицы реляционного хранилища (профили, синхронизируемые данные, публичные серии)
- Pydantic-модели привычек, потребления, синхронизируемых элементов и схемы API
"""

import datetime as dt
import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from habitsync.config import MAX_HABITS_PER_SNAPSHOT, MAX_SYNCED_CONTENT_LENGTH
from habitsync.database import Base

DANGEROUS_CHARS = ["<", ">", "&", '"', "'", "`"]
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_REMINDER_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _reject_dangerous_chars(value: str, label: str) -> str:
    for char in DANGEROUS_CHARS:
        if char in value:
            raise ValueError(f"{label} содержит недопустимый символ: {char}")
    return value


# === ORM: реляционное хранилище ===


class Profile(Base):
    """Профиль пользователя; id совпадает с идентификатором identity-провайдера"""

    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True, index=True)
    username = Column(String(30), unique=True, index=True, nullable=True)
    display_name = Column(String(100), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    public_profile = Column(Boolean, default=False, nullable=False)
    public_habits = Column(Boolean, default=False, nullable=False)
    public_cigarette_streak = Column(Boolean, default=True, nullable=False)
    public_joint_streak = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class SyncedDataRecord(Base):
    """Строка таблицы synced_data (общий облачный журнал пользователя)"""

    __tablename__ = "synced_data"

    id = Column(String(64), primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    content = Column(Text, nullable=False, default="")
    device_id = Column(String(128), nullable=False)
    last_modified = Column(BigInteger, nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)


class ConsumptionStreak(Base):
    """Опубликованная серия дней без потребления"""

    __tablename__ = "consumption_streaks"
    __table_args__ = (UniqueConstraint("user_id", "streak_type", name="uq_streak_user_type"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), index=True, nullable=False)
    streak_type = Column(String(16), nullable=False)
    current_streak = Column(Integer, nullable=False, default=0)
    public = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


# === Доменные записи ===


class HabitCategory(str, Enum):
    """Категория привычки"""

    HEALTH = "health"
    PRODUCTIVITY = "productivity"
    LEARNING = "learning"
    SOCIAL = "social"
    OTHER = "other"


class ConsumptionKind(str, Enum):
    """Вид отслеживаемого потребления"""

    CIGARETTES = "cigarettes"
    JOINTS = "joints"


class StatsPeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


class Habit(BaseModel):
    """
    Привычка с недельным расписанием

    recurring_days: дни недели (0 = воскресенье ... 6 = суббота)
    completed: карта "yyyy-MM-dd" -> выполнено
    """

    model_config = ConfigDict(
        str_strip_whitespace=True, alias_generator=to_camel, populate_by_name=True
    )

    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=100)
    category: HabitCategory = HabitCategory.OTHER
    recurring_days: set[int] = Field(default_factory=lambda: set(range(7)))
    completed: dict[str, bool] = Field(default_factory=dict)
    paused: bool = False
    reminder_time: str = "12:00"
    reminder_enabled: bool = False

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _reject_dangerous_chars(v, "Название").strip()

    @field_validator("recurring_days")
    @classmethod
    def validate_recurring_days(cls, v: set[int]) -> set[int]:
        for day in v:
            if day < 0 or day > 6:
                raise ValueError(f"День недели должен быть в диапазоне 0-6: {day}")
        return v

    @field_validator("completed")
    @classmethod
    def validate_completed_keys(cls, v: dict[str, bool]) -> dict[str, bool]:
        for key in v:
            if not _ISO_DATE_RE.match(key):
                raise ValueError(f"Дата должна быть в формате yyyy-MM-dd: {key}")
            dt.date.fromisoformat(key)
        return v

    @field_validator("reminder_time")
    @classmethod
    def validate_reminder_time(cls, v: str) -> str:
        if not _REMINDER_RE.match(v):
            raise ValueError("Время напоминания должно быть в формате HH:MM")
        return v


class ConsumptionRecord(BaseModel):
    """Потребление за календарный день (одна запись на дату)"""

    date: dt.date
    cigarettes: int = Field(default=0, ge=0)
    joints: int = Field(default=0, ge=0)

    def amount(self, kind: ConsumptionKind) -> int:
        return self.cigarettes if kind == ConsumptionKind.CIGARETTES else self.joints


class SyncedData(BaseModel):
    """Синхронизируемый между устройствами элемент"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=64)
    content: str
    device_id: str = Field(..., min_length=1, max_length=128)
    last_modified: int = Field(..., ge=0)
    version: int = Field(default=1, ge=1)


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """Событие realtime-подписки: {event_type, new, old}"""

    event_type: ChangeType
    new: Optional[SyncedData] = None
    old: Optional[dict[str, Any]] = None
    user_id: Optional[str] = None

    @property
    def record_id(self) -> Optional[str]:
        if self.new is not None:
            return self.new.id
        if self.old:
            return self.old.get("id")
        return None


# === Схемы API ===


class SyncedDataCreate(BaseModel):
    """Создание элемента; id генерируется клиентом"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=64)
    content: str = Field(..., max_length=MAX_SYNCED_CONTENT_LENGTH)
    device_id: str = Field(..., min_length=1, max_length=128)
    last_modified: int = Field(..., ge=0)
    version: int = Field(default=1, ge=1)


class SyncedDataUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    content: str = Field(..., max_length=MAX_SYNCED_CONTENT_LENGTH)
    device_id: str = Field(..., min_length=1, max_length=128)
    last_modified: int = Field(..., ge=0)
    version: int = Field(..., ge=1)


class SyncedDataList(BaseModel):
    items: list[SyncedData]
    total: int


class PrivacySettings(BaseModel):
    """Настройки приватности профиля"""

    public_profile: bool = False
    public_habits: bool = False
    public_cigarette_streak: bool = True
    public_joint_streak: bool = True


class ProfileResponse(BaseModel):
    id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    privacy: PrivacySettings


class ProfileUpdate(BaseModel):
    """Обновление профиля (все поля опциональны)"""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(None, min_length=3, max_length=30)
    display_name: Optional[str] = Field(None, max_length=100)
    avatar_url: Optional[str] = Field(None, max_length=500)
    privacy: Optional[PrivacySettings] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not _USERNAME_RE.match(v):
            raise ValueError("Имя пользователя может содержать только буквы, цифры и _")
        return v

    @field_validator("display_name")
    @classmethod
    def validate_display_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _reject_dangerous_chars(v, "Отображаемое имя")


class PublicProfile(BaseModel):
    id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    cigarette_streak: Optional[int] = None
    joint_streak: Optional[int] = None


class StreakPublish(BaseModel):
    """Данные для публикации серий дней без потребления"""

    consumption: list[ConsumptionRecord] = Field(default_factory=list)
    date: dt.date = Field(default_factory=dt.date.today)

    @field_validator("consumption")
    @classmethod
    def validate_unique_dates(cls, v: list[ConsumptionRecord]) -> list[ConsumptionRecord]:
        return _ensure_unique_dates(v)


class StreakPublishResponse(BaseModel):
    cigarettes: int
    joints: int


def _ensure_unique_dates(records: list[ConsumptionRecord]) -> list[ConsumptionRecord]:
    seen = set()
    for record in records:
        if record.date in seen:
            raise ValueError(f"Дублирующаяся запись потребления за {record.date.isoformat()}")
        seen.add(record.date)
    return records


class StatsSnapshot(BaseModel):
    """Снимок локальных данных устройства для расчета статистики"""

    habits: list[Habit] = Field(default_factory=list, max_length=MAX_HABITS_PER_SNAPSHOT)
    consumption: list[ConsumptionRecord] = Field(default_factory=list)
    date: dt.date = Field(default_factory=dt.date.today)
    lookback_days: Optional[int] = Field(default=None, ge=1, le=3650)
    category: Optional[HabitCategory] = None
    period: StatsPeriod = StatsPeriod.DAY

    @field_validator("consumption")
    @classmethod
    def validate_unique_dates(cls, v: list[ConsumptionRecord]) -> list[ConsumptionRecord]:
        return _ensure_unique_dates(v)

    @model_validator(mode="after")
    def validate_unique_habit_ids(self) -> "StatsSnapshot":
        ids = [habit.id for habit in self.habits]
        if len(ids) != len(set(ids)):
            raise ValueError("Идентификаторы привычек должны быть уникальны")
        return self


class DailyStatsResponse(BaseModel):
    date: dt.date
    completed: int
    scheduled: int
    ratio: float
    percentage: int


class StreakStatsResponse(BaseModel):
    date: dt.date
    strict_streak: int
    any_completion_streak: int
    chains: dict[str, int]
    cigarette_free_streak: int
    joint_free_streak: int


class WeekdayStatsResponse(BaseModel):
    day_index: int
    completed: int
    total: int
    percentage: int
    avg_cigarettes: float
    avg_joints: float


class PatternsResponse(BaseModel):
    days: list[WeekdayStatsResponse]
    best_day: Optional[int] = None
    worst_day: Optional[int] = None


class HistoryEntryResponse(BaseModel):
    date: dt.date
    completed: int
    scheduled: int
    percentage: int


class HistoryResponse(BaseModel):
    period: StatsPeriod
    entries: list[HistoryEntryResponse]
    cigarettes_total: int
    joints_total: int


class ErrorDetail(BaseModel):
    """Детали ошибки (RFC 7807 Problem Details)"""

    type: str = Field(..., description="URI идентификатор типа проблемы")
    title: str = Field(..., description="Краткое описание проблемы")
    status: int = Field(..., description="HTTP статус код")
    detail: str = Field(..., description="Детальное объяснение проблемы")
    instance: str = Field(
        ..., description="URI идентифицирующий конкретный случай проблемы"
    )
    correlation_id: Optional[str] = Field(None, description="ID для корреляции в логах")
