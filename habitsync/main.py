import uuid
from typing import Optional

from fastapi import Depends, FastAPI, Header, Response
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.orm import Session

from habitsync import repository

# Аудит-логирование
from habitsync.audit import log_create, log_delete, log_failed_operation, log_update

# Аутентификация через внешний identity-провайдер
from habitsync.auth import get_current_profile, get_current_user_id, get_profile_by_username
from habitsync.config import (
    AUDIT_LOG_ENABLED,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_PER_MINUTE,
    setup_logging,
)

# База данных
from habitsync.database import get_db

# Импорт обработчиков ошибок RFC 7807
from habitsync.errors import (
    ApiError,
    DuplicateItemError,
    api_error_handler,
    generic_exception_handler,
    validation_error_handler,
)

# Prometheus метрики
from habitsync.metrics import (
    PrometheusMiddleware,
    metrics_endpoint,
    track_conflict_ignored,
    track_profile_updated,
    track_realtime_published,
    track_stats_computed,
    track_synced_write,
)
from habitsync.models import (
    ChangeType,
    ConsumptionKind,
    ConsumptionStreak,
    DailyStatsResponse,
    HistoryEntryResponse,
    HistoryResponse,
    PatternsResponse,
    PrivacySettings,
    Profile,
    ProfileResponse,
    ProfileUpdate,
    PublicProfile,
    StatsSnapshot,
    StreakPublish,
    StreakPublishResponse,
    StreakStatsResponse,
    SyncedData,
    SyncedDataCreate,
    SyncedDataList,
    SyncedDataUpdate,
    WeekdayStatsResponse,
)
from habitsync.remote import publish_synced_change

# Middleware безопасности
from habitsync.security import (
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
    validate_synced_items_quota,
)
from habitsync.session import SyncSession
from habitsync.streaks import StreakEngine, best_and_worst_days, consumption_summary

logger = setup_logging()

app = FastAPI(
    title="HabitSync API",
    version="0.2.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Регистрация обработчиков ошибок (RFC 7807)
app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)  # FastAPI validation
app.add_exception_handler(ValidationError, validation_error_handler)  # Pydantic validation
app.add_exception_handler(Exception, generic_exception_handler)

if RATE_LIMIT_ENABLED:
    app.add_middleware(RateLimitMiddleware, requests_per_minute=RATE_LIMIT_PER_MINUTE)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(PrometheusMiddleware)

API_DEVICE_ID = "api"


@app.get("/health")
def health():
    """Health check endpoint"""
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    """
    Prometheus metrics endpoint
    Экспортирует метрики в формате Prometheus
    """
    return metrics_endpoint()


# === Profile Endpoints ===


def _profile_response(profile: Profile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        username=profile.username,
        display_name=profile.display_name,
        avatar_url=profile.avatar_url,
        privacy=PrivacySettings(
            public_profile=profile.public_profile,
            public_habits=profile.public_habits,
            public_cigarette_streak=profile.public_cigarette_streak,
            public_joint_streak=profile.public_joint_streak,
        ),
    )


@app.get("/profile", response_model=ProfileResponse)
def get_my_profile(profile: Profile = Depends(get_current_profile)):  # noqa: B008
    """Профиль текущего пользователя (создается при первом обращении)"""
    return _profile_response(profile)


@app.put("/profile", response_model=ProfileResponse)
def update_my_profile(
    update_data: ProfileUpdate,
    profile: Profile = Depends(get_current_profile),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
):
    """
    Обновить профиль и настройки приватности

    Args:
        update_data: Изменяемые поля (отсутствующие не трогаются)
        profile: Профиль текущего пользователя
        db: Сессия базы данных

    Returns:
        Обновленный профиль
    """
    correlation_id = str(uuid.uuid4())

    if update_data.username is not None and update_data.username != profile.username:
        existing = get_profile_by_username(db, update_data.username)
        if existing is not None and existing.id != profile.id:
            if AUDIT_LOG_ENABLED:
                log_failed_operation("UPDATE", "profile", profile.id, correlation_id, "username_taken")
            raise ApiError(
                code="conflict",
                message="Username is already taken",
                status=409,
                correlation_id=correlation_id,
            )

    updated_fields = []
    for field_name in ("username", "display_name", "avatar_url"):
        value = getattr(update_data, field_name)
        if value is not None:
            setattr(profile, field_name, value)
            updated_fields.append(field_name)

    if update_data.privacy is not None:
        for field_name, value in update_data.privacy.model_dump().items():
            setattr(profile, field_name, value)
        updated_fields.append("privacy")

        # Видимость опубликованных серий следует настройкам профиля
        for streak in db.query(ConsumptionStreak).filter(ConsumptionStreak.user_id == profile.id):
            streak.public = _streak_flag(profile, streak.streak_type)

    if updated_fields:
        db.commit()
        db.refresh(profile)
        track_profile_updated()

        if AUDIT_LOG_ENABLED:
            log_update(
                resource_type="profile",
                resource_id=profile.id,
                user_id=profile.id,
                correlation_id=correlation_id,
                details={"updated_fields": updated_fields},
            )

    return _profile_response(profile)


def _streak_flag(profile: Profile, streak_type: str) -> bool:
    if streak_type == ConsumptionKind.CIGARETTES.value:
        return bool(profile.public_cigarette_streak)
    return bool(profile.public_joint_streak)


@app.put("/profile/streaks", response_model=StreakPublishResponse)
def publish_streaks(
    payload: StreakPublish,
    profile: Profile = Depends(get_current_profile),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
):
    """
    Опубликовать текущие серии дней без потребления

    Сами записи потребления не сохраняются: по ним считаются серии на дату
    payload.date, и в таблицу consumption_streaks попадают только числа.
    """
    engine = StreakEngine(SyncSession(profile.id, API_DEVICE_ID))
    streaks = {
        kind: engine.consumption_free_streak(payload.consumption, kind, payload.date)
        for kind in ConsumptionKind
    }

    for kind, value in streaks.items():
        row = (
            db.query(ConsumptionStreak)
            .filter(
                ConsumptionStreak.user_id == profile.id,
                ConsumptionStreak.streak_type == kind.value,
            )
            .first()
        )
        if row is None:
            row = ConsumptionStreak(user_id=profile.id, streak_type=kind.value)
            db.add(row)
        row.current_streak = value
        row.public = _streak_flag(profile, kind.value)
    db.commit()

    track_stats_computed("consumption_streaks")
    if AUDIT_LOG_ENABLED:
        log_update(
            resource_type="consumption_streak",
            resource_id=profile.id,
            user_id=profile.id,
            correlation_id=str(uuid.uuid4()),
            details={kind.value: value for kind, value in streaks.items()},
        )

    return StreakPublishResponse(
        cigarettes=streaks[ConsumptionKind.CIGARETTES],
        joints=streaks[ConsumptionKind.JOINTS],
    )


@app.get("/profiles/public", response_model=list[PublicProfile])
def list_public_profiles(
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
):
    """Публичные профили других пользователей с разрешенными к показу сериями"""
    profiles = (
        db.query(Profile)
        .filter(Profile.public_profile.is_(True), Profile.id != user_id)
        .order_by(Profile.created_at)
        .all()
    )

    streak_rows = (
        db.query(ConsumptionStreak)
        .filter(ConsumptionStreak.user_id.in_([profile.id for profile in profiles]))
        .all()
        if profiles
        else []
    )
    streaks = {(row.user_id, row.streak_type): row.current_streak for row in streak_rows}

    result = []
    for profile in profiles:
        cigarette_streak = None
        joint_streak = None
        if profile.public_cigarette_streak:
            cigarette_streak = streaks.get((profile.id, ConsumptionKind.CIGARETTES.value))
        if profile.public_joint_streak:
            joint_streak = streaks.get((profile.id, ConsumptionKind.JOINTS.value))
        result.append(
            PublicProfile(
                id=profile.id,
                username=profile.username,
                display_name=profile.display_name,
                avatar_url=profile.avatar_url,
                cigarette_streak=cigarette_streak,
                joint_streak=joint_streak,
            )
        )
    return result


# === Stats Endpoints (снимок локальных данных, сервер их не хранит) ===


def _engine_for(user_id: str, snapshot: StatsSnapshot, device_id: Optional[str]) -> StreakEngine:
    return StreakEngine(SyncSession(user_id, device_id or API_DEVICE_ID), snapshot.lookback_days)


@app.post("/stats/daily", response_model=DailyStatsResponse)
def daily_stats(
    snapshot: StatsSnapshot,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    x_device_id: Optional[str] = Header(None),  # noqa: B008
):
    """Доля выполненных запланированных привычек за snapshot.date"""
    engine = _engine_for(user_id, snapshot, x_device_id)
    ratio = engine.daily(snapshot.habits, snapshot.date)
    track_stats_computed("daily")
    return DailyStatsResponse(
        date=snapshot.date,
        completed=ratio.completed,
        scheduled=ratio.scheduled,
        ratio=ratio.ratio,
        percentage=ratio.percentage,
    )


@app.post("/stats/streaks", response_model=StreakStatsResponse)
def streak_stats(
    snapshot: StatsSnapshot,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    x_device_id: Optional[str] = Header(None),  # noqa: B008
):
    """
    Серии на дату snapshot.date

    Returns:
        Строгая и облегченная общие серии, цепочки по каждой привычке и
        серии дней без потребления
    """
    engine = _engine_for(user_id, snapshot, x_device_id)
    track_stats_computed("streaks")
    return StreakStatsResponse(
        date=snapshot.date,
        strict_streak=engine.strict_streak(snapshot.habits, snapshot.date),
        any_completion_streak=engine.any_completion_streak(snapshot.habits, snapshot.date),
        chains=engine.chains(snapshot.habits, snapshot.date),
        cigarette_free_streak=engine.consumption_free_streak(
            snapshot.consumption, ConsumptionKind.CIGARETTES, snapshot.date
        ),
        joint_free_streak=engine.consumption_free_streak(
            snapshot.consumption, ConsumptionKind.JOINTS, snapshot.date
        ),
    )


@app.post("/stats/patterns", response_model=PatternsResponse)
def pattern_stats(
    snapshot: StatsSnapshot,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    x_device_id: Optional[str] = Header(None),  # noqa: B008
):
    """Статистика по дням недели (0 = воскресенье), с фильтром по категории"""
    engine = _engine_for(user_id, snapshot, x_device_id)
    days = engine.patterns(snapshot.habits, snapshot.consumption, snapshot.category)
    best, worst = best_and_worst_days(days)
    track_stats_computed("patterns")
    return PatternsResponse(
        days=[
            WeekdayStatsResponse(
                day_index=day.day_index,
                completed=day.completed,
                total=day.total,
                percentage=day.percentage,
                avg_cigarettes=day.avg_cigarettes,
                avg_joints=day.avg_joints,
            )
            for day in days
        ],
        best_day=best.day_index if best else None,
        worst_day=worst.day_index if worst else None,
    )


@app.post("/stats/history", response_model=HistoryResponse)
def history_stats(
    snapshot: StatsSnapshot,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    x_device_id: Optional[str] = Header(None),  # noqa: B008
):
    """История выполнения и итоги потребления за период snapshot.period"""
    engine = _engine_for(user_id, snapshot, x_device_id)
    entries = engine.history(snapshot.habits, snapshot.date, snapshot.period)
    summary = consumption_summary(snapshot.consumption, snapshot.date, snapshot.period)
    track_stats_computed("history")
    return HistoryResponse(
        period=snapshot.period,
        entries=[
            HistoryEntryResponse(
                date=entry.date,
                completed=entry.completed,
                scheduled=entry.scheduled,
                percentage=entry.percentage,
            )
            for entry in entries
        ],
        cigarettes_total=summary.cigarettes_total,
        joints_total=summary.joints_total,
    )


# === Synced Data Endpoints ===


@app.get("/synced-data", response_model=SyncedDataList)
def list_synced_data(
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
):
    """Все синхронизируемые элементы пользователя, от последних изменений к ранним"""
    items = repository.list_synced_items(db, user_id)
    return SyncedDataList(items=items, total=len(items))


@app.post("/synced-data", response_model=SyncedData, status_code=201)
def create_synced_data(
    payload: SyncedDataCreate,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
):
    """
    Создать синхронизируемый элемент

    Args:
        payload: Элемент с id, сгенерированным на устройстве
        user_id: Идентификатор текущего пользователя
        db: Сессия базы данных

    Returns:
        Сохраненный элемент
    """
    correlation_id = str(uuid.uuid4())

    validate_synced_items_quota(repository.count_synced_items(db, user_id))

    try:
        stored = repository.create_synced_item(db, user_id, SyncedData(**payload.model_dump()))
    except DuplicateItemError as exc:
        if AUDIT_LOG_ENABLED:
            log_failed_operation("CREATE", "synced_data", user_id, correlation_id, str(exc))
        raise ApiError(
            code="conflict",
            message=f"Item {payload.id} already exists",
            status=409,
            correlation_id=correlation_id,
        ) from exc

    track_synced_write("create")
    track_realtime_published("insert", publish_synced_change(ChangeType.INSERT, user_id, item=stored))

    if AUDIT_LOG_ENABLED:
        log_create(
            resource_type="synced_data",
            resource_id=stored.id,
            user_id=user_id,
            correlation_id=correlation_id,
            details={"device_id": stored.device_id, "version": stored.version},
        )

    return stored


@app.put("/synced-data/{item_id}", response_model=SyncedData)
def update_synced_data(
    item_id: str,
    payload: SyncedDataUpdate,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
):
    """
    Обновить элемент по правилу last-writer-wins

    Запись со старым last_modified игнорируется: возвращается сохраненная строка.
    """
    item = SyncedData(id=item_id, **payload.model_dump())
    stored, conflict = repository.update_synced_item(db, user_id, item)
    if stored is None:
        raise ApiError(code="not_found", message=f"Item {item_id} not found", status=404)

    if conflict is not None:
        track_conflict_ignored()
        return stored

    track_synced_write("update")
    track_realtime_published("update", publish_synced_change(ChangeType.UPDATE, user_id, item=stored))

    if AUDIT_LOG_ENABLED:
        log_update(
            resource_type="synced_data",
            resource_id=stored.id,
            user_id=user_id,
            correlation_id=str(uuid.uuid4()),
            details={"device_id": stored.device_id, "version": stored.version},
        )

    return stored


@app.delete("/synced-data/{item_id}", status_code=204)
def delete_synced_data(
    item_id: str,
    user_id: str = Depends(get_current_user_id),  # noqa: B008
    db: Session = Depends(get_db),  # noqa: B008
):
    """Удалить элемент; повторное удаление возвращает тот же ответ"""
    existed = repository.delete_synced_item(db, user_id, item_id)

    if existed:
        track_synced_write("delete")
        track_realtime_published(
            "delete", publish_synced_change(ChangeType.DELETE, user_id, item_id=item_id)
        )
        if AUDIT_LOG_ENABLED:
            log_delete(
                resource_type="synced_data",
                resource_id=item_id,
                user_id=user_id,
                correlation_id=str(uuid.uuid4()),
            )

    return Response(status_code=204)
