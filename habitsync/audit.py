"""
Модуль аудит-логирования HabitSync
Логирует изменения синхронизируемых данных и профилей с user_id и correlation_id
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from habitsync.config import AUDIT_LOG_ACTIONS, AUDIT_LOG_ENABLED, AUDIT_LOG_PATH

audit_logger = logging.getLogger("audit")
audit_logger.setLevel(logging.INFO)
audit_logger.propagate = False

# Формат логов: JSON для удобства парсинга
formatter = logging.Formatter(
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "message": %(message)s}'
)

if AUDIT_LOG_ENABLED and not audit_logger.handlers:
    _audit_dir = os.path.dirname(AUDIT_LOG_PATH)
    if _audit_dir:
        os.makedirs(_audit_dir, exist_ok=True)
    file_handler = logging.FileHandler(AUDIT_LOG_PATH)
    file_handler.setFormatter(formatter)
    audit_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    audit_logger.addHandler(console_handler)


def log_audit_event(
    action: str,
    resource_type: str,
    resource_id: Optional[str],
    user_id: Optional[str],
    correlation_id: str,
    details: Optional[dict] = None,
    status: str = "success",
) -> None:
    """
    Логирование аудит-события

    Args:
        action: Тип действия (CREATE, UPDATE, DELETE)
        resource_type: Тип ресурса (synced_data, profile, consumption_streak)
        resource_id: ID ресурса
        user_id: ID пользователя, выполнившего действие
        correlation_id: ID для корреляции запросов
        details: Дополнительные детали операции
        status: Статус операции (success, failure)
    """
    if not AUDIT_LOG_ENABLED:
        return

    if action not in AUDIT_LOG_ACTIONS:
        return

    audit_data = {
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "user_id": user_id,
        "correlation_id": correlation_id,
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if details:
        audit_data["details"] = details

    audit_logger.info(json.dumps(audit_data, ensure_ascii=False))


def log_create(
    resource_type: str,
    resource_id: str,
    user_id: str,
    correlation_id: str,
    details: Optional[dict] = None,
) -> None:
    """Логирование создания ресурса"""
    log_audit_event("CREATE", resource_type, resource_id, user_id, correlation_id, details)


def log_update(
    resource_type: str,
    resource_id: str,
    user_id: str,
    correlation_id: str,
    details: Optional[dict] = None,
) -> None:
    """Логирование обновления ресурса"""
    log_audit_event("UPDATE", resource_type, resource_id, user_id, correlation_id, details)


def log_delete(
    resource_type: str,
    resource_id: str,
    user_id: str,
    correlation_id: str,
    details: Optional[dict] = None,
) -> None:
    """Логирование удаления ресурса"""
    log_audit_event("DELETE", resource_type, resource_id, user_id, correlation_id, details)


def log_failed_operation(
    action: str,
    resource_type: str,
    user_id: Optional[str],
    correlation_id: str,
    error: str,
) -> None:
    """Логирование неудачной операции"""
    log_audit_event(
        action=action,
        resource_type=resource_type,
        resource_id=None,
        user_id=user_id,
        correlation_id=correlation_id,
        details={"error": error},
        status="failure",
    )
