"""
Операции над таблицей synced_data (реляционное хранилище)

Все операции ограничены строками текущего пользователя. Обновление следует
правилу last-writer-wins: запись с меньшим last_modified, чем у сохраненной
строки, игнорируется.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from habitsync.errors import ConflictIgnored, DuplicateItemError
from habitsync.models import SyncedData, SyncedDataRecord

logger = logging.getLogger(__name__)


def _to_item(row: SyncedDataRecord) -> SyncedData:
    return SyncedData(
        id=row.id,
        content=row.content,
        device_id=row.device_id,
        last_modified=row.last_modified,
        version=row.version or 1,
    )


def _find_row(db: Session, user_id: str, item_id: str) -> Optional[SyncedDataRecord]:
    return (
        db.query(SyncedDataRecord)
        .filter(SyncedDataRecord.id == item_id, SyncedDataRecord.user_id == user_id)
        .first()
    )


def list_synced_items(db: Session, user_id: str) -> list[SyncedData]:
    """Все элементы пользователя, от последних изменений к ранним"""
    rows = (
        db.query(SyncedDataRecord)
        .filter(SyncedDataRecord.user_id == user_id)
        .order_by(SyncedDataRecord.last_modified.desc())
        .all()
    )
    return [_to_item(row) for row in rows]


def count_synced_items(db: Session, user_id: str) -> int:
    return db.query(SyncedDataRecord).filter(SyncedDataRecord.user_id == user_id).count()


def create_synced_item(db: Session, user_id: str, item: SyncedData) -> SyncedData:
    """
    Создать элемент

    Raises:
        DuplicateItemError: Если id уже занят (в том числе другим пользователем)
    """
    if db.query(SyncedDataRecord).filter(SyncedDataRecord.id == item.id).first():
        raise DuplicateItemError(item.id)

    row = SyncedDataRecord(
        id=item.id,
        user_id=user_id,
        content=item.content,
        device_id=item.device_id,
        last_modified=item.last_modified,
        version=item.version,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return _to_item(row)


def update_synced_item(
    db: Session, user_id: str, item: SyncedData
) -> tuple[Optional[SyncedData], Optional[ConflictIgnored]]:
    """
    Обновить элемент по правилу last-writer-wins

    Returns:
        (сохраненное состояние, ConflictIgnored если запись устарела);
        (None, None) если элемента нет
    """
    row = _find_row(db, user_id, item.id)
    if row is None:
        return None, None

    if item.last_modified < row.last_modified:
        conflict = ConflictIgnored(
            item_id=item.id,
            incoming_last_modified=item.last_modified,
            current_last_modified=row.last_modified,
            source="store",
        )
        logger.info("%s", conflict)
        return _to_item(row), conflict

    row.content = item.content
    row.device_id = item.device_id
    row.last_modified = item.last_modified
    row.version = max(item.version, row.version or 1)
    db.commit()
    db.refresh(row)
    return _to_item(row), None


def delete_synced_item(db: Session, user_id: str, item_id: str) -> bool:
    """Удалить элемент; повторное удаление не является ошибкой. Возвращает, существовал ли элемент"""
    row = _find_row(db, user_id, item_id)
    if row is None:
        return False
    db.delete(row)
    db.commit()
    return True
