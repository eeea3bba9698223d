"""Явный дескриптор сессии: идентификатор пользователя и устройства"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SyncSession:
    """
    Аутентифицированная сессия на конкретном устройстве

    Передается в конструкторы движка серий и синхронизатора вместо
    глобального контекста приложения.
    """

    user_id: str
    device_id: str

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("user_id не может быть пустым")
        if not self.device_id:
            raise ValueError("device_id не может быть пустым")
