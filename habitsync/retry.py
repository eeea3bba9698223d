"""Повтор удаленных вызовов с экспоненциальной задержкой и jitter"""

import asyncio
import functools
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from habitsync.errors import NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Задержка перед повтором: full jitter в пределах min(max_delay, base * 2^attempt)"""
    return random.uniform(0, min(max_delay, base_delay * (2**attempt)))


async def call_with_backoff(
    operation: Callable[[], Awaitable[T]],
    retries: int = 0,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_on: tuple = (NetworkError,),
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    Выполнить корутину с повторами

    Args:
        operation: Фабрика корутины (вызывается заново на каждую попытку)
        retries: Число повторов после первой неудачи (0 - без повторов)
        base_delay: Базовая задержка в секундах
        max_delay: Верхняя граница задержки
        retry_on: Типы исключений, при которых выполняется повтор
        sleep: Функция ожидания (подменяется в тестах)

    Returns:
        Результат операции

    Raises:
        Последнее исключение, если все попытки исчерпаны
    """
    sleep = sleep or asyncio.sleep
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= retries:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            attempt += 1
            logger.warning("Попытка %d не удалась: %s; повтор через %.2f с", attempt, exc, delay)
            await sleep(delay)


def retry_on_network_error(retries: int = 3, base_delay: float = 0.5, max_delay: float = 8.0):
    """Декоратор для async-функций: повтор при NetworkError"""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await call_with_backoff(
                lambda: func(*args, **kwargs),
                retries=retries,
                base_delay=base_delay,
                max_delay=max_delay,
            )

        return wrapper

    return decorator
