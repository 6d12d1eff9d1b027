"""
Повтор удалённых операций с экспоненциальным backoff и jitter.

Ошибка считается временной, если её текст содержит статус 429/5xx
или слово timeout. Остальные ошибки постоянные и пробрасываются сразу.

Задержка перед повтором: min(base ** attempt, cap) + jitter,
где jitter равномерно распределён в [0, 1) секунд.

Повтор просто вызывает операцию заново. Для неидемпотентной загрузки
это значит: если файл создан, но ответ потерялся, повтор создаст
дубликат. Дубликаты не отслеживаются, их удаление — забота вызывающего.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from drive_ocr.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Маркеры временных ошибок в тексте: rate limit и ошибки сервера
TRANSIENT_MARKERS = ("429", "500", "502", "503", "504")
TIMEOUT_MARKER = "timeout"


def is_transient_error(description: str) -> bool:
    """
    Проверяет, стоит ли повторять операцию после этой ошибки.

    Args:
        description: текст ошибки

    Returns:
        bool: True для 429, 500, 502, 503, 504 и таймаутов
    """
    if any(marker in description for marker in TRANSIENT_MARKERS):
        return True
    return TIMEOUT_MARKER in description.lower()


@dataclass(frozen=True)
class RetryPolicy:
    """
    Параметры повторов.

    Attributes:
        max_retries: максимум повторов (без учёта первой попытки)
        backoff_base: основание экспоненты
        backoff_cap: максимальная задержка без jitter, секунды
    """

    max_retries: int = 10
    backoff_base: float = 1.5
    backoff_cap: float = 15.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            backoff_base=settings.retry_backoff_base,
            backoff_cap=settings.retry_backoff_cap,
        )

    def compute_delay(self, attempt: int, jitter: float) -> float:
        """
        Задержка перед повтором.

        Args:
            attempt: число уже случившихся неудач (с 0)
            jitter: случайная добавка в [0, 1)

        Returns:
            float: задержка в секундах
        """
        return min(self.backoff_base ** attempt, self.backoff_cap) + jitter


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    jitter: Callable[[], float] = random.random,
) -> T:
    """
    Выполняет операцию, повторяя её при временных ошибках.

    Args:
        operation: фабрика корутины без аргументов, вызывается на каждую попытку
        policy: параметры повторов (по умолчанию из настроек)
        operation_name: название для логов
        sleep: функция ожидания (подменяется в тестах)
        jitter: источник случайной добавки в [0, 1)

    Returns:
        T: результат первой успешной попытки

    Raises:
        Exception: последняя ошибка — постоянная или после исчерпания повторов
    """
    policy = policy or RetryPolicy.from_settings()
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            description = str(e)

            if not is_transient_error(description):
                logger.error(f"{operation_name}: постоянная ошибка, без повтора: {description}")
                raise

            if attempt >= policy.max_retries:
                logger.error(
                    f"{operation_name}: повторы исчерпаны ({policy.max_retries}): {description}"
                )
                raise

            delay = policy.compute_delay(attempt, jitter())
            logger.warning(
                f"{operation_name}: временная ошибка, попытка {attempt + 1}/{policy.max_retries}, "
                f"повтор через {delay:.2f}s: {description}"
            )
            await sleep(delay)
            attempt += 1
