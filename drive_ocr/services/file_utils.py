"""
Файловые утилиты жизненного цикла задания.

Создание и очистка временных каталогов, запись бинарных файлов,
отбор поддерживаемых файлов для пакетной обработки.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from drive_ocr.errors import DriveOCRError, FileWriteError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = [".pdf", ".jpg", ".jpeg", ".png"]


def create_temp_dir(prefix: str = "drive-ocr-") -> str:
    """
    Создаёт новый временный каталог.

    Каталог не удаляется автоматически — его очищает вызывающий
    через cleanup_temp_dir().

    Returns:
        str: путь к каталогу
    """
    try:
        path = tempfile.mkdtemp(prefix=prefix)
    except OSError as e:
        raise DriveOCRError(f"Не удалось создать временный каталог: {e}") from e

    logger.debug(f"Создан временный каталог: {path}")
    return path


def cleanup_temp_dir(path: Union[str, Path]) -> None:
    """
    Рекурсивно удаляет каталог.

    Отсутствующий путь — не ошибка, путь к файлу — ошибка.

    Args:
        path: путь к каталогу

    Raises:
        DriveOCRError: если путь не является каталогом или удалить
            каталог не удалось
    """
    path = Path(path)
    if not path.exists():
        return
    if not path.is_dir():
        raise DriveOCRError(f"Не является каталогом: {path}")

    try:
        shutil.rmtree(path)
    except OSError as e:
        raise DriveOCRError(f"Не удалось удалить временный каталог: {e}") from e

    logger.debug(f"Удалён временный каталог: {path}")


def write_binary_file(path: Union[str, Path], data: bytes) -> None:
    """
    Записывает байты в файл, перезаписывая существующий.

    Raises:
        FileWriteError: при ошибке записи
    """
    try:
        Path(path).write_bytes(data)
    except OSError as e:
        raise FileWriteError(f"Не удалось записать файл: {e}") from e


def get_file_extension(filename: str) -> Optional[str]:
    """
    Возвращает расширение файла в нижнем регистре.

    Без расширения, скрытые файлы (.hidden) и имя с точкой
    в конце дают None.

    Args:
        filename: имя файла

    Returns:
        Optional[str]: расширение с точкой (".pdf") или None
    """
    name = Path(filename).name
    last_dot = name.rfind(".")
    if last_dot <= 0 or last_dot == len(name) - 1:
        return None
    return name[last_dot:].lower()


def is_supported_file(filename: str) -> bool:
    return get_file_extension(filename) in SUPPORTED_EXTENSIONS


def collect_files(folder: Union[str, Path]) -> list[str]:
    """
    Рекурсивно собирает поддерживаемые файлы каталога.

    Args:
        folder: корневой каталог

    Returns:
        list[str]: отсортированные пути к файлам
    """
    files = [
        str(path)
        for path in Path(folder).rglob("*")
        if path.is_file() and is_supported_file(path.name)
    ]
    return sorted(files)
