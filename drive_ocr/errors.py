"""
Иерархия ошибок Drive OCR.

Все ошибки наследуются от DriveOCRError и на границе HTTP API
превращаются в человекочитаемое сообщение (см. main.py).

Ошибки рендеринга пересекают границу процессов (ProcessPoolExecutor),
поэтому классы с дополнительными полями определяют __reduce__.
"""

from pathlib import Path
from typing import Optional, Sequence, Union


class DriveOCRError(Exception):
    """Базовая ошибка Drive OCR."""

    # Машиночитаемый код для ответа API
    code = "drive_ocr_error"


class LibraryNotFound(DriveOCRError):
    """
    Рендерер PDF (Poppler) не найден ни в одном из проверенных путей.

    Attributes:
        library_name: имя искомого исполняемого файла
        searched: все проверенные пути в порядке проверки
    """

    code = "library_not_found"

    def __init__(self, library_name: str, searched: Sequence[Union[str, Path]]):
        self.library_name = library_name
        self.searched = [str(p) for p in searched]
        super().__init__(
            f"Библиотека рендеринга '{library_name}' не найдена. "
            f"Проверенные пути: {self.searched}"
        )

    def __reduce__(self):
        return (self.__class__, (self.library_name, self.searched))


class RenderError(DriveOCRError):
    """
    Ошибка открытия или рендеринга документа.

    Attributes:
        page_number: номер страницы (с 1), если ошибка относится к странице
        temp_dir: временный каталог прерванного split-задания
            (уже готовые страницы остаются в нём)
    """

    code = "render_error"

    def __init__(self, message: str, page_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.page_number = page_number
        self.temp_dir: Optional[str] = None

    def __reduce__(self):
        return (self.__class__, (self.message, self.page_number))


class DocumentLoadError(RenderError):
    """Документ не существует или не является валидным PDF."""

    code = "document_load_error"


class PageRenderError(RenderError):
    """Не удалось отрендерить или сохранить страницу."""

    code = "page_render_error"


class FileNotFound(DriveOCRError):
    """Локальный файл для загрузки не существует."""

    code = "file_not_found"


class FileWriteError(DriveOCRError):
    """Не удалось записать файл на диск."""

    code = "file_write_error"


class RemoteError(DriveOCRError):
    """
    Ошибка удалённой операции Google Drive.

    Текст ошибки всегда содержит числовой статус (если он есть),
    по нему retry-обёртка решает, повторять ли запрос.

    Attributes:
        operation: название операции (upload / export / delete)
        status_code: HTTP статус или None для транспортных ошибок
        body: тело ответа
    """

    code = "remote_error"

    def __init__(
        self,
        message: str,
        operation: str = "",
        status_code: Optional[int] = None,
        body: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status_code = status_code
        self.body = body

    def __reduce__(self):
        return (
            self.__class__,
            (self.message, self.operation, self.status_code, self.body),
        )


class RemoteTransient(RemoteError):
    """Временная ошибка (429, 5xx, таймаут) — повторяется с backoff."""

    code = "remote_transient"


class RemoteFatal(RemoteError):
    """Любой другой неуспешный ответ — не повторяется."""

    code = "remote_fatal"


class UnsupportedFileType(DriveOCRError):
    """Расширение файла не входит в .pdf, .jpg, .jpeg, .png."""

    code = "unsupported_file_type"
