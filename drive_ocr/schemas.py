"""
Схемы данных Drive OCR.

Включает:
    - Pydantic модели запросов API
    - Pydantic модели ответов (ключи в camelCase, как в командном интерфейсе)
    - Внутренние dataclass'ы пайплайна рендеринга и OCR
"""

from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Номинальные размеры страницы в дюймах, из них считаются пиксели по DPI
PAGE_WIDTH_INCHES = 8
PAGE_HEIGHT_INCHES = 12

# Формат рендеринга -> (расширения файла, формат PIL)
IMAGE_EXTENSIONS = {
    "jpeg": (".jpg", ".jpeg"),
    "png": (".png",),
}
PIL_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
}


# =============================================================================
# Pydantic модели запросов API
# =============================================================================


class PageCountRequest(BaseModel):
    """Запрос количества страниц документа."""

    document_path: str


class SplitRequest(BaseModel):
    """
    Запрос разбиения PDF на изображения страниц.

    Attributes:
        document_path: путь к PDF
        dpi: разрешение рендеринга (по умолчанию из настроек)
        expected_page_count: ожидаемое число страниц (для сверки)
    """

    document_path: str
    dpi: Optional[int] = Field(default=None, ge=72, le=300)
    expected_page_count: Optional[int] = Field(default=None, ge=1)


class ExtractPageRequest(BaseModel):
    """
    Запрос рендеринга одной страницы.

    Attributes:
        document_path: путь к PDF
        page_number: номер страницы (начинается с 1)
        dpi: разрешение рендеринга
        output_path: куда сохранить изображение
    """

    document_path: str
    page_number: int = Field(ge=1)
    dpi: Optional[int] = Field(default=None, ge=72, le=300)
    output_path: str


class CleanupRequest(BaseModel):
    path: str


class UploadRequest(BaseModel):
    local_path: str


class ProcessRequest(BaseModel):
    """
    Запрос полного OCR документа: split -> upload -> export -> delete.

    Attributes:
        document_path: путь к PDF или изображению
        dpi: разрешение рендеринга страниц PDF
        concurrency: сколько страниц одновременно отправлять в Drive
        page_separator: разделитель страниц в итоговом тексте
    """

    document_path: str
    dpi: Optional[int] = Field(default=None, ge=72, le=300)
    concurrency: Optional[int] = Field(default=None, ge=1, le=20)
    page_separator: Optional[str] = None


class BatchRequest(BaseModel):
    """Запрос OCR всех поддерживаемых файлов каталога (рекурсивно)."""

    folder_path: str
    dpi: Optional[int] = Field(default=None, ge=72, le=300)
    concurrency: Optional[int] = Field(default=None, ge=1, le=20)
    page_separator: Optional[str] = None


# =============================================================================
# Pydantic модели ответов
# =============================================================================


class CommandModel(BaseModel):
    """Базовая модель ответа: поля в snake_case, JSON в camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SplitResult(CommandModel):
    """
    Результат разбиения PDF.

    Attributes:
        image_paths: пути к изображениям страниц, отсортированы по порядку страниц
        temp_dir: временный каталог с изображениями (очищает вызывающий)
    """

    image_paths: list[str]
    temp_dir: str


class SplitProgress(CommandModel):
    """
    Прогресс разбиения PDF.

    current_page — количество завершённых страниц, а не номер
    конкретной страницы: при параллельном рендеринге порядок
    завершения произвольный.
    """

    current_page: int
    total_pages: int
    percentage: int


class PageCountResult(CommandModel):
    page_count: int


class ExtractPageResult(CommandModel):
    path: str


class SuccessResult(CommandModel):
    success: bool = True


class UploadResult(CommandModel):
    """Идентификатор файла, созданного в Google Drive."""

    file_id: str


class ExportResult(CommandModel):
    """Распознанный текст документа Google Docs."""

    text: str


class OCRProgress(CommandModel):
    """Прогресс OCR: сколько изображений из total уже обработано."""

    completed: int
    total: int
    percentage: int


class ProcessingProgress(CommandModel):
    """
    Прогресс обработки одного документа.

    Attributes:
        stage: этап (splitting, ocr, done)
        current_page: завершено единиц на этапе
        total_pages: всего единиц на этапе
        percentage: процент завершения этапа
    """

    stage: str
    current_page: int = 0
    total_pages: int = 0
    percentage: int = 0


class PageText(CommandModel):
    page_number: int
    text: str


class PageErrorInfo(CommandModel):
    page_number: int
    error: str


class DocumentResult(CommandModel):
    """
    Результат OCR документа.

    Attributes:
        file_path: исходный файл
        total_pages: количество страниц
        pages: текст по страницам (пустая строка для страниц с ошибкой)
        text: весь текст, страницы соединены разделителем
        errors: ошибки по страницам
        processing_time_ms: общее время обработки в мс
    """

    file_path: str
    total_pages: int
    pages: list[PageText] = []
    text: str = ""
    errors: list[PageErrorInfo] = []
    processing_time_ms: int = 0


class FileError(CommandModel):
    """Файл из пакета, который не удалось обработать."""

    file_path: str
    error: str


# =============================================================================
# Внутренние dataclass'ы для пайплайна
# =============================================================================


@dataclass(frozen=True)
class RenderConfig:
    """
    Параметры рендеринга страницы.

    Ширина и высота линейно зависят от DPI: страница масштабируется
    до ширины width, высота ограничивается max_height с сохранением
    пропорций. Поворот не применяется.

    Attributes:
        dpi: разрешение (точек на дюйм)
        image_format: формат файла (jpeg, png)
    """

    dpi: int
    image_format: str = "jpeg"

    @property
    def width(self) -> int:
        return self.dpi * PAGE_WIDTH_INCHES

    @property
    def max_height(self) -> int:
        return self.dpi * PAGE_HEIGHT_INCHES

    @property
    def extension(self) -> str:
        return IMAGE_EXTENSIONS[self.image_format][0]

    @property
    def extensions(self) -> tuple[str, ...]:
        return IMAGE_EXTENSIONS[self.image_format]

    @property
    def pil_format(self) -> str:
        return PIL_FORMATS[self.image_format]


@dataclass
class PageError:
    """
    Ошибка OCR одной страницы.

    Attributes:
        index: индекс изображения во входном списке (с 0)
        error: текст ошибки
    """

    index: int
    error: str


@dataclass
class OCRBatchResult:
    """
    Результат OCR набора изображений.

    Attributes:
        texts: текст для каждого изображения в исходном порядке
        errors: ошибки по страницам
    """

    texts: list[str] = field(default_factory=list)
    errors: list[PageError] = field(default_factory=list)
