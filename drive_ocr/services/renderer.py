"""
Привязка к нативному рендереру PDF (Poppler: pdftoppm/pdfinfo).

Рендеринг выполняется через pdf2image, которому нужен каталог
с утилитами Poppler. Модуль:
    - находит этот каталог, перебирая кандидатов по порядку
    - открывает документ (pdfinfo) и рендерит страницы (pdftoppm)

Дескриптор документа принадлежит одному воркеру и никогда не
разделяется между потоками/процессами: каждый воркер открывает
документ заново.
"""

import logging
import shutil
import sys
from pathlib import Path
from typing import Optional, Sequence, Union

from pdf2image import convert_from_path, pdfinfo_from_path
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)
from PIL import Image

from drive_ocr.config import settings
from drive_ocr.errors import DocumentLoadError, LibraryNotFound, PageRenderError
from drive_ocr.schemas import RenderConfig

logger = logging.getLogger(__name__)

# Каталог ресурсов внутри пакета (сюда кладётся Poppler при сборке)
PACKAGE_RESOURCES_DIR = Path(__file__).resolve().parents[1] / "resources"

# sys.platform -> имя исполняемого файла Poppler
RENDERER_NAMES = {
    "win32": "pdftoppm.exe",
    "darwin": "pdftoppm",
    "linux": "pdftoppm",
}

_POPPLER_ERRORS = (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
    OSError,
)


def renderer_executable_name(platform: Optional[str] = None) -> str:
    """
    Имя исполняемого файла рендерера для ОС.

    Args:
        platform: значение sys.platform (по умолчанию текущая ОС)

    Returns:
        str: pdftoppm.exe / pdftoppm
    """
    platform = platform or sys.platform
    return RENDERER_NAMES.get(platform, RENDERER_NAMES["linux"])


def renderer_search_dirs(platform: Optional[str] = None) -> list[Path]:
    """
    Каталоги для поиска рендерера в порядке приоритета.

    Порядок:
        1. DRIVE_OCR_RENDERER_DIR (если задан)
        2. Каталог ресурсов пакета
        3. resources/ относительно рабочего каталога
        4. Каталог запущенного интерпретатора
        5. На macOS — соседний ../Resources (структура .app бандла)

    Args:
        platform: значение sys.platform (по умолчанию текущая ОС)

    Returns:
        list[Path]: каталоги-кандидаты
    """
    platform = platform or sys.platform

    dirs = []
    if settings.renderer_dir:
        dirs.append(Path(settings.renderer_dir))

    dirs.append(PACKAGE_RESOURCES_DIR)
    dirs.append(Path("resources"))

    exe_dir = Path(sys.executable).parent
    dirs.append(exe_dir)
    if platform == "darwin":
        dirs.append(exe_dir / ".." / "Resources")

    return dirs


def find_renderer(
    search_dirs: Optional[Sequence[Union[str, Path]]] = None,
    *,
    platform: Optional[str] = None,
    use_system_path: bool = True,
) -> Path:
    """
    Находит каталог с исполняемым файлом рендерера.

    Возвращает первый каталог, в котором файл существует. Последним
    кандидатом проверяется системный PATH.

    Args:
        search_dirs: каталоги для проверки (по умолчанию renderer_search_dirs())
        platform: значение sys.platform
        use_system_path: проверять ли PATH после всех каталогов

    Returns:
        Path: каталог с рендерером

    Raises:
        LibraryNotFound: если рендерер не найден, со списком проверенных путей
    """
    name = renderer_executable_name(platform)
    if search_dirs is None:
        search_dirs = renderer_search_dirs(platform)

    searched = []
    for directory in search_dirs:
        candidate = Path(directory) / name
        searched.append(candidate)
        if candidate.exists():
            logger.debug(f"Рендерер найден: {candidate}")
            return Path(directory)

    if use_system_path:
        found = shutil.which(name)
        searched.append(Path("$PATH") / name)
        if found:
            logger.debug(f"Рендерер найден в PATH: {found}")
            return Path(found).parent

    raise LibraryNotFound(name, searched)


class DocumentHandle:
    """
    Открытый PDF документ.

    Принадлежит одному воркеру. Хранит путь, количество страниц
    и каталог рендерера, которым документ был открыт.

    Attributes:
        path: путь к PDF
        page_count: количество страниц
        renderer_dir: каталог Poppler (None — системный PATH)
    """

    def __init__(self, path: str, page_count: int, renderer_dir: Optional[str]):
        self.path = path
        self.page_count = page_count
        self.renderer_dir = renderer_dir

    def render_page(self, index: int, render_config: RenderConfig) -> Image.Image:
        """
        Рендерит страницу в изображение.

        Страница масштабируется до ширины render_config.width,
        затем высота ограничивается render_config.max_height
        с сохранением пропорций.

        Args:
            index: индекс страницы (начинается с 0)
            render_config: параметры рендеринга

        Returns:
            Image.Image: изображение страницы в RGB

        Raises:
            PageRenderError: индекс вне диапазона или ошибка Poppler
        """
        page_number = index + 1
        if not 0 <= index < self.page_count:
            raise PageRenderError(
                f"Страница {page_number} вне диапазона [1, {self.page_count}]",
                page_number=page_number,
            )

        try:
            images = convert_from_path(
                self.path,
                dpi=render_config.dpi,
                first_page=page_number,
                last_page=page_number,
                size=(render_config.width, None),
                poppler_path=self.renderer_dir,
            )
        except _POPPLER_ERRORS as e:
            raise PageRenderError(
                f"Не удалось отрендерить страницу {page_number}: {e}",
                page_number=page_number,
            ) from e

        if not images:
            raise PageRenderError(
                f"Не удалось отрендерить страницу {page_number}: пустой результат",
                page_number=page_number,
            )

        image = images[0].convert("RGB")
        if image.height > render_config.max_height:
            image.thumbnail((render_config.width, render_config.max_height))

        return image


class RendererBinding:
    """
    Загруженная привязка к рендереру.

    Лёгкий объект (только путь к каталогу Poppler), поэтому
    каждый воркер получает собственную копию.

    Attributes:
        renderer_dir: каталог Poppler (None — системный PATH)
    """

    def __init__(self, renderer_dir: Optional[str] = None):
        self.renderer_dir = renderer_dir

    @classmethod
    def load(
        cls,
        search_dirs: Optional[Sequence[Union[str, Path]]] = None,
    ) -> "RendererBinding":
        """
        Находит рендерер и создаёт привязку.

        Raises:
            LibraryNotFound: рендерер не найден
        """
        return cls(str(find_renderer(search_dirs)))

    def open_document(self, path: Union[str, Path]) -> DocumentHandle:
        """
        Открывает PDF документ.

        Args:
            path: путь к PDF

        Returns:
            DocumentHandle: дескриптор документа

        Raises:
            DocumentLoadError: файл не существует или не является PDF
        """
        path = str(path)
        if not Path(path).is_file():
            raise DocumentLoadError(f"Не удалось открыть PDF: файл не найден: {path}")

        try:
            info = pdfinfo_from_path(path, poppler_path=self.renderer_dir)
        except _POPPLER_ERRORS as e:
            raise DocumentLoadError(f"Не удалось открыть PDF {path}: {e}") from e

        page_count = int(info.get("Pages", 0))
        if page_count < 1:
            raise DocumentLoadError(f"PDF не содержит страниц: {path}")

        return DocumentHandle(path, page_count, self.renderer_dir)
