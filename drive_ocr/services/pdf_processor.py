"""
Процессор разбиения PDF на изображения.

Рендерит каждую страницу в отдельный файл во временном каталоге.
Страницы рендерятся параллельно в пуле воркеров (по умолчанию
ProcessPoolExecutor на всех ядрах CPU).

Poppler не рассчитан на конкурентное использование одного экземпляра,
поэтому каждая задача получает собственную копию привязки и сама
открывает документ. Это стоит памяти, но воркеры ничего не разделяют.

Имена файлов page-0001.jpg ... page-9999.jpg: сортировка путей
как строк совпадает с порядком страниц.
"""

import copy
import logging
import math
import os
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Optional, Union

from drive_ocr.config import settings
from drive_ocr.errors import PageRenderError, RenderError
from drive_ocr.schemas import RenderConfig, SplitProgress, SplitResult
from drive_ocr.services.file_utils import create_temp_dir
from drive_ocr.services.renderer import RendererBinding

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SplitProgress], None]


def page_filename(page_number: int, extension: str) -> str:
    """
    Имя файла страницы: page-0007.jpg.

    Args:
        page_number: номер страницы (начинается с 1)
        extension: расширение с точкой

    Returns:
        str: имя файла
    """
    return f"page-{page_number:04d}{extension}"


def progress_event(current: int, total: int) -> SplitProgress:
    """
    Формирует событие прогресса.

    Процент округляется к ближайшему целому (0.5 — вверх).

    Args:
        current: количество завершённых страниц
        total: всего страниц

    Returns:
        SplitProgress: событие прогресса
    """
    percentage = math.floor(current / total * 100 + 0.5) if total else 0
    return SplitProgress(
        current_page=current,
        total_pages=total,
        percentage=percentage,
    )


def render_page_task(
    args: tuple[RendererBinding, str, int, RenderConfig, str],
) -> str:
    """
    Рендерит одну страницу и сохраняет её в файл.

    Выполняется в воркере пула. Открывает собственный дескриптор
    документа через собственную копию привязки.

    Args:
        args: кортеж (привязка, путь к PDF, индекс страницы с 0,
            параметры рендеринга, каталог для файла)

    Returns:
        str: путь к сохранённому изображению

    Raises:
        RenderError: ошибка открытия, рендеринга или сохранения
    """
    binding, pdf_path, page_index, render_config, output_dir = args
    page_number = page_index + 1

    worker_binding = copy.copy(binding)
    document = worker_binding.open_document(pdf_path)
    image = document.render_page(page_index, render_config)

    output_path = Path(output_dir) / page_filename(page_number, render_config.extension)
    try:
        image.save(output_path, format=render_config.pil_format)
    except (OSError, ValueError) as e:
        raise PageRenderError(
            f"Не удалось сохранить страницу {page_number}: {e}",
            page_number=page_number,
        ) from e

    return str(output_path)


def get_page_count(
    document_path: str,
    binding: Optional[RendererBinding] = None,
) -> int:
    """
    Получает количество страниц в PDF без рендеринга.

    Args:
        document_path: путь к PDF
        binding: привязка к рендереру (по умолчанию ищется заново)

    Returns:
        int: количество страниц

    Raises:
        LibraryNotFound: рендерер не найден
        DocumentLoadError: файл не существует или не является PDF
    """
    binding = binding or RendererBinding.load()
    return binding.open_document(document_path).page_count


def _default_executor_cls() -> type[Executor]:
    if settings.render_executor == "thread":
        return ThreadPoolExecutor
    return ProcessPoolExecutor


def split_document(
    document_path: str,
    dpi: int,
    expected_page_count: Optional[int] = None,
    *,
    on_progress: Optional[ProgressCallback] = None,
    max_workers: Optional[int] = None,
    executor_cls: Optional[type[Executor]] = None,
    binding: Optional[RendererBinding] = None,
    image_format: Optional[str] = None,
) -> SplitResult:
    """
    Разбивает PDF на отдельные изображения страниц.

    Алгоритм:
        1. Поиск рендерера (до создания временного каталога)
        2. Открытие документа — авторитетное количество страниц
        3. Создание временного каталога
        4. Рендеринг всех страниц в пуле воркеров
        5. Сортировка путей по строке = порядок страниц

    Все запланированные задачи выполняются до конца, даже если
    одна из них упала: ошибка видна только при сборе результатов.
    Готовые страницы при ошибке остаются на диске, путь к каталогу
    передаётся в ошибке (атрибут temp_dir).

    Args:
        document_path: путь к PDF
        dpi: разрешение рендеринга
        expected_page_count: ожидаемое количество страниц
            (при расхождении побеждает количество из документа)
        on_progress: колбэк прогресса, вызывается после каждой страницы
        max_workers: размер пула (по умолчанию из настроек или число CPU)
        executor_cls: класс пула (по умолчанию из настроек)
        binding: привязка к рендереру (по умолчанию ищется заново)
        image_format: формат изображений (по умолчанию из настроек)

    Returns:
        SplitResult: пути к изображениям и временный каталог

    Raises:
        LibraryNotFound: рендерер не найден
        DocumentLoadError: документ не открывается
        PageRenderError: ошибка рендеринга хотя бы одной страницы
    """
    binding = binding or RendererBinding.load()
    document = binding.open_document(document_path)
    total_pages = document.page_count

    if expected_page_count is not None and expected_page_count != total_pages:
        logger.warning(
            f"Ожидалось {expected_page_count} страниц, в документе {total_pages}: "
            f"используется количество из документа"
        )

    render_config = RenderConfig(
        dpi=dpi,
        image_format=image_format or settings.render_format,
    )
    workers = max_workers or settings.render_workers or os.cpu_count() or 4
    executor_cls = executor_cls or _default_executor_cls()

    temp_dir = create_temp_dir()

    logger.info(
        f"Разбиение PDF: {document_path}, страниц={total_pages}, "
        f"dpi={dpi}, воркеров={workers}, каталог={temp_dir}"
    )

    tasks = [
        (binding, document_path, page_index, render_config, temp_dir)
        for page_index in range(total_pages)
    ]

    image_paths: list[str] = []
    first_error: Optional[RenderError] = None
    completed = 0

    with executor_cls(max_workers=workers) as executor:
        futures = {
            executor.submit(render_page_task, task): task[2] + 1 for task in tasks
        }

        for future in as_completed(futures):
            try:
                image_path = future.result()
            except RenderError as e:
                logger.error(f"Ошибка рендеринга: {e}")
                if first_error is None:
                    first_error = e
                continue
            except Exception as e:
                # Падение воркера (BrokenProcessPool, MemoryError и т.п.)
                page_number = futures[future]
                logger.exception(f"Сбой воркера на странице {page_number}: {e!r}")
                if first_error is None:
                    first_error = PageRenderError(
                        f"Ошибка рендеринга страницы {page_number}: {e!r}",
                        page_number=page_number,
                    )
                continue

            image_paths.append(image_path)
            completed += 1

            # Порядок событий не совпадает с порядком страниц
            if on_progress is not None:
                on_progress(progress_event(completed, total_pages))

    if first_error is not None:
        first_error.temp_dir = temp_dir
        raise first_error

    image_paths.sort()

    logger.info(f"Разбиение завершено: {len(image_paths)} страниц")
    return SplitResult(image_paths=image_paths, temp_dir=temp_dir)


def normalize_output_path(output_path: str, render_config: RenderConfig) -> str:
    """
    Добавляет расширение формата, если путь заканчивается другим.

    Args:
        output_path: желаемый путь
        render_config: параметры рендеринга

    Returns:
        str: путь с расширением формата
    """
    if output_path.lower().endswith(render_config.extensions):
        return output_path
    return f"{output_path}{render_config.extension}"


def extract_page(
    document_path: str,
    page_number: int,
    dpi: int,
    output_path: Union[str, Path],
    *,
    binding: Optional[RendererBinding] = None,
    image_format: Optional[str] = None,
) -> str:
    """
    Рендерит одну страницу PDF в изображение.

    Без пула и без прогресса.

    Args:
        document_path: путь к PDF
        page_number: номер страницы (начинается с 1)
        dpi: разрешение рендеринга
        output_path: путь для изображения (расширение добавится при отсутствии)
        binding: привязка к рендереру
        image_format: формат изображения

    Returns:
        str: итоговый путь к изображению

    Raises:
        LibraryNotFound: рендерер не найден
        DocumentLoadError: документ не открывается
        PageRenderError: номер вне [1, количество страниц] или ошибка рендеринга
    """
    binding = binding or RendererBinding.load()
    document = binding.open_document(document_path)

    if not 1 <= page_number <= document.page_count:
        raise PageRenderError(
            f"Страница {page_number} вне диапазона [1, {document.page_count}]",
            page_number=page_number,
        )

    render_config = RenderConfig(
        dpi=dpi,
        image_format=image_format or settings.render_format,
    )
    image = document.render_page(page_number - 1, render_config)

    final_path = normalize_output_path(str(output_path), render_config)
    try:
        image.save(final_path, format=render_config.pil_format)
    except (OSError, ValueError) as e:
        raise PageRenderError(
            f"Не удалось сохранить страницу {page_number}: {e}",
            page_number=page_number,
        ) from e

    logger.info(f"Страница {page_number} сохранена: {final_path}")
    return final_path
