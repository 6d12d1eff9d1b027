"""
Процессор OCR — координация полного пайплайна документа.

Содержит:
    - Очистку текста, выгруженного из Google Docs
    - OCR набора изображений через Drive с ограничением параллелизма
    - Главную функцию process_document:
      split -> upload -> export -> delete -> сборка текста

Параллелизация:
    - Split: пул воркеров (см. pdf_processor), запускается в отдельном потоке
    - OCR: asyncio, не больше concurrency одновременных страниц
"""

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Callable, Optional, Union

from drive_ocr.config import settings
from drive_ocr.errors import DriveOCRError, FileNotFound, UnsupportedFileType
from drive_ocr.schemas import (
    DocumentResult,
    FileError,
    OCRBatchResult,
    OCRProgress,
    PageError,
    PageErrorInfo,
    PageText,
    ProcessingProgress,
    SplitProgress,
)
from drive_ocr.services.drive_client import DriveClient
from drive_ocr.services.file_utils import cleanup_temp_dir, get_file_extension, is_supported_file
from drive_ocr.services.pdf_processor import split_document

logger = logging.getLogger(__name__)

# BOM (необязательный) + подчёркивания: артефакты экспорта Google Docs
_DRIVE_ARTIFACTS = re.compile("\ufeff?_+")
_BLANK_LINES = re.compile(r"\n{3,}")


def clean_exported_text(text: str) -> str:
    """
    Убирает артефакты OCR Google Drive из текста.

    Алгоритм:
        - BOM с подчёркиваниями (разделители Google) удаляются
        - 3+ переноса строки схлопываются в пустую строку
        - Пробелы по краям обрезаются

    Args:
        text: текст экспорта

    Returns:
        str: очищенный текст
    """
    text = _DRIVE_ARTIFACTS.sub("", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()


async def _ocr_single_image(client: DriveClient, image_path: str) -> str:
    """
    OCR одного изображения: upload -> export -> delete.

    Удаление выполняется всегда, даже если экспорт упал, чтобы
    не оставлять документы в Drive. Ошибка удаления только логируется.
    """
    upload = await client.upload(image_path)

    try:
        export = await client.export_text(upload.file_id)
    finally:
        try:
            await client.delete(upload.file_id)
        except DriveOCRError as e:
            logger.warning(f"Не удалось удалить документ {upload.file_id} из Drive: {e}")

    return clean_exported_text(export.text)


async def extract_texts(
    image_paths: list[str],
    access_token: str,
    *,
    concurrency: Optional[int] = None,
    on_progress: Optional[Callable[[OCRProgress], None]] = None,
    client: Optional[DriveClient] = None,
) -> OCRBatchResult:
    """
    Распознаёт текст набора изображений через Google Drive.

    Страница с ошибкой получает пустой текст и запись в errors,
    остальные страницы продолжают обрабатываться.

    Args:
        image_paths: пути к изображениям в порядке страниц
        access_token: OAuth токен
        concurrency: максимум одновременно обрабатываемых изображений
        on_progress: колбэк прогресса после каждого изображения
        client: готовый клиент Drive (по умолчанию создаётся новый)

    Returns:
        OCRBatchResult: тексты в исходном порядке и ошибки
    """
    concurrency = concurrency or settings.ocr_concurrency
    total = len(image_paths)
    texts = [""] * total
    errors: list[PageError] = []
    completed = 0

    semaphore = asyncio.Semaphore(concurrency)

    async def process(index: int, image_path: str, drive: DriveClient) -> None:
        nonlocal completed

        async with semaphore:
            try:
                texts[index] = await _ocr_single_image(drive, image_path)
            except DriveOCRError as e:
                logger.warning(f"Ошибка OCR страницы {index + 1}: {e}")
                errors.append(PageError(index=index, error=str(e)))

        completed += 1
        if on_progress is not None:
            on_progress(
                OCRProgress(
                    completed=completed,
                    total=total,
                    percentage=round(completed / total * 100),
                )
            )

    async def run(drive: DriveClient) -> None:
        await asyncio.gather(
            *(process(index, path, drive) for index, path in enumerate(image_paths))
        )

    if client is not None:
        await run(client)
    else:
        async with DriveClient(access_token) as drive:
            await run(drive)

    if errors:
        logger.warning(f"OCR завершён с ошибками: {len(errors)} из {total} страниц")

    errors.sort(key=lambda e: e.index)
    return OCRBatchResult(texts=texts, errors=errors)


async def process_document(
    document_path: str,
    access_token: str,
    *,
    dpi: Optional[int] = None,
    concurrency: Optional[int] = None,
    page_separator: Optional[str] = None,
    on_progress: Optional[Callable[[ProcessingProgress], None]] = None,
    client: Optional[DriveClient] = None,
) -> DocumentResult:
    """
    Основная функция обработки документа.

    Координирует весь пайплайн:
        1. Split: PDF -> images (изображения обрабатываются как есть)
        2. OCR: upload -> export -> delete для каждой страницы
        3. Очистка временного каталога
        4. Сборка текста через разделитель страниц

    Args:
        document_path: путь к PDF или изображению
        access_token: OAuth токен
        dpi: разрешение рендеринга
        concurrency: параллелизм OCR
        page_separator: разделитель страниц в итоговом тексте
        on_progress: колбэк прогресса по этапам
        client: готовый клиент Drive

    Returns:
        DocumentResult: текст по страницам и общий текст

    Raises:
        UnsupportedFileType: расширение не поддерживается
        FileNotFound: файл не существует
        RenderError: ошибка разбиения PDF
    """
    total_start = time.perf_counter()

    dpi = dpi or settings.render_dpi
    if page_separator is None:
        page_separator = settings.page_separator

    def report(stage: str, current: int = 0, total: int = 0, percentage: int = 0) -> None:
        if on_progress is not None:
            on_progress(
                ProcessingProgress(
                    stage=stage,
                    current_page=current,
                    total_pages=total,
                    percentage=percentage,
                )
            )

    file_name = Path(document_path).name
    if not is_supported_file(file_name):
        raise UnsupportedFileType(f"Неподдерживаемый тип файла: {file_name}")
    if not Path(document_path).is_file():
        raise FileNotFound(f"Файл не найден: {document_path}")

    logger.info("=" * 60)
    logger.info("НОВЫЙ ЗАПРОС OCR")
    logger.info(f"   Файл: {file_name}")
    logger.info(f"   DPI: {dpi}")
    logger.info("=" * 60)

    temp_dir: Optional[str] = None
    split_duration = 0

    try:
        # 1. Split: PDF -> images
        if get_file_extension(file_name) == ".pdf":
            split_start = time.perf_counter()
            report("splitting")

            loop = asyncio.get_running_loop()

            def on_split_progress(progress: SplitProgress) -> None:
                loop.call_soon_threadsafe(
                    report,
                    "splitting",
                    progress.current_page,
                    progress.total_pages,
                    progress.percentage,
                )

            try:
                split = await asyncio.to_thread(
                    split_document,
                    document_path,
                    dpi,
                    on_progress=on_split_progress,
                )
            except DriveOCRError as e:
                temp_dir = getattr(e, "temp_dir", None)
                raise

            temp_dir = split.temp_dir
            image_paths = split.image_paths

            split_duration = int((time.perf_counter() - split_start) * 1000)
            logger.info(f"   Split: {len(image_paths)} страниц за {split_duration}ms")
        else:
            image_paths = [document_path]

        # 2. OCR: upload -> export -> delete
        ocr_start = time.perf_counter()
        report("ocr", 0, len(image_paths), 0)

        batch = await extract_texts(
            image_paths,
            access_token,
            concurrency=concurrency,
            on_progress=lambda p: report("ocr", p.completed, p.total, p.percentage),
            client=client,
        )

        ocr_duration = int((time.perf_counter() - ocr_start) * 1000)
        total_chars = sum(len(t) for t in batch.texts)
        logger.info(f"   OCR: {ocr_duration}ms")
        logger.info(f"        Символов: {total_chars}, ошибок: {len(batch.errors)}")
    finally:
        # 3. Временный каталог удаляется при любом исходе
        if temp_dir:
            try:
                cleanup_temp_dir(temp_dir)
            except DriveOCRError as e:
                logger.warning(f"Не удалось удалить временный каталог {temp_dir}: {e}")

    # 4. Собираем результат
    pages = [
        PageText(page_number=index + 1, text=text)
        for index, text in enumerate(batch.texts)
    ]
    text = page_separator.join(t.strip() for t in batch.texts)
    total_duration = int((time.perf_counter() - total_start) * 1000)

    report("done", len(pages), len(pages), 100)

    logger.info("=" * 60)
    logger.info("ОБРАБОТКА ЗАВЕРШЕНА")
    logger.info(f"   Файл: {file_name}")
    logger.info(f"   Страниц: {len(pages)}")
    logger.info(f"   Символов: {total_chars}")
    logger.info("-" * 60)
    logger.info("   Время по этапам:")
    logger.info(f"      Split:  {split_duration}ms")
    logger.info(f"      OCR:    {ocr_duration}ms")
    logger.info(f"      ИТОГО:  {total_duration}ms")
    logger.info("=" * 60)

    return DocumentResult(
        file_path=document_path,
        total_pages=len(pages),
        pages=pages,
        text=text,
        errors=[
            PageErrorInfo(page_number=e.index + 1, error=e.error)
            for e in batch.errors
        ],
        processing_time_ms=total_duration,
    )


async def process_files(
    file_paths: list[Union[str, Path]],
    access_token: str,
    **kwargs,
) -> list[Union[DocumentResult, FileError]]:
    """
    Последовательно обрабатывает несколько файлов.

    Ошибка одного файла записывается в результат, обработка
    остальных продолжается.

    Args:
        file_paths: пути к файлам
        access_token: OAuth токен
        **kwargs: параметры process_document

    Returns:
        list: DocumentResult или FileError для каждого файла, в исходном порядке
    """
    results: list[Union[DocumentResult, FileError]] = []

    for file_path in file_paths:
        try:
            results.append(await process_document(str(file_path), access_token, **kwargs))
        except DriveOCRError as e:
            logger.error(f"Ошибка обработки {file_path}: {e}")
            results.append(FileError(file_path=str(file_path), error=str(e)))

    return results
