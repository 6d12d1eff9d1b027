"""
Drive OCR — FastAPI приложение с командами ядра.

Каждая команда ядра доступна как HTTP эндпоинт. Ошибки
превращаются в {"error": <код>, "message": <текст>}.

Эндпоинты:
    POST   /documents/page-count      — количество страниц PDF
    POST   /documents/split           — разбиение PDF (NDJSON: progress -> result/error)
    POST   /documents/extract-page    — рендеринг одной страницы
    POST   /files/cleanup             — удаление временного каталога
    POST   /files/write               — запись файла на диск
    POST   /drive/upload              — загрузка в Drive как Google Document
    GET    /drive/files/{id}/text     — выгрузка распознанного текста
    DELETE /drive/files/{id}          — удаление документа из Drive
    POST   /ocr/execute               — полный OCR документа
    POST   /ocr/batch                 — OCR всех файлов каталога
    GET    /health                    — проверка работоспособности

Команды Drive требуют заголовок Authorization: Bearer <token>.

Запуск:
    uvicorn drive_ocr.main:app --host 127.0.0.1 --port 8000
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from drive_ocr.config import settings
from drive_ocr.errors import DriveOCRError, FileNotFound, LibraryNotFound, RenderError
from drive_ocr.schemas import (
    BatchRequest,
    CleanupRequest,
    DocumentResult,
    ExportResult,
    ExtractPageRequest,
    ExtractPageResult,
    FileError,
    PageCountRequest,
    PageCountResult,
    ProcessRequest,
    SplitProgress,
    SplitRequest,
    SuccessResult,
    UploadRequest,
    UploadResult,
)
from drive_ocr.services.drive_client import (
    delete_remote_document,
    export_document_text,
    upload_document,
)
from drive_ocr.services.file_utils import cleanup_temp_dir, collect_files, write_binary_file
from drive_ocr.services.ocr_processor import process_document, process_files
from drive_ocr.services.pdf_processor import extract_page, get_page_count, split_document
from drive_ocr.services.renderer import RendererBinding, find_renderer

# Настройка логгера
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [Drive-OCR] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Код ошибки -> HTTP статус
ERROR_STATUS = {
    "library_not_found": 500,
    "render_error": 422,
    "document_load_error": 422,
    "page_render_error": 422,
    "file_not_found": 404,
    "file_write_error": 500,
    "unsupported_file_type": 415,
    "remote_error": 502,
    "remote_transient": 503,
    "remote_fatal": 502,
}


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ с нормальным отображением кириллицы (без \\uXXXX экранирования)."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


# FastAPI приложение
app = FastAPI(
    title="Drive OCR",
    description="Разбиение PDF на изображения и распознавание текста через Google Drive",
    version=VERSION,
    default_response_class=UnicodeJSONResponse,
)


def _http_error(error: DriveOCRError) -> HTTPException:
    """
    Преобразует ошибку ядра в HTTPException.

    Args:
        error: ошибка Drive OCR

    Returns:
        HTTPException: статус по коду ошибки, detail с кодом и текстом
    """
    status_code = ERROR_STATUS.get(error.code, 500)
    logger.error(f"Ошибка команды ({error.code}): {error}")
    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.code,
            "message": str(error),
        },
    )


async def _bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    """
    Извлекает OAuth токен из заголовка Authorization.

    Raises:
        HTTPException: 401 если заголовок отсутствует или не Bearer
    """
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=401,
            detail={
                "error": "unauthorized",
                "message": "Требуется заголовок Authorization: Bearer <token>",
            },
        )
    return token.strip()


@app.get("/health")
async def health_check() -> dict:
    """
    Проверка работоспособности сервиса.

    Проверяет доступность рендерера (Poppler) и возвращает
    текущую конфигурацию.

    Returns:
        dict: статус сервиса и информация о системе
    """
    renderer = {"available": False, "path": None, "error": None}
    try:
        renderer["path"] = str(find_renderer())
        renderer["available"] = True
    except LibraryNotFound as e:
        renderer["error"] = str(e)

    return {
        "status": "ok" if renderer["available"] else "degraded",
        "service": "drive-ocr",
        "version": VERSION,
        "cpu_count": os.cpu_count(),
        "renderer": renderer,
        "config": {
            "render_dpi": settings.render_dpi,
            "render_format": settings.render_format,
            "render_workers": settings.render_workers,
            "render_executor": settings.render_executor,
            "ocr_concurrency": settings.ocr_concurrency,
            "retry_max_retries": settings.retry_max_retries,
        },
    }


@app.post("/documents/page-count", response_model=PageCountResult)
async def page_count(request: PageCountRequest) -> PageCountResult:
    """Количество страниц PDF без рендеринга."""
    try:
        count = await run_in_threadpool(get_page_count, request.document_path)
    except DriveOCRError as e:
        raise _http_error(e) from e

    return PageCountResult(page_count=count)


@app.post("/documents/split")
async def split(request: SplitRequest) -> StreamingResponse:
    """
    Разбивает PDF на изображения страниц.

    Ответ — поток NDJSON:
        {"event": "progress", "data": {"currentPage": 1, "totalPages": 3, "percentage": 33}}
        ...
        {"event": "result", "data": {"imagePaths": [...], "tempDir": "..."}}

    При ошибке рендеринга последним приходит событие error
    (с tempDir, если каталог уже создан). Отсутствие рендерера
    проверяется до начала потока и возвращается обычной ошибкой.

    Args:
        request: путь к PDF, DPI, ожидаемое число страниц

    Returns:
        StreamingResponse: поток событий application/x-ndjson
    """
    try:
        binding = RendererBinding.load()
    except DriveOCRError as e:
        raise _http_error(e) from e

    dpi = request.dpi or settings.render_dpi
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(progress: SplitProgress) -> None:
        # Вызывается из потока пула
        event = {"event": "progress", "data": progress.model_dump(by_alias=True)}
        loop.call_soon_threadsafe(queue.put_nowait, event)

    async def run() -> None:
        event = {
            "event": "error",
            "data": {"error": RenderError.code, "message": "Разбиение прервано"},
        }
        try:
            result = await run_in_threadpool(
                split_document,
                request.document_path,
                dpi,
                request.expected_page_count,
                on_progress=on_progress,
                binding=binding,
            )
            event = {"event": "result", "data": result.model_dump(by_alias=True)}
        except DriveOCRError as e:
            logger.error(f"Ошибка разбиения {request.document_path}: {e}")
            data = {"error": e.code, "message": str(e)}
            if isinstance(e, RenderError) and e.temp_dir:
                data["tempDir"] = e.temp_dir
            event = {"event": "error", "data": data}
        except Exception as e:
            logger.exception(f"Сбой разбиения {request.document_path}: {e!r}")
            event = {
                "event": "error",
                "data": {"error": RenderError.code, "message": f"{e!r}"},
            }
        finally:
            # Поток всегда завершается событием result или error
            await queue.put(event)
            await queue.put(None)

    async def stream():
        task = asyncio.create_task(run())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield json.dumps(event, ensure_ascii=False) + "\n"
        finally:
            await task

    return StreamingResponse(stream(), media_type="application/x-ndjson")


@app.post("/documents/extract-page", response_model=ExtractPageResult)
async def extract_single_page(request: ExtractPageRequest) -> ExtractPageResult:
    """Рендерит одну страницу PDF (номер с 1) в изображение."""
    try:
        path = await run_in_threadpool(
            extract_page,
            request.document_path,
            request.page_number,
            request.dpi or settings.render_dpi,
            request.output_path,
        )
    except DriveOCRError as e:
        raise _http_error(e) from e

    return ExtractPageResult(path=path)


@app.post("/files/cleanup", response_model=SuccessResult)
async def cleanup(request: CleanupRequest) -> SuccessResult:
    """Удаляет временный каталог. Отсутствующий путь — успех."""
    try:
        await run_in_threadpool(cleanup_temp_dir, request.path)
    except DriveOCRError as e:
        raise _http_error(e) from e

    return SuccessResult()


@app.post("/files/write", response_model=SuccessResult)
async def write_file(
    path: str = Form(..., description="Путь для записи"),
    file: UploadFile = File(..., description="Содержимое файла"),
) -> SuccessResult:
    """
    Записывает загруженные байты в файл, перезаписывая существующий.

    Args:
        path: путь назначения
        file: содержимое (multipart/form-data)
    """
    data = await file.read()

    try:
        await run_in_threadpool(write_binary_file, path, data)
    except DriveOCRError as e:
        raise _http_error(e) from e

    logger.info(f"Записан файл: {path} ({len(data)} байт)")
    return SuccessResult()


@app.post("/drive/upload", response_model=UploadResult)
async def drive_upload(
    request: UploadRequest,
    access_token: str = Depends(_bearer_token),
) -> UploadResult:
    """Загружает файл в Google Drive как Google Document (запускает OCR)."""
    try:
        return await upload_document(request.local_path, access_token)
    except DriveOCRError as e:
        raise _http_error(e) from e


@app.get("/drive/files/{file_id}/text", response_model=ExportResult)
async def drive_export(
    file_id: str,
    access_token: str = Depends(_bearer_token),
) -> ExportResult:
    """Выгружает распознанный текст документа как есть."""
    try:
        return await export_document_text(file_id, access_token)
    except DriveOCRError as e:
        raise _http_error(e) from e


@app.delete("/drive/files/{file_id}", response_model=SuccessResult)
async def drive_delete(
    file_id: str,
    access_token: str = Depends(_bearer_token),
) -> SuccessResult:
    """Удаляет документ из Google Drive."""
    try:
        await delete_remote_document(file_id, access_token)
    except DriveOCRError as e:
        raise _http_error(e) from e

    return SuccessResult()


@app.post("/ocr/execute", response_model=DocumentResult)
async def execute_ocr(
    request: ProcessRequest,
    access_token: str = Depends(_bearer_token),
) -> DocumentResult:
    """
    Выполняет полный OCR документа.

    Пайплайн: split -> upload -> export -> delete -> сборка текста.
    Ошибки отдельных страниц не прерывают обработку и
    возвращаются в поле errors.

    Args:
        request: путь к документу и параметры обработки
        access_token: OAuth токен из заголовка

    Returns:
        DocumentResult: текст по страницам и общий текст

    Raises:
        HTTPException: при ошибке разбиения или неподдерживаемом файле
    """
    logger.info(f"Запрос OCR: {request.document_path}")

    try:
        result = await process_document(
            request.document_path,
            access_token,
            dpi=request.dpi,
            concurrency=request.concurrency,
            page_separator=request.page_separator,
        )
    except DriveOCRError as e:
        raise _http_error(e) from e

    logger.info(
        f"OCR завершён: {result.total_pages} страниц за {result.processing_time_ms}ms"
    )
    return result


@app.post("/ocr/batch", response_model=list[Union[DocumentResult, FileError]])
async def execute_batch(
    request: BatchRequest,
    access_token: str = Depends(_bearer_token),
) -> list[Union[DocumentResult, FileError]]:
    """
    OCR всех поддерживаемых файлов каталога.

    Файлы собираются рекурсивно и обрабатываются по очереди.
    Ошибка одного файла попадает в результат как FileError
    и не прерывает остальные.

    Raises:
        HTTPException: 404 если каталог не существует
    """
    if not Path(request.folder_path).is_dir():
        raise _http_error(FileNotFound(f"Каталог не найден: {request.folder_path}"))

    file_paths = await run_in_threadpool(collect_files, request.folder_path)
    logger.info(f"Пакетный OCR: {request.folder_path}, файлов={len(file_paths)}")

    results = await process_files(
        file_paths,
        access_token,
        dpi=request.dpi,
        concurrency=request.concurrency,
        page_separator=request.page_separator,
    )

    failed = sum(1 for r in results if isinstance(r, FileError))
    logger.info(f"Пакетный OCR завершён: {len(results) - failed} успешно, {failed} с ошибкой")
    return results


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск Drive OCR v{VERSION} на {settings.host}:{settings.port}")
    logger.info(f"CPU ядер: {os.cpu_count()}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
