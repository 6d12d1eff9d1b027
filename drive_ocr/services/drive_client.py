"""
Клиент Google Drive для OCR.

Загрузка изображения как Google Document запускает распознавание
текста на стороне Google. Цикл для одной страницы:
    1. upload — загрузка файла с конвертацией в Google Docs
    2. export — выгрузка распознанного текста (text/plain)
    3. delete — удаление документа из Drive

Каждая операция обёрнута в execute_with_retry. Текст ошибки
содержит HTTP статус, по нему определяется, повторять ли запрос.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import httpx

from drive_ocr.config import settings
from drive_ocr.errors import DriveOCRError, FileNotFound, RemoteFatal, RemoteTransient
from drive_ocr.schemas import ExportResult, UploadResult
from drive_ocr.services.retry import RetryPolicy, execute_with_retry, is_transient_error

logger = logging.getLogger(__name__)

# MIME тип, в который Drive конвертирует загрузку (запускает OCR)
GOOGLE_DOCS_MIME_TYPE = "application/vnd.google-apps.document"

DEFAULT_CONTENT_TYPE = "application/octet-stream"
CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".pdf": "application/pdf",
}


def content_type_for(path: Union[str, Path]) -> str:
    """
    MIME тип файла по последнему расширению (без учёта регистра).

    IMAGE.PNG -> image/png, file.tar.gz и .hidden -> application/octet-stream.
    """
    return CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


def _response_error(operation: str, response: httpx.Response) -> DriveOCRError:
    """
    Ошибка для неуспешного ответа, текст содержит статус и тело.

    Класс (RemoteTransient / RemoteFatal) выбирается тем же правилом,
    что и в retry-обёртке.
    """
    status = response.status_code
    body = response.text
    message = f"Ошибка {operation} ({status}): {body}"

    error_cls = RemoteTransient if is_transient_error(message) else RemoteFatal
    return error_cls(message, operation=operation, status_code=status, body=body)


class DriveClient:
    """
    Асинхронный клиент Google Drive.

    Использование:
        async with DriveClient(access_token) as client:
            upload = await client.upload("page-0001.jpg")
            text = await client.export_text(upload.file_id)
            await client.delete(upload.file_id)

    Attributes:
        access_token: OAuth токен (Bearer)
        upload_url: эндпоинт загрузки
        export_url: базовый URL для экспорта (/{id}/export)
        delete_url: базовый URL для удаления (/{id})
    """

    def __init__(
        self,
        access_token: str,
        *,
        upload_url: Optional[str] = None,
        export_url: Optional[str] = None,
        delete_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.access_token = access_token
        self.upload_url = upload_url or settings.drive_upload_url
        self.export_url = (export_url or settings.drive_export_url).rstrip("/")
        self.delete_url = (delete_url or settings.drive_delete_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "DriveClient":
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={"Authorization": f"Bearer {self.access_token}"},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Один HTTP запрос без повторов.

        Неуспешный статус, таймаут и прочие ошибки httpx
        превращаются в RemoteError.
        """
        if not self._client:
            raise RuntimeError("Client not started")

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteTransient(
                f"Ошибка {operation}: timeout ({e!r})", operation=operation
            ) from e
        except httpx.TransportError as e:
            raise RemoteFatal(
                f"Ошибка {operation}: сеть недоступна ({e!r})", operation=operation
            ) from e
        except httpx.HTTPError as e:
            # Битое тело ответа, зацикленные редиректы
            raise RemoteFatal(f"Ошибка {operation}: {e!r}", operation=operation) from e

        if not response.is_success:
            raise _response_error(operation, response)

        return response

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable]):
        return await execute_with_retry(
            call,
            self.retry_policy,
            operation_name=operation,
            sleep=self._sleep,
        )

    async def upload(self, local_path: Union[str, Path]) -> UploadResult:
        """
        Загружает файл в Drive с конвертацией в Google Docs (запускает OCR).

        Файлу присваивается случайное имя: имена не конфликтуют
        и локальное имя не уходит в Drive.

        Args:
            local_path: путь к изображению или PDF

        Returns:
            UploadResult: идентификатор созданного документа

        Raises:
            FileNotFound: локальный файл не существует (до любых запросов)
            RemoteError: ошибка Drive после всех повторов
        """
        path = Path(local_path)
        if not path.exists():
            raise FileNotFound(f"Файл не найден: {local_path}")

        content = path.read_bytes()
        file_name = str(uuid.uuid4())
        mime_type = content_type_for(path)
        metadata = json.dumps({"name": file_name, "mimeType": GOOGLE_DOCS_MIME_TYPE})

        async def call() -> UploadResult:
            files = {
                "metadata": (None, metadata.encode("utf-8"), "application/json"),
                "file": (file_name, content, mime_type),
            }
            response = await self._send(
                "upload",
                "POST",
                self.upload_url,
                params={"uploadType": "multipart", "fields": "id"},
                files=files,
            )

            try:
                file_id = response.json()["id"]
            except (ValueError, KeyError, TypeError) as e:
                raise RemoteFatal(
                    f"Ошибка upload: ответ без id: {response.text}",
                    operation="upload",
                    status_code=response.status_code,
                    body=response.text,
                ) from e

            return UploadResult(file_id=file_id)

        result = await self._with_retry("upload", call)
        logger.info(f"Загружен файл {path.name} ({len(content)} байт) -> {result.file_id}")
        return result

    async def export_text(self, file_id: str) -> ExportResult:
        """
        Выгружает документ Google Docs как обычный текст.

        Args:
            file_id: идентификатор документа

        Returns:
            ExportResult: текст как есть, без обработки
        """

        async def call() -> ExportResult:
            response = await self._send(
                "export",
                "GET",
                f"{self.export_url}/{file_id}/export",
                params={"mimeType": "text/plain"},
            )
            return ExportResult(text=response.text)

        return await self._with_retry("export", call)

    async def delete(self, file_id: str) -> None:
        """
        Удаляет документ из Drive.

        Успех — любой 2xx, включая 204 No Content; тело не читается.

        Args:
            file_id: идентификатор документа
        """

        async def call() -> None:
            await self._send("delete", "DELETE", f"{self.delete_url}/{file_id}")

        await self._with_retry("delete", call)
        logger.debug(f"Удалён документ Drive: {file_id}")


async def upload_document(local_path: str, access_token: str, **client_options) -> UploadResult:
    """
    Загружает файл в Drive как Google Document.

    client_options передаются в DriveClient (адреса, transport, sleep).
    """
    async with DriveClient(access_token, **client_options) as client:
        return await client.upload(local_path)


async def export_document_text(file_id: str, access_token: str, **client_options) -> ExportResult:
    """Выгружает распознанный текст документа."""
    async with DriveClient(access_token, **client_options) as client:
        return await client.export_text(file_id)


async def delete_remote_document(file_id: str, access_token: str, **client_options) -> None:
    """Удаляет документ из Drive."""
    async with DriveClient(access_token, **client_options) as client:
        await client.delete(file_id)
