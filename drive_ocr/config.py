"""
Конфигурация Drive OCR.

Все значения читаются из .env файла (или переменных окружения).
Единый префикс: DRIVE_OCR_

В отличие от секретов (токен доступа передаётся в каждом вызове),
здесь только параметры рендеринга, ретраев и адреса Google Drive.
Адреса Drive переопределяются только в тестах — по умолчанию
используются боевые эндпоинты.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки Drive OCR.

    Читает переменные с префиксом DRIVE_OCR_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="DRIVE_OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    # --- Split: PDF -> images ---
    render_dpi: int = Field(default=150, ge=72, le=300)
    render_format: Literal["jpeg", "png"] = "jpeg"
    # None -> os.cpu_count()
    render_workers: Optional[int] = Field(default=None, ge=1)
    render_executor: Literal["process", "thread"] = "process"
    # Каталог с pdftoppm/pdfinfo, проверяется первым
    renderer_dir: Optional[str] = None

    # --- Google Drive ---
    drive_upload_url: str = "https://www.googleapis.com/upload/drive/v3/files"
    drive_export_url: str = "https://www.googleapis.com/drive/v3/files"
    drive_delete_url: str = "https://www.googleapis.com/drive/v3/files"
    http_timeout_seconds: float = 60.0

    # --- Ретраи ---
    retry_max_retries: int = Field(default=10, ge=0)
    retry_backoff_base: float = 1.5
    retry_backoff_cap: float = 15.0

    # --- OCR ---
    ocr_concurrency: int = Field(default=12, ge=1, le=20)
    page_separator: str = "\n\nPAGE_SEPARATOR\n\n"


# Глобальный экземпляр настроек
settings = Settings()
