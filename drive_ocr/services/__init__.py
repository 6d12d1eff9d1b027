"""
Сервисы Drive OCR.

Модули:
    - renderer: поиск Poppler и рендеринг страниц
    - pdf_processor: разбиение PDF на изображения
    - retry: повтор удалённых операций
    - drive_client: upload / export / delete в Google Drive
    - file_utils: временные каталоги и запись файлов
    - ocr_processor: координация полного пайплайна
"""

from drive_ocr.services.drive_client import (
    DriveClient,
    delete_remote_document,
    export_document_text,
    upload_document,
)
from drive_ocr.services.file_utils import cleanup_temp_dir, write_binary_file
from drive_ocr.services.ocr_processor import extract_texts, process_document, process_files
from drive_ocr.services.pdf_processor import extract_page, get_page_count, split_document
from drive_ocr.services.retry import execute_with_retry

__all__ = [
    "DriveClient",
    "upload_document",
    "export_document_text",
    "delete_remote_document",
    "cleanup_temp_dir",
    "write_binary_file",
    "extract_texts",
    "process_document",
    "process_files",
    "extract_page",
    "get_page_count",
    "split_document",
    "execute_with_retry",
]
