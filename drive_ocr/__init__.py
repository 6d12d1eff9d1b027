"""
Drive OCR — разбиение PDF на изображения и распознавание текста через Google Drive.

Пайплайн документа:
    - Split: рендеринг страниц PDF в пуле воркеров (Poppler через pdf2image)
    - OCR: загрузка изображения в Drive как Google Document -> экспорт текста -> удаление
    - Повтор удалённых операций с экспоненциальным backoff и jitter

Сервис поднимается FastAPI приложением (drive_ocr.main).
"""

from drive_ocr.config import settings
from drive_ocr.schemas import DocumentResult, SplitProgress, SplitResult, UploadResult

__all__ = [
    "settings",
    "DocumentResult",
    "SplitProgress",
    "SplitResult",
    "UploadResult",
]
