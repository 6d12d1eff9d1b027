"""Общие фикстуры тестов."""

import pytest

from drive_ocr.config import settings
from drive_ocr.services.file_utils import cleanup_temp_dir


@pytest.fixture
def pdf_file(tmp_path):
    path = tmp_path / "document.pdf"
    path.write_bytes(b"%PDF-1.4\n%fake\n")
    return path


@pytest.fixture
def thread_executor(monkeypatch):
    """Рендеринг в потоках: FakeBinding не нужно передавать между процессами."""
    monkeypatch.setattr(settings, "render_executor", "thread")


@pytest.fixture
def temp_dirs():
    """Каталоги, созданные тестом, удаляются после него."""
    created = []
    yield created
    for path in created:
        cleanup_temp_dir(path)
