"""
Тесты привязки к рендереру: поиск Poppler, открытие документа, рендеринг страницы.
"""

import shutil
import sys
from pathlib import Path

import pytest
from PIL import Image
from pdf2image.exceptions import PDFPageCountError

from drive_ocr.config import settings
from drive_ocr.errors import DocumentLoadError, LibraryNotFound, PageRenderError
from drive_ocr.schemas import RenderConfig
from drive_ocr.services import renderer
from drive_ocr.services.renderer import (
    PACKAGE_RESOURCES_DIR,
    DocumentHandle,
    RendererBinding,
    find_renderer,
    renderer_executable_name,
    renderer_search_dirs,
)


@pytest.mark.parametrize(
    "platform, expected",
    [
        ("win32", "pdftoppm.exe"),
        ("darwin", "pdftoppm"),
        ("linux", "pdftoppm"),
        ("freebsd13", "pdftoppm"),
    ],
)
def test_executable_name_per_platform(platform, expected):
    assert renderer_executable_name(platform) == expected


def test_search_dirs_order_linux(monkeypatch):
    monkeypatch.setattr(settings, "renderer_dir", None)

    dirs = renderer_search_dirs("linux")

    assert dirs == [
        PACKAGE_RESOURCES_DIR,
        Path("resources"),
        Path(sys.executable).parent,
    ]


def test_search_dirs_override_first_and_macos_bundle(monkeypatch):
    monkeypatch.setattr(settings, "renderer_dir", "/opt/poppler/bin")

    dirs = renderer_search_dirs("darwin")

    exe_dir = Path(sys.executable).parent
    assert dirs[0] == Path("/opt/poppler/bin")
    assert dirs[-1] == exe_dir / ".." / "Resources"
    assert len(dirs) == 5


def test_find_renderer_returns_first_dir_with_executable(tmp_path):
    empty = tmp_path / "empty"
    first = tmp_path / "first"
    second = tmp_path / "second"
    for directory in (empty, first, second):
        directory.mkdir()
    (first / "pdftoppm").write_text("")
    (second / "pdftoppm").write_text("")

    found = find_renderer([empty, first, second], platform="linux", use_system_path=False)

    assert found == first


def test_find_renderer_lists_every_probed_path(tmp_path, monkeypatch):
    monkeypatch.setattr(renderer.shutil, "which", lambda name: None)
    dirs = [tmp_path / "a", tmp_path / "b"]

    with pytest.raises(LibraryNotFound) as exc_info:
        find_renderer(dirs, platform="win32")

    error = exc_info.value
    assert error.library_name == "pdftoppm.exe"
    assert error.searched == [
        str(tmp_path / "a" / "pdftoppm.exe"),
        str(tmp_path / "b" / "pdftoppm.exe"),
        str(Path("$PATH") / "pdftoppm.exe"),
    ]
    assert "pdftoppm.exe" in str(error)


def test_find_renderer_falls_back_to_system_path(tmp_path, monkeypatch):
    monkeypatch.setattr(renderer.shutil, "which", lambda name: f"/usr/local/bin/{name}")

    found = find_renderer([tmp_path], platform="linux")

    assert found == Path("/usr/local/bin")


def test_open_document_missing_file(tmp_path):
    binding = RendererBinding(renderer_dir=None)

    with pytest.raises(DocumentLoadError):
        binding.open_document(tmp_path / "missing.pdf")


def test_open_document_reads_page_count(pdf_file, monkeypatch):
    calls = []

    def fake_pdfinfo(path, poppler_path=None):
        calls.append((path, poppler_path))
        return {"Pages": 5}

    monkeypatch.setattr(renderer, "pdfinfo_from_path", fake_pdfinfo)

    document = RendererBinding("/opt/poppler").open_document(pdf_file)

    assert document.page_count == 5
    assert document.renderer_dir == "/opt/poppler"
    assert calls == [(str(pdf_file), "/opt/poppler")]


def test_open_document_invalid_pdf(pdf_file, monkeypatch):
    def broken_pdfinfo(path, poppler_path=None):
        raise PDFPageCountError("Unable to get page count.")

    monkeypatch.setattr(renderer, "pdfinfo_from_path", broken_pdfinfo)

    with pytest.raises(DocumentLoadError):
        RendererBinding().open_document(pdf_file)


def test_render_page_scales_width_and_caps_height(pdf_file, monkeypatch):
    calls = []

    def fake_convert(path, **kwargs):
        calls.append(kwargs)
        # Очень длинная страница: высота превышает 12 * dpi
        return [Image.new("L", (1200, 3000), 255)]

    monkeypatch.setattr(renderer, "convert_from_path", fake_convert)
    document = DocumentHandle(str(pdf_file), page_count=2, renderer_dir="/opt/poppler")

    image = document.render_page(1, RenderConfig(dpi=150))

    assert calls[0]["first_page"] == 2
    assert calls[0]["last_page"] == 2
    assert calls[0]["size"] == (1200, None)
    assert calls[0]["poppler_path"] == "/opt/poppler"
    assert image.mode == "RGB"
    assert image.size == (720, 1800)


def test_render_page_out_of_range(pdf_file):
    document = DocumentHandle(str(pdf_file), page_count=2, renderer_dir=None)

    with pytest.raises(PageRenderError) as exc_info:
        document.render_page(2, RenderConfig(dpi=150))

    assert exc_info.value.page_number == 3


@pytest.mark.skipif(shutil.which("pdftoppm") is None, reason="Poppler не установлен")
def test_split_real_pdf_with_poppler(tmp_path, temp_dirs):
    from drive_ocr.services.pdf_processor import split_document

    pdf_path = tmp_path / "real.pdf"
    pages = [Image.new("RGB", (400, 600), color) for color in ("white", "gray", "black")]
    pages[0].save(pdf_path, "PDF", save_all=True, append_images=pages[1:])

    result = split_document(str(pdf_path), 72, max_workers=2)
    temp_dirs.append(result.temp_dir)

    assert [Path(p).name for p in result.image_paths] == [
        "page-0001.jpg",
        "page-0002.jpg",
        "page-0003.jpg",
    ]
    with Image.open(result.image_paths[0]) as image:
        assert image.width == 8 * 72
        assert image.height <= 12 * 72
