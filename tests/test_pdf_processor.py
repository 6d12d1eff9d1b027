"""
Тесты разбиения PDF на изображения.

Рендерер заменён FakeBinding (см. fakes.py), пул — потоки.
"""

import pickle
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from PIL import Image

from drive_ocr.errors import DocumentLoadError, LibraryNotFound, PageRenderError, RemoteTransient
from drive_ocr.schemas import RenderConfig
from drive_ocr.services import pdf_processor, renderer
from drive_ocr.services.pdf_processor import (
    extract_page,
    get_page_count,
    page_filename,
    progress_event,
    split_document,
)

from tests.fakes import FakeBinding


def test_split_three_pages(pdf_file, temp_dirs):
    events = []

    result = split_document(
        str(pdf_file),
        150,
        on_progress=events.append,
        binding=FakeBinding(page_count=3),
        executor_cls=ThreadPoolExecutor,
    )
    temp_dirs.append(result.temp_dir)

    names = [Path(p).name for p in result.image_paths]
    assert names == ["page-0001.jpg", "page-0002.jpg", "page-0003.jpg"]
    assert all(Path(p).parent == Path(result.temp_dir) for p in result.image_paths)
    assert sorted(Path(result.temp_dir).iterdir())

    final = events[-1]
    assert (final.current_page, final.total_pages, final.percentage) == (3, 3, 100)


def test_progress_is_monotonic_count(pdf_file, temp_dirs):
    events = []

    result = split_document(
        str(pdf_file),
        72,
        on_progress=events.append,
        binding=FakeBinding(page_count=7),
        executor_cls=ThreadPoolExecutor,
        max_workers=4,
    )
    temp_dirs.append(result.temp_dir)

    assert [e.current_page for e in events] == list(range(1, 8))
    assert {e.total_pages for e in events} == {7}


def test_split_sorted_paths_follow_page_order(pdf_file, temp_dirs):
    result = split_document(
        str(pdf_file),
        72,
        binding=FakeBinding(page_count=25),
        executor_cls=ThreadPoolExecutor,
        max_workers=8,
    )
    temp_dirs.append(result.temp_dir)

    assert len(result.image_paths) == 25
    assert [Path(p).name for p in result.image_paths] == [
        page_filename(n, ".jpg") for n in range(1, 26)
    ]


def test_page_filenames_sort_in_page_order():
    names = [page_filename(n, ".jpg") for n in range(1, 10000)]

    assert sorted(names) == names
    assert names[0] == "page-0001.jpg"
    assert names[-1] == "page-9999.jpg"


def test_split_png_format(pdf_file, temp_dirs):
    result = split_document(
        str(pdf_file),
        72,
        binding=FakeBinding(page_count=2),
        executor_cls=ThreadPoolExecutor,
        image_format="png",
    )
    temp_dirs.append(result.temp_dir)

    assert [Path(p).suffix for p in result.image_paths] == [".png", ".png"]
    with Image.open(result.image_paths[0]) as image:
        assert image.format == "PNG"


def test_each_task_opens_its_own_document(pdf_file, temp_dirs):
    binding = FakeBinding(page_count=5)

    result = split_document(
        str(pdf_file),
        72,
        binding=binding,
        executor_cls=ThreadPoolExecutor,
    )
    temp_dirs.append(result.temp_dir)

    # Одно открытие координатором + по одному на каждую страницу
    assert len(binding.opened) == 6
    assert binding.opened[0] is binding
    # Каждая задача работает через собственную копию привязки
    copies = binding.opened[1:]
    assert len({id(b) for b in copies}) == 5
    assert all(b is not binding for b in copies)


def test_expected_page_count_mismatch_uses_document_count(pdf_file, temp_dirs, caplog):
    result = split_document(
        str(pdf_file),
        72,
        expected_page_count=2,
        binding=FakeBinding(page_count=4),
        executor_cls=ThreadPoolExecutor,
    )
    temp_dirs.append(result.temp_dir)

    assert len(result.image_paths) == 4
    assert "Ожидалось 2 страниц" in caplog.text


def test_page_failure_raised_after_all_pages(pdf_file, temp_dirs):
    with pytest.raises(PageRenderError) as exc_info:
        split_document(
            str(pdf_file),
            72,
            binding=FakeBinding(page_count=3, fail_pages=[2]),
            executor_cls=ThreadPoolExecutor,
        )

    error = exc_info.value
    temp_dirs.append(error.temp_dir)
    assert error.page_number == 2
    remaining = sorted(p.name for p in Path(error.temp_dir).iterdir())
    assert remaining == ["page-0001.jpg", "page-0003.jpg"]


def test_unexpected_worker_failure_becomes_page_render_error(pdf_file, temp_dirs):
    with pytest.raises(PageRenderError) as exc_info:
        split_document(
            str(pdf_file),
            72,
            binding=FakeBinding(page_count=3, crash_pages=[3]),
            executor_cls=ThreadPoolExecutor,
        )

    error = exc_info.value
    temp_dirs.append(error.temp_dir)
    assert error.page_number == 3
    assert "decoder crashed" in str(error)
    remaining = sorted(p.name for p in Path(error.temp_dir).iterdir())
    assert remaining == ["page-0001.jpg", "page-0002.jpg"]


def test_missing_document_creates_no_temp_dir(tmp_path, monkeypatch):
    def unexpected_temp_dir():
        raise AssertionError("временный каталог не должен создаваться")

    monkeypatch.setattr(pdf_processor, "create_temp_dir", unexpected_temp_dir)

    with pytest.raises(DocumentLoadError):
        split_document(str(tmp_path / "missing.pdf"), 150, binding=FakeBinding())


def test_missing_renderer_fails_before_temp_dir(pdf_file, monkeypatch):
    def no_renderer(search_dirs=None, **kwargs):
        raise LibraryNotFound("pdftoppm", ["/nowhere/pdftoppm"])

    monkeypatch.setattr(renderer, "find_renderer", no_renderer)
    monkeypatch.setattr(pdf_processor, "create_temp_dir", lambda: pytest.fail("temp dir created"))

    with pytest.raises(LibraryNotFound):
        split_document(str(pdf_file), 150)


@pytest.mark.parametrize(
    "current, total, expected",
    [
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (3, 3, 100),
        (0, 0, 0),
    ],
)
def test_progress_percentage_rounds_half_up(current, total, expected):
    assert progress_event(current, total).percentage == expected


@pytest.mark.parametrize("dpi", [72, 96, 150, 200, 300])
def test_render_dimensions_follow_dpi(dpi):
    config = RenderConfig(dpi=dpi)

    assert config.width == 8 * dpi
    assert config.max_height == 12 * dpi
    assert config.width * 3 == config.max_height * 2


def test_get_page_count(pdf_file):
    assert get_page_count(str(pdf_file), binding=FakeBinding(page_count=9)) == 9


def test_extract_page_appends_extension(pdf_file, tmp_path):
    output = tmp_path / "cover"

    path = extract_page(str(pdf_file), 1, 150, output, binding=FakeBinding(page_count=2))

    assert path == f"{output}.jpg"
    assert Path(path).is_file()


def test_extract_page_keeps_existing_extension(pdf_file, tmp_path):
    output = tmp_path / "COVER.JPEG"

    path = extract_page(str(pdf_file), 2, 150, output, binding=FakeBinding(page_count=2))

    assert path == str(output)


@pytest.mark.parametrize("page_number", [0, 3])
def test_extract_page_out_of_range(pdf_file, tmp_path, page_number):
    with pytest.raises(PageRenderError):
        extract_page(
            str(pdf_file),
            page_number,
            150,
            tmp_path / "page",
            binding=FakeBinding(page_count=2),
        )


def test_errors_survive_pickling():
    error = pickle.loads(pickle.dumps(PageRenderError("сбой", page_number=4)))
    assert isinstance(error, PageRenderError)
    assert error.page_number == 4
    assert str(error) == "сбой"

    remote = pickle.loads(pickle.dumps(RemoteTransient("Ошибка upload (503)", "upload", 503, "busy")))
    assert (remote.operation, remote.status_code, remote.body) == ("upload", 503, "busy")

    missing = pickle.loads(pickle.dumps(LibraryNotFound("pdftoppm", ["/a/pdftoppm"])))
    assert missing.searched == ["/a/pdftoppm"]
