#!/usr/bin/env python3
"""
End-to-end tests of the controller and the command line front end with a
fake HTTP session standing in for the library's server.
"""

from io import BytesIO
from pathlib import Path

import pytest
import requests
from PIL import Image
from pypdf import PdfReader

from rfbr_loader import cli
from rfbr_loader.core.controller import BookLoaderController, RunConfig, RunState
from rfbr_loader.core.errors import (DestinationLocked, InvalidPageCount, InvalidReferenceFormat,
                                     PageCountUnavailable, Fatal)
from rfbr_loader.utils.file_manager import ExclusiveOutput

BOOK_URL = "https://www.rfbr.ru/rffi/ru/books/o_36464#1"
PAGE_URL = "https://www.rfbr.ru/rffi/djvu_page?objectId=36464&page={}"


def _png(size):
    buf = BytesIO()
    Image.new("RGB", size, (30, 90, 160)).save(buf, format="PNG")
    return buf.getvalue()


class _FakeResponse:
    def __init__(self, status_code=200, content=b"", text=""):
        self.status_code = status_code
        self.content = content
        self.text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}", response=self)

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _FakeSession:
    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def get(self, url, timeout=None, **kwargs):
        self.calls.append(url)
        outcome = self.routes[url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _config(tmp_path, **overrides):
    values = dict(
        reference=BOOK_URL,
        page_count=3,
        output_path=str(tmp_path / "out" / "Book.pdf"),
        scratch_root=str(tmp_path / "scratch"),
    )
    values.update(overrides)
    return RunConfig(**values)


def _page_sizes(pdf_path):
    return [(float(p.mediabox.width), float(p.mediabox.height)) for p in PdfReader(str(pdf_path)).pages]


def test_empty_page_is_left_out_of_the_book(tmp_path):
    session = _FakeSession({
        PAGE_URL.format(0): _FakeResponse(content=_png((100, 200))),
        PAGE_URL.format(1): _FakeResponse(content=b""),
        PAGE_URL.format(2): _FakeResponse(content=_png((200, 100))),
    })
    events = []

    report = BookLoaderController(_config(tmp_path), session=session).run(progress=events.append)

    assert report.book_id == "36464"
    assert report.page_count == 3
    assert report.appended_pages == [0, 2]
    assert report.skipped_pages == [1]
    assert report.failed_pages == []
    sizes = _page_sizes(tmp_path / "out" / "Book.pdf")
    assert sizes == [pytest.approx((400, 800)), pytest.approx((800, 400))]

    states = [e.state for e in events]
    assert states[0] is RunState.PREPARING
    assert states[-1] is RunState.IDLE
    fetch_ticks = [e.current for e in events if e.state is RunState.FETCHING and e.current]
    assert fetch_ticks == [1, 2, 3]
    build_ticks = [e.current for e in events if e.state is RunState.BUILDING and e.current]
    assert build_ticks == [1, 3]
    assert states.index(RunState.BUILDING) > max(i for i, s in enumerate(states) if s is RunState.FETCHING)


def test_failed_download_does_not_block_other_pages(tmp_path):
    session = _FakeSession({
        PAGE_URL.format(0): requests.exceptions.ConnectionError("reset"),
        PAGE_URL.format(1): _FakeResponse(content=_png((50, 50))),
        PAGE_URL.format(2): _FakeResponse(status_code=502),
    })

    report = BookLoaderController(_config(tmp_path), session=session).run()

    assert report.failed_pages == [0, 2]
    assert report.appended_pages == [1]
    assert report.errors['failed_pages'] == [0, 2]
    assert len(_page_sizes(tmp_path / "out" / "Book.pdf")) == 1


def test_zero_page_count_fails_before_any_work(tmp_path):
    session = _FakeSession({})
    events = []
    controller = BookLoaderController(_config(tmp_path, page_count=0), session=session)

    with pytest.raises(InvalidPageCount):
        controller.run(progress=events.append)

    assert session.calls == []
    assert not (tmp_path / "scratch").exists()
    assert events[-1].state is RunState.ERROR
    assert isinstance(events[-1].error, InvalidPageCount)
    assert controller.state is RunState.ERROR


@pytest.mark.parametrize("page_count", [3, None])
def test_locked_destination_fails_before_any_download(tmp_path, page_count):
    session = _FakeSession({})
    events = []
    config = _config(tmp_path, page_count=page_count)

    with ExclusiveOutput(config.output_path):
        with pytest.raises(DestinationLocked):
            BookLoaderController(config, session=session).run(progress=events.append)

    assert session.calls == []
    assert not (tmp_path / "scratch").exists()
    assert [e.state for e in events] == [RunState.PREPARING, RunState.ERROR]


def test_output_lock_released_after_run(tmp_path):
    session = _FakeSession({PAGE_URL.format(0): _FakeResponse(content=_png((10, 10)))})
    config = _config(tmp_path, page_count=1)

    BookLoaderController(config, session=session).run()

    assert not (tmp_path / "out" / "Book.pdf.lock").exists()
    with ExclusiveOutput(config.output_path):
        pass


def test_invalid_reference_fails(tmp_path):
    session = _FakeSession({})
    with pytest.raises(InvalidReferenceFormat):
        BookLoaderController(_config(tmp_path, reference="https://www.rfbr.ru/rffi/ru/"), session=session).run()
    assert session.calls == []


def test_page_count_read_from_reader_page(tmp_path):
    session = _FakeSession({
        BOOK_URL: _FakeResponse(text="<script>readerInitialization(2, 'o_36464')</script>"),
        PAGE_URL.format(0): _FakeResponse(content=_png((30, 60))),
        PAGE_URL.format(1): _FakeResponse(content=_png((60, 30))),
    })

    report = BookLoaderController(_config(tmp_path, page_count=None), session=session).run()

    assert report.page_count == 2
    assert session.calls[0] == BOOK_URL
    assert len(_page_sizes(tmp_path / "out" / "Book.pdf")) == 2


def test_missing_page_count_literal_is_reported(tmp_path):
    session = _FakeSession({BOOK_URL: _FakeResponse(text="<html>maintenance</html>")})
    with pytest.raises(PageCountUnavailable):
        BookLoaderController(_config(tmp_path, page_count=None), session=session).run()


def test_scratch_removed_after_success_unless_kept(tmp_path):
    routes = {PAGE_URL.format(0): _FakeResponse(content=_png((10, 10)))}

    report = BookLoaderController(_config(tmp_path, page_count=1), session=_FakeSession(routes)).run()
    assert report.scratch_dir is None
    assert list((tmp_path / "scratch").iterdir()) == []

    kept = BookLoaderController(_config(tmp_path, page_count=1, keep_scratch=True),
                                session=_FakeSession(routes)).run()
    assert Path(kept.scratch_dir).is_dir()


def test_unexpected_error_is_wrapped(tmp_path):
    session = _FakeSession({PAGE_URL.format(0): _FakeResponse(content=_png((10, 10)))})
    events = []

    def explode(event):
        events.append(event)
        if event.state is RunState.BUILDING and event.current:
            raise KeyError("ui went away")

    with pytest.raises(Fatal) as info:
        BookLoaderController(_config(tmp_path, page_count=1), session=session).run(progress=explode)

    assert isinstance(info.value.cause, KeyError)
    assert events[-1].state is RunState.ERROR
    assert not (tmp_path / "out" / "Book.pdf").exists()


def test_run_config_validation():
    with pytest.raises(ValueError):
        RunConfig(reference=BOOK_URL, concurrency=0).validate()
    with pytest.raises(ValueError):
        RunConfig(reference=BOOK_URL, jpeg_quality=101).validate()
    with pytest.raises(ValueError):
        RunConfig(reference=BOOK_URL, request_timeout=0).validate()


def test_cli_downloads_book(tmp_path, monkeypatch, capsys):
    session = _FakeSession({
        PAGE_URL.format(0): _FakeResponse(content=_png((40, 80))),
        PAGE_URL.format(1): _FakeResponse(content=_png((80, 40))),
    })
    monkeypatch.setattr("rfbr_loader.core.controller.create_session", lambda: session)
    output = tmp_path / "Book.pdf"

    code = cli.main([BOOK_URL, "--pages", "2", "--output", str(output),
                     "--log-dir", str(tmp_path / "logs")])

    assert code == 0
    assert len(_page_sizes(output)) == 2
    assert "Saved 2 of 2 pages" in capsys.readouterr().out


def test_cli_rejects_zero_pages(tmp_path, capsys):
    code = cli.main([BOOK_URL, "--pages", "0", "--output", str(tmp_path / "Book.pdf"),
                     "--log-dir", str(tmp_path / "logs")])

    assert code == 1
    assert "Page count must be a positive integer" in capsys.readouterr().err
