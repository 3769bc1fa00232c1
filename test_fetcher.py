#!/usr/bin/env python3
"""
Tests for the bounded page fetcher, without network.
"""

import os
import threading
import time

import pytest
import requests

from rfbr_loader.core.errors import FetchFailed
from rfbr_loader.core.fetcher import BoundedFetcher, FetchResult
from rfbr_loader.core.page_locator import PageLocator
from rfbr_loader.utils.file_manager import ScratchStorage


class _FakeResponse:
    def __init__(self, status_code=200, content=b"", fail_after_first_chunk=False):
        self.status_code = status_code
        self.content = content
        self.fail_after_first_chunk = fail_after_first_chunk

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]
            if self.fail_after_first_chunk:
                raise requests.exceptions.ChunkedEncodingError("connection broken")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _FakeSession:
    def __init__(self, by_page):
        self.by_page = by_page
        self.calls = []

    def get(self, url, timeout=None, stream=False):
        self.calls.append((url, timeout, stream))
        outcome = self.by_page[int(url.rsplit("=", 1)[1])]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _BlockingSession:
    """Holds every request until released and records peak concurrency."""

    def __init__(self, cap):
        self.cap = cap
        self.lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0
        self.cap_reached = threading.Event()
        self.release = threading.Event()

    def get(self, url, timeout=None, stream=False):
        with self.lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            if self.in_flight >= self.cap:
                self.cap_reached.set()
        self.release.wait(timeout=10)
        with self.lock:
            self.in_flight -= 1
        return _FakeResponse(content=b"page")


def _tasks(tmp_path, count, session):
    scratch = ScratchStorage(str(tmp_path))
    return PageLocator(session=session).build_tasks("36464", count, scratch)


def test_fetch_all_writes_raw_bytes_verbatim(tmp_path):
    payloads = {0: b"\x89PNG first", 1: b"second page" * 5000, 2: b""}
    session = _FakeSession({i: _FakeResponse(content=p) for i, p in payloads.items()})
    tasks = _tasks(tmp_path, 3, session)

    results = BoundedFetcher(session=session, concurrency=2, request_timeout=12).fetch_all(tasks)

    assert [r.page_index for r in results] == [0, 1, 2]
    assert all(r.success for r in results)
    for task, result in zip(tasks, results):
        with open(task.raw_path, "rb") as f:
            assert f.read() == payloads[task.page_index]
        assert result.byte_length == len(payloads[task.page_index])
    assert {timeout for _, timeout, _ in session.calls} == {12}
    assert all(stream for _, _, stream in session.calls)


def test_failed_page_does_not_stop_siblings(tmp_path):
    session = _FakeSession({
        0: _FakeResponse(content=b"zero"),
        1: requests.exceptions.ConnectionError("reset by peer"),
        2: _FakeResponse(status_code=500, content=b"oops"),
        3: requests.exceptions.Timeout("timed out"),
        4: _FakeResponse(content=b"four"),
    })
    tasks = _tasks(tmp_path, 5, session)

    results = BoundedFetcher(session=session, concurrency=3).fetch_all(tasks)

    assert [r.success for r in results] == [True, False, False, False, True]
    failed = results[1]
    assert isinstance(failed.error, FetchFailed)
    assert failed.error.page_index == 1
    assert isinstance(failed.error.cause, requests.exceptions.ConnectionError)
    assert not os.path.exists(tasks[2].raw_path)
    assert os.path.exists(tasks[4].raw_path)


def test_interrupted_download_leaves_no_raw_file(tmp_path):
    session = _FakeSession({0: _FakeResponse(content=b"x" * 20000, fail_after_first_chunk=True)})
    tasks = _tasks(tmp_path, 1, session)

    result = BoundedFetcher(session=session).fetch_page(tasks[0])

    assert not result.success
    assert not os.path.exists(tasks[0].raw_path)


def test_on_settled_called_once_per_page(tmp_path):
    session = _FakeSession({
        0: _FakeResponse(content=b"a"),
        1: requests.exceptions.ConnectionError("down"),
        2: _FakeResponse(content=b"c"),
    })
    tasks = _tasks(tmp_path, 3, session)
    settled = []

    BoundedFetcher(session=session).fetch_all(tasks, on_settled=settled.append)

    assert sorted(r.page_index for r in settled) == [0, 1, 2]
    assert all(isinstance(r, FetchResult) for r in settled)


def test_never_more_than_cap_in_flight(tmp_path):
    cap, extra = 4, 5
    session = _BlockingSession(cap)
    tasks = _tasks(tmp_path, cap + extra, session)
    fetcher = BoundedFetcher(session=session, concurrency=cap)
    outcome = {}

    worker = threading.Thread(target=lambda: outcome.setdefault("results", fetcher.fetch_all(tasks)))
    worker.start()
    try:
        assert session.cap_reached.wait(timeout=5)
        time.sleep(0.2)
        assert session.in_flight == cap
    finally:
        session.release.set()
        worker.join(timeout=10)

    assert not worker.is_alive()
    assert session.max_in_flight == cap
    assert len(outcome["results"]) == cap + extra
    assert all(r.success for r in outcome["results"])


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        BoundedFetcher(session=object(), concurrency=0)
