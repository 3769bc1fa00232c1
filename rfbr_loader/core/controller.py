"""
RFBR Loader Orchestrator: runs one book download end to end.

Preparing (identifier, page count, tasks) -> Fetching (bounded parallel
downloads, full join) -> Building (sequential PDF assembly) -> Idle, or Error
on any unrecovered failure. Status changes are reported through a callback;
the controller never touches UI objects.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, List, Dict, Any

import requests

from .errors import BookLoaderError, Fatal
from .page_locator import PageLocator, READER_PREFIX, PAGE_PREFIX
from .fetcher import BoundedFetcher, FetchResult, create_session, DEFAULT_CONCURRENCY
from .normalizer import PageNormalizer
from .assembler import DocumentAssembler, DEFAULT_MAX_DIMENSION
from .logger import ErrorTracker
from rfbr_loader.utils.file_manager import ScratchStorage, ExclusiveOutput
from rfbr_loader.utils.validators import extract_book_id, validate_page_count


class RunState(enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    FETCHING = "fetching"
    BUILDING = "building"
    ERROR = "error"


@dataclass(frozen=True)
class StatusEvent:
    """
    One state transition or progress tick.

    ``current`` counts settled pages while fetching and is the 1-based
    position of the last appended page while building.
    """
    state: RunState
    current: int = 0
    total: int = 0
    message: str = ""
    error: Optional[BaseException] = None


@dataclass
class RunConfig:
    reference: str
    page_count: Optional[int] = None  # None = read from the reader page
    output_path: str = "Book.pdf"
    concurrency: int = DEFAULT_CONCURRENCY
    request_timeout: float = 30.0
    max_dimension: int = DEFAULT_MAX_DIMENSION
    jpeg_quality: int = 85
    scratch_root: Optional[str] = None
    keep_scratch: bool = False
    reader_prefix: str = READER_PREFIX
    page_prefix: str = PAGE_PREFIX

    def validate(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {self.request_timeout}")
        if self.max_dimension < 1:
            raise ValueError(f"max_dimension must be positive, got {self.max_dimension}")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be within 1..100, got {self.jpeg_quality}")


@dataclass
class RunReport:
    book_id: str
    page_count: int
    output_path: str
    fetched: int = 0
    failed_pages: List[int] = field(default_factory=list)
    appended_pages: List[int] = field(default_factory=list)
    skipped_pages: List[int] = field(default_factory=list)
    scratch_dir: Optional[str] = None
    errors: Dict[str, Any] = field(default_factory=dict)


StatusCallback = Callable[[StatusEvent], None]


class BookLoaderController:
    def __init__(self, config: RunConfig,
                 session: Optional[requests.Session] = None,
                 logger: Optional[logging.Logger] = None):
        config.validate()
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.session = session or create_session()
        self.locator = PageLocator(session=self.session,
                                   request_timeout=config.request_timeout,
                                   reader_prefix=config.reader_prefix,
                                   page_prefix=config.page_prefix)
        self.fetcher = BoundedFetcher(session=self.session,
                                      concurrency=config.concurrency,
                                      request_timeout=config.request_timeout)
        self.assembler = DocumentAssembler(normalizer=PageNormalizer(config.jpeg_quality),
                                           max_dimension=config.max_dimension)
        self.tracker = ErrorTracker(self.logger)
        self.state = RunState.IDLE
        self._status: Optional[StatusCallback] = None

    def _emit(self, state: RunState, current: int = 0, total: int = 0,
              message: str = "", error: Optional[BaseException] = None) -> None:
        self.state = state
        if self._status:
            self._status(StatusEvent(state=state, current=current, total=total,
                                     message=message, error=error))

    def run(self, progress: Optional[StatusCallback] = None) -> RunReport:
        """
        Download the configured book and build the PDF.

        Returns:
            RunReport describing the finished run

        Raises:
            BookLoaderError: On any unrecovered failure, after an ERROR event
        """
        self._status = progress
        try:
            return self._run()
        except BookLoaderError as e:
            self.tracker.log_error(e, context=self.state.value)
            self._emit(RunState.ERROR, message=str(e), error=e)
            raise
        except Exception as e:
            fatal = Fatal(e)
            self.tracker.log_error(e, context=self.state.value)
            self._emit(RunState.ERROR, message=str(fatal), error=fatal)
            raise fatal from e

    def _run(self) -> RunReport:
        cfg = self.config
        self._emit(RunState.PREPARING, message="Preparing download...")

        book_id = extract_book_id(cfg.reference)
        page_count = validate_page_count(cfg.page_count) if cfg.page_count is not None else None
        # Claim the destination before any network call
        with ExclusiveOutput(cfg.output_path) as output:
            if page_count is None:
                page_count = self.locator.fetch_page_count(book_id)
            report = self._download(book_id, page_count, output)

        self._emit(RunState.IDLE, len(report.appended_pages), page_count,
                   message="Download complete")
        return report

    def _download(self, book_id: str, page_count: int, output: ExclusiveOutput) -> RunReport:
        cfg = self.config
        self.logger.info(f"Starting book {book_id}: {page_count} pages -> {output.output_path}")

        scratch = ScratchStorage(cfg.scratch_root)
        tasks = self.locator.build_tasks(book_id, page_count, scratch)
        report = RunReport(book_id=book_id, page_count=page_count,
                           output_path=output.output_path, scratch_dir=str(scratch.path))

        # Phase 1: fetch every page, full join
        settled = 0

        def on_settled(result: FetchResult) -> None:
            nonlocal settled
            settled += 1
            if not result.success:
                self.tracker.log_warning(str(result.error), context="fetch",
                                         page_index=result.page_index, error=result.error)
            self._emit(RunState.FETCHING, settled, page_count,
                       message=f"Downloading page {settled} of {page_count}")

        self._emit(RunState.FETCHING, 0, page_count, message="Downloading pages...")
        results = self.fetcher.fetch_all(tasks, on_settled=on_settled)
        report.fetched = sum(1 for r in results if r.success)
        report.failed_pages = [r.page_index for r in results if not r.success]

        # Phase 2: build the document in page order
        def on_appended(page_index: int, total: int) -> None:
            self._emit(RunState.BUILDING, page_index + 1, total,
                       message=f"Building document: page {page_index + 1} of {total}")

        self._emit(RunState.BUILDING, 0, page_count, message="Building document...")
        try:
            assembled = self.assembler.assemble(tasks, output.output_path,
                                                on_appended=on_appended, output=output)
        except Exception:
            self.logger.info(f"Scratch files kept for inspection: {scratch.path}")
            raise
        report.output_path = assembled.output_path
        report.appended_pages = assembled.appended
        report.skipped_pages = assembled.skipped

        if cfg.keep_scratch:
            self.logger.info(f"Scratch files kept at: {scratch.path}")
        else:
            scratch.cleanup()
            report.scratch_dir = None

        report.errors = self.tracker.get_error_summary()
        self.logger.info(f"Book {book_id} saved to {report.output_path}: "
                         f"{len(report.appended_pages)} pages, {len(report.failed_pages)} failed downloads, "
                         f"{len(report.skipped_pages)} skipped")
        return report
