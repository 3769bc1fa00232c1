"""
Page Locator for the RFBR digital library

This module turns a book identifier and a page count into the ordered list of
page download tasks, and can ask the library's reader page for the page count
when the caller does not know it.
"""

import re
import logging
from dataclasses import dataclass
from typing import List, Optional

import requests

from .errors import InvalidPageCount, PageCountUnavailable
from .fetcher import create_session
from rfbr_loader.utils.file_manager import ScratchStorage


READER_PREFIX = "https://www.rfbr.ru/rffi/ru/books/o_"
PAGE_PREFIX = "https://www.rfbr.ru/rffi/djvu_page?objectId="


@dataclass(frozen=True)
class PageTask:
    book_id: str
    page_index: int
    source_url: str
    raw_path: str
    normalized_path: str


class PageLocator:
    """
    Builds per-page fetch locations for one book.

    Page URLs follow ``<page_prefix><book_id>&page=<index>`` with a zero-based
    index. The reader page embeds ``readerInitialization(<pages>`` in its
    inline script, which is where the page count comes from.
    """

    PAGE_COUNT_PATTERN = re.compile(r'readerInitialization\((\d+)')

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 request_timeout: float = 30.0,
                 reader_prefix: str = READER_PREFIX,
                 page_prefix: str = PAGE_PREFIX):
        """
        Args:
            session: Shared HTTP session; a new one is created when omitted
            request_timeout: Timeout in seconds for the reader page request
            reader_prefix: URL prefix of the book reader page
            page_prefix: URL prefix of the page image endpoint
        """
        self.session = session or create_session()
        self.request_timeout = request_timeout
        self.reader_prefix = reader_prefix
        self.page_prefix = page_prefix
        self.logger = logging.getLogger(__name__)

    def page_url(self, book_id: str, page_index: int) -> str:
        return f"{self.page_prefix}{book_id}&page={page_index}"

    def reader_url(self, book_id: str) -> str:
        return f"{self.reader_prefix}{book_id}#1"

    def build_tasks(self, book_id: str, page_count: int, scratch: ScratchStorage) -> List[PageTask]:
        """
        Produce one task per page, ordered by page index.

        Raises:
            InvalidPageCount: If page_count is not positive
        """
        if isinstance(page_count, bool) or not isinstance(page_count, int) or page_count <= 0:
            raise InvalidPageCount(page_count)

        tasks = [
            PageTask(
                book_id=book_id,
                page_index=i,
                source_url=self.page_url(book_id, i),
                raw_path=scratch.raw_path(i),
                normalized_path=scratch.normalized_path(i),
            )
            for i in range(page_count)
        ]
        self.logger.debug(f"Built {len(tasks)} page tasks for book {book_id}")
        return tasks

    def fetch_page_count(self, book_id: str) -> int:
        """
        Read the page count from the book's reader page.

        Raises:
            PageCountUnavailable: If the page cannot be fetched or lacks the literal
        """
        url = self.reader_url(book_id)
        self.logger.info(f"Querying page count for book {book_id}")
        self.logger.debug(f"Reader URL: {url}")

        try:
            response = self.session.get(url, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Reader page request failed for book {book_id}: {e}")
            raise PageCountUnavailable(book_id, f"reader page request failed: {e}") from e

        match = self.PAGE_COUNT_PATTERN.search(response.text or "")
        if match is None:
            self.logger.error(f"No readerInitialization literal on reader page of book {book_id}")
            raise PageCountUnavailable(book_id)

        page_count = int(match.group(1))
        if page_count <= 0:
            raise PageCountUnavailable(book_id, f"reader page declares {page_count} pages")

        self.logger.info(f"Book {book_id} has {page_count} pages")
        return page_count
