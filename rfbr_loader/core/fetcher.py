"""
Page Image Fetcher

This module downloads page images into scratch storage with a fixed cap on
the number of requests in flight. A failed page never aborts its siblings;
it is reported as a failed FetchResult and the page is treated as absent.
"""

from __future__ import annotations

import os
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, TYPE_CHECKING
from concurrent.futures import ThreadPoolExecutor, as_completed

import requests

from .errors import FetchFailed

if TYPE_CHECKING:
    from .page_locator import PageTask


USER_AGENT = 'RFBRLoader/2.0 (Book Page Downloader; Personal Use)'
DEFAULT_CONCURRENCY = 8
CHUNK_SIZE = 8192


def create_session() -> requests.Session:
    """Create an HTTP session with the loader's default headers."""
    session = requests.Session()
    session.headers.update({
        'User-Agent': USER_AGENT,
        'Accept': 'image/png,image/*;q=0.9,text/html;q=0.8,*/*;q=0.5',
        'Accept-Language': 'ru-RU,ru;q=0.9,en;q=0.5',
        'Connection': 'keep-alive',
    })
    return session


@dataclass(frozen=True)
class FetchResult:
    page_index: int
    success: bool
    byte_length: int = 0
    error: Optional[FetchFailed] = None


class BoundedFetcher:
    """
    Downloads page images with at most ``concurrency`` requests in flight.

    Raw bytes are written verbatim; image structure is not checked here.
    """

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 concurrency: int = DEFAULT_CONCURRENCY,
                 request_timeout: float = 30.0):
        """
        Args:
            session: Shared HTTP session; a new one is created when omitted
            concurrency: Maximum number of downloads running at once
            request_timeout: Timeout in seconds applied to every page request
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.session = session or create_session()
        self.concurrency = concurrency
        self.request_timeout = request_timeout
        self.logger = logging.getLogger(__name__)

    def fetch_page(self, task: PageTask) -> FetchResult:
        """
        Download one page to ``task.raw_path``.

        Network errors, timeouts and non-200 responses produce a failed
        result; nothing is raised.
        """
        try:
            with self.session.get(task.source_url, timeout=self.request_timeout, stream=True) as response:
                if response.status_code != 200:
                    raise requests.exceptions.HTTPError(
                        f"HTTP {response.status_code} for page {task.page_index}", response=response
                    )
                written = 0
                with open(task.raw_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)

            self.logger.debug(f"Page {task.page_index}: {written} bytes -> {task.raw_path}")
            return FetchResult(page_index=task.page_index, success=True, byte_length=written)

        except (requests.exceptions.RequestException, OSError) as e:
            self.logger.warning(f"Download failed for page {task.page_index}: {e}")
            # A half-written file would later be decoded as a corrupt page
            if os.path.exists(task.raw_path):
                os.remove(task.raw_path)
            return FetchResult(page_index=task.page_index, success=False,
                               error=FetchFailed(task.page_index, e))

    def fetch_all(self,
                  tasks: List[PageTask],
                  on_settled: Optional[Callable[[FetchResult], None]] = None) -> List[FetchResult]:
        """
        Download every task and wait until all of them have settled.

        Args:
            tasks: Page tasks in page order
            on_settled: Called once per task, in completion order, on the
                calling thread

        Returns:
            One FetchResult per task, ordered by page index
        """
        results: Dict[int, FetchResult] = {}
        total = len(tasks)
        self.logger.info(f"Starting download of {total} pages ({self.concurrency} parallel)")

        with ThreadPoolExecutor(max_workers=self.concurrency) as ex:
            futures = [ex.submit(self.fetch_page, task) for task in tasks]
            for fut in as_completed(futures):
                result = fut.result()
                results[result.page_index] = result
                if on_settled:
                    on_settled(result)

        failed = sum(1 for r in results.values() if not r.success)
        self.logger.info(f"Download complete: {total - failed} succeeded, {failed} failed")
        return [results[i] for i in sorted(results)]
