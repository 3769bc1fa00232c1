"""
Error Taxonomy

Exceptions raised by the download pipeline. Every error the controller can
surface derives from BookLoaderError so front ends can catch a single type.
"""

from typing import Optional


class BookLoaderError(Exception):
    """Base class for all pipeline errors."""


class InvalidReferenceFormat(BookLoaderError):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(
            f"Invalid book reference: {reference!r}. "
            "Example: https://www.rfbr.ru/rffi/ru/books/o_36464"
        )


class InvalidPageCount(BookLoaderError):
    def __init__(self, page_count):
        self.page_count = page_count
        super().__init__(f"Page count must be a positive integer, got {page_count!r}")


class PageCountUnavailable(BookLoaderError):
    def __init__(self, book_id: str, reason: str = "page count literal not found"):
        self.book_id = book_id
        self.reason = reason
        super().__init__(f"Could not determine the page count of book {book_id}: {reason}")


class FetchFailed(BookLoaderError):
    """
    A single page download failed.

    Recorded on the failed FetchResult rather than raised; the page is then
    treated as absent and the run continues.
    """

    def __init__(self, page_index: int, cause: Optional[BaseException] = None):
        self.page_index = page_index
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to download page {page_index + 1}{detail}")


class PageConversionFailed(BookLoaderError):
    def __init__(self, page_index: int, reason: str = ""):
        self.page_index = page_index
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Failed to convert page {page_index + 1} to JPEG{detail}")


class DestinationLocked(BookLoaderError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Output file is locked by another writer: {path}")


class Fatal(BookLoaderError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Unexpected failure: {type(cause).__name__}: {cause}")
