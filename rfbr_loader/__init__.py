"""
RFBR Loader: Book Page Downloader & PDF Builder

A desktop utility that downloads the scanned page images of a book from the
RFBR digital library, converts every page to JPEG and assembles the pages
into a single paginated PDF.
"""

__version__ = "2.0"
__author__ = "RFBR Loader Project"
__description__ = "Book Page Downloader & PDF Builder"
