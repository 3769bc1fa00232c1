"""Command line front end: download one book into a PDF without the GUI."""

from __future__ import annotations

import argparse
import logging
import sys

from rfbr_loader.core.controller import BookLoaderController, RunConfig, RunState, StatusEvent
from rfbr_loader.core.errors import BookLoaderError
from rfbr_loader.core.logger import initialize_logging


def _print_status(event: StatusEvent) -> None:
    if event.state in (RunState.FETCHING, RunState.BUILDING) and event.total:
        print(f"[{event.state.value}] {event.current}/{event.total} {event.message}", flush=True)
    elif event.state is not RunState.ERROR:
        print(event.message, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Download a book from the RFBR library as a PDF")
    parser.add_argument("reference", help="Book URL, e.g. https://www.rfbr.ru/rffi/ru/books/o_36464")
    parser.add_argument("--pages", type=int, default=None,
                        help="Number of pages (read from the reader page when omitted)")
    parser.add_argument("--output", default="Book.pdf", help="Output PDF path")
    parser.add_argument("--concurrency", type=int, default=8, help="Parallel page downloads")
    parser.add_argument("--timeout", type=float, default=30.0, help="Per-request timeout in seconds")
    parser.add_argument("--max-dimension", type=int, default=800,
                        help="Larger side of each PDF page, in points")
    parser.add_argument("--keep-scratch", action="store_true", help="Keep downloaded page images")
    parser.add_argument("--log-dir", default="logs", help="Directory for log files")
    parser.add_argument("--verbose", action="store_true", help="Debug output on the console")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    initialize_logging(args.log_dir, logging.DEBUG if args.verbose else logging.WARNING)

    config = RunConfig(
        reference=args.reference,
        page_count=args.pages,
        output_path=args.output,
        concurrency=args.concurrency,
        request_timeout=args.timeout,
        max_dimension=args.max_dimension,
        keep_scratch=args.keep_scratch,
    )
    try:
        controller = BookLoaderController(config)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    try:
        report = controller.run(progress=_print_status)
    except BookLoaderError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Saved {len(report.appended_pages)} of {report.page_count} pages to {report.output_path}")
    if report.failed_pages:
        failed = ", ".join(str(i + 1) for i in report.failed_pages)
        print(f"Pages that failed to download: {failed}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
