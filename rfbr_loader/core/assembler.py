"""
PDF Assembly Module (ReportLab-backed)

Builds the output book from converted page images. Pages are appended in
ascending page order, one image per PDF page, each scaled uniformly so its
larger side equals the configured bound.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from reportlab.pdfgen import canvas

from .errors import PageConversionFailed
from .normalizer import PageNormalizer, NormalizedPage, ConversionError
from .page_locator import PageTask
from rfbr_loader.utils.file_manager import ExclusiveOutput


DEFAULT_MAX_DIMENSION = 800


@dataclass
class AssemblyResult:
    output_path: str
    appended: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)


class DocumentAssembler:
    """Appends normalized pages into a single PDF."""

    def __init__(self, normalizer: Optional[PageNormalizer] = None,
                 max_dimension: int = DEFAULT_MAX_DIMENSION):
        if max_dimension < 1:
            raise ValueError(f"max_dimension must be positive, got {max_dimension}")
        self.normalizer = normalizer or PageNormalizer()
        self.max_dimension = max_dimension
        self.logger = logging.getLogger(__name__)

    def scale_percent(self, width: int, height: int) -> float:
        """Scale factor, in percent, that maps max(width, height) onto the bound."""
        return self.max_dimension / max(width, height) * 100.0

    def assemble(self,
                 tasks: List[PageTask],
                 output_path: str,
                 on_appended: Optional[Callable[[int, int], None]] = None,
                 output: Optional[ExclusiveOutput] = None) -> AssemblyResult:
        """
        Build the PDF at output_path.

        Args:
            tasks: Page tasks whose raw files are already downloaded
            output_path: Target PDF path, created or overwritten
            on_appended: Called with (page_index, total) after each appended page
            output: Already acquired handle on output_path; the caller keeps
                ownership and releases it. Acquired here when omitted.

        Returns:
            AssemblyResult listing appended and skipped page indices

        Raises:
            DestinationLocked: If another writer holds the output, or the
                finished file cannot replace it
            PageConversionFailed: If any non-empty page cannot be decoded
        """
        owned = output is None
        if owned:
            output = ExclusiveOutput(output_path).acquire()

        result = AssemblyResult(output_path=output.output_path)
        total = len(tasks)
        try:
            pdf = canvas.Canvas(output.part_path)
            pdf.setCreator("RFBR Loader")

            for task in sorted(tasks, key=lambda t: t.page_index):
                page = self.normalizer.normalize(task.page_index, task.raw_path, task.normalized_path)
                if page is None:
                    result.skipped.append(task.page_index)
                    continue
                if isinstance(page, ConversionError):
                    raise PageConversionFailed(page.page_index, page.reason)

                self._append_page(pdf, page)
                result.appended.append(task.page_index)
                self.logger.debug(f"Appended page {task.page_index} into PDF")
                if on_appended:
                    on_appended(task.page_index, total)

            if not result.appended:
                self.logger.warning("No pages with content; the document is empty")
            pdf.save()
            output.commit()
        finally:
            if owned:
                output.release()

        self.logger.info(f"Successfully generated PDF: {result.output_path} "
                         f"({len(result.appended)} pages, {len(result.skipped)} skipped)")
        return result

    def _append_page(self, pdf: canvas.Canvas, page: NormalizedPage) -> None:
        scale = self.scale_percent(page.width, page.height) / 100.0
        width = page.width * scale
        height = page.height * scale
        pdf.setPageSize((width, height))
        pdf.drawImage(page.path, 0, 0, width=width, height=height)
        pdf.showPage()
