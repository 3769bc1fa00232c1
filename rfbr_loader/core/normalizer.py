"""
Page Normalizer

Converts downloaded page images (PNG as served by the library) into JPEG
files that the document assembler embeds. Decode failures are returned as
values instead of being raised; the caller decides how fatal they are.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional, Union

from PIL import Image


@dataclass(frozen=True)
class NormalizedPage:
    page_index: int
    path: str
    width: int
    height: int


@dataclass(frozen=True)
class ConversionError:
    page_index: int
    reason: str


NormalizeResult = Optional[Union[NormalizedPage, ConversionError]]


class PageNormalizer:
    """Re-encodes raw page images as RGB JPEG."""

    def __init__(self, jpeg_quality: int = 85):
        self.jpeg_quality = int(max(1, min(100, jpeg_quality)))
        self.logger = logging.getLogger(__name__)

    def normalize(self, page_index: int, raw_path: str, normalized_path: str) -> NormalizeResult:
        """
        Convert one raw page.

        Returns:
            None if the raw file is missing or empty (the page is absent),
            a NormalizedPage on success, or a ConversionError when the image
            cannot be decoded or encoded.
        """
        if not os.path.exists(raw_path) or os.path.getsize(raw_path) == 0:
            self.logger.info(f"Page {page_index} is empty, skipping")
            return None

        try:
            with Image.open(raw_path) as im:
                im.load()
                rgb = self._to_rgb(im)
            rgb.save(normalized_path, format="JPEG", quality=self.jpeg_quality, optimize=True)
            width, height = rgb.size
        except (OSError, ValueError, MemoryError, Image.DecompressionBombError) as e:
            self.logger.error(f"Failed to convert page {page_index} ({raw_path}): {e}")
            if os.path.exists(normalized_path):
                os.remove(normalized_path)
            return ConversionError(page_index=page_index, reason=f"{type(e).__name__}: {e}")

        self.logger.debug(f"Page {page_index} converted to JPEG ({width}x{height})")
        return NormalizedPage(page_index=page_index, path=normalized_path, width=width, height=height)

    @staticmethod
    def _to_rgb(im: Image.Image) -> Image.Image:
        # Transparent areas become white instead of black
        if im.mode in ("RGBA", "LA") or (im.mode == "P" and "transparency" in im.info):
            rgba = im.convert("RGBA")
            bg = Image.new("RGB", rgba.size, (255, 255, 255))
            bg.paste(rgba, mask=rgba.split()[3])
            return bg
        return im.convert("RGB")
