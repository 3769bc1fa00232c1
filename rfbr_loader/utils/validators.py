"""
Input Validation Utilities

This module extracts book identifiers from user-supplied references and
validates declared page counts before a run starts.
"""

import re
from typing import Tuple, Optional, Union
import logging

from rfbr_loader.core.errors import InvalidReferenceFormat, InvalidPageCount


class ReferenceValidator:
    """
    Parses book references of the form ``.../books/o_<digits>``.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

        # Book pages live under /books/o_<id>; the digit run is the identifier
        self.book_pattern = re.compile(r'books/o_(\d+)')

    def extract_book_id(self, reference: str) -> str:
        """
        Extract the book identifier from a reference string.

        Args:
            reference: Book URL or any text containing ``books/o_<digits>``

        Returns:
            The digit run as a string

        Raises:
            InvalidReferenceFormat: If the reference does not contain the pattern
        """
        if not reference or not isinstance(reference, str):
            raise InvalidReferenceFormat(str(reference or ""))

        match = self.book_pattern.search(reference)
        if match is None:
            self.logger.debug(f"No book identifier in reference: {reference!r}")
            raise InvalidReferenceFormat(reference)

        return match.group(1)

    def validate_reference(self, reference: str) -> Tuple[bool, str, str]:
        """
        Non-raising variant used by the GUI.

        Returns:
            Tuple of (is_valid, book_id, error_message)
        """
        try:
            return True, self.extract_book_id(reference), ""
        except InvalidReferenceFormat as e:
            return False, "", str(e)


_validator_instance: Optional[ReferenceValidator] = None


def get_validator() -> ReferenceValidator:
    """Return a singleton ReferenceValidator instance."""
    global _validator_instance
    if _validator_instance is None:
        _validator_instance = ReferenceValidator()
    return _validator_instance


def extract_book_id(reference: str) -> str:
    """Convenience wrapper around ReferenceValidator.extract_book_id."""
    return get_validator().extract_book_id(reference)


def validate_reference(reference: str) -> Tuple[bool, str, str]:
    """Convenience wrapper used by the GUI."""
    return get_validator().validate_reference(reference)


def validate_page_count(page_count: Union[int, str]) -> int:
    """
    Coerce and validate a declared page count.

    Accepts integers and decimal strings (as typed into the GUI).

    Raises:
        InvalidPageCount: If the value is not a positive integer
    """
    if isinstance(page_count, bool):
        raise InvalidPageCount(page_count)
    if isinstance(page_count, str):
        text = page_count.strip()
        if not re.fullmatch(r'[+-]?\d+', text):
            raise InvalidPageCount(page_count)
        value = int(text)
    elif isinstance(page_count, int):
        value = page_count
    else:
        raise InvalidPageCount(page_count)

    if value <= 0:
        raise InvalidPageCount(page_count)
    return value
