"""Text normalization applied to documents before chunking."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

_WHITESPACE_PATTERN = re.compile(r"\s+")
_SPECIAL_CHARS_PATTERN = re.compile(r"[^\w\s.,!?-]")


@dataclass(frozen=True, slots=True)
class CleaningOptions:
    """Cleaning rules selected in the ingestion stage."""

    remove_whitespace: bool = False
    remove_special_chars: bool = False
    normalize_unicode: bool = False

    @property
    def is_noop(self) -> bool:
        return not (self.remove_whitespace or self.remove_special_chars or self.normalize_unicode)


def clean_text(text: str, options: CleaningOptions) -> str:
    """Return ``text`` with the selected cleaning rules applied."""

    cleaned = text
    if options.normalize_unicode:
        cleaned = unicodedata.normalize("NFKC", cleaned)
    if options.remove_whitespace:
        # collapses newlines too, so header detection sees a single line
        cleaned = _WHITESPACE_PATTERN.sub(" ", cleaned).strip()
    if options.remove_special_chars:
        cleaned = _SPECIAL_CHARS_PATTERN.sub("", cleaned)
    return cleaned


__all__ = ["CleaningOptions", "clean_text"]
