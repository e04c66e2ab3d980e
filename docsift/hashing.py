"""Content and filename fingerprints used for duplicate detection."""

import hashlib
import re
from pathlib import PurePath

_WHITESPACE = re.compile(r"\s+")
_NAME_SEPARATORS = re.compile(r"[_\-.]+")


def normalize_text(content: str) -> str:
    """Collapse whitespace runs so cosmetic re-saves keep the same identity."""
    return _WHITESPACE.sub(" ", content).strip()


def normalize_filename(filename: str) -> str:
    """
    Reduce a filename to comparable words.

    Drops directories and the final extension, lowercases, and treats
    ``_``, ``-`` and ``.`` as word separators:

        >>> normalize_filename("uploads/Q3_Pricing-Sheet.v2.PDF")
        'q3 pricing sheet v2'
    """
    name = PurePath(filename.replace("\\", "/")).name
    stem = name.rsplit(".", 1)[0] if "." in name.strip(".") else name
    stem = _NAME_SEPARATORS.sub(" ", stem.lower())
    return _WHITESPACE.sub(" ", stem).strip()


class ContentHasher:
    """SHA-256 fingerprints over normalised content and filenames."""

    def hash(self, content: str) -> str:
        return hashlib.sha256(normalize_text(content).encode("utf-8")).hexdigest()

    def name_hash(self, filename: str) -> str:
        return hashlib.sha256(normalize_filename(filename).encode("utf-8")).hexdigest()
