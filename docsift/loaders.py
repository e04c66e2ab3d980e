"""Document loading utilities for local files and stored sources."""

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from langchain_core.documents import Document as LCDocument
from langchain_community.document_loaders import (
    TextLoader,
    PyMuPDFLoader,
    DirectoryLoader,
)

from .errors import CorpusScanError

logger = logging.getLogger(__name__)

TEXT_PATTERNS = ("*.txt", "*.md", "*.mdx")
MARKDOWN_SUFFIXES = (".md", ".mdx")
PDF_MIME = "application/pdf"


@dataclass
class SourceText:
    """Extracted text of one file, ready for ingestion."""
    path: Path
    text: str
    mime_type: str
    byte_size: int


def guess_mime_type(path: Union[str, Path]) -> str:
    if Path(path).suffix.lower() in MARKDOWN_SUFFIXES:
        return "text/markdown"
    mime, _ = mimetypes.guess_type(str(path))
    return mime or "text/plain"


def _load_file(path: Path, mime_type: Optional[str] = None) -> List[LCDocument]:
    mime_type = mime_type or guess_mime_type(path)
    if mime_type == PDF_MIME or path.suffix.lower() == ".pdf":
        return PyMuPDFLoader(str(path)).load()
    return TextLoader(str(path), encoding="utf-8").load()


def _join_pages(docs: List[LCDocument]) -> str:
    return "\n".join((d.page_content or "") for d in docs).strip()


def read_source(path: Union[str, Path], mime_type: Optional[str] = None) -> str:
    """
    Re-read the original content of a stored document.

    Raises:
        CorpusScanError: The file is gone or cannot be parsed.
    """
    path = Path(path)
    if not path.is_file():
        raise CorpusScanError(f"Source file not found: {path}")
    try:
        return _join_pages(_load_file(path, mime_type))
    except Exception as e:
        raise CorpusScanError(f"Cannot read source file {path}: {e}") from e


def load_sources(
    sources: Union[str, Sequence[str]],
    *,
    recursive: bool = True,
) -> List[SourceText]:
    """
    Load text from files and directories.

    Supported:
    - Directories: .txt/.md/.mdx/.pdf files (recursively by default)
    - Files: loaded by extension (PDF via PyMuPDF, everything else as UTF-8 text)

    Multi-page documents are joined into one text per file. Unreadable
    files and files without text are skipped with a warning.

    Args:
        sources: Single path or list of paths
        recursive: Recursively scan directories

    Returns:
        One SourceText per readable file
    """
    if isinstance(sources, str):
        sources = [sources]

    pages: Dict[Path, List[LCDocument]] = {}

    for src in sources:
        path = Path(src)
        if path.is_dir():
            for pattern in (*TEXT_PATTERNS, "*.pdf"):
                loader = DirectoryLoader(
                    str(path),
                    glob=pattern,
                    recursive=recursive,
                    loader_cls=PyMuPDFLoader if pattern.endswith(".pdf") else TextLoader,
                    loader_kwargs=None if pattern.endswith(".pdf") else {"encoding": "utf-8"},
                    silent_errors=True,
                )
                try:
                    found = loader.load()
                except Exception as e:
                    logger.warning(f"Failed to load {pattern} from {src}: {e}")
                    continue
                for doc in found:
                    pages.setdefault(Path(doc.metadata.get("source", src)), []).append(doc)
            continue

        if not path.exists():
            logger.warning(f"File not found: {src}")
            continue
        try:
            pages.setdefault(path, []).extend(_load_file(path))
        except Exception as e:
            logger.warning(f"Failed to load {src}: {e}")

    out: List[SourceText] = []
    for path, docs in pages.items():
        text = _join_pages(docs)
        if not text:
            logger.warning(f"No extractable text in {path}")
            continue
        out.append(SourceText(
            path=path,
            text=text,
            mime_type=guess_mime_type(path),
            byte_size=path.stat().st_size,
        ))
    return out
