from pathlib import Path
from typing import Optional

from loguru import logger
from pdfminer.high_level import extract_pages
from pdfminer.layout import LTTextContainer
from pdfminer.pdfdocument import PDFDocument
from pdfminer.pdfparser import PDFParser
from pdfminer.pdftypes import resolve1
from pdfminer.utils import decode_text

from .models import ExtractedDocument


class ExtractionError(OSError):
    """PDF could not be read (corrupt, encrypted, not a PDF)."""


def _info_field(info: dict, key: str) -> Optional[str]:
    value = resolve1(info.get(key))
    if isinstance(value, bytes):
        value = decode_text(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def read_metadata(path: Path) -> tuple[Optional[str], Optional[str]]:
    with open(path, "rb") as fp:
        doc = PDFDocument(PDFParser(fp))
        info = doc.info[0] if doc.info else {}
        return _info_field(info, "Title"), _info_field(info, "Author")


def extract_pdf(path: Path | str) -> ExtractedDocument:
    """Per-page raw text plus title/author from the document info dictionary."""
    path = Path(path)
    try:
        title, author = read_metadata(path)
        pages = []
        for layout in extract_pages(path):
            pages.append("".join(el.get_text() for el in layout if isinstance(el, LTTextContainer)))
    except Exception as e:
        raise ExtractionError(f"failed to extract {path.name}: {e}") from e
    logger.debug(f"Extracted {len(pages)} pages from {path.name}")
    return ExtractedDocument(pages=pages, title=title, author=author)
