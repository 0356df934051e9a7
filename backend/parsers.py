# parsers.py
from __future__ import annotations
import io
import logging
from typing import Any, Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTS = {"pdf", "txt"}
MAX_TEXT_CHARS = 200000


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[-1].lower() in ALLOWED_EXTS


# ----------------------------
# Helpers
# ----------------------------
def _clean_text(b: bytes) -> str:
    """Decode plain-text uploads; UTF-8 first, latin-1 as a last resort."""
    try:
        return b.decode("utf-8")
    except UnicodeDecodeError:
        return b.decode("latin1", errors="ignore")


def _normalize(text: str) -> str:
    # pdf text comes back with ragged whitespace and NULs from some producers
    lines = [" ".join(line.replace("\x00", "").split()) for line in text.splitlines()]
    out: List[str] = []
    for line in lines:
        if line or (out and out[-1]):
            out.append(line)
    return "\n".join(out).strip()


def _extract_text_from_pdf(file_bytes: bytes) -> tuple[str, int]:
    """Extract visible text from a PDF using pypdf.

    This ignores images (no OCR), but grabs all text from all pages.
    """
    try:
        reader = PdfReader(io.BytesIO(file_bytes))
        pages = reader.pages
        chunks: List[str] = []
        for idx, page in enumerate(pages):
            try:
                t = page.extract_text() or ""
            except Exception as e:  # one broken page should not lose the rest
                logger.warning("Could not extract text from PDF page %d: %s", idx + 1, e)
                t = ""
            if t:
                chunks.append(t)
        text = "\n".join(chunks)
        logger.info("PDF text length: %d chars over %d pages", len(text), len(pages))
        return text, len(pages)
    except (PdfReadError, ValueError, OSError) as e:
        logger.warning("PdfReader failed: %s", e)
        raise ValidationError("Could not read the PDF. Try a different file or paste your resume text manually.") from e


def extract_resume_text(filename: str, file_bytes: bytes) -> Dict[str, Any]:
    """Plain resume text out of an uploaded .pdf or .txt file."""
    if not filename or not allowed_file(filename):
        raise ValidationError("Please upload a PDF or text file.")
    if not file_bytes:
        raise ValidationError("The uploaded file is empty.")

    pages: Optional[int] = None
    if filename.rsplit(".", 1)[-1].lower() == "pdf":
        raw, pages = _extract_text_from_pdf(file_bytes)
    else:
        raw = _clean_text(file_bytes)

    text = _normalize(raw)[:MAX_TEXT_CHARS]
    if not text:
        raise ValidationError(
            "Could not extract text from the file. Try a different file or paste your resume text manually."
        )
    return {"text": text, "pages": pages, "chars": len(text)}
