"""
Text Extraction
═══════════════

Turns raw file bytes into analysable text.

Strategy by MIME type:
  text/*, application/json, text/csv     → UTF-8 decode (undecodable bytes replaced)
  application/pdf                        → pypdf, one block per page
  application/vnd...wordprocessingml     → python-docx, non-empty paragraphs
  image/*, audio/*, video/*              → metadata-only description
  application/msword (legacy binary .doc) → metadata-only description

PDF and DOCX parsing is CPU-bound and runs in a worker thread so the event
loop keeps serving other invocations.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass

from skimmer.core.exceptions import TextExtractionError

logger = logging.getLogger(__name__)

DOCX_MIME   = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MSWORD_MIME = "application/msword"

TEXT_MIME_TYPES: frozenset[str] = frozenset({
    "text/plain",
    "text/markdown",
    "text/html",
    "text/csv",
    "application/json",
})

MEDIA_MIME_TYPES: frozenset[str] = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "video/mp4",
    "audio/mpeg",
    "audio/wav",
})

# No parser in the stack reads the binary .doc format.
DESCRIBED_MIME_TYPES: frozenset[str] = MEDIA_MIME_TYPES | {MSWORD_MIME}

SUPPORTED_MIME_TYPES: frozenset[str] = (
    TEXT_MIME_TYPES | DESCRIBED_MIME_TYPES | {"application/pdf", DOCX_MIME}
)


@dataclass
class TextExtractionResult:
    text:        str
    method:      str             # utf8 | pypdf | python-docx | metadata
    confidence:  float
    page_count:  int = 1

    @property
    def word_count(self) -> int:
        return len(self.text.split())


class TextExtractionService:
    def is_supported(self, mime_type: str) -> bool:
        return mime_type in SUPPORTED_MIME_TYPES

    async def extract(self, content: bytes, mime_type: str) -> TextExtractionResult:
        if not self.is_supported(mime_type):
            raise TextExtractionError(f"Unsupported file type for text extraction: {mime_type}")

        try:
            if mime_type in TEXT_MIME_TYPES:
                result = TextExtractionResult(
                    text=content.decode("utf-8", errors="replace"),
                    method="utf8",
                    confidence=1.0,
                )
            elif mime_type == "application/pdf":
                result = await asyncio.to_thread(_extract_pdf, content)
            elif mime_type == DOCX_MIME:
                result = await asyncio.to_thread(_extract_docx, content)
            else:
                result = _describe(content, mime_type)
        except Exception as exc:
            logger.warning("Text extraction failed | mime=%s error=%s", mime_type, exc)
            raise TextExtractionError(f"Text extraction failed for {mime_type}: {exc}") from exc

        logger.debug(
            "Text extracted | mime=%s method=%s words=%d pages=%d",
            mime_type, result.method, result.word_count, result.page_count,
        )
        return result


def _extract_pdf(data: bytes) -> TextExtractionResult:
    """Extract text from PDF bytes using pypdf."""
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return TextExtractionResult(
        text="\n\n".join(pages),
        method="pypdf",
        confidence=0.9,
        page_count=len(pages),
    )


def _extract_docx(data: bytes) -> TextExtractionResult:
    """Extract text from DOCX bytes using python-docx."""
    import docx

    doc = docx.Document(io.BytesIO(data))
    return TextExtractionResult(
        text="\n".join(para.text for para in doc.paragraphs if para.text.strip()),
        method="python-docx",
        confidence=0.9,
    )


def _describe(data: bytes, mime_type: str) -> TextExtractionResult:
    kind = "Word document" if mime_type == MSWORD_MIME else mime_type.split("/", 1)[0].capitalize() + " file"
    return TextExtractionResult(
        text=f"{kind} ({mime_type}), {len(data) / 1024:.1f} KB. "
             f"No text layer available.",
        method="metadata",
        confidence=0.3,
    )
