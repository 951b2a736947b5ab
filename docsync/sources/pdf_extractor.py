"""PDF to plain text with pypdf."""

import io
import logging

from pypdf import PdfReader

from .base import TextExtractor

logger = logging.getLogger(__name__)

# Below this many characters a PDF is most likely scanned images
MIN_TEXT_CHARS = 30


class PdfTextExtractor(TextExtractor):
    """Extracts the text layer of a PDF. Failure yields an empty string."""

    def extract(self, data: bytes) -> str:
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [(page.extract_text() or "").strip() for page in reader.pages]
        except Exception as e:
            logger.warning(f"PDF extraction failed: {e}")
            return ""

        text = "\n\n".join(page for page in pages if page)
        if len(text) < MIN_TEXT_CHARS:
            logger.warning(f"PDF has no usable text layer ({len(text)} chars)")
        return text
