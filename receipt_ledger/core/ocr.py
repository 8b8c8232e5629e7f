"""
OCR functionality for turning receipt images (or scanned PDFs) into text.
"""

import asyncio
import io
from typing import Protocol

from .errors import RecognitionError
from .logging import get_logger
from .utils import PDF_MAGIC

logger = get_logger(__name__)


def _lazy_import_ocr_deps():
    """Lazy import heavy OCR dependencies."""
    global pytesseract, PIL_Image, fitz
    import importlib
    pytesseract = importlib.import_module("pytesseract")
    PIL_Image = importlib.import_module("PIL.Image")
    fitz = importlib.import_module("fitz")  # pymupdf


# Initialize on first use
pytesseract = None
PIL_Image = None
fitz = None


class TextExtractor(Protocol):
    """Anything that can read the text printed on a receipt image."""

    async def extract_text(self, image: bytes) -> str:
        ...


def _open_image(data: bytes):
    """Decode raw bytes into a grayscale PIL image."""
    if data.startswith(PDF_MAGIC):
        # Rasterize first page; receipts are single-page scans
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            if doc.page_count == 0:
                raise RecognitionError("PDF has no pages")
            pix = doc[0].get_pixmap(matrix=fitz.Matrix(2, 2), alpha=False)
            data = pix.tobytes("png")
        finally:
            doc.close()
    img = PIL_Image.open(io.BytesIO(data))
    img.load()
    # Improve OCR: convert to grayscale
    if img.mode != "L":
        img = img.convert("L")
    return img


def pdf_text_layer(data: bytes) -> str:
    """Extract the embedded text layer of a searchable PDF, if any."""
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return "\n".join(page.get_text() for page in doc)
    finally:
        doc.close()


class TesseractTextExtractor:
    """TextExtractor backed by Tesseract via pytesseract."""

    def __init__(self, lang: str = "eng", config: str = "--psm 6"):
        self.lang = lang
        self.config = config

    def _recognize(self, image: bytes) -> str:
        if pytesseract is None:
            _lazy_import_ocr_deps()

        if image.startswith(PDF_MAGIC):
            try:
                text = pdf_text_layer(image)
            except Exception as e:
                raise RecognitionError(f"Could not read PDF: {e}") from e
            if text.strip():
                return text

        try:
            img = _open_image(image)
        except RecognitionError:
            raise
        except Exception as e:
            raise RecognitionError(f"Could not decode image: {e}") from e

        try:
            return pytesseract.image_to_string(img, lang=self.lang, config=self.config)
        except Exception as e:
            raise RecognitionError(f"Tesseract failed: {e}") from e

    async def extract_text(self, image: bytes) -> str:
        """OCR raw image bytes; returns "" when no text is found."""
        if not image:
            raise RecognitionError("Empty image")
        # Run OCR in thread pool to avoid blocking the event loop
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self._recognize, image)
        text = (text or "").strip()
        if not text:
            logger.info("No text found in receipt image")
        else:
            logger.debug("OCR extracted %d line(s)", len(text.splitlines()))
        return text
