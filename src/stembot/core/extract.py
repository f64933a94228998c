"""Text extraction: PyMuPDF for PDFs, Tesseract OCR for images, decode for plain text."""

import asyncio
import io
import logging
import mimetypes
from pathlib import Path
from typing import Optional

import fitz  # PyMuPDF
import pytesseract
from PIL import Image, ImageFilter, ImageOps
from pydantic import BaseModel

from .errors import ExtractionError, UnsupportedFormatError
from .models import DocumentUpload

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
TEXT_MIMES = ("text/plain", "text/markdown")
IMAGE_PREFIX = "image/"

DEFAULT_MAX_FILE_SIZE_MB = 10.0
DEFAULT_OCR_MAX_WIDTH = 2000


class ExtractedText(BaseModel):
    """Text pulled out of an upload plus what we learned about its shape."""
    text: str
    pages: int = 1
    ocr: bool = False


class UploadCheck(BaseModel):
    valid: bool
    error: Optional[str] = None
    warning: Optional[str] = None
    size_mb: float = 0.0


def is_supported_mime(mime_type: str) -> bool:
    mime_type = (mime_type or "").lower()
    return mime_type == PDF_MIME or mime_type in TEXT_MIMES or mime_type.startswith(IMAGE_PREFIX)


def check_upload(upload: DocumentUpload, max_file_size_mb: float = DEFAULT_MAX_FILE_SIZE_MB) -> UploadCheck:
    """Check size and declared type before any extraction work happens."""
    size_mb = round(upload.byte_size / (1024 * 1024), 2)

    if size_mb > max_file_size_mb:
        return UploadCheck(
            valid=False,
            error=f"File size ({size_mb} MB) exceeds the maximum allowed size of {max_file_size_mb} MB",
            size_mb=size_mb,
        )

    if not is_supported_mime(upload.mime_type):
        return UploadCheck(
            valid=False,
            error=f"File type '{upload.mime_type}' is not allowed. Allowed types: PDF, images, plain text",
            size_mb=size_mb,
        )

    warning = None
    if size_mb > max_file_size_mb * 0.8:
        warning = f"Large file detected ({size_mb} MB)"
    return UploadCheck(valid=True, warning=warning, size_mb=size_mb)


def validate_upload(upload: DocumentUpload, max_file_size_mb: float = DEFAULT_MAX_FILE_SIZE_MB) -> None:
    """Raise the matching ExtractionError for an upload that must not be processed."""
    check = check_upload(upload, max_file_size_mb)
    if check.warning:
        logger.warning(f"{upload.filename}: {check.warning}")
    if check.valid:
        return
    if not is_supported_mime(upload.mime_type):
        raise UnsupportedFormatError(check.error)
    raise ExtractionError(check.error)


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    if mime_type is None and path.suffix.lower() in (".md", ".markdown"):
        return "text/markdown"
    return mime_type or "application/octet-stream"


def load_upload(path: Path, mime_type: Optional[str] = None) -> DocumentUpload:
    """Read a file from disk into a DocumentUpload."""
    path = Path(path)
    payload = path.read_bytes()
    return DocumentUpload(
        filename=path.name,
        mime_type=mime_type or guess_mime_type(path),
        payload=payload,
        size=len(payload),
    )


def extract_pdf_text(payload: bytes) -> ExtractedText:
    """Extract text page by page from a PDF held in memory."""
    try:
        with fitz.open(stream=payload, filetype="pdf") as doc:
            pages = [page.get_text() for page in doc]
            page_count = doc.page_count
    except Exception as e:
        raise ExtractionError(f"Failed to extract PDF text: {e}", original_error=e) from e

    logger.info(f"Extracted text from {page_count} PDF pages")
    return ExtractedText(text="\n".join(pages).strip(), pages=page_count)


def preprocess_image(image: Image.Image, max_width: int = DEFAULT_OCR_MAX_WIDTH) -> Image.Image:
    """Resize (never enlarging), greyscale, stretch contrast and sharpen for OCR."""
    if image.width > max_width:
        height = int(image.height * max_width / image.width)
        image = image.resize((max_width, max(1, height)), Image.LANCZOS)
    image = image.convert("L")
    image = ImageOps.autocontrast(image)
    return image.filter(ImageFilter.SHARPEN)


def ocr_image(payload: bytes, max_width: int = DEFAULT_OCR_MAX_WIDTH, language: str = "eng") -> ExtractedText:
    """Run Tesseract over a preprocessed image."""
    try:
        with Image.open(io.BytesIO(payload)) as image:
            prepared = preprocess_image(image, max_width)
        text = pytesseract.image_to_string(prepared, lang=language)
    except Exception as e:
        logger.error(f"OCR extraction failed: {e}")
        raise ExtractionError(f"OCR extraction failed: {e}", original_error=e) from e

    return ExtractedText(text=text.strip(), pages=1, ocr=True)


def decode_text(payload: bytes) -> ExtractedText:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ExtractionError(f"Text is not valid UTF-8: {e}", original_error=e) from e
    # Form feeds mark page breaks in plain-text exports
    return ExtractedText(text=text, pages=text.count("\f") + 1)


class TextExtractor:
    """Dispatches on declared MIME type; blocking work runs in a worker thread."""

    def __init__(
        self,
        max_file_size_mb: float = DEFAULT_MAX_FILE_SIZE_MB,
        ocr_max_width: int = DEFAULT_OCR_MAX_WIDTH,
        ocr_language: str = "eng",
    ):
        self.max_file_size_mb = max_file_size_mb
        self.ocr_max_width = ocr_max_width
        self.ocr_language = ocr_language

    async def extract(self, upload: DocumentUpload) -> ExtractedText:
        """
        Extract text from an upload.

        Raises:
            UnsupportedFormatError: if no extractor handles the MIME type
            ExtractionError: on library failure, oversize upload or empty result
        """
        validate_upload(upload, self.max_file_size_mb)

        mime_type = upload.mime_type.lower()
        if mime_type == PDF_MIME:
            result = await asyncio.to_thread(extract_pdf_text, upload.payload)
        elif mime_type.startswith(IMAGE_PREFIX):
            result = await asyncio.to_thread(
                ocr_image, upload.payload, self.ocr_max_width, self.ocr_language
            )
        else:
            result = decode_text(upload.payload)

        if result.text == "":
            raise ExtractionError(f"No text could be extracted from {upload.filename}")

        logger.info(f"Extracted {len(result.text)} characters from {upload.filename}")
        return result
