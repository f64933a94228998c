"""Tests for text extraction and upload validation."""

import io
from unittest.mock import patch

import fitz
import pytest
from PIL import Image

from stembot.core.errors import ExtractionError, UnsupportedFormatError
from stembot.core.extract import (
    TextExtractor,
    check_upload,
    guess_mime_type,
    load_upload,
    preprocess_image,
)
from stembot.core.models import DocumentUpload


def make_pdf(pages):
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    payload = doc.tobytes()
    doc.close()
    return payload


def make_png(width=3000, height=1500):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 200, 200)).save(buffer, format="PNG")
    return buffer.getvalue()


class TestTextExtractor:

    @pytest.fixture
    def extractor(self) -> TextExtractor:
        return TextExtractor(max_file_size_mb=1.0)

    @pytest.mark.asyncio
    async def test_plain_text_is_decoded(self, extractor):
        upload = DocumentUpload(filename="a.txt", mime_type="text/plain", payload="Résumé of results".encode("utf-8"))
        result = await extractor.extract(upload)
        assert result.text == "Résumé of results"
        assert result.pages == 1

    @pytest.mark.asyncio
    async def test_pdf_text_and_page_count(self, extractor):
        upload = DocumentUpload(
            filename="paper.pdf",
            mime_type="application/pdf",
            payload=make_pdf(["Protein folding study", "Second page results"]),
        )
        result = await extractor.extract(upload)
        assert "Protein folding study" in result.text
        assert "Second page results" in result.text
        assert result.pages == 2

    @pytest.mark.asyncio
    async def test_image_goes_through_ocr(self, extractor):
        upload = DocumentUpload(filename="scan.png", mime_type="image/png", payload=make_png())
        with patch("stembot.core.extract.pytesseract.image_to_string", return_value="Scanned text\n") as ocr:
            result = await extractor.extract(upload)

        assert result.text == "Scanned text"
        assert result.ocr is True
        image = ocr.call_args[0][0]
        assert image.mode == "L"
        assert image.width == 2000

    @pytest.mark.asyncio
    async def test_unsupported_type_raises(self, extractor):
        upload = DocumentUpload(filename="a.bin", mime_type="application/octet-stream", payload=b"\x00\x01")
        with pytest.raises(UnsupportedFormatError):
            await extractor.extract(upload)

    @pytest.mark.asyncio
    async def test_corrupt_pdf_raises_extraction_error(self, extractor):
        upload = DocumentUpload(filename="bad.pdf", mime_type="application/pdf", payload=b"not a pdf")
        with pytest.raises(ExtractionError):
            await extractor.extract(upload)

    @pytest.mark.asyncio
    async def test_ocr_failure_raises_extraction_error(self, extractor):
        upload = DocumentUpload(filename="scan.png", mime_type="image/png", payload=make_png(100, 100))
        with patch("stembot.core.extract.pytesseract.image_to_string", side_effect=RuntimeError("tesseract missing")):
            with pytest.raises(ExtractionError):
                await extractor.extract(upload)

    @pytest.mark.asyncio
    async def test_empty_text_raises(self, extractor):
        upload = DocumentUpload(filename="empty.txt", mime_type="text/plain", payload=b"")
        with pytest.raises(ExtractionError):
            await extractor.extract(upload)

    @pytest.mark.asyncio
    async def test_oversize_upload_raises(self, extractor):
        upload = DocumentUpload(filename="big.txt", mime_type="text/plain", payload=b"abc", size=5 * 1024 * 1024)
        with pytest.raises(ExtractionError) as exc_info:
            await extractor.extract(upload)
        assert not isinstance(exc_info.value, UnsupportedFormatError)


def test_preprocess_never_enlarges():
    small = Image.new("RGB", (400, 200))
    prepared = preprocess_image(small, max_width=2000)
    assert prepared.size == (400, 200)
    assert prepared.mode == "L"


def test_check_upload_warns_near_limit():
    upload = DocumentUpload(filename="a.pdf", mime_type="application/pdf", payload=b"", size=int(9 * 1024 * 1024))
    check = check_upload(upload, max_file_size_mb=10)
    assert check.valid
    assert check.warning


def test_load_upload_guesses_mime(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    upload = load_upload(path)
    assert upload.mime_type == "text/plain"
    assert upload.byte_size == 5
    assert guess_mime_type(tmp_path / "x.pdf") == "application/pdf"
