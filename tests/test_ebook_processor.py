import pytest
import io
import zipfile
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import docx
import fitz  # PyMuPDF

from conversion_worker.errors import ProcessingError
from conversion_worker.models import JobDescriptor
from conversion_worker.services.ebook_processor import (
    EbookConverter, detect_format, extract_paragraphs
)


def _descriptor(target_format, quality=None):
    return JobDescriptor(job_id='book-1', operation='convert', target_format=target_format, quality=quality)


@pytest.fixture
def sample_epub_bytes():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        archive.writestr('mimetype', 'application/epub+zip')
        archive.writestr(
            'OEBPS/chapter1.xhtml',
            '<html><head><title>Ignored</title></head><body>'
            '<h1>Chapter One</h1><p>It was a &amp; dark night.</p></body></html>'
        )
    return buffer.getvalue()


@pytest.fixture
def converter_without_calibre(temp_dir):
    converter = EbookConverter(calibre_path="ebook-convert", temp_dir=str(temp_dir))
    converter._calibre_available = False
    return converter


class TestFormatDetection:
    """Input sniffing"""

    def test_detects_formats(self, sample_pdf_bytes, sample_docx_bytes, sample_epub_bytes):
        assert detect_format(sample_pdf_bytes) == 'pdf'
        assert detect_format(sample_docx_bytes) == 'docx'
        assert detect_format(sample_epub_bytes) == 'epub'
        assert detect_format(b'{\\rtf1\\ansi hello}') == 'rtf'
        assert detect_format(b'\x00' * 60 + b'BOOKMOBI') == 'mobi'
        assert detect_format(b'plain words') == 'txt'

    def test_extracts_paragraphs(self, sample_docx_bytes, sample_epub_bytes):
        assert extract_paragraphs(sample_docx_bytes) == [
            "First paragraph of the book.",
            "Second paragraph & more."
        ]
        assert extract_paragraphs(sample_epub_bytes) == ["Chapter One", "It was a & dark night."]
        assert extract_paragraphs(b'{\\rtf1\\ansi{\\fonttbl{\\f0 Times;}}\\f0 Hello\\par World}') == ["Hello", "World"]


class TestEbookConverter:
    """Test cases for EbookConverter"""

    def test_can_process(self, converter_without_calibre):
        assert converter_without_calibre.can_process('convert', 'EPUB')
        assert converter_without_calibre.can_process('convert', 'pdf')
        assert not converter_without_calibre.can_process('compress', 'pdf')
        assert not converter_without_calibre.can_process('convert', 'png')

    def test_calibre_options(self, converter_without_calibre):
        assert converter_without_calibre.build_calibre_options('epub', 80) == [
            '--epub-version=3', '--preserve-cover-aspect-ratio', '--epub-flatten'
        ]
        assert converter_without_calibre.build_calibre_options('mobi', 40) == [
            '--mobi-file-type=old', '--mobi-toc-at-start'
        ]
        assert converter_without_calibre.build_calibre_options('pdf', 50) == []

    @pytest.mark.asyncio
    async def test_fallback_docx_to_txt(self, converter_without_calibre, sample_docx_bytes):
        result = await converter_without_calibre.process(sample_docx_bytes, _descriptor('txt'))

        assert result.content_type == 'text/plain'
        assert result.data.decode('utf-8') == "First paragraph of the book.\n\nSecond paragraph & more."

    @pytest.mark.asyncio
    async def test_fallback_pdf_to_docx(self, converter_without_calibre, sample_pdf_bytes):
        result = await converter_without_calibre.process(sample_pdf_bytes, _descriptor('docx'))

        document = docx.Document(io.BytesIO(result.data))
        text = "\n".join(p.text for p in document.paragraphs)
        assert "Test PDF Document" in text
        assert result.file_extension == 'docx'

    @pytest.mark.asyncio
    async def test_fallback_epub_to_pdf(self, converter_without_calibre, sample_epub_bytes):
        result = await converter_without_calibre.process(sample_epub_bytes, _descriptor('pdf'))

        assert result.content_type == 'application/pdf'
        with fitz.open(stream=result.data, filetype="pdf") as doc:
            assert "dark night" in doc[0].get_text()

    @pytest.mark.asyncio
    async def test_fallback_txt_to_rtf(self, converter_without_calibre):
        result = await converter_without_calibre.process(b'Caf\xc3\xa9 {braces}', _descriptor('rtf'))

        rtf = result.data.decode('ascii')
        assert rtf.startswith('{\\rtf1')
        assert '\\u233?' in rtf
        assert '\\{braces\\}' in rtf

    @pytest.mark.asyncio
    async def test_fallback_cannot_produce_epub(self, converter_without_calibre, sample_docx_bytes):
        with pytest.raises(ProcessingError) as exc_info:
            await converter_without_calibre.process(sample_docx_bytes, _descriptor('epub'))

        assert "Calibre" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_calibre_missing_is_detected(self, temp_dir):
        converter = EbookConverter(calibre_path="ebook-convert", temp_dir=str(temp_dir))

        with patch(
            'conversion_worker.services.ebook_processor.asyncio.create_subprocess_exec',
            side_effect=FileNotFoundError
        ):
            assert await converter.calibre_available() is False

    @pytest.mark.asyncio
    async def test_runs_calibre_when_available(self, temp_dir, sample_docx_bytes):
        converter = EbookConverter(calibre_path="/opt/calibre/ebook-convert", temp_dir=str(temp_dir))
        converter._calibre_available = True
        calls = []

        async def fake_exec(*cmd, **kwargs):
            calls.append(list(cmd))
            Path(cmd[2]).write_bytes(b'EPUB-OUTPUT')
            process = Mock()
            process.returncode = 0
            process.communicate = AsyncMock(return_value=(b'', b''))
            return process

        with patch('conversion_worker.services.ebook_processor.asyncio.create_subprocess_exec', side_effect=fake_exec):
            result = await converter.process(sample_docx_bytes, _descriptor('epub', quality=90))

        assert result.data == b'EPUB-OUTPUT'
        assert result.content_type == 'application/epub+zip'
        cmd = calls[0]
        assert cmd[0] == "/opt/calibre/ebook-convert"
        assert cmd[1].endswith('.docx')
        assert '--epub-flatten' in cmd

    @pytest.mark.asyncio
    async def test_calibre_failure(self, temp_dir, sample_docx_bytes):
        converter = EbookConverter(temp_dir=str(temp_dir))
        converter._calibre_available = True

        process = Mock()
        process.returncode = 1
        process.communicate = AsyncMock(return_value=(b'', b'Conversion error: bad input'))

        with patch(
            'conversion_worker.services.ebook_processor.asyncio.create_subprocess_exec',
            AsyncMock(return_value=process)
        ):
            with pytest.raises(ProcessingError) as exc_info:
                await converter.process(sample_docx_bytes, _descriptor('mobi'))

        assert "bad input" in str(exc_info.value)
