import asyncio
import html
import io
import re
import tempfile
import uuid
import zipfile
from typing import List, Optional
from pathlib import Path
import logging
import fitz  # PyMuPDF
import docx
from reportlab.lib.pagesizes import A4
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from xml.sax.saxutils import escape

from .base import FileProcessor
from ..errors import ProcessingError
from ..models import JobDescriptor, JobOperation, ProcessingResult

logger = logging.getLogger(__name__)

class EbookConverter(FileProcessor):
    """
    Converts e-books and text documents with Calibre's ebook-convert

    When Calibre is not installed, conversions into txt, pdf, docx and rtf
    fall back to plain text extraction followed by a simple re-render. The
    fallback keeps the words and paragraph breaks only.
    """

    SUPPORTED_OPERATIONS = ('convert',)
    SUPPORTED_FORMATS = ('epub', 'mobi', 'azw3', 'pdf', 'txt', 'docx', 'rtf')
    FALLBACK_FORMATS = ('txt', 'pdf', 'docx', 'rtf')

    CONTENT_TYPES = {
        'epub': 'application/epub+zip',
        'mobi': 'application/x-mobipocket-ebook',
        'azw3': 'application/vnd.amazon.ebook',
        'pdf': 'application/pdf',
        'txt': 'text/plain',
        'docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        'rtf': 'application/rtf'
    }

    def __init__(
        self,
        calibre_path: str = "ebook-convert",
        timeout: int = 300,
        temp_dir: str = "/tmp/processing"
    ):
        self.calibre_path = calibre_path
        self.timeout = timeout
        self.temp_dir = Path(temp_dir)
        self._calibre_available: Optional[bool] = None

    async def process(self, data: bytes, descriptor: JobDescriptor) -> ProcessingResult:
        if descriptor.operation != JobOperation.CONVERT:
            raise ProcessingError(f"Unsupported operation for eBook: {descriptor.operation}")
        if not descriptor.target_format:
            raise ProcessingError("Target format is required for eBook conversion")

        fmt = descriptor.target_format.lower()
        if fmt not in self.SUPPORTED_FORMATS:
            raise ProcessingError(f"Unsupported target format for eBook: {descriptor.target_format}")

        if await self.calibre_available():
            output = await self.run_calibre(data, fmt, descriptor.effective_quality)
        else:
            output = self.basic_conversion(data, fmt)

        return ProcessingResult(
            data=output,
            content_type=self.CONTENT_TYPES.get(fmt, 'application/octet-stream'),
            file_extension=fmt
        )

    async def calibre_available(self) -> bool:
        if self._calibre_available is None:
            try:
                process = await asyncio.create_subprocess_exec(
                    self.calibre_path, '--version',
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL
                )
                self._calibre_available = await process.wait() == 0
            except (FileNotFoundError, PermissionError):
                self._calibre_available = False

            if not self._calibre_available:
                logger.warning("Calibre not available, using basic eBook conversion")
        return self._calibre_available

    def build_calibre_options(self, fmt: str, quality: int) -> List[str]:
        """Format-specific ebook-convert flags for a quality setting"""
        options = []

        if fmt == 'epub':
            options.append('--epub-version=3')
            if quality > 70:
                options.extend(['--preserve-cover-aspect-ratio', '--epub-flatten'])

        elif fmt in ['mobi', 'azw3']:
            if quality < 50:
                options.append('--mobi-file-type=old')
            options.append('--mobi-toc-at-start')

        elif fmt == 'pdf':
            if quality > 60:
                options.extend(['--pdf-serif-family=Times', '--pdf-sans-family=Helvetica'])

        return options

    async def run_calibre(self, data: bytes, fmt: str, quality: int) -> bytes:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.temp_dir) as work_dir:
            # ebook-convert picks the input plugin from the file extension
            input_path = Path(work_dir) / f"input_{uuid.uuid4().hex}.{detect_format(data)}"
            output_path = Path(work_dir) / f"output_{uuid.uuid4().hex}.{fmt}"
            input_path.write_bytes(data)

            process = await asyncio.create_subprocess_exec(
                self.calibre_path,
                str(input_path),
                str(output_path),
                *self.build_calibre_options(fmt, quality),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )

            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                raise ProcessingError(f"Calibre conversion timed out after {self.timeout}s")

            if process.returncode != 0 or not output_path.exists():
                message = (stderr or b'').decode(errors='replace').strip()
                raise ProcessingError(f"Calibre conversion failed: {message[-500:]}")

            return output_path.read_bytes()

    def basic_conversion(self, data: bytes, fmt: str) -> bytes:
        if fmt not in self.FALLBACK_FORMATS:
            raise ProcessingError(
                f"Conversion to {fmt} requires Calibre (ebook-convert), which is not installed"
            )

        paragraphs = extract_paragraphs(data)

        if fmt == 'txt':
            return "\n\n".join(paragraphs).encode('utf-8')
        if fmt == 'pdf':
            return render_pdf(paragraphs)
        if fmt == 'docx':
            return render_docx(paragraphs)
        return render_rtf(paragraphs)


def detect_format(data: bytes) -> str:
    """Guess an e-book or document format from its leading bytes"""
    if data.startswith(b'%PDF'):
        return 'pdf'
    if data.startswith(b'{\\rtf'):
        return 'rtf'
    if data[60:68] == b'BOOKMOBI':
        return 'mobi'
    if data.startswith(b'PK'):
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                names = archive.namelist()
                if 'mimetype' in names and archive.read('mimetype').strip() == b'application/epub+zip':
                    return 'epub'
                if any(name.startswith('word/') for name in names):
                    return 'docx'
        except zipfile.BadZipFile:
            pass
    return 'txt'


TAG_RE = re.compile(r'<[^>]+>')
BLOCK_END_RE = re.compile(r'</(p|div|h[1-6]|li|tr|blockquote)\s*>|<br\s*/?>', re.IGNORECASE)
SCRIPT_RE = re.compile(r'<(script|style|head)[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
RTF_CONTROL_RE = re.compile(r"\\'[0-9a-fA-F]{2}|\\[a-zA-Z]+-?\d* ?|[{}]")
RTF_TABLE_RE = re.compile(r"\{\\(fonttbl|colortbl|stylesheet|info)(?:[^{}]|\{[^{}]*\})*\}")


def _split_paragraphs(text: str) -> List[str]:
    blocks = re.split(r'\n\s*\n', text.replace('\r\n', '\n'))
    return [' '.join(block.split()) for block in blocks if block.strip()]


def _html_to_text(markup: str) -> str:
    markup = SCRIPT_RE.sub('', markup)
    markup = BLOCK_END_RE.sub('\n\n', markup)
    return html.unescape(TAG_RE.sub('', markup))


def extract_paragraphs(data: bytes) -> List[str]:
    """Pull plain-text paragraphs out of a pdf, docx, epub, rtf or text buffer"""
    source_format = detect_format(data)

    if source_format == 'pdf':
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                text = "\n\n".join(page.get_text() for page in doc)
        except (fitz.FileDataError, RuntimeError, ValueError) as e:
            raise ProcessingError(f"Could not read PDF document: {str(e)}")
        return _split_paragraphs(text)

    if source_format == 'docx':
        try:
            document = docx.Document(io.BytesIO(data))
        except (ValueError, KeyError, zipfile.BadZipFile) as e:
            raise ProcessingError(f"Could not read DOCX document: {str(e)}")
        return [p.text.strip() for p in document.paragraphs if p.text.strip()]

    if source_format == 'epub':
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            chapters = sorted(
                name for name in archive.namelist()
                if name.lower().endswith(('.xhtml', '.html', '.htm'))
            )
            text = "\n\n".join(
                _html_to_text(archive.read(name).decode('utf-8', errors='replace'))
                for name in chapters
            )
        return _split_paragraphs(text)

    if source_format == 'rtf':
        text = RTF_TABLE_RE.sub('', data.decode('latin-1'))
        text = re.sub(r'\\par[d]?\b ?', '\n\n', text)
        return _split_paragraphs(RTF_CONTROL_RE.sub('', text))

    if source_format == 'mobi':
        raise ProcessingError("Reading MOBI files requires Calibre (ebook-convert), which is not installed")

    text = data.decode('utf-8', errors='replace')
    if TAG_RE.search(text):
        text = _html_to_text(text)
    return _split_paragraphs(text)


def render_pdf(paragraphs: List[str]) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=inch,
        rightMargin=inch,
        topMargin=inch,
        bottomMargin=inch
    )
    styles = getSampleStyleSheet()

    story = []
    for paragraph in paragraphs:
        story.append(Paragraph(escape(paragraph), styles['Normal']))
        story.append(Spacer(1, 0.15 * inch))
    if not story:
        story.append(Spacer(1, 0.15 * inch))

    doc.build(story)
    return buffer.getvalue()


def render_docx(paragraphs: List[str]) -> bytes:
    document = docx.Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _rtf_escape(text: str) -> str:
    out = []
    for char in text:
        if char in '\\{}':
            out.append('\\' + char)
        elif ord(char) > 127:
            code = ord(char)
            out.append(f"\\u{code if code < 32768 else code - 65536}?")
        else:
            out.append(char)
    return ''.join(out)


def render_rtf(paragraphs: List[str]) -> bytes:
    body = "\n".join(f"{_rtf_escape(paragraph)}\\par\\par" for paragraph in paragraphs)
    document = "{\\rtf1\\ansi\\deff0{\\fonttbl{\\f0 Times New Roman;}}\\f0\\fs24\n" + body + "\n}"
    return document.encode('ascii')
