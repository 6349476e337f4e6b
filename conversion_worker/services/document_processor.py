from typing import Optional
import logging
import fitz  # PyMuPDF

from .base import FileProcessor
from ..errors import ProcessingError
from ..models import JobDescriptor, JobOperation, ProcessingResult

logger = logging.getLogger(__name__)

class DocumentCompressor(FileProcessor):
    """Compresses PDF documents by rewriting them with PyMuPDF"""

    SUPPORTED_OPERATIONS = ('compress',)
    SUPPORTED_FORMATS = ('pdf',)

    PRODUCER = "Conversion Worker"

    def __init__(self, producer: Optional[str] = None):
        self.producer = producer or self.PRODUCER

    async def process(self, data: bytes, descriptor: JobDescriptor) -> ProcessingResult:
        if descriptor.operation != JobOperation.COMPRESS:
            raise ProcessingError(f"Unsupported operation for documents: {descriptor.operation}")

        output = self.compress_pdf(data, descriptor.effective_quality)
        return ProcessingResult(
            data=output,
            content_type='application/pdf',
            file_extension='pdf'
        )

    def compress_pdf(self, data: bytes, quality: int) -> bytes:
        """
        Rewrite a PDF with unused objects removed and streams deflated

        Args:
            data: Source PDF
            quality: Below 90 document metadata is dropped; below 50 duplicate
                objects are merged as well

        Returns:
            The rewritten PDF
        """
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (fitz.FileDataError, RuntimeError, ValueError) as e:
            raise ProcessingError(f"Could not open PDF document: {str(e)}")

        try:
            if doc.needs_pass:
                raise ProcessingError("Encrypted PDF documents cannot be compressed")

            if quality < 90:
                doc.set_metadata({
                    'title': '',
                    'author': '',
                    'subject': '',
                    'keywords': '',
                    'creator': self.producer,
                    'producer': self.producer
                })
                doc.del_xml_metadata()

            output = doc.tobytes(
                garbage=4 if quality < 50 else 3,
                deflate=True,
                clean=True
            )
            logger.info(
                f"Compressed PDF ({doc.page_count} pages) at quality {quality}: "
                f"{len(data)} -> {len(output)} bytes"
            )
            return output
        except RuntimeError as e:
            raise ProcessingError(f"PDF compression failed: {str(e)}")
        finally:
            doc.close()
