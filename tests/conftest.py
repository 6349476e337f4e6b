import pytest
import io
import json
import tempfile
from pathlib import Path
from unittest.mock import Mock, AsyncMock

from conversion_worker.adapters.queue import InMemoryMessageQueue
from conversion_worker.adapters.storage import LocalFileStorage
from conversion_worker.config import Settings
from conversion_worker.database.memory import InMemoryJobStore
from conversion_worker.services.status_updater import JobStatusUpdater, StoreJobStatusUpdater

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)

@pytest.fixture
def test_settings(temp_dir):
    """Create test settings wired to in-process backends"""
    return Settings(
        environment="testing",
        queue_backend="memory",
        storage_backend="local",
        job_store_backend="memory",
        status_updater="store",
        local_storage_dir=str(temp_dir / "storage"),
        temp_dir=str(temp_dir / "processing"),
        poll_interval_seconds=0.01,
        ffmpeg_path="/usr/bin/ffmpeg"
    )

@pytest.fixture
def message_queue():
    """Create an in-memory queue"""
    return InMemoryMessageQueue(visibility_timeout=30)

@pytest.fixture
def file_storage(temp_dir):
    """Create filesystem storage under the temp dir"""
    return LocalFileStorage(str(temp_dir / "storage"))

@pytest.fixture
def job_store():
    """Create an in-memory job record store"""
    return InMemoryJobStore()

@pytest.fixture
def store_status_updater(job_store):
    """Status updater writing into the in-memory job store"""
    return StoreJobStatusUpdater(job_store)

@pytest.fixture
def mock_status_updater():
    """Create a mock status updater that records every call"""
    updater = Mock(spec=JobStatusUpdater)
    updater.update_status = AsyncMock()
    return updater

@pytest.fixture
def make_message_body():
    """Build a queue message body the way the enqueue path does"""
    def _make(job_id="job-1", operation="convert", target_format="png", **extra):
        payload = {
            "jobId": job_id,
            "operation": operation,
            "timestamp": "2024-01-01T00:00:00Z",
            "retryCount": 0
        }
        if target_format is not None:
            payload["targetFormat"] = target_format
        payload.update(extra)
        return json.dumps(payload)
    return _make

@pytest.fixture
def sample_jpeg_bytes():
    """A small JPEG image"""
    from PIL import Image

    buffer = io.BytesIO()
    Image.new('RGB', (120, 80), color='red').save(buffer, 'JPEG', quality=95)
    return buffer.getvalue()

@pytest.fixture
def sample_png_bytes():
    """A small PNG image with transparency"""
    from PIL import Image

    buffer = io.BytesIO()
    Image.new('RGBA', (100, 100), color=(255, 0, 0, 128)).save(buffer, 'PNG')
    return buffer.getvalue()

@pytest.fixture
def sample_pdf_bytes():
    """A two-page PDF with text"""
    from reportlab.pdfgen import canvas
    from reportlab.lib.pagesizes import letter

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=letter)
    c.setAuthor("Test Author")
    c.setTitle("Test PDF Document")
    c.drawString(100, 750, "Test PDF Document")
    c.drawString(100, 730, "This is a test PDF for processing.")
    c.showPage()
    c.drawString(100, 750, "Second page")
    c.save()
    return buffer.getvalue()

@pytest.fixture
def sample_docx_bytes():
    """A DOCX document with two paragraphs"""
    import docx

    document = docx.Document()
    document.add_paragraph("First paragraph of the book.")
    document.add_paragraph("Second paragraph & more.")
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()
