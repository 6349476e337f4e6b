from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime, timezone
from pathlib import PurePosixPath
import json
import mimetypes

from .errors import MessageParseError, DescriptorValidationError

DEFAULT_QUALITY = 80


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobOperation(str, Enum):
    CONVERT = "convert"
    COMPRESS = "compress"


class JobType(str, Enum):
    IMAGE_CONVERSION = "image_conversion"
    IMAGE_COMPRESSION = "image_compression"
    VIDEO_CONVERSION = "video_conversion"
    AUDIO_CONVERSION = "audio_conversion"
    PDF_COMPRESSION = "pdf_compression"
    EBOOK_CONVERSION = "ebook_conversion"


IMAGE_COMPRESS_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp', 'bmp'}
IMAGE_CONVERT_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp', 'bmp', 'tiff', 'svg'}
VIDEO_EXTENSIONS = {'mp4', 'avi', 'mov', 'mkv', 'wmv', 'flv', 'webm'}
AUDIO_EXTENSIONS = {'mp3', 'wav', 'flac', 'aac', 'ogg', 'm4a', 'wma'}
EBOOK_EXTENSIONS = {'epub', 'mobi', 'azw', 'azw3', 'pdf', 'txt', 'doc', 'docx', 'rtf'}


def get_file_extension(file_name: str) -> str:
    return PurePosixPath(file_name).suffix.lstrip('.').lower()


def extension_for_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    extension = mimetypes.guess_extension(content_type.split(';')[0].strip().lower())
    return extension.lstrip('.') if extension else None


# Leading bytes of the formats compress jobs can be routed to
FILE_SIGNATURES = (
    (b'%PDF', 'pdf'),
    (b'\x89PNG\r\n\x1a\n', 'png'),
    (b'\xff\xd8\xff', 'jpg'),
    (b'GIF87a', 'gif'),
    (b'GIF89a', 'gif'),
)


def sniff_extension(data: bytes) -> Optional[str]:
    """Guess a file's extension from its leading bytes"""
    for signature, extension in FILE_SIGNATURES:
        if data.startswith(signature):
            return extension
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'webp'
    return None


def job_type_for_file(file_name: str, operation: str) -> JobType:
    """Classify a job from the uploaded file name and the requested operation"""
    extension = get_file_extension(file_name)

    if operation == JobOperation.COMPRESS:
        if extension in IMAGE_COMPRESS_EXTENSIONS:
            return JobType.IMAGE_COMPRESSION
        if extension == 'pdf':
            return JobType.PDF_COMPRESSION

    if operation == JobOperation.CONVERT:
        if extension in IMAGE_CONVERT_EXTENSIONS:
            return JobType.IMAGE_CONVERSION
        if extension in VIDEO_EXTENSIONS:
            return JobType.VIDEO_CONVERSION
        if extension in AUDIO_EXTENSIONS:
            return JobType.AUDIO_CONVERSION
        if extension in EBOOK_EXTENSIONS:
            return JobType.EBOOK_CONVERSION

    return JobType.IMAGE_CONVERSION


def decode_message_body(body: Optional[str]) -> Dict[str, Any]:
    """Decode a raw queue message body into a JSON object"""
    if not body:
        raise MessageParseError("Empty message body")

    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as e:
        raise MessageParseError(f"Invalid message format: {str(e)}", {"body": body[:200]})

    if not isinstance(payload, dict):
        raise MessageParseError(
            "Invalid message format: expected a JSON object",
            {"body": body[:200]}
        )

    return payload


class JobDescriptor(BaseModel):
    """Queue message payload describing one job"""

    model_config = ConfigDict(populate_by_name=True, frozen=True, use_enum_values=True)

    job_id: str = Field(alias="jobId", min_length=1)
    operation: JobOperation
    target_format: Optional[str] = Field(default=None, alias="targetFormat")
    quality: Optional[int] = Field(default=None, ge=0, le=100)
    options: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    retry_count: int = Field(default=0, alias="retryCount", ge=0)

    @model_validator(mode="after")
    def check_target_format(self) -> "JobDescriptor":
        if self.operation == JobOperation.CONVERT and not self.target_format:
            raise ValueError("targetFormat is required for convert operations")
        return self

    @property
    def effective_quality(self) -> int:
        return self.quality if self.quality is not None else DEFAULT_QUALITY

    @classmethod
    def from_message_body(cls, body: Optional[str]) -> "JobDescriptor":
        """
        Parse and validate a queue message body

        Raises:
            MessageParseError: the body is not a JSON object
            DescriptorValidationError: required fields are missing or invalid;
                carries the job id when the body names one
        """
        payload = decode_message_body(body)
        job_id = recover_job_id(payload)

        for field in ("jobId", "operation"):
            if not payload.get(field):
                raise DescriptorValidationError(
                    f"Missing required field in job descriptor: {field}",
                    field=field,
                    job_id=job_id
                )

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            raise DescriptorValidationError(
                f"Invalid job descriptor: {first['msg']}",
                field=".".join(str(part) for part in first.get('loc', ())) or None,
                job_id=job_id,
                details={"error_count": e.error_count()}
            )

    def to_message_body(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def recover_job_id(payload: Any) -> Optional[str]:
    """Best-effort job id lookup on a partially valid payload"""
    if isinstance(payload, dict):
        job_id = payload.get("jobId")
        if isinstance(job_id, str) and job_id:
            return job_id
    return None


class ProcessingResult(BaseModel):
    data: bytes
    content_type: str
    file_extension: str

    @property
    def size(self) -> int:
        return len(self.data)


class CompressionData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_file_size: int = Field(alias="originalFileSize")
    processed_file_size: int = Field(alias="processedFileSize")
    compression_savings: float = Field(alias="compressionSavings", ge=0, le=100)

    @classmethod
    def from_sizes(cls, original_size: int, processed_size: int) -> "CompressionData":
        """Savings percentage rounded to two decimals, never negative"""
        if original_size > 0:
            savings = (original_size - processed_size) / original_size * 100
        else:
            savings = 0.0
        return cls(
            original_file_size=original_size,
            processed_file_size=processed_size,
            compression_savings=max(0.0, round(savings, 2))
        )


class JobRecord(BaseModel):
    """Persisted lifecycle state of a job, keyed by job id"""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    job_id: str = Field(alias="jobId")
    file_name: str = Field(default="", alias="fileName")
    file_size: int = Field(default=0, alias="fileSize")
    file_type: str = Field(default="", alias="fileType")
    storage_key: Optional[str] = Field(default=None, alias="s3Key")
    operation: Optional[JobOperation] = None
    target_format: Optional[str] = Field(default=None, alias="targetFormat")
    job_type: Optional[JobType] = Field(default=None, alias="jobType")
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    download_url: Optional[str] = Field(default=None, alias="downloadUrl")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    original_file_size: Optional[int] = Field(default=None, alias="originalFileSize")
    processed_file_size: Optional[int] = Field(default=None, alias="processedFileSize")
    compression_savings: Optional[float] = Field(default=None, alias="compressionSavings")

    def apply_changes(self, changes: Dict[str, Any]) -> "JobRecord":
        """Return a copy with a partial update applied"""
        data = self.model_dump()
        data.update(changes)
        return JobRecord.model_validate(data)


class WorkerStats(BaseModel):
    messages_received: int = 0
    jobs_completed: int = 0
    jobs_failed: int = 0
    unattributable_failures: int = 0
    status_update_failures: int = 0
    message_delete_failures: int = 0
    loop_errors: int = 0
    last_poll_at: Optional[datetime] = None
