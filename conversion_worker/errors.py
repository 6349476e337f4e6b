"""
Worker exceptions
"""

from typing import Optional, Dict, Any


class WorkerError(Exception):
    """Base exception for the conversion worker."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.job_id = job_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "job_id": self.job_id,
        }


class MessageParseError(WorkerError):
    """Raised when a queue message body is not a JSON object."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "MESSAGE_PARSE_ERROR", details)


class DescriptorValidationError(WorkerError):
    """Raised when a job descriptor is missing or has invalid fields."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        job_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, "VALIDATION_ERROR", details, job_id)
        self.field = field


class DispatchError(WorkerError):
    """Raised when no registered processor accepts a job."""

    def __init__(self, operation: Optional[str], target_format: Optional[str]):
        super().__init__(
            f"No processor found for operation: {operation}, format: {target_format}",
            "NO_PROCESSOR",
            {"operation": operation, "target_format": target_format},
        )
        self.operation = operation
        self.target_format = target_format


class StorageError(WorkerError):
    """Raised when blob storage cannot be read or written."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message, "STORAGE_ERROR", {"key": key} if key else None)
        self.key = key


class ProcessingError(WorkerError):
    """Raised by processors for bad input, unsupported jobs or missing codecs."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PROCESSING_ERROR", details)


class StatusUpdateError(WorkerError):
    """Raised when a job status update cannot be written."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, "STATUS_UPDATE_ERROR", None, job_id)
        self.status_code = status_code


class QueueError(WorkerError):
    """Raised when the message queue cannot be polled or acknowledged."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "QUEUE_ERROR", details)


class JobStoreError(WorkerError):
    """Raised when the job record store fails."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message, "JOB_STORE_ERROR", None, job_id)
