from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import logging
import httpx

from ..database.base import JobRecordStore
from ..errors import JobStoreError, StatusUpdateError
from ..models import CompressionData, JobStatus, utcnow

logger = logging.getLogger(__name__)


class JobStatusUpdater(ABC):
    """Reports job progress and terminal state on behalf of the worker"""

    @abstractmethod
    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        download_url: Optional[str] = None,
        compression_data: Optional[CompressionData] = None,
        error_message: Optional[str] = None
    ):
        """
        Partially update a job's record

        Safe to repeat with the same arguments.

        Raises:
            StatusUpdateError: the update could not be written
        """


class StoreJobStatusUpdater(JobStatusUpdater):
    """Writes status transitions straight into a JobRecordStore"""

    def __init__(self, job_store: JobRecordStore):
        self.job_store = job_store

    def build_changes(
        self,
        status: JobStatus,
        progress: Optional[int] = None,
        download_url: Optional[str] = None,
        compression_data: Optional[CompressionData] = None,
        error_message: Optional[str] = None
    ) -> Dict[str, Any]:
        changes: Dict[str, Any] = {'status': JobStatus(status)}
        if progress is not None:
            changes['progress'] = progress

        if status == JobStatus.COMPLETED:
            if not download_url:
                raise StatusUpdateError("A completed job requires a download URL")
            changes['progress'] = 100
            changes['completed_at'] = utcnow()
            changes['error_message'] = None

        elif status == JobStatus.FAILED:
            changes['progress'] = 0
            changes['download_url'] = None
            changes['error_message'] = error_message

        elif error_message is not None:
            changes['error_message'] = error_message

        if download_url and status != JobStatus.FAILED:
            changes['download_url'] = download_url

        if compression_data is not None:
            changes.update(compression_data.model_dump())

        return changes

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        download_url: Optional[str] = None,
        compression_data: Optional[CompressionData] = None,
        error_message: Optional[str] = None
    ):
        changes = self.build_changes(status, progress, download_url, compression_data, error_message)
        try:
            await self.job_store.update(job_id, changes)
        except JobStoreError as e:
            raise StatusUpdateError(f"Failed to update job {job_id}: {e.message}", job_id=job_id)

        logger.debug(f"Job {job_id} -> {changes['status'].value} ({changes.get('progress')}%)")


class ApiJobStatusUpdater(JobStatusUpdater):
    """Reports status through the jobs HTTP API (PUT /api/jobs)"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.transport = transport

    def build_payload(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        download_url: Optional[str] = None,
        compression_data: Optional[CompressionData] = None,
        error_message: Optional[str] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'jobId': job_id,
            'status': JobStatus(status).value
        }
        if progress is not None:
            payload['progress'] = progress
        if download_url:
            payload['downloadUrl'] = download_url
        if error_message:
            payload['errorMessage'] = error_message
        if compression_data is not None:
            payload.update(compression_data.model_dump(by_alias=True))
        return payload

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        download_url: Optional[str] = None,
        compression_data: Optional[CompressionData] = None,
        error_message: Optional[str] = None
    ):
        payload = self.build_payload(job_id, status, progress, download_url, compression_data, error_message)

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport
            ) as client:
                response = await client.put(
                    '/api/jobs',
                    json=payload,
                    headers={'Content-Type': 'application/json'}
                )

                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            raise StatusUpdateError(
                f"Status API rejected update for job {job_id}: {e.response.status_code}",
                job_id=job_id,
                status_code=e.response.status_code
            )
        except httpx.HTTPError as e:
            raise StatusUpdateError(f"Status API request failed for job {job_id}: {str(e)}", job_id=job_id)
