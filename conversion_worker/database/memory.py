import asyncio
from typing import Dict, Any, List, Optional
import logging

from pydantic import ValidationError

from .base import JobRecordStore
from ..errors import JobStoreError
from ..models import JobRecord, utcnow

logger = logging.getLogger(__name__)

class InMemoryJobStore(JobRecordStore):
    """Process-local job records for development and tests"""

    def __init__(self):
        self._records: Dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: JobRecord) -> JobRecord:
        async with self._lock:
            if record.job_id in self._records:
                raise JobStoreError(f"Job {record.job_id} already exists", job_id=record.job_id)
            self._records[record.job_id] = record
            return record

    async def get(self, job_id: str) -> Optional[JobRecord]:
        return self._records.get(job_id)

    async def update(self, job_id: str, changes: Dict[str, Any]) -> JobRecord:
        async with self._lock:
            record = self._records.get(job_id)
            if record is None:
                raise JobStoreError(f"Job {job_id} not found", job_id=job_id)

            try:
                updated = record.apply_changes({**changes, 'updated_at': utcnow()})
            except ValidationError as e:
                raise JobStoreError(f"Invalid update for job {job_id}: {str(e)}", job_id=job_id)

            self._records[job_id] = updated
            return updated

    async def list_recent(self, limit: int = 50) -> List[JobRecord]:
        records = sorted(self._records.values(), key=lambda r: r.created_at, reverse=True)
        return records[:limit]
