from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional

from ..models import JobRecord


class JobRecordStore(ABC):
    """Keyed store holding one JobRecord per job id"""

    @abstractmethod
    async def create(self, record: JobRecord) -> JobRecord:
        """Insert a new record; raises JobStoreError if the id is taken"""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Fetch a record, or None when the job is unknown"""

    @abstractmethod
    async def update(self, job_id: str, changes: Dict[str, Any]) -> JobRecord:
        """
        Apply a partial update and refresh updated_at

        Keys are JobRecord field names. Raises JobStoreError when the job is
        unknown or the changes do not validate.
        """

    @abstractmethod
    async def list_recent(self, limit: int = 50) -> List[JobRecord]:
        """Most recently created records first"""

    async def close(self):
        pass
