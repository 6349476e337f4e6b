import asyncio
from typing import Dict, Any, List, Optional
import logging
from google.api_core import exceptions as gcloud_exceptions
from google.cloud import datastore
from pydantic import ValidationError

from .base import JobRecordStore
from ..errors import JobStoreError
from ..models import JobRecord, utcnow

logger = logging.getLogger(__name__)

class DatastoreJobStore(JobRecordStore):
    """Google Cloud Datastore persistence for job records"""

    # Long values that exceed Datastore's indexed property limit
    UNINDEXED_PROPERTIES = ('downloadUrl', 'errorMessage')

    def __init__(
        self,
        project_id: str,
        namespace: str = "conversion-worker",
        kind: str = "CloudToolsJobs",
        client: Optional[datastore.Client] = None
    ):
        self.project_id = project_id
        self.namespace = namespace
        self.client = client or datastore.Client(project=project_id, namespace=namespace)

        # Kind name
        self.JOB_KIND = kind

    async def create(self, record: JobRecord) -> JobRecord:
        """Save a new job record"""
        def _create():
            with self.client.transaction():
                key = self.client.key(self.JOB_KIND, record.job_id)
                if self.client.get(key) is not None:
                    raise JobStoreError(f"Job {record.job_id} already exists", job_id=record.job_id)
                self.client.put(self._record_to_entity(key, record))
            return record

        return await self._run(_create, record.job_id)

    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Get job record from datastore"""
        def _get():
            entity = self.client.get(self.client.key(self.JOB_KIND, job_id))
            return self._entity_to_record(entity) if entity else None

        return await self._run(_get, job_id)

    async def update(self, job_id: str, changes: Dict[str, Any]) -> JobRecord:
        """Apply a partial update inside a transaction"""
        def _update():
            with self.client.transaction():
                key = self.client.key(self.JOB_KIND, job_id)
                entity = self.client.get(key)
                if entity is None:
                    raise JobStoreError(f"Job {job_id} not found", job_id=job_id)

                try:
                    record = self._entity_to_record(entity).apply_changes(
                        {**changes, 'updated_at': utcnow()}
                    )
                except ValidationError as e:
                    raise JobStoreError(f"Invalid update for job {job_id}: {str(e)}", job_id=job_id)

                self.client.put(self._record_to_entity(key, record))
            return record

        return await self._run(_update, job_id)

    async def list_recent(self, limit: int = 50) -> List[JobRecord]:
        """Query the most recently created job records"""
        def _query():
            query = self.client.query(kind=self.JOB_KIND)
            query.order = ['-createdAt']
            return [self._entity_to_record(entity) for entity in query.fetch(limit=limit)]

        return await self._run(_query)

    async def close(self):
        """Close datastore connection"""
        self.client.close()

    async def _run(self, func, job_id: Optional[str] = None):
        try:
            return await asyncio.to_thread(func)
        except gcloud_exceptions.GoogleAPICallError as e:
            logger.error(f"Datastore error for job {job_id}: {str(e)}")
            raise JobStoreError(f"Datastore request failed: {str(e)}", job_id=job_id)

    def _record_to_entity(self, key, record: JobRecord) -> datastore.Entity:
        entity = datastore.Entity(key=key, exclude_from_indexes=self.UNINDEXED_PROPERTIES)
        entity.update(record.model_dump(by_alias=True))
        return entity

    def _entity_to_record(self, entity: datastore.Entity) -> JobRecord:
        """Convert datastore entity to JobRecord"""
        data = dict(entity)
        data.setdefault('jobId', entity.key.name)
        return JobRecord.model_validate(data)
