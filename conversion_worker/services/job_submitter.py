import mimetypes
import uuid
from typing import Dict, Any, Optional
import logging

from pydantic import ValidationError

from ..adapters.queue import MessageQueue
from ..adapters.storage import FileStorage
from ..database.base import JobRecordStore
from ..errors import DescriptorValidationError
from ..models import (
    JobDescriptor, JobOperation, JobRecord, get_file_extension, job_type_for_file
)

logger = logging.getLogger(__name__)

class JobSubmitter:
    """Enqueue path: upload the source, create the pending record, send the descriptor"""

    def __init__(
        self,
        message_queue: MessageQueue,
        file_storage: FileStorage,
        job_store: Optional[JobRecordStore] = None
    ):
        self.message_queue = message_queue
        self.file_storage = file_storage
        self.job_store = job_store

    async def submit(
        self,
        data: bytes,
        file_name: str,
        operation: str,
        target_format: Optional[str] = None,
        quality: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
        content_type: Optional[str] = None,
        job_id: Optional[str] = None
    ) -> JobDescriptor:
        """
        Submit a file for conversion or compression

        Compress jobs carry the source extension as their target format so
        the worker can route them to the processor for that file type.

        Returns:
            The descriptor that was enqueued
        """
        job_id = job_id or str(uuid.uuid4())

        if operation == JobOperation.COMPRESS and not target_format:
            target_format = get_file_extension(file_name) or None

        try:
            descriptor = JobDescriptor.model_validate({
                'job_id': job_id,
                'operation': operation,
                'target_format': target_format,
                'quality': quality,
                'options': options or {}
            })
        except ValidationError as e:
            first = e.errors()[0]
            raise DescriptorValidationError(f"Invalid job request: {first['msg']}", job_id=job_id)

        content_type = content_type or mimetypes.guess_type(file_name)[0] or 'application/octet-stream'
        storage_key = f"uploads/{job_id}"

        await self.file_storage.put_file(storage_key, data, content_type)

        if self.job_store is not None:
            await self.job_store.create(JobRecord(
                job_id=job_id,
                file_name=file_name,
                file_size=len(data),
                file_type=content_type,
                storage_key=storage_key,
                operation=descriptor.operation,
                target_format=descriptor.target_format,
                job_type=job_type_for_file(file_name, descriptor.operation)
            ))

        await self.message_queue.send_message(descriptor.to_message_body())

        logger.info(f"Submitted job {job_id}: {descriptor.operation} {file_name} -> {descriptor.target_format}")
        return descriptor
