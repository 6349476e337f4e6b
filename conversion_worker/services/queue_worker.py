import asyncio
from enum import Enum
from typing import Dict, Any, List, Optional
import logging

from .base import FileProcessor
from .status_updater import JobStatusUpdater
from ..adapters.queue import MessageQueue, QueueMessage
from ..adapters.storage import FileStorage
from ..database.base import JobRecordStore
from ..errors import DispatchError
from ..models import (
    CompressionData, JobDescriptor, JobOperation, JobRecord, JobStatus, WorkerStats,
    extension_for_content_type, get_file_extension, sniff_extension, utcnow
)


class WorkerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


class QueueWorker:
    """
    Polls a message queue and runs each job through a registered processor

    One message is handled completely (fetch, process, store, report,
    acknowledge) before the next poll. Errors raised while handling a message
    fail that job only; errors in the loop itself pause the worker for one
    poll interval. Only stop() ends the loop.
    """

    def __init__(
        self,
        message_queue: MessageQueue,
        file_storage: FileStorage,
        status_updater: JobStatusUpdater,
        logger: Optional[logging.Logger] = None,
        poll_interval_seconds: float = 5.0,
        delete_failed_messages: bool = True,
        job_store: Optional[JobRecordStore] = None
    ):
        self.message_queue = message_queue
        self.file_storage = file_storage
        self.status_updater = status_updater
        self.logger = logger or logging.getLogger(__name__)
        self.poll_interval_seconds = poll_interval_seconds
        self.delete_failed_messages = delete_failed_messages
        self.job_store = job_store

        self.processors: List[FileProcessor] = []
        self.stats = WorkerStats()
        self._state = WorkerState.STOPPED
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == WorkerState.RUNNING

    def add_processor(self, processor: FileProcessor):
        """Register a processor; earlier registrations win ties"""
        self.processors.append(processor)

    def find_processor(self, operation: str, target_format: Optional[str] = None) -> FileProcessor:
        for processor in self.processors:
            if processor.can_process(operation, target_format):
                return processor
        raise DispatchError(operation, target_format)

    async def start(self):
        """Run the polling loop until stop() is called"""
        if self._state != WorkerState.STOPPED:
            self.logger.warning("Worker is already running")
            return

        self._state = WorkerState.RUNNING
        self._stop_event.clear()
        self.logger.info(
            f"Starting file processing worker with {len(self.processors)} processors: "
            f"{', '.join(p.name for p in self.processors)}"
        )

        try:
            while self._state == WorkerState.RUNNING:
                handled = False
                try:
                    handled = await self.process_batch()
                except Exception as e:
                    self.stats.loop_errors += 1
                    self.logger.error(f"Error in worker loop: {str(e)}", exc_info=True)

                if self._state == WorkerState.RUNNING and not handled:
                    await self._sleep(self.poll_interval_seconds)
        finally:
            self._state = WorkerState.STOPPED
            self.logger.info("File processing worker stopped")

    def stop(self):
        if self._state != WorkerState.RUNNING:
            self.logger.info(f"Stop requested while worker is {self._state.value}")
            return

        self.logger.info("Stopping file processing worker...")
        self._state = WorkerState.STOPPING
        self._stop_event.set()

    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def process_batch(self) -> bool:
        """Poll once and handle what arrives; True when a message was handled"""
        messages = await self.message_queue.poll_messages()
        self.stats.last_poll_at = utcnow()

        for message in messages:
            await self.handle_message(message)

        return bool(messages)

    async def handle_message(self, message: QueueMessage):
        self.stats.messages_received += 1
        job_id: Optional[str] = None

        try:
            descriptor = JobDescriptor.from_message_body(message.body)
            job_id = descriptor.job_id
            self.logger.info(
                f"Processing job: {job_id}",
                extra={'job_id': job_id, 'receive_count': message.receive_count}
            )
            await self.process_job(descriptor)
        except Exception as e:
            await self._handle_failure(message, e, job_id or getattr(e, 'job_id', None))
            return

        self.stats.jobs_completed += 1
        self.logger.info(f"Job completed: {job_id}", extra={'job_id': job_id})
        await self._delete_message(message)

    async def process_job(self, descriptor: JobDescriptor):
        job_id = descriptor.job_id

        await self._report(job_id, JobStatus.PROCESSING, 0)

        record = await self._load_record(job_id)
        source_key = self.resolve_source_key(job_id, record)
        routing_format = self.routing_format(descriptor, record)

        data: Optional[bytes] = None
        if routing_format is None and descriptor.operation == JobOperation.COMPRESS:
            # Compress jobs without any format hint are routed by content
            data = await self.file_storage.get_file(source_key)
            routing_format = sniff_extension(data)

        processor = self.find_processor(descriptor.operation, routing_format)

        if data is None:
            data = await self.file_storage.get_file(source_key)
        await self._report(job_id, JobStatus.PROCESSING, 25)

        result = await processor.process(data, descriptor)
        await self._report(job_id, JobStatus.PROCESSING, 75)

        output_key = self.output_key(descriptor, result.file_extension)
        await self.file_storage.put_file(output_key, result.data, result.content_type)
        download_url = self.file_storage.generate_download_url(output_key)

        compression_data = None
        if descriptor.operation == JobOperation.COMPRESS:
            compression_data = CompressionData.from_sizes(len(data), result.size)
            self.logger.info(
                f"Compression achieved for job {job_id}: "
                f"{round(len(data) / 1024)} KB -> {round(result.size / 1024)} KB "
                f"({compression_data.compression_savings}%)",
                extra={'job_id': job_id}
            )

        await self._report(
            job_id,
            JobStatus.COMPLETED,
            100,
            download_url=download_url,
            compression_data=compression_data
        )

    async def _load_record(self, job_id: str) -> Optional[JobRecord]:
        if self.job_store is None:
            return None
        return await self.job_store.get(job_id)

    def resolve_source_key(self, job_id: str, record: Optional[JobRecord] = None) -> str:
        if record is not None and record.storage_key:
            return record.storage_key
        return f"uploads/{job_id}"

    def routing_format(self, descriptor: JobDescriptor, record: Optional[JobRecord] = None) -> Optional[str]:
        """
        Format used to pick a processor

        The descriptor's targetFormat when present. Compress jobs without one
        fall back to the source file's extension, then its MIME type, as
        recorded on the job. The descriptor itself is left unchanged.
        """
        if descriptor.target_format:
            return descriptor.target_format
        if descriptor.operation != JobOperation.COMPRESS or record is None:
            return None
        return get_file_extension(record.file_name) or extension_for_content_type(record.file_type)

    def output_key(self, descriptor: JobDescriptor, file_extension: str) -> str:
        prefix = 'compressed' if descriptor.operation == JobOperation.COMPRESS else 'processed'
        return f"{prefix}/{descriptor.job_id}.{file_extension}"

    async def _handle_failure(self, message: QueueMessage, error: Exception, job_id: Optional[str]):
        error_code = getattr(error, 'code', type(error).__name__)

        if job_id:
            self.stats.jobs_failed += 1
            self.logger.error(
                f"Job {job_id} failed: {str(error)}",
                extra={'job_id': job_id, 'error_code': error_code}
            )
            await self._report(job_id, JobStatus.FAILED, 0, error_message=str(error))
        else:
            self.stats.unattributable_failures += 1
            self.logger.error(
                f"Could not attribute failed message {message.message_id} to a job: {str(error)}",
                extra={'message_id': message.message_id, 'error_code': error_code}
            )

        if self.delete_failed_messages:
            await self._delete_message(message)
        else:
            self.logger.info(
                f"Leaving failed message {message.message_id} for redelivery",
                extra={'message_id': message.message_id, 'receive_count': message.receive_count}
            )

    async def _report(self, job_id: str, status: JobStatus, progress: int, **kwargs):
        try:
            await self.status_updater.update_status(job_id, status, progress, **kwargs)
        except Exception as e:
            self.stats.status_update_failures += 1
            self.logger.error(
                f"Failed to update status for job {job_id}: {str(e)}",
                extra={'job_id': job_id, 'status': status.value, 'progress': progress}
            )

    async def _delete_message(self, message: QueueMessage):
        try:
            await self.message_queue.delete_message(message.receipt_handle)
        except Exception as e:
            self.stats.message_delete_failures += 1
            self.logger.error(
                f"Failed to delete message {message.message_id}: {str(e)}",
                extra={'message_id': message.message_id}
            )

    def snapshot(self) -> Dict[str, Any]:
        return {
            'state': self._state.value,
            'processors': [p.name for p in self.processors],
            'stats': self.stats.model_dump(mode='json')
        }
