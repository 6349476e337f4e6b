from typing import Optional
import logging

from .adapters.queue import MessageQueue, SqsMessageQueue, InMemoryMessageQueue
from .adapters.storage import FileStorage, S3FileStorage, LocalFileStorage
from .config import Settings
from .database.base import JobRecordStore
from .database.datastore import DatastoreJobStore
from .database.memory import InMemoryJobStore
from .services.audio_processor import AudioProcessor
from .services.document_processor import DocumentCompressor
from .services.ebook_processor import EbookConverter
from .services.ffmpeg import FFmpegRunner
from .services.image_processor import ImageProcessor
from .services.queue_worker import QueueWorker
from .services.status_updater import (
    JobStatusUpdater, StoreJobStatusUpdater, ApiJobStatusUpdater
)
from .services.video_processor import VideoProcessor

logger = logging.getLogger(__name__)


def create_message_queue(settings: Settings) -> MessageQueue:
    if settings.queue_backend == "memory":
        return InMemoryMessageQueue(visibility_timeout=settings.queue_visibility_timeout or 30)
    if settings.queue_backend == "sqs":
        return SqsMessageQueue(
            queue_url=settings.queue_url,
            queue_name=settings.queue_name,
            region_name=settings.aws_region,
            endpoint_url=settings.aws_endpoint_url,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            wait_time_seconds=settings.queue_wait_time_seconds,
            visibility_timeout=settings.queue_visibility_timeout
        )
    raise ValueError(f"Unknown queue backend: {settings.queue_backend}")


def create_file_storage(settings: Settings) -> FileStorage:
    if settings.storage_backend == "local":
        return LocalFileStorage(settings.local_storage_dir, public_base_url=settings.public_base_url)
    if settings.storage_backend == "s3":
        return S3FileStorage(
            settings.storage_bucket,
            region_name=settings.aws_region,
            endpoint_url=settings.aws_endpoint_url,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            public_base_url=settings.public_base_url,
            presigned_url_expiry=settings.presigned_url_expiry
        )
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


def create_job_store(settings: Settings) -> JobRecordStore:
    if settings.job_store_backend == "memory":
        return InMemoryJobStore()
    if settings.job_store_backend == "datastore":
        return DatastoreJobStore(
            settings.google_cloud_project,
            namespace=settings.datastore_namespace,
            kind=settings.job_record_kind
        )
    raise ValueError(f"Unknown job store backend: {settings.job_store_backend}")


def create_status_updater(settings: Settings, job_store: JobRecordStore) -> JobStatusUpdater:
    if settings.status_updater == "api":
        return ApiJobStatusUpdater(settings.status_api_base_url, timeout=settings.status_api_timeout)
    if settings.status_updater == "store":
        return StoreJobStatusUpdater(job_store)
    raise ValueError(f"Unknown status updater: {settings.status_updater}")


def create_file_processing_worker(
    settings: Optional[Settings] = None,
    message_queue: Optional[MessageQueue] = None,
    file_storage: Optional[FileStorage] = None,
    job_store: Optional[JobRecordStore] = None,
    status_updater: Optional[JobStatusUpdater] = None
) -> QueueWorker:
    """
    Build a QueueWorker wired from settings

    Explicit collaborators override the configured backends. Processors are
    registered as image, document, video, audio, e-book; dispatch takes the
    first match, so this order decides overlapping formats such as pdf.
    """
    settings = settings or Settings()
    job_store = job_store or create_job_store(settings)

    worker = QueueWorker(
        message_queue or create_message_queue(settings),
        file_storage or create_file_storage(settings),
        status_updater or create_status_updater(settings, job_store),
        poll_interval_seconds=settings.poll_interval_seconds,
        delete_failed_messages=settings.delete_failed_messages,
        job_store=job_store
    )

    ffmpeg = FFmpegRunner(
        ffmpeg_path=settings.ffmpeg_path,
        timeout=settings.ffmpeg_timeout,
        temp_dir=settings.temp_dir
    )

    worker.add_processor(ImageProcessor())
    worker.add_processor(DocumentCompressor(producer=settings.app_name))
    worker.add_processor(VideoProcessor(ffmpeg))
    worker.add_processor(AudioProcessor(ffmpeg))
    worker.add_processor(EbookConverter(
        calibre_path=settings.calibre_path,
        timeout=settings.calibre_timeout,
        temp_dir=settings.temp_dir
    ))

    logger.info(
        f"Created worker (queue={settings.queue_backend}, storage={settings.storage_backend}, "
        f"job store={settings.job_store_backend}, status={settings.status_updater})"
    )
    return worker
