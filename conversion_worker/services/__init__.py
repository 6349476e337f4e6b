"""
Worker services: file processors, status reporting, the queue worker and the submit path
"""

from .base import FileProcessor
from .image_processor import ImageProcessor
from .document_processor import DocumentCompressor
from .video_processor import VideoProcessor
from .audio_processor import AudioProcessor
from .ebook_processor import EbookConverter
from .ffmpeg import FFmpegRunner
from .status_updater import JobStatusUpdater, StoreJobStatusUpdater, ApiJobStatusUpdater
from .queue_worker import QueueWorker, WorkerState
from .job_submitter import JobSubmitter

__all__ = [
    'FileProcessor',
    'ImageProcessor',
    'DocumentCompressor',
    'VideoProcessor',
    'AudioProcessor',
    'EbookConverter',
    'FFmpegRunner',
    'JobStatusUpdater',
    'StoreJobStatusUpdater',
    'ApiJobStatusUpdater',
    'QueueWorker',
    'WorkerState',
    'JobSubmitter'
]
