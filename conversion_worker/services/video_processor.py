from typing import List, Optional
import logging

from .base import FileProcessor
from .ffmpeg import FFmpegRunner
from ..errors import ProcessingError
from ..models import JobDescriptor, JobOperation, ProcessingResult

logger = logging.getLogger(__name__)

class VideoProcessor(FileProcessor):
    """Converts videos between container formats with FFmpeg"""

    SUPPORTED_OPERATIONS = ('convert',)
    SUPPORTED_FORMATS = ('mp4', 'mov', 'avi', 'webm', 'mkv', 'flv', 'wmv')

    CONTENT_TYPES = {
        'mp4': 'video/mp4',
        'webm': 'video/webm',
        'mov': 'video/quicktime',
        'avi': 'video/x-msvideo',
        'mkv': 'video/x-matroska',
        'flv': 'video/x-flv',
        'wmv': 'video/x-ms-wmv'
    }

    def __init__(self, ffmpeg: Optional[FFmpegRunner] = None):
        self.ffmpeg = ffmpeg or FFmpegRunner()

    async def process(self, data: bytes, descriptor: JobDescriptor) -> ProcessingResult:
        if descriptor.operation != JobOperation.CONVERT:
            raise ProcessingError(f"Unsupported operation for video: {descriptor.operation}")
        if not descriptor.target_format:
            raise ProcessingError("Target format is required for video conversion")

        fmt = descriptor.target_format.lower()
        if fmt not in self.SUPPORTED_FORMATS:
            raise ProcessingError(f"Unsupported target format for video: {descriptor.target_format}")

        quality = descriptor.effective_quality
        output = await self.ffmpeg.transcode(data, fmt, self.build_output_args(fmt, quality))

        logger.info(f"Converted video to {fmt} at quality {quality} ({len(output)} bytes)")
        return ProcessingResult(
            data=output,
            content_type=self.CONTENT_TYPES.get(fmt, 'video/mp4'),
            file_extension=fmt
        )

    def build_output_args(self, fmt: str, quality: int) -> List[str]:
        """
        FFmpeg output arguments for a target container

        Video bitrate scales linearly from 1000k to 8000k with quality.
        """
        video_bitrate = f"{round(1000 + (quality / 100) * 7000)}k"
        audio_bitrate = '128k' if quality > 50 else '96k'

        if fmt == 'mp4':
            return [
                '-c:v', 'libx264',
                '-c:a', 'aac',
                '-b:v', video_bitrate,
                '-b:a', audio_bitrate,
                '-preset', 'medium',
                '-crf', str(round(51 - (quality / 100) * 28))
            ]

        if fmt == 'webm':
            return [
                '-c:v', 'libvpx-vp9',
                '-c:a', 'libopus',
                '-b:v', video_bitrate,
                '-b:a', audio_bitrate,
                '-deadline', 'good',
                '-cpu-used', '1'
            ]

        if fmt == 'mov':
            return [
                '-c:v', 'libx264',
                '-c:a', 'aac',
                '-b:v', video_bitrate,
                '-b:a', audio_bitrate,
                '-preset', 'medium'
            ]

        if fmt == 'avi':
            return [
                '-c:v', 'libx264',
                '-c:a', 'libmp3lame',
                '-b:v', video_bitrate,
                '-b:a', audio_bitrate
            ]

        return ['-b:v', video_bitrate, '-b:a', audio_bitrate]
