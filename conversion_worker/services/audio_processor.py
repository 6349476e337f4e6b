from typing import List, Optional
import logging

from .base import FileProcessor
from .ffmpeg import FFmpegRunner
from ..errors import ProcessingError
from ..models import JobDescriptor, JobOperation, ProcessingResult

logger = logging.getLogger(__name__)

class AudioProcessor(FileProcessor):
    """Converts audio between formats with FFmpeg"""

    SUPPORTED_OPERATIONS = ('convert',)
    SUPPORTED_FORMATS = ('mp3', 'wav', 'ogg', 'flac', 'aac', 'm4a', 'wma')

    CONTENT_TYPES = {
        'mp3': 'audio/mpeg',
        'wav': 'audio/wav',
        'flac': 'audio/flac',
        'ogg': 'audio/ogg',
        'aac': 'audio/aac',
        'm4a': 'audio/mp4',
        'wma': 'audio/x-ms-wma'
    }

    # Ceiling bitrates in kbit/s reached at quality 100
    MAX_BITRATES = {
        'mp3': 320,
        'aac': 256,
        'ogg': 500,
        'flac': 1411,
        'wav': 1411,
        'm4a': 256,
        'wma': 320
    }

    MIN_BITRATE = 32

    def __init__(self, ffmpeg: Optional[FFmpegRunner] = None):
        self.ffmpeg = ffmpeg or FFmpegRunner()

    async def process(self, data: bytes, descriptor: JobDescriptor) -> ProcessingResult:
        if descriptor.operation != JobOperation.CONVERT:
            raise ProcessingError(f"Unsupported operation for audio: {descriptor.operation}")
        if not descriptor.target_format:
            raise ProcessingError("Target format is required for audio conversion")

        fmt = descriptor.target_format.lower()
        if fmt not in self.SUPPORTED_FORMATS:
            raise ProcessingError(f"Unsupported target format for audio: {descriptor.target_format}")

        quality = descriptor.effective_quality
        output = await self.ffmpeg.transcode(data, fmt, self.build_output_args(fmt, quality))

        logger.info(f"Converted audio to {fmt} at quality {quality} ({len(output)} bytes)")
        return ProcessingResult(
            data=output,
            content_type=self.CONTENT_TYPES.get(fmt, 'audio/mpeg'),
            file_extension=fmt
        )

    def bitrate_for(self, fmt: str, quality: int) -> str:
        max_bitrate = self.MAX_BITRATES.get(fmt, 320)
        return f"{max(self.MIN_BITRATE, round((quality / 100) * max_bitrate))}k"

    def build_output_args(self, fmt: str, quality: int) -> List[str]:
        """FFmpeg output arguments for a target format; video/cover streams are dropped"""
        bitrate = self.bitrate_for(fmt, quality)

        if fmt == 'mp3':
            codec_args = [
                '-c:a', 'libmp3lame',
                '-b:a', bitrate,
                '-q:a', str(round(9 - (quality / 100) * 9))
            ]
        elif fmt == 'wav':
            codec_args = ['-c:a', 'pcm_s16le', '-ar', '44100']
        elif fmt == 'flac':
            codec_args = [
                '-c:a', 'flac',
                '-compression_level', str(round((100 - quality) / 100 * 12))
            ]
        elif fmt == 'ogg':
            codec_args = [
                '-c:a', 'libvorbis',
                '-b:a', bitrate,
                '-q:a', str(round((quality / 100) * 10))
            ]
        elif fmt in ['aac', 'm4a']:
            codec_args = ['-c:a', 'aac', '-b:a', bitrate, '-profile:a', 'aac_low']
        elif fmt == 'wma':
            codec_args = ['-c:a', 'wmav2', '-b:a', bitrate]
        else:
            codec_args = ['-b:a', bitrate]

        return ['-vn', *codec_args]
