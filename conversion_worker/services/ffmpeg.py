import asyncio
import tempfile
import uuid
from typing import List, Optional
from pathlib import Path
import logging

from ..errors import ProcessingError

logger = logging.getLogger(__name__)

class FFmpegRunner:
    """Runs FFmpeg over whole in-memory buffers using a scratch directory"""

    COMMON_PATHS = [
        'ffmpeg',
        '/usr/bin/ffmpeg',
        '/usr/local/bin/ffmpeg',
        '/opt/homebrew/bin/ffmpeg'
    ]
    PROBE_TIMEOUT = 5

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        timeout: int = 1800,
        temp_dir: str = "/tmp/processing"
    ):
        self.ffmpeg_path = ffmpeg_path
        self._searched = ffmpeg_path is not None
        self.timeout = timeout
        self.temp_dir = Path(temp_dir)

    async def resolve_ffmpeg(self) -> Optional[str]:
        """Configured FFmpeg path, or the first working candidate; searched once"""
        if not self._searched:
            self.ffmpeg_path = await self._find_ffmpeg()
            self._searched = True
        return self.ffmpeg_path

    async def _find_ffmpeg(self) -> Optional[str]:
        """Find FFmpeg executable"""
        for path in self.COMMON_PATHS:
            try:
                process = await asyncio.create_subprocess_exec(
                    path, '-version',
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL
                )
            except (FileNotFoundError, PermissionError):
                continue

            try:
                if await asyncio.wait_for(process.wait(), timeout=self.PROBE_TIMEOUT) == 0:
                    return path
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()

        logger.warning("FFmpeg not found. Video and audio conversion are unavailable.")
        return None

    async def transcode(self, data: bytes, output_extension: str, output_args: List[str]) -> bytes:
        """
        Transcode a buffer with FFmpeg

        Args:
            data: Complete input file
            output_extension: Extension of the output file; FFmpeg picks the
                container from it
            output_args: Codec and rate arguments placed between input and output

        Returns:
            The complete output file
        """
        ffmpeg_path = await self.resolve_ffmpeg()
        if not ffmpeg_path:
            raise ProcessingError("FFmpeg is required for this conversion but was not found")

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.temp_dir) as work_dir:
            input_path = Path(work_dir) / f"input_{uuid.uuid4().hex}.tmp"
            output_path = Path(work_dir) / f"output_{uuid.uuid4().hex}.{output_extension}"
            input_path.write_bytes(data)

            cmd = [
                ffmpeg_path,
                '-y',
                '-hide_banner',
                '-loglevel', 'error',
                '-i', str(input_path),
                *output_args,
                str(output_path)
            ]

            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )

            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                raise ProcessingError(f"FFmpeg conversion timed out after {self.timeout}s")

            if process.returncode != 0:
                message = (stderr or b'').decode(errors='replace').strip()
                logger.error(f"FFmpeg error: {message}")
                raise ProcessingError(f"FFmpeg conversion failed: {message[-500:]}")

            if not output_path.exists():
                raise ProcessingError("FFmpeg finished without producing an output file")

            return output_path.read_bytes()
