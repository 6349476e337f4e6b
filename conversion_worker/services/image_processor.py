import io
from typing import Dict, Any, Optional
from PIL import Image, UnidentifiedImageError
import logging

from .base import FileProcessor
from ..errors import ProcessingError
from ..models import JobDescriptor, JobOperation, ProcessingResult

logger = logging.getLogger(__name__)

class ImageProcessor(FileProcessor):
    """Handles image format conversion and quality-driven compression"""

    SUPPORTED_OPERATIONS = ('convert', 'compress')
    SUPPORTED_FORMATS = ('jpg', 'jpeg', 'png', 'webp', 'gif', 'tiff', 'tif', 'bmp')

    CONTENT_TYPES = {
        'jpg': 'image/jpeg',
        'jpeg': 'image/jpeg',
        'png': 'image/png',
        'webp': 'image/webp',
        'gif': 'image/gif',
        'tiff': 'image/tiff',
        'tif': 'image/tiff',
        'bmp': 'image/bmp'
    }

    DEFAULT_CONVERT_QUALITY = 90

    async def process(self, data: bytes, descriptor: JobDescriptor) -> ProcessingResult:
        if descriptor.operation not in self.SUPPORTED_OPERATIONS:
            raise ProcessingError(f"Unsupported operation: {descriptor.operation}")

        img = self._open(data)
        try:
            if descriptor.operation == JobOperation.CONVERT:
                quality = descriptor.quality if descriptor.quality is not None else self.DEFAULT_CONVERT_QUALITY
                return self.convert_format(img, descriptor.target_format, quality, descriptor.options)
            return self.compress_image(img, descriptor.effective_quality)
        finally:
            img.close()

    def _open(self, data: bytes) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
            return img
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ProcessingError(f"Could not decode image: {str(e)}")

    def convert_format(
        self,
        img: Image.Image,
        target_format: Optional[str],
        quality: int = DEFAULT_CONVERT_QUALITY,
        options: Optional[Dict[str, Any]] = None
    ) -> ProcessingResult:
        """
        Convert an image to another format

        Args:
            img: Decoded source image
            target_format: Target format (jpg, png, webp, gif, tiff, bmp)
            quality: Output quality for lossy formats
            options: Optional 'width'/'height' bounds; aspect ratio is kept and
                images are never upscaled

        Returns:
            ProcessingResult with the encoded image
        """
        if not target_format:
            raise ProcessingError("Target format is required for image conversion")

        fmt = target_format.lower()
        if fmt not in self.SUPPORTED_FORMATS:
            raise ProcessingError(f"Unsupported target format: {target_format}")

        img = self._apply_resize(img, options or {})

        if fmt in ['jpg', 'jpeg']:
            save_kwargs = {
                'format': 'JPEG',
                'quality': quality,
                'optimize': True,
                'progressive': True
            }
            img = self._flatten_to_rgb(img)

        elif fmt == 'png':
            save_kwargs = {
                'format': 'PNG',
                'optimize': True
            }

        elif fmt == 'webp':
            save_kwargs = {
                'format': 'WEBP',
                'quality': quality,
                'method': 6
            }
            img = self._webp_compatible(img)

        elif fmt == 'gif':
            save_kwargs = {'format': 'GIF'}

        elif fmt in ['tiff', 'tif']:
            save_kwargs = {'format': 'TIFF'}

        else:
            save_kwargs = {'format': 'BMP'}
            if img.mode not in ('1', 'L', 'P', 'RGB'):
                img = self._flatten_to_rgb(img)

        return ProcessingResult(
            data=self._encode(img, save_kwargs),
            content_type=self.CONTENT_TYPES[fmt],
            file_extension=fmt
        )

    def compress_image(self, img: Image.Image, quality: int) -> ProcessingResult:
        """
        Compress an image in (roughly) its own format

        Lower quality settings scale the image down and pick stronger encoder
        settings. TIFF is re-encoded as JPEG, BMP as PNG, and any format
        without a dedicated strategy as WebP.
        """
        source_format = (img.format or '').upper()
        original_size = img.size

        if quality < 70:
            scale_factor = 0.8 if quality < 50 else 0.9
            width, height = img.size
            img = img.resize(
                (max(1, round(width * scale_factor)), max(1, round(height * scale_factor))),
                Image.Resampling.LANCZOS
            )

        if source_format in ['JPEG', 'MPO']:
            data = self._encode(self._flatten_to_rgb(img), {
                'format': 'JPEG',
                'quality': quality,
                'optimize': True,
                'progressive': quality > 60
            })
            result = ProcessingResult(data=data, content_type='image/jpeg', file_extension='jpg')

        elif source_format == 'PNG':
            compress_level = 6 if quality > 80 else 9
            if quality < 50:
                img = self._quantize(img, 256)
            data = self._encode(img, {
                'format': 'PNG',
                'optimize': compress_level == 9,
                'compress_level': compress_level
            })
            result = ProcessingResult(data=data, content_type='image/png', file_extension='png')

        elif source_format == 'WEBP':
            data = self._encode(self._webp_compatible(img), {
                'format': 'WEBP',
                'quality': quality,
                'method': 4 if quality > 70 else 6,
                'lossless': False
            })
            result = ProcessingResult(data=data, content_type='image/webp', file_extension='webp')

        elif source_format == 'GIF':
            # GIF has no quality knob; palette size stands in for it
            colors = 64 if quality < 50 else (128 if quality < 80 else 256)
            dither = Image.Dither.FLOYDSTEINBERG if quality > 60 else Image.Dither.NONE
            data = self._encode(self._quantize(img, colors, dither), {
                'format': 'GIF',
                'optimize': True
            })
            result = ProcessingResult(data=data, content_type='image/gif', file_extension='gif')

        elif source_format == 'TIFF':
            data = self._encode(self._flatten_to_rgb(img), {
                'format': 'JPEG',
                'quality': quality,
                'optimize': True,
                'progressive': True
            })
            result = ProcessingResult(data=data, content_type='image/jpeg', file_extension='jpg')

        elif source_format == 'BMP':
            if quality < 60:
                img = self._quantize(img, 256)
            data = self._encode(img, {
                'format': 'PNG',
                'optimize': True,
                'compress_level': 9
            })
            result = ProcessingResult(data=data, content_type='image/png', file_extension='png')

        else:
            data = self._encode(self._webp_compatible(img), {
                'format': 'WEBP',
                'quality': quality,
                'method': 6
            })
            result = ProcessingResult(data=data, content_type='image/webp', file_extension='webp')

        logger.info(
            f"Compressed {source_format or 'unknown'} image {original_size} -> {img.size} "
            f"as {result.file_extension} at quality {quality} ({result.size} bytes)"
        )
        return result

    def _apply_resize(self, img: Image.Image, options: Dict[str, Any]) -> Image.Image:
        width = options.get('width')
        height = options.get('height')
        if not width and not height:
            return img

        try:
            bounds = (int(width or img.width), int(height or img.height))
        except (TypeError, ValueError):
            raise ProcessingError(f"Invalid resize dimensions: width={width}, height={height}")

        if bounds[0] <= 0 or bounds[1] <= 0:
            raise ProcessingError(f"Invalid resize dimensions: width={width}, height={height}")

        img.thumbnail(bounds, Image.Resampling.LANCZOS)
        return img

    def _flatten_to_rgb(self, img: Image.Image) -> Image.Image:
        """Composite transparent images onto white for formats without alpha"""
        if img.mode in ('RGBA', 'LA', 'P'):
            img = img.convert('RGBA')
            background = Image.new('RGB', img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            return background
        if img.mode != 'RGB':
            return img.convert('RGB')
        return img

    def _webp_compatible(self, img: Image.Image) -> Image.Image:
        if img.mode in ('RGB', 'RGBA'):
            return img
        has_alpha = img.mode in ('LA', 'PA') or 'transparency' in img.info
        return img.convert('RGBA' if has_alpha else 'RGB')

    def _quantize(
        self,
        img: Image.Image,
        colors: int,
        dither: Image.Dither = Image.Dither.FLOYDSTEINBERG
    ) -> Image.Image:
        if img.mode == 'P':
            img = img.convert('RGBA' if 'transparency' in img.info else 'RGB')
        elif img.mode not in ('RGB', 'RGBA'):
            img = img.convert('RGBA' if 'A' in img.getbands() else 'RGB')
        method = Image.Quantize.FASTOCTREE if img.mode == 'RGBA' else Image.Quantize.MEDIANCUT
        return img.quantize(colors=colors, method=method, dither=dither)

    def _encode(self, img: Image.Image, save_kwargs: Dict[str, Any]) -> bytes:
        buffer = io.BytesIO()
        try:
            img.save(buffer, **save_kwargs)
        except (OSError, ValueError, KeyError) as e:
            raise ProcessingError(f"Could not encode image as {save_kwargs.get('format')}: {str(e)}")
        return buffer.getvalue()
