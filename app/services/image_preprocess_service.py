import io
import time
import base64
import binascii
import logging
from enum import Enum
from typing import NamedTuple, Optional, Tuple, Union

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
from fastapi.concurrency import run_in_threadpool

from app.config import (
    MAX_DIMENSION,
    SKIN_CB_RANGE,
    SKIN_CR_RANGE,
    BACKGROUND_COLOR,
    JPEG_QUALITY,
    OUTPUT_MIME_TYPE,
    MAX_DECODE_PIXELS,
)

logger = logging.getLogger(__name__)


class SurfaceStage(str, Enum):
    WORKING = "working"
    FALLBACK = "fallback"
    OUTPUT = "output"


class ImageProcessingError(Exception):
    """Base class for every failure raised by the preprocessing pipeline."""


class DecodeFailure(ImageProcessingError):
    pass


class SurfaceAcquisitionFailure(ImageProcessingError):
    def __init__(self, stage: SurfaceStage, message: Optional[str] = None):
        self.stage = SurfaceStage(stage)
        super().__init__(message or f"Could not acquire {self.stage.value} drawing surface")


class ChannelExtrema(NamedTuple):
    # Sentinels: the first skin pixel always moves both bounds.
    minimum: Tuple[int, int, int] = (255, 255, 255)
    maximum: Tuple[int, int, int] = (0, 0, 0)


class SegmentationResult(NamedTuple):
    buffer: np.ndarray
    has_skin_pixels: bool
    extrema: ChannelExtrema


class PreprocessResult(NamedTuple):
    data_url: str
    jpeg_bytes: bytes
    size: Tuple[int, int]
    has_skin_pixels: bool
    mime_type: str
    execution_times: dict


ImageSource = Union[str, bytes, bytearray]


def is_skin(r, g, b) -> bool:
    """
    YCbCr chrominance test. Pure function of (R, G, B).
    """
    cb = 128 - 0.168736 * r - 0.331264 * g + 0.5 * b
    cr = 128 + 0.5 * r - 0.418688 * g - 0.081312 * b
    return bool(
        SKIN_CB_RANGE[0] <= cb <= SKIN_CB_RANGE[1]
        and SKIN_CR_RANGE[0] <= cr <= SKIN_CR_RANGE[1]
    )


def skin_mask(rgb: np.ndarray) -> np.ndarray:
    """Vectorised `is_skin` over an (..., 3) array. Returns a boolean mask."""
    rgb = rgb.astype(np.float64)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    cb = 128 - 0.168736 * r - 0.331264 * g + 0.5 * b
    cr = 128 + 0.5 * r - 0.418688 * g - 0.081312 * b
    return (
        (cb >= SKIN_CB_RANGE[0]) & (cb <= SKIN_CB_RANGE[1])
        & (cr >= SKIN_CR_RANGE[0]) & (cr <= SKIN_CR_RANGE[1])
    )


def compute_target_size(width: int, height: int) -> Tuple[int, int]:
    """
    Scales the long edge down to MAX_DIMENSION, keeping aspect ratio.
    Images already within bounds keep their size.
    """
    if width > height:
        if width > MAX_DIMENSION:
            return MAX_DIMENSION, max(1, int(height * (MAX_DIMENSION / width)))
    elif height > MAX_DIMENSION:
        return max(1, int(width * (MAX_DIMENSION / height))), MAX_DIMENSION
    return width, height


def composite_over_opaque(background: Image.Image, foreground: Image.Image) -> Image.Image:
    """
    Alpha-blends `foreground` over an opaque `background` of the same size.

    out = fg * a + bg * (1 - a), with a = fg_alpha / 255.
    The result is always an RGB image (no alpha channel).
    """
    if background.size != foreground.size:
        raise ValueError(f"Size mismatch: background {background.size} vs foreground {foreground.size}")

    bg = np.asarray(background.convert("RGB"), dtype=np.float64)
    fg = np.asarray(foreground.convert("RGBA"), dtype=np.float64)
    alpha = fg[..., 3:] / 255.0
    blended = fg[..., :3] * alpha + bg * (1.0 - alpha)
    return Image.fromarray(np.clip(np.rint(blended), 0, 255).astype(np.uint8))


class ImagePreprocessService:
    """
    Prepares a skin photo for the analysis model:
    Resize -> Segment -> Normalize -> Composite + Encode.

    Stateless: every call allocates its own buffers, so the shared instance
    can serve concurrent requests.
    """

    def decode_image(self, source: ImageSource) -> Image.Image:
        """
        Decodes a data URL, bare base64 string or raw bytes into an upright PIL image.
        """
        content = self._decode_base64(source) if isinstance(source, str) else bytes(source)

        try:
            image = Image.open(io.BytesIO(content))
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            logger.error(f"Failed to open image: {e}")
            raise DecodeFailure("Failed to load image for processing. It might be corrupt or in an unsupported format.") from e

        width, height = image.size
        if width * height > MAX_DECODE_PIXELS:
            logger.error(f"Refusing to decode {width}x{height} image (limit {MAX_DECODE_PIXELS} pixels)")
            raise DecodeFailure(f"Image resolution {width}x{height} is too large to process")

        try:
            # Force the full decode now so truncated files fail here, not mid-pipeline
            image.load()
            image = ImageOps.exif_transpose(image)
        except (OSError, EOFError, ValueError, SyntaxError) as e:
            logger.error(f"Failed to decode image data: {e}")
            raise DecodeFailure("Failed to load image for processing. It might be corrupt or in an unsupported format.") from e

        return image

    def _decode_base64(self, source: str) -> bytes:
        encoded = source.strip()
        if encoded.startswith("data:"):
            header, _, encoded = encoded.partition(",")
            if ";base64" not in header:
                raise DecodeFailure("Only base64-encoded data URLs are supported")
        try:
            return base64.b64decode("".join(encoded.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Invalid base64 image payload: {e}")
            raise DecodeFailure("Image payload is not valid base64") from e

    def _acquire_surface(self, stage: SurfaceStage, size: tuple, color, mode: str = "RGB") -> Image.Image:
        try:
            return Image.new(mode, size, color)
        except (MemoryError, ValueError, OSError) as e:
            logger.error(f"Could not acquire {stage.value} surface {size[0]}x{size[1]}: {e}")
            raise SurfaceAcquisitionFailure(stage) from e

    def resize(self, image: Image.Image) -> Image.Image:
        """
        Renders the image into a fresh RGBA working surface bounded by MAX_DIMENSION.
        Always runs, even for small images, so later stages see one representation.
        """
        target_size = compute_target_size(*image.size)
        logger.debug(f"Resizing {image.size[0]}x{image.size[1]} -> {target_size[0]}x{target_size[1]}")

        source = image.convert("RGBA")
        if source.size != target_size:
            source = source.resize(target_size, Image.Resampling.LANCZOS)
        # Premultiplied round trip: fully transparent pixels keep no hidden colour
        source = source.convert("RGBa").convert("RGBA")

        working = self._acquire_surface(SurfaceStage.WORKING, target_size, (0, 0, 0, 0), mode="RGBA")
        working.paste(source, (0, 0))
        return working

    def segment(self, buffer: np.ndarray) -> SegmentationResult:
        """
        Flags skin pixels through the alpha channel (255 skin, 0 not skin) and
        records per-channel extrema over the skin pixels only.
        """
        mask = skin_mask(buffer[..., :3])
        buffer[..., 3] = np.where(mask, 255, 0)

        if not mask.any():
            return SegmentationResult(buffer, False, ChannelExtrema())

        skin = buffer[..., :3][mask]
        extrema = ChannelExtrema(
            minimum=tuple(int(v) for v in skin.min(axis=0)),
            maximum=tuple(int(v) for v in skin.max(axis=0)),
        )
        logger.debug(f"Skin coverage {mask.mean():.1%}, extrema min={extrema.minimum} max={extrema.maximum}")
        return SegmentationResult(buffer, True, extrema)

    def normalize(self, buffer: np.ndarray, extrema: ChannelExtrema) -> np.ndarray:
        """
        Min-max contrast stretch of each channel over skin pixels (alpha 255).
        Channels with zero range are left as they are.
        """
        skin = buffer[..., 3] == 255
        for channel, (low, high) in enumerate(zip(extrema.minimum, extrema.maximum)):
            spread = high - low
            if spread <= 0:
                continue
            plane = buffer[..., channel]
            stretched = np.rint((plane[skin].astype(np.float64) - low) * 255.0 / spread)
            plane[skin] = np.clip(stretched, 0, 255).astype(np.uint8)
        return buffer

    def encode_jpeg(self, image: Image.Image) -> bytes:
        buf = io.BytesIO()
        image.save(buf, format="JPEG", quality=int(round(JPEG_QUALITY * 100)))
        return buf.getvalue()

    def process_image(self, source: ImageSource) -> PreprocessResult:
        """
        Runs the full pipeline on an encoded image and returns the JPEG result.
        Raises DecodeFailure or SurfaceAcquisitionFailure; never returns a partial image.
        """
        execution_times = {}

        start_time = time.perf_counter()
        image = self.decode_image(source)
        execution_times["decode"] = f"{(time.perf_counter() - start_time):.3f}s"

        start_time = time.perf_counter()
        resized = self.resize(image)
        execution_times["resize"] = f"{(time.perf_counter() - start_time):.3f}s"

        start_time = time.perf_counter()
        segmentation = self.segment(np.array(resized))
        execution_times["segment"] = f"{(time.perf_counter() - start_time):.3f}s"

        start_time = time.perf_counter()
        if segmentation.has_skin_pixels:
            buffer = self.normalize(segmentation.buffer, segmentation.extrema)
            background = self._acquire_surface(SurfaceStage.OUTPUT, resized.size, BACKGROUND_COLOR)
            composite = composite_over_opaque(background, Image.fromarray(buffer))
        else:
            logger.info("No skin pixels detected, using resized original on white background")
            background = self._acquire_surface(SurfaceStage.FALLBACK, resized.size, BACKGROUND_COLOR)
            composite = composite_over_opaque(background, resized)
        execution_times["normalize_composite"] = f"{(time.perf_counter() - start_time):.3f}s"

        start_time = time.perf_counter()
        jpeg_bytes = self.encode_jpeg(composite)
        execution_times["encode"] = f"{(time.perf_counter() - start_time):.3f}s"

        img_b64 = base64.b64encode(jpeg_bytes).decode('utf-8')
        logger.info(
            f"Prepared {composite.size[0]}x{composite.size[1]} image "
            f"(skin: {segmentation.has_skin_pixels}, {len(jpeg_bytes)} bytes)"
        )
        return PreprocessResult(
            data_url=f"data:{OUTPUT_MIME_TYPE};base64,{img_b64}",
            jpeg_bytes=jpeg_bytes,
            size=composite.size,
            has_skin_pixels=segmentation.has_skin_pixels,
            mime_type=OUTPUT_MIME_TYPE,
            execution_times=execution_times,
        )

    def process_image_base64(self, source: ImageSource) -> str:
        """Returns the prepared image as a base64 JPEG data URL."""
        return self.process_image(source).data_url

    def process_image_bytes(self, source: ImageSource) -> bytes:
        return self.process_image(source).jpeg_bytes

    async def process_image_async(self, source: ImageSource) -> PreprocessResult:
        # CPU-bound pixel work runs off the event loop
        return await run_in_threadpool(self.process_image, source)


image_preprocess_service = ImagePreprocessService()
