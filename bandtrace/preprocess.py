"""Raster normalization: decode, resize, color conversion and denoising."""

import io
import logging
from typing import Optional

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .types import DecodeError, EmptyInputError, ImageArray, Raster, luma  # noqa: F401

logger = logging.getLogger(__name__)


def decode_image(data: Optional[bytes]) -> ImageArray:
    """Decode image bytes into an (H, W, 3) uint8 sRGB array.

    EXIF orientation is applied and transparent images are composited
    on a white background.

    Args:
        data: Encoded image bytes (PNG, JPEG, ...)

    Returns:
        RGB pixel array

    Raises:
        EmptyInputError: If data is empty
        DecodeError: If the bytes are not a recognizable image
    """
    if not data:
        raise EmptyInputError("No image supplied")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)

            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                rgba = img.convert("RGBA")
                background = Image.new("RGB", rgba.size, (255, 255, 255))
                background.paste(rgba, mask=rgba.split()[3])
                img = background
            elif img.mode != "RGB":
                img = img.convert("RGB")

            return np.array(img, dtype=np.uint8)

    except UnidentifiedImageError as e:
        raise DecodeError(f"Unrecognized image format: {e}") from e
    except (OSError, ValueError, SyntaxError) as e:
        raise DecodeError(f"Failed to decode image: {e}") from e


def resize_long_side(pixels: ImageArray, target_long_side: int) -> ImageArray:
    """Scale so the longer side equals target_long_side, keeping aspect ratio.

    Images already within the target are returned unchanged; this never
    upsamples.
    """
    if target_long_side < 1:
        raise ValueError(f"target_long_side must be >= 1, got {target_long_side}")

    h, w = pixels.shape[:2]
    if max(h, w) <= target_long_side:
        return pixels

    if w >= h:
        new_w = target_long_side
        new_h = max(1, int(round(target_long_side * h / w)))
    else:
        new_h = target_long_side
        new_w = max(1, int(round(target_long_side * w / h)))

    return cv2.resize(pixels, (new_w, new_h), interpolation=cv2.INTER_AREA)


def median_denoise(pixels: ImageArray, radius: int = 1) -> ImageArray:
    """Median filter over a (2*radius+1) square neighborhood."""
    if radius <= 0:
        return pixels.copy()
    return cv2.medianBlur(np.ascontiguousarray(pixels), 2 * radius + 1)


def normalize(data: bytes, target_long_side: int, blur_radius: int = 1) -> Raster:
    """Decode, resize and denoise raw image bytes.

    Args:
        data: Encoded image bytes
        target_long_side: Length of the longer side after resizing
        blur_radius: Median filter radius (0 disables denoising)

    Returns:
        Normalized 3-channel Raster
    """
    pixels = decode_image(data)
    src_h, src_w = pixels.shape[:2]

    pixels = resize_long_side(pixels, target_long_side)
    pixels = median_denoise(pixels, blur_radius)

    raster = Raster(pixels)
    logger.info(
        "Normalized %dx%d -> %dx%d (blur radius %d)",
        src_w, src_h, raster.width, raster.height, blur_radius,
    )
    return raster


def adaptive_threshold(
    raster: Raster,
    sample_width: int = 200,
    low: float = 60.0,
    high: float = 220.0,
) -> float:
    """Global binarization threshold from image statistics.

    The image is downsampled to sample_width pixels wide, then the
    threshold is mean + 0.5 * stddev of its grayscale values, clamped
    to [low, high].
    """
    img = Image.fromarray(np.ascontiguousarray(raster.rgb)).convert("L")
    if img.width > sample_width:
        sample_height = max(1, int(round(sample_width * img.height / img.width)))
        img = img.resize((sample_width, sample_height), Image.Resampling.BILINEAR)

    gray = np.asarray(img, dtype=np.float32)
    threshold = float(np.clip(gray.mean() + 0.5 * gray.std(), low, high))
    logger.debug("Adaptive threshold %.1f", threshold)
    return threshold
