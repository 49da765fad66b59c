"""Apply a resolved pixel rectangle and write the cropped JPEG."""

from __future__ import annotations

import io
import logging
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from lesionscan.imaging.geometry import PixelCropRect

logger = logging.getLogger(__name__)

DEFAULT_JPEG_QUALITY: int = 95


def crop_image(image: NDArray[np.uint8], rect: PixelCropRect) -> NDArray[np.uint8]:
    """Return a copy of the ``rect`` region of an HxWx3 image."""
    left, upper, right, lower = rect.as_box()
    return image[upper:lower, left:right].copy()


def encode_jpeg(image: NDArray[np.uint8], quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Encode an RGB uint8 array as JPEG bytes."""
    buffer = io.BytesIO()
    Image.fromarray(image).convert("RGB").save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def write_cropped_image(
    image: NDArray[np.uint8],
    directory: str | Path,
    quality: int = DEFAULT_JPEG_QUALITY,
) -> Path:
    """Write a cropped image as ``cropped_<millis>_<suffix>.jpg`` under ``directory``."""
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)

    path = out_dir / f"cropped_{time.time_ns() // 1_000_000}_{uuid.uuid4().hex[:8]}.jpg"
    path.write_bytes(encode_jpeg(image, quality=quality))
    logger.info("Wrote cropped image %s (%dx%d)", path, image.shape[1], image.shape[0])
    return path
