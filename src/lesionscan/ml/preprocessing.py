"""Image preprocessing pipeline.

Decoding (format detection, EXIF orientation, RGB conversion, size
validation), the fixed square resize, and conversion to the float tensor the
classifier expects.
"""

from __future__ import annotations

import io

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageOps, UnidentifiedImageError

from lesionscan.errors import DecodeError


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Reject images with more pixels than this.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        DecodeError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise DecodeError("Empty image data")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if max_pixels is not None and width * height > max_pixels:
                raise DecodeError(f"Image has {width * height} pixels, limit is {max_pixels}")
            img.load()
            rgb = ImageOps.exif_transpose(img).convert("RGB")
    except DecodeError:
        raise
    except Image.DecompressionBombError as exc:
        raise DecodeError(str(exc)) from exc
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise DecodeError(f"Could not decode image: {exc}") from exc

    return np.asarray(rgb, dtype=np.uint8).copy()


def resize_square(image: NDArray[np.uint8], side: int) -> NDArray[np.uint8]:
    """Stretch an image to ``side x side`` with bilinear interpolation.

    Aspect ratio is not preserved. An image that already has the target size
    is returned as an unchanged copy.
    """
    height, width = image.shape[:2]
    if width == side and height == side:
        return image.copy()

    resized = Image.fromarray(image).resize((side, side), resample=Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8).copy()


def to_input_tensor(image: NDArray[np.uint8]) -> NDArray[np.float32]:
    """Normalize channels to [0, 1] and add the batch axis: shape (1, H, W, 3)."""
    tensor = image[..., :3].astype(np.float32) / np.float32(255.0)
    return np.ascontiguousarray(tensor[np.newaxis, ...])


def preprocess(image_bytes: bytes, side: int, max_pixels: int | None = None) -> NDArray[np.float32]:
    """Decode, resize and normalize image bytes into a (1, side, side, 3) tensor."""
    image = decode_image(image_bytes, max_pixels=max_pixels)
    return to_input_tensor(resize_square(image, side))
