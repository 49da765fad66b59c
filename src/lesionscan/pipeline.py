"""Scan pipeline: crop a captured image, then classify the crop.

Each call owns its buffers; the only shared state is the classifier's session,
which the caller serializes through the InferencePool.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from lesionscan.errors import ModelNotReadyError
from lesionscan.imaging.cropping import crop_image, encode_jpeg, write_cropped_image
from lesionscan.imaging.geometry import (
    CenteredBoxSelection,
    clamp_selection,
    resolve_crop_rect,
)
from lesionscan.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from pathlib import Path

    from lesionscan.config import Settings
    from lesionscan.imaging.geometry import CropSelection, PixelCropRect, ViewportGeometry
    from lesionscan.ml.image_classifier import ClassificationResult, ImageClassifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropOutcome:
    rect: PixelCropRect
    jpeg: bytes


@dataclass(frozen=True)
class ScanOutcome:
    rect: PixelCropRect
    crop_path: Path
    result: ClassificationResult


def _prepare_selection(
    selection: CropSelection, viewport: ViewportGeometry, settings: Settings
) -> CropSelection:
    # The fixed target box is resolved as given; user rectangles get the size
    # floor and containment applied first.
    if isinstance(selection, CenteredBoxSelection):
        return selection
    return clamp_selection(selection, viewport, settings.minimum_crop_size)


def crop(
    image_bytes: bytes,
    viewport: ViewportGeometry,
    selection: CropSelection,
    settings: Settings,
) -> CropOutcome:
    """Decode an image, resolve the selection and return the cropped JPEG.

    Raises:
        DecodeError: If the image cannot be decoded.
        GeometryError: If the viewport or selection is not finite and positive.
    """
    image = decode_image(image_bytes, max_pixels=settings.max_image_pixels)
    height, width = image.shape[:2]
    rect = resolve_crop_rect(width, height, viewport, _prepare_selection(selection, viewport, settings))
    logger.debug("Resolved crop %s for %dx%d source", rect, width, height)
    return CropOutcome(rect=rect, jpeg=encode_jpeg(crop_image(image, rect), quality=settings.jpeg_quality))


def scan(
    image_bytes: bytes,
    viewport: ViewportGeometry,
    selection: CropSelection,
    classifier: ImageClassifier,
    settings: Settings,
) -> ScanOutcome:
    """Crop, write the crop to ``crop_output_dir`` and classify the written file.

    Raises:
        ModelNotReadyError: Before any decoding if the classifier is not ready.
        DecodeError, GeometryError, InferenceError: From the individual steps.
    """
    if not classifier.is_ready:
        raise ModelNotReadyError(f"Classifier {classifier.model_name} is not initialized")

    image = decode_image(image_bytes, max_pixels=settings.max_image_pixels)
    height, width = image.shape[:2]
    rect = resolve_crop_rect(width, height, viewport, _prepare_selection(selection, viewport, settings))

    crop_path = write_cropped_image(crop_image(image, rect), settings.crop_output_dir, quality=settings.jpeg_quality)
    result = classifier.classify_file(crop_path)
    logger.info("Scan of %s: %s (%s)", crop_path.name, result.label, result.confidence_percent)
    return ScanOutcome(rect=rect, crop_path=crop_path, result=result)
