"""Crop geometry: map a display-space selection onto source image pixels.

The preview shows the captured image with cover-fit scaling: scaled to fill the
viewport while keeping its aspect ratio, overflow cropped, centered on both
axes. A selection drawn on that preview therefore has to be scaled back and
shifted by the part of the image that was cropped away on the dominant axis.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum

from lesionscan.errors import GeometryError

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ViewportGeometry:
    """Size of the rectangle the source image was cover-fit into."""

    preview_width: float
    preview_height: float

    @property
    def aspect(self) -> float:
        return self.preview_width / self.preview_height


@dataclass(frozen=True)
class RectSelection:
    """User-adjustable crop rectangle in viewport coordinates."""

    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def as_rect(self, viewport: ViewportGeometry) -> RectSelection:
        return self


@dataclass(frozen=True)
class CenteredBoxSelection:
    """Fixed square target box of ``side`` viewport units, centered in the viewport."""

    side: float

    def as_rect(self, viewport: ViewportGeometry) -> RectSelection:
        center_x = viewport.preview_width / 2
        center_y = viewport.preview_height / 2
        half = self.side / 2
        return RectSelection(
            left=center_x - half,
            top=center_y - half,
            width=self.side,
            height=self.side,
        )


CropSelection = RectSelection | CenteredBoxSelection


@dataclass(frozen=True)
class PixelCropRect:
    """Integer pixel rectangle inside the source image."""

    x: int
    y: int
    width: int
    height: int

    def as_box(self) -> tuple[int, int, int, int]:
        """Return ``(left, upper, right, lower)`` as used by Pillow."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)


@dataclass(frozen=True)
class CoverFit:
    """Scale and offsets relating viewport coordinates to source pixels."""

    scale: float
    offset_x: float
    offset_y: float

    def to_source(self, x: float, y: float) -> tuple[float, float]:
        """Map a viewport point to (unrounded) source image coordinates."""
        return (self.offset_x + x * self.scale, self.offset_y + y * self.scale)


class DragHandle(StrEnum):
    TOP_LEFT = "top_left"
    TOP_RIGHT = "top_right"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_RIGHT = "bottom_right"
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"
    CENTER = "center"


# Which edges each handle moves: (left, top, right, bottom).
_HANDLE_EDGES: dict[DragHandle, tuple[bool, bool, bool, bool]] = {
    DragHandle.TOP_LEFT: (True, True, False, False),
    DragHandle.TOP_RIGHT: (False, True, True, False),
    DragHandle.BOTTOM_LEFT: (True, False, False, True),
    DragHandle.BOTTOM_RIGHT: (False, False, True, True),
    DragHandle.TOP: (False, True, False, False),
    DragHandle.BOTTOM: (False, False, False, True),
    DragHandle.LEFT: (True, False, False, False),
    DragHandle.RIGHT: (False, False, True, False),
}


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


def cover_fit(source_width: int, source_height: int, viewport: ViewportGeometry) -> CoverFit:
    """Compute the cover-fit transform from viewport to source coordinates.

    Raises:
        GeometryError: If any dimension is not a finite positive number.
    """
    _require_positive("source_width", source_width)
    _require_positive("source_height", source_height)
    _require_positive("preview_width", viewport.preview_width)
    _require_positive("preview_height", viewport.preview_height)

    image_aspect = source_width / source_height
    if image_aspect > viewport.aspect:
        # Image is relatively wider: height fills, width is cropped on both sides.
        scale = source_height / viewport.preview_height
        visible_width = viewport.preview_width * scale
        return CoverFit(scale=scale, offset_x=(source_width - visible_width) / 2, offset_y=0.0)

    scale = source_width / viewport.preview_width
    visible_height = viewport.preview_height * scale
    return CoverFit(scale=scale, offset_x=0.0, offset_y=(source_height - visible_height) / 2)


def resolve_crop_rect(
    source_width: int,
    source_height: int,
    viewport: ViewportGeometry,
    selection: CropSelection,
) -> PixelCropRect:
    """Resolve a viewport selection to a pixel rectangle inside the source image.

    The result always lies fully inside the source image: the origin is clamped
    to ``[0, dim - 1]`` and the size to ``[1, dim - origin]``, so selections that
    overflow the viewport or touch its edges still produce a usable crop.

    Raises:
        GeometryError: If dimensions or selection values are not finite, or
            dimensions are not positive.
    """
    fit = cover_fit(source_width, source_height, viewport)
    rect = selection.as_rect(viewport)
    _require_finite(rect)

    # Scaling a large finite selection can overflow to inf, so clamp in float
    # space before rounding.
    image_x, image_y = fit.to_source(rect.left, rect.top)
    image_w = _clamp(rect.width * fit.scale, 1.0, float(source_width))
    image_h = _clamp(rect.height * fit.scale, 1.0, float(source_height))
    x = _clamp_int(_round_half_away(_clamp(image_x, 0.0, source_width - 1.0)), 0, source_width - 1)
    y = _clamp_int(_round_half_away(_clamp(image_y, 0.0, source_height - 1.0)), 0, source_height - 1)
    width = _clamp_int(_round_half_away(image_w), 1, source_width - x)
    height = _clamp_int(_round_half_away(image_h), 1, source_height - y)
    return PixelCropRect(x=x, y=y, width=width, height=height)


# ---------------------------------------------------------------------------
# Selection editing
# ---------------------------------------------------------------------------


def initial_selection(viewport: ViewportGeometry, fraction: float = 0.6) -> RectSelection:
    """Centered square covering ``fraction`` of the viewport's shorter side."""
    side = min(viewport.preview_width, viewport.preview_height) * fraction
    return RectSelection(
        left=(viewport.preview_width - side) / 2,
        top=(viewport.preview_height - side) / 2,
        width=side,
        height=side,
    )


def drag_selection(
    start: RectSelection,
    handle: DragHandle,
    dx: float,
    dy: float,
    viewport: ViewportGeometry,
    minimum_crop_size: float,
) -> RectSelection:
    """Return ``start`` after dragging ``handle`` by ``(dx, dy)``.

    Moved edges stay inside the viewport and never bring a side below
    ``minimum_crop_size``; the opposite edges stay where they were. Dragging
    the center translates the whole rectangle.
    """
    if handle is DragHandle.CENTER:
        left = _clamp(start.left + dx, 0.0, viewport.preview_width - start.width)
        top = _clamp(start.top + dy, 0.0, viewport.preview_height - start.height)
        return RectSelection(left=left, top=top, width=start.width, height=start.height)

    moves_left, moves_top, moves_right, moves_bottom = _HANDLE_EDGES[handle]
    left, top, right, bottom = start.left, start.top, start.right, start.bottom

    if moves_left:
        left = _clamp(start.left + dx, 0.0, right - minimum_crop_size)
    if moves_right:
        right = _clamp(start.right + dx, left + minimum_crop_size, viewport.preview_width)
    if moves_top:
        top = _clamp(start.top + dy, 0.0, bottom - minimum_crop_size)
    if moves_bottom:
        bottom = _clamp(start.bottom + dy, top + minimum_crop_size, viewport.preview_height)

    return RectSelection(left=left, top=top, width=right - left, height=bottom - top)


def clamp_selection(
    selection: CropSelection,
    viewport: ViewportGeometry,
    minimum_crop_size: float,
) -> RectSelection:
    """Force a selection into a valid rectangle before it is resolved.

    Sides are raised to ``minimum_crop_size`` (but never beyond the viewport)
    and the rectangle is shifted so it is fully contained in the viewport.

    Raises:
        GeometryError: If the viewport or selection holds non-finite values.
    """
    _require_positive("preview_width", viewport.preview_width)
    _require_positive("preview_height", viewport.preview_height)
    rect = selection.as_rect(viewport)
    _require_finite(rect)

    width = min(max(rect.width, minimum_crop_size), viewport.preview_width)
    height = min(max(rect.height, minimum_crop_size), viewport.preview_height)
    left = _clamp(rect.left, 0.0, viewport.preview_width - width)
    top = _clamp(rect.top, 0.0, viewport.preview_height - height)
    return RectSelection(left=left, top=top, width=width, height=height)


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------


def _round_half_away(value: float) -> int:
    # Halves round away from zero, unlike round()'s banker's rounding.
    if value >= 0:
        return math.floor(value + 0.5)
    return math.ceil(value - 0.5)


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


def _clamp_int(value: int, lower: int, upper: int) -> int:
    return max(lower, min(value, upper))


def _require_positive(name: str, value: float) -> None:
    if not math.isfinite(value) or value <= 0:
        raise GeometryError(f"{name} must be a finite positive number, got {value!r}")


def _require_finite(rect: RectSelection) -> None:
    values = (rect.left, rect.top, rect.width, rect.height)
    if not all(math.isfinite(v) for v in values):
        raise GeometryError(f"Crop selection contains non-finite values: {rect}")
