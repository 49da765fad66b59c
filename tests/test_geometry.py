"""Tests for crop geometry resolution and selection editing."""

from __future__ import annotations

import itertools

import pytest

from lesionscan.errors import GeometryError
from lesionscan.imaging.geometry import (
    CenteredBoxSelection,
    DragHandle,
    PixelCropRect,
    RectSelection,
    ViewportGeometry,
    clamp_selection,
    cover_fit,
    drag_selection,
    initial_selection,
    resolve_crop_rect,
)


def _assert_inside(rect: PixelCropRect, source_width: int, source_height: int) -> None:
    assert rect.x >= 0
    assert rect.y >= 0
    assert rect.width >= 1
    assert rect.height >= 1
    assert rect.x + rect.width <= source_width
    assert rect.y + rect.height <= source_height


# ---------------------------------------------------------------------------
# Cover fit
# ---------------------------------------------------------------------------


class TestCoverFit:
    def test_wider_image_crops_width(self) -> None:
        fit = cover_fit(4000, 3000, ViewportGeometry(1000, 1000))
        assert fit.scale == pytest.approx(3.0)
        assert fit.offset_x == pytest.approx(500.0)
        assert fit.offset_y == 0.0

    def test_taller_image_crops_height(self) -> None:
        fit = cover_fit(3000, 4000, ViewportGeometry(1000, 1000))
        assert fit.scale == pytest.approx(3.0)
        assert fit.offset_x == 0.0
        assert fit.offset_y == pytest.approx(500.0)

    def test_equal_aspect_has_no_offsets(self) -> None:
        fit = cover_fit(1200, 1600, ViewportGeometry(390, 520))
        assert fit.scale == pytest.approx(1200 / 390)
        assert fit.offset_x == 0.0
        assert fit.offset_y == pytest.approx(0.0, abs=1e-9)

    def test_to_source_maps_points(self) -> None:
        fit = cover_fit(4000, 3000, ViewportGeometry(1000, 1000))
        assert fit.to_source(0, 0) == pytest.approx((500.0, 0.0))
        assert fit.to_source(500, 500) == pytest.approx((2000.0, 1500.0))

    @pytest.mark.parametrize(
        ("width", "height", "viewport"),
        [
            (0, 100, ViewportGeometry(10, 10)),
            (100, -1, ViewportGeometry(10, 10)),
            (100, 100, ViewportGeometry(0, 10)),
            (100, 100, ViewportGeometry(10, float("nan"))),
            (100, 100, ViewportGeometry(float("inf"), 10)),
        ],
    )
    def test_invalid_dimensions_raise(self, width: int, height: int, viewport: ViewportGeometry) -> None:
        with pytest.raises(GeometryError):
            cover_fit(width, height, viewport)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class TestResolveCropRect:
    def test_full_viewport_on_landscape_source(self) -> None:
        rect = resolve_crop_rect(4000, 3000, ViewportGeometry(1000, 1000), RectSelection(0, 0, 1000, 1000))
        assert rect == PixelCropRect(x=500, y=0, width=3000, height=3000)

    def test_centered_target_box_on_portrait_capture(self) -> None:
        rect = resolve_crop_rect(1200, 1600, ViewportGeometry(390, 520), CenteredBoxSelection(220))
        assert rect.x == pytest.approx(262, abs=1)
        assert rect.y == pytest.approx(462, abs=1)
        assert rect.width == pytest.approx(677, abs=1)
        assert rect.height == pytest.approx(677, abs=1)

    def test_centered_box_matches_equivalent_rect(self) -> None:
        viewport = ViewportGeometry(390, 520)
        box = resolve_crop_rect(1200, 1600, viewport, CenteredBoxSelection(220))
        rect = resolve_crop_rect(1200, 1600, viewport, RectSelection(85, 150, 220, 220))
        assert box == rect

    def test_taller_source_offsets_vertically(self) -> None:
        rect = resolve_crop_rect(3000, 4000, ViewportGeometry(1000, 1000), RectSelection(0, 0, 100, 100))
        assert rect == PixelCropRect(x=0, y=500, width=300, height=300)

    def test_half_pixel_rounds_away_from_zero(self) -> None:
        # scale 1, offset_x = 0.5
        rect = resolve_crop_rect(11, 10, ViewportGeometry(10, 10), RectSelection(0, 0, 2.5, 2.5))
        assert rect.x == 1
        assert rect.width == 3

    def test_selection_larger_than_viewport_is_clamped(self) -> None:
        rect = resolve_crop_rect(800, 600, ViewportGeometry(400, 300), RectSelection(-50, -50, 1000, 1000))
        assert rect == PixelCropRect(x=0, y=0, width=800, height=600)

    def test_selection_at_far_edge_keeps_one_pixel(self) -> None:
        rect = resolve_crop_rect(800, 600, ViewportGeometry(400, 300), RectSelection(400, 300, 50, 50))
        assert rect == PixelCropRect(x=799, y=599, width=1, height=1)

    def test_degenerate_selection_keeps_one_pixel(self) -> None:
        rect = resolve_crop_rect(800, 600, ViewportGeometry(400, 300), RectSelection(10, 10, 0, -20))
        assert rect.width == 1
        assert rect.height == 1

    def test_non_finite_selection_raises(self) -> None:
        with pytest.raises(GeometryError):
            resolve_crop_rect(800, 600, ViewportGeometry(400, 300), RectSelection(float("nan"), 0, 10, 10))

    def test_result_always_inside_source(self) -> None:
        sources = [(1, 1), (7, 3), (640, 480), (1200, 1600), (4000, 3000)]
        viewports = [ViewportGeometry(1, 1), ViewportGeometry(390, 520), ViewportGeometry(1000, 250)]
        selections = [
            RectSelection(0, 0, 1, 1),
            RectSelection(-500, -500, 10, 10),
            RectSelection(10_000, 10_000, 10_000, 10_000),
            RectSelection(0.49, 0.51, 0.0, 0.0),
            RectSelection(5, 5, -100, -100),
            CenteredBoxSelection(220),
            CenteredBoxSelection(100_000),
            CenteredBoxSelection(0),
            RectSelection(1e308, 0, 10, 10),
            RectSelection(0, 1e308, 1e308, 1e308),
            RectSelection(-1e308, -1e308, 1e308, 1e308),
            CenteredBoxSelection(1e308),
            CenteredBoxSelection(-1e308),
        ]
        for (sw, sh), viewport, selection in itertools.product(sources, viewports, selections):
            rect = resolve_crop_rect(sw, sh, viewport, selection)
            _assert_inside(rect, sw, sh)

    def test_huge_finite_box_covers_whole_image(self) -> None:
        rect = resolve_crop_rect(1200, 1600, ViewportGeometry(390, 520), CenteredBoxSelection(1e308))
        assert rect == PixelCropRect(x=0, y=0, width=1200, height=1600)

    def test_huge_finite_origin_lands_on_last_pixel(self) -> None:
        rect = resolve_crop_rect(1200, 1600, ViewportGeometry(390, 520), RectSelection(1e308, 0, 10, 10))
        assert rect.x == 1199
        assert rect.width == 1

    def test_as_box_for_pillow(self) -> None:
        assert PixelCropRect(10, 20, 30, 40).as_box() == (10, 20, 40, 60)


# ---------------------------------------------------------------------------
# Selection editing
# ---------------------------------------------------------------------------


VIEWPORT = ViewportGeometry(300, 400)


class TestInitialSelection:
    def test_centered_square_of_shorter_side(self) -> None:
        sel = initial_selection(VIEWPORT)
        assert sel.width == pytest.approx(180)
        assert sel.height == pytest.approx(180)
        assert sel.left == pytest.approx(60)
        assert sel.top == pytest.approx(110)


class TestDragSelection:
    start = RectSelection(50, 50, 100, 100)

    def test_bottom_right_grows(self) -> None:
        sel = drag_selection(self.start, DragHandle.BOTTOM_RIGHT, 20, 30, VIEWPORT, 60)
        assert sel == RectSelection(50, 50, 120, 130)

    def test_top_left_cannot_pass_minimum(self) -> None:
        sel = drag_selection(self.start, DragHandle.TOP_LEFT, 90, 90, VIEWPORT, 60)
        assert sel.left == pytest.approx(90)
        assert sel.top == pytest.approx(90)
        assert sel.width == pytest.approx(60)
        assert sel.height == pytest.approx(60)

    def test_edges_stop_at_viewport(self) -> None:
        sel = drag_selection(self.start, DragHandle.LEFT, -500, 0, VIEWPORT, 60)
        assert sel.left == 0
        assert sel.right == pytest.approx(150)
        sel = drag_selection(self.start, DragHandle.BOTTOM, 0, 1000, VIEWPORT, 60)
        assert sel.bottom == pytest.approx(400)
        assert sel.top == 50

    def test_single_edge_leaves_other_axis(self) -> None:
        sel = drag_selection(self.start, DragHandle.TOP, 25, 10, VIEWPORT, 60)
        assert sel == RectSelection(50, 60, 100, 90)

    def test_center_translates_within_viewport(self) -> None:
        sel = drag_selection(self.start, DragHandle.CENTER, 1000, -1000, VIEWPORT, 60)
        assert sel == RectSelection(200, 0, 100, 100)

    @pytest.mark.parametrize("handle", list(DragHandle))
    def test_every_handle_keeps_invariants(self, handle: DragHandle) -> None:
        for dx, dy in itertools.product((-400, -30, 0, 30, 400), repeat=2):
            sel = drag_selection(self.start, handle, dx, dy, VIEWPORT, 60)
            assert sel.width >= 60 - 1e-9
            assert sel.height >= 60 - 1e-9
            assert sel.left >= 0
            assert sel.top >= 0
            assert sel.right <= VIEWPORT.preview_width + 1e-9
            assert sel.bottom <= VIEWPORT.preview_height + 1e-9


class TestClampSelection:
    def test_raises_size_to_minimum(self) -> None:
        sel = clamp_selection(RectSelection(10, 10, 5, 0), VIEWPORT, 60)
        assert sel == RectSelection(10, 10, 60, 60)

    def test_shifts_back_inside(self) -> None:
        sel = clamp_selection(RectSelection(280, 390, 100, 100), VIEWPORT, 60)
        assert sel == RectSelection(200, 300, 100, 100)

    def test_never_exceeds_viewport(self) -> None:
        sel = clamp_selection(RectSelection(-10, -10, 1000, 1000), VIEWPORT, 60)
        assert sel == RectSelection(0, 0, 300, 400)

    def test_centered_box_becomes_rect(self) -> None:
        sel = clamp_selection(CenteredBoxSelection(100), VIEWPORT, 60)
        assert sel == RectSelection(100, 150, 100, 100)

    def test_non_finite_raises(self) -> None:
        with pytest.raises(GeometryError):
            clamp_selection(RectSelection(0, 0, float("inf"), 10), VIEWPORT, 60)
