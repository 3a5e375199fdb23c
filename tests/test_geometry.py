"""Tests for coordinate normalization."""

import math

import pytest

from tutor_stream.core.geometry import (
    Box,
    clamp_extent,
    clamp_page,
    make_arrow,
    make_circle,
    make_highlight,
    make_rectangle,
    make_text_label,
    make_underline,
    normalize_box,
    split_lines,
)
from tutor_stream.core.schemas_directives import PageBounds

W, H = 612.0, 792.0


def _assert_in_bounds(x, y, width, height):
    assert 0 <= x <= W - 20
    assert 0 <= y <= H - 20
    assert width > 0 and height > 0
    assert x + width <= W
    assert y + height <= H


class TestNormalizeBox:
    def test_in_range_box_is_unchanged(self):
        box = normalize_box(100, 200, 300, 50)
        assert box == Box(x=100, y=200, width=300, height=50)

    @pytest.mark.parametrize(
        "raw",
        [
            (999999, 999999, 999999, 999999),
            (-50, -50, 5, 5),
            (600, 780, 400, 400),
            (float("inf"), float("-inf"), float("nan"), 100),
        ],
    )
    def test_extreme_input_stays_on_page(self, raw):
        box = normalize_box(*raw)
        _assert_in_bounds(box.x, box.y, box.width, box.height)

    def test_origin_clamped_to_edge_margin(self):
        box = normalize_box(999999, 999999, 1, 1)
        assert box.x == W - 20
        assert box.y == H - 20

    def test_minimum_extent(self):
        assert clamp_extent(0, 100, W) == 10
        assert clamp_extent(-30, 100, W) == 10

    def test_extent_clamped_to_page_edge(self):
        assert clamp_extent(1000, 500, W) == W - 500

    def test_custom_bounds(self):
        bounds = PageBounds(width=300, height=400)
        box = normalize_box(290, 390, 100, 100, bounds)
        assert box.x == 280 and box.y == 380
        assert box.x + box.width <= 300
        assert box.y + box.height <= 400


class TestClampPage:
    def test_valid_page(self):
        assert clamp_page(3) == 3

    def test_zero_and_negative_fall_back_to_current(self):
        assert clamp_page(0, current_page=4) == 4
        assert clamp_page(-2, current_page=2) == 2

    def test_nan_falls_back(self):
        assert clamp_page(math.nan, current_page=5) == 5


class TestSplitLines:
    def test_tall_highlight_splits_into_22pt_lines(self):
        lines = split_lines(Box(x=80, y=200, width=400, height=88))
        assert len(lines) == 4
        assert sum(line.height for line in lines) == pytest.approx(88)
        ys = [line.y for line in lines]
        assert all(b - a == pytest.approx(22) for a, b in zip(ys, ys[1:]))

    def test_lines_snap_to_grid(self):
        lines = split_lines(Box(x=80, y=200, width=400, height=88))
        assert [line.y for line in lines] == [198, 220, 242, 264]

    def test_short_box_is_one_line(self):
        lines = split_lines(Box(x=80, y=220, width=400, height=30))
        assert len(lines) == 1
        assert lines[0].height == 30

    def test_thin_line_raised_to_legible_height(self):
        lines = split_lines(Box(x=80, y=220, width=400, height=10))
        assert lines[0].height == 16

    def test_remainder_line_is_kept(self):
        lines = split_lines(Box(x=80, y=220, width=400, height=50))
        # 22 + 22 + a 6pt remainder raised to 16
        assert [line.height for line in lines] == [22, 22, 16]

    def test_lines_never_leave_the_page(self):
        box = normalize_box(80, 760, 400, 300)
        for line in split_lines(box):
            assert line.y + line.height <= H


class TestBuilders:
    def test_highlight_keeps_clamped_box(self):
        h = make_highlight(1, 100, 200, 300, 50)
        assert (h.page, h.x, h.y, h.width, h.height) == (1, 100, 200, 300, 50)
        assert h.source == "model"

    def test_tall_highlight_gets_line_label(self):
        h = make_highlight(1, 80, 200, 400, 88)
        assert len(h.lines) == 4
        assert h.label == "4 lines"

    def test_highlight_extreme_coordinates(self):
        h = make_highlight(1, 999999, 999999, 999999, 999999)
        _assert_in_bounds(h.x, h.y, h.width, h.height)

    def test_circle_radius_clamped(self):
        assert make_circle(1, 100, 100, 500).radius == 100
        assert make_circle(1, 100, 100, 1).radius == 5

    def test_arrow_head_stays_on_page(self):
        a = make_arrow(1, 100, 100, 5000, -5000)
        assert 0 <= a.x + a.dx <= W
        assert 0 <= a.y + a.dy <= H

    def test_underline_width_clamped(self):
        u = make_underline(1, 500, 300, 400)
        assert u.x + u.width <= W

    def test_empty_text_label_gets_placeholder(self):
        assert make_text_label(1, 10, 10, "   ").content == "…"

    def test_rectangle_normalized(self):
        r = make_rectangle(2, -10, -10, 0, 0)
        assert (r.x, r.y, r.width, r.height) == (0, 0, 10, 10)

    def test_directives_are_frozen(self):
        h = make_highlight(1, 100, 200, 300, 50)
        with pytest.raises(Exception):
            h.x = 5
