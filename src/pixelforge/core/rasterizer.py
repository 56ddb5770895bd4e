"""Vector-to-raster conversion for sprite shapes.

:func:`rasterize` paints an ordered list of :mod:`~pixelforge.core.shapes`
primitives onto a square grid using the painter's algorithm: shapes are
drawn in list order and a later shape overwrites any colour an earlier one
left in a cell it also covers.  The structure prompt relies on this to draw
outlines: an ``outline`` ellipse is painted first and a one-pixel-smaller
``body`` ellipse on top of it leaves only the border ring visible.

Primitive algorithms
--------------------
- **rect** fills ``w`` × ``h`` cells starting at ``(x, y)``.
- **ellipse** fills every cell with
  ``((px - cx) / rx)² + ((py - cy) / ry)² <= 1``; radii are floored at 0.5.
- **line** uses integer Bresenham stepping, after clipping to the grid when
  an endpoint lies outside it.
- **triangle** scans the bounding box and keeps cells whose barycentric
  weights are all ``>= -0.01`` so edges are filled without gaps.
- **pixels** paints each coordinate directly.

Coordinates are floored to integers per cell and anything outside the grid
is dropped silently.  Every scan is limited to the grid, so the work per
shape is bounded by ``size`` no matter how large its geometry is.
Rasterization is pure: identical inputs always give identical frames.
"""

from __future__ import annotations

import logging
import math

from pixelforge.core.shapes import (
    Ellipse,
    Frame,
    Line,
    Palette,
    Pixels,
    Rect,
    Shape,
    Triangle,
    empty_frame,
)

logger = logging.getLogger(__name__)

# Barycentric tolerance; slightly negative so boundary cells are included.
TRIANGLE_EPSILON = -0.01

# Below this absolute determinant a triangle is treated as degenerate.
_DEGENERATE_AREA = 0.001

_MIN_RADIUS = 0.5


def resolve_color(palette: Palette, shape: Shape) -> str | None:
    """Return the colour a shape should be painted with.

    The role is looked up in the palette first.  A ``color`` field that
    names a palette key is resolved through the palette as well; otherwise
    it is used as a literal colour.

    Args:
        palette: Role → colour mapping.
        shape: Shape to colour.

    Returns:
        Colour string, or ``None`` if the shape cannot be coloured.
    """
    if shape.role and shape.role in palette:
        return palette[shape.role]
    if shape.color:
        return palette.get(shape.color, shape.color)
    return None


def _set_pixel(grid: Frame, x: float, y: float, color: str, size: int) -> None:
    ix = math.floor(x)
    iy = math.floor(y)
    if 0 <= ix < size and 0 <= iy < size:
        grid[iy][ix] = color


def _paint_rect(grid: Frame, shape: Rect, color: str, size: int) -> None:
    # Only offsets whose cell lands in [0, size) are visited.
    x, y = shape.x, shape.y
    dx_range = range(max(0, math.ceil(-x)), min(math.ceil(shape.w), math.ceil(size - x)))
    dy_range = range(max(0, math.ceil(-y)), min(math.ceil(shape.h), math.ceil(size - y)))
    for dy in dy_range:
        for dx in dx_range:
            _set_pixel(grid, x + dx, y + dy, color, size)


def _clamped_span(lo: float, hi: float, size: int) -> range:
    """Integer cells from ``floor(lo)`` to ``ceil(hi)`` that lie on the grid."""
    # Clamp first: sums of extreme coordinates may overflow to infinity.
    lo = min(max(lo, -1), size)
    hi = min(max(hi, -1), size)
    return range(max(0, math.floor(lo)), min(size - 1, math.ceil(hi)) + 1)


def _paint_ellipse(grid: Frame, shape: Ellipse, color: str, size: int) -> None:
    cx, cy, rx, ry = shape.cx, shape.cy, shape.rx, shape.ry
    safe_rx = max(rx, _MIN_RADIUS)
    safe_ry = max(ry, _MIN_RADIUS)
    for py in _clamped_span(cy - ry, cy + ry, size):
        for px in _clamped_span(cx - rx, cx + rx, size):
            ndx = (px - cx) / safe_rx
            ndy = (py - cy) / safe_ry
            if ndx * ndx + ndy * ndy <= 1:
                _set_pixel(grid, px, py, color, size)


def _clip_segment(
    x1: float, y1: float, x2: float, y2: float, lo: float, hi: float
) -> tuple[float, float, float, float] | None:
    """Liang-Barsky clip of a segment to the square ``[lo, hi]``.

    Returns ``None`` when the segment misses the square entirely or is too
    long to represent.
    """
    dx = x2 - x1
    dy = y2 - y1
    if not (math.isfinite(dx) and math.isfinite(dy)):
        return None
    t0, t1 = 0.0, 1.0
    for p, q in ((-dx, x1 - lo), (dx, hi - x1), (-dy, y1 - lo), (dy, hi - y1)):
        if p == 0:
            if q < 0:
                return None
            continue
        t = q / p
        if p < 0:
            t0 = max(t0, t)
        else:
            t1 = min(t1, t)
    if t0 > t1:
        return None
    return x1 + t0 * dx, y1 + t0 * dy, x1 + t1 * dx, y1 + t1 * dy


def _paint_line(grid: Frame, shape: Line, color: str, size: int) -> None:
    x, y, x2, y2 = shape.x1, shape.y1, shape.x2, shape.y2
    lo, hi = -1, size
    if not all(lo <= v <= hi for v in (x, y, x2, y2)):
        clipped = _clip_segment(x, y, x2, y2, lo, hi)
        if clipped is None:
            return
        x, y, x2, y2 = (round(v) for v in clipped)
    adx = abs(x2 - x)
    ady = abs(y2 - y)
    sx = 1 if x < x2 else -1
    sy = 1 if y < y2 else -1
    err = adx - ady
    # Bounded so non-integer endpoints cannot loop forever.
    max_steps = math.ceil(adx + ady) + 1
    for _ in range(max_steps):
        _set_pixel(grid, x, y, color, size)
        if x == x2 and y == y2:
            break
        e2 = 2 * err
        if e2 > -ady:
            err -= ady
            x += sx
        if e2 < adx:
            err += adx
            y += sy


def _paint_triangle(grid: Frame, shape: Triangle, color: str, size: int) -> None:
    (x0, y0), (x1, y1), (x2, y2) = shape.points
    d = (y1 - y2) * (x0 - x2) + (x2 - x1) * (y0 - y2)
    if abs(d) < _DEGENERATE_AREA:
        return
    for py in _clamped_span(min(y0, y1, y2), max(y0, y1, y2), size):
        for px in _clamped_span(min(x0, x1, x2), max(x0, x1, x2), size):
            a = ((y1 - y2) * (px - x2) + (x2 - x1) * (py - y2)) / d
            b = ((y2 - y0) * (px - x2) + (x0 - x2) * (py - y2)) / d
            c = 1 - a - b
            if a >= TRIANGLE_EPSILON and b >= TRIANGLE_EPSILON and c >= TRIANGLE_EPSILON:
                _set_pixel(grid, px, py, color, size)


def _paint_pixels(grid: Frame, shape: Pixels, color: str, size: int) -> None:
    for x, y in shape.coords:
        _set_pixel(grid, x, y, color, size)


_PAINTERS = {
    "rect": _paint_rect,
    "ellipse": _paint_ellipse,
    "line": _paint_line,
    "triangle": _paint_triangle,
    "pixels": _paint_pixels,
}


def rasterize(palette: Palette, shapes: list[Shape], size: int = 32) -> Frame:
    """Paint ``shapes`` in order onto a fresh ``size`` × ``size`` frame.

    Shapes whose colour cannot be resolved are skipped.

    Args:
        palette: Role → colour mapping.
        shapes: Ordered primitives; later entries overwrite earlier ones.
        size: Width and height of the output frame.

    Returns:
        Row-major frame (``frame[y][x]``) of colour strings or ``None``.
    """
    grid = empty_frame(size)
    for shape in shapes:
        color = resolve_color(palette, shape)
        if not color:
            logger.debug(f"No colour for {shape.type} shape with role {shape.role!r}")
            continue
        _PAINTERS[shape.type](grid, shape, color, size)
    return grid
