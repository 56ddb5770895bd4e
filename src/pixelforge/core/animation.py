"""Frame-delta animation for rasterized sprites.

An idle animation is three frames.  The animate stage returns a sparse map
of shape index → three ``(dx, dy)`` offsets; every other shape stays where it
is.  For each frame :func:`build_frames` derives a translated copy of the
moving shapes and re-rasterizes the whole list, so static parts such as the
body and outline never drift between frames.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pixelforge.core.rasterizer import rasterize
from pixelforge.core.shapes import (
    Ellipse,
    Frame,
    Line,
    Palette,
    Pixels,
    Rect,
    Shape,
    Triangle,
)

logger = logging.getLogger(__name__)

FRAME_COUNT = 3

#: Shape index → per-frame ``(dx, dy)`` offsets.
OffsetMap = dict[int, list[tuple[int, int]]]


def shift_shape(shape: Shape, dx: float, dy: float) -> Shape:
    """Return a copy of ``shape`` translated by ``(dx, dy)``.

    Rectangles move their origin, ellipses their centre, and lines,
    triangles and pixel lists move every coordinate.  The original shape is
    left untouched.
    """
    if dx == 0 and dy == 0:
        return shape
    if isinstance(shape, Rect):
        return shape.model_copy(update={"x": shape.x + dx, "y": shape.y + dy})
    if isinstance(shape, Ellipse):
        return shape.model_copy(update={"cx": shape.cx + dx, "cy": shape.cy + dy})
    if isinstance(shape, Line):
        return shape.model_copy(
            update={
                "x1": shape.x1 + dx,
                "y1": shape.y1 + dy,
                "x2": shape.x2 + dx,
                "y2": shape.y2 + dy,
            }
        )
    if isinstance(shape, Triangle):
        points = tuple((x + dx, y + dy) for x, y in shape.points)
        return shape.model_copy(update={"points": points})
    if isinstance(shape, Pixels):
        coords = tuple((x + dx, y + dy) for x, y in shape.coords)
        return shape.model_copy(update={"coords": coords})
    raise TypeError(f"Unsupported shape: {type(shape).__name__}")


def shifted_shapes(shapes: list[Shape], offsets: OffsetMap, frame_index: int) -> list[Shape]:
    """Return the shape list for one frame, translating only the moving shapes."""
    result = []
    for index, shape in enumerate(shapes):
        frame_offsets = offsets.get(index)
        if not frame_offsets or frame_index >= len(frame_offsets):
            result.append(shape)
            continue
        dx, dy = frame_offsets[frame_index]
        result.append(shift_shape(shape, dx, dy))
    return result


def build_frames(
    palette: Palette,
    shapes: list[Shape],
    offsets: OffsetMap,
    size: int = 32,
) -> list[Frame]:
    """Rasterize the three animation frames.

    Args:
        palette: Role → colour mapping shared by every frame.
        shapes: Base shape list.
        offsets: Sparse index → offsets map.  Shapes without an entry, or
            without an offset for a given frame, are drawn unchanged.
        size: Frame width and height.

    Returns:
        List of :data:`FRAME_COUNT` frames.
    """
    return [
        rasterize(palette, shifted_shapes(shapes, offsets, frame_index), size)
        for frame_index in range(FRAME_COUNT)
    ]


def static_frames(palette: Palette, shapes: list[Shape], size: int = 32) -> list[Frame]:
    """Return :data:`FRAME_COUNT` copies of the unanimated frame."""
    base = rasterize(palette, shapes, size)
    return [[row[:] for row in base] for _ in range(FRAME_COUNT)]


def parse_offsets(raw: Any, shape_count: int) -> OffsetMap | None:
    """Convert the animate stage's ``animated`` list into an :data:`OffsetMap`.

    Entries with an out-of-range index or malformed offsets are skipped.
    Malformed individual offset pairs are replaced with ``(0, 0)`` so frame
    positions stay aligned.

    Args:
        raw: Decoded value of the ``animated`` key, expected to be a list of
            ``{"index": int, "offsets": [[dx, dy], ...]}`` objects.
        shape_count: Length of the shape list the indices refer to.

    Returns:
        The offset map, or ``None`` if ``raw`` is not a list.
    """
    if not isinstance(raw, list):
        return None

    offsets: OffsetMap = {}
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        index = entry.get("index")
        pairs = entry.get("offsets")
        if not isinstance(index, int) or isinstance(index, bool):
            continue
        if not 0 <= index < shape_count or not isinstance(pairs, list):
            logger.debug(f"Ignoring animation entry {entry!r}")
            continue
        offsets[index] = [_coerce_pair(pair) for pair in pairs[:FRAME_COUNT]]
    return offsets


def _coerce_pair(pair: Any) -> tuple[int, int]:
    if isinstance(pair, (list, tuple)) and len(pair) >= 2:
        try:
            return int(pair[0]), int(pair[1])
        except (TypeError, ValueError):
            pass
    return 0, 0


def summarize_shapes(shapes: list[Shape]) -> str:
    """Compact one-line-per-shape summary used as animate-stage input."""
    lines = []
    for i, s in enumerate(shapes):
        if isinstance(s, Rect):
            desc = f"rect ({s.x},{s.y}) {s.w}x{s.h}"
        elif isinstance(s, Ellipse):
            desc = f"ellipse ({s.cx},{s.cy}) r={s.rx}x{s.ry}"
        elif isinstance(s, Triangle):
            desc = f"triangle {json.dumps([list(p) for p in s.points])}"
        elif isinstance(s, Line):
            desc = f"line ({s.x1},{s.y1})->({s.x2},{s.y2})"
        else:
            desc = f"pixels x{len(s.coords)}"
        lines.append(f"[{i}] {desc} role={s.role}")
    return "\n".join(lines)
