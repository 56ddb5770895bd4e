"""Shape primitives, palettes and frames.

A sprite is described as an ordered list of geometric primitives.  Each
primitive is one variant of a closed tagged union keyed on ``type``:

========  ==================================  ===========================
type      geometry                            JSON example
========  ==================================  ===========================
rect      origin ``x, y`` and size ``w, h``   ``{"type":"rect","x":3,...}``
ellipse   centre ``cx, cy``, radii ``rx, ry``
triangle  three ``points``
line      endpoints ``x1, y1`` → ``x2, y2``
pixels    explicit ``coords`` list
========  ==================================  ===========================

Every variant carries an optional ``role`` (semantic label used for palette
lookup and motion matching) and an optional literal ``color``.  Shapes are
frozen Pydantic models: the animation engine derives translated copies with
``model_copy(update=...)`` and never mutates a shape in place.

Model output is untrusted, so :func:`parse_shapes` validates each entry on
its own and drops the ones that are malformed instead of rejecting the
whole list.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

Number = Union[int, float]
Point = tuple[Number, Number]

#: Role name → colour string (``"#rrggbb"``).
Palette = dict[str, str]

#: Row-major grid of colour strings; ``None`` marks an empty cell.
Frame = list[list[Union[str, None]]]


class _ShapeBase(BaseModel):
    """Fields shared by every primitive."""

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    role: str | None = None
    color: str | None = None


class Rect(_ShapeBase):
    type: Literal["rect"] = "rect"
    x: Number
    y: Number
    w: Number
    h: Number


class Ellipse(_ShapeBase):
    type: Literal["ellipse"] = "ellipse"
    cx: Number
    cy: Number
    rx: Number
    ry: Number


class Triangle(_ShapeBase):
    type: Literal["triangle"] = "triangle"
    points: tuple[Point, Point, Point]


class Line(_ShapeBase):
    type: Literal["line"] = "line"
    x1: Number
    y1: Number
    x2: Number
    y2: Number


class Pixels(_ShapeBase):
    type: Literal["pixels"] = "pixels"
    coords: tuple[Point, ...] = ()


Shape = Annotated[
    Union[Rect, Ellipse, Triangle, Line, Pixels],
    Field(discriminator="type"),
]

_shape_adapter: TypeAdapter[Shape] = TypeAdapter(Shape)


def parse_shape(raw: Any) -> Shape | None:
    """Validate a single raw shape mapping.

    Args:
        raw: Decoded JSON value, expected to be a mapping with a ``type`` key.

    Returns:
        The validated shape, or ``None`` if the value is not a well-formed
        primitive.
    """
    if isinstance(raw, BaseModel):
        return raw  # type: ignore[return-value]
    try:
        return _shape_adapter.validate_python(raw)
    except ValidationError as e:
        logger.debug(f"Skipping malformed shape {raw!r}: {e.error_count()} error(s)")
        return None


def parse_shapes(raw_shapes: Any) -> list[Shape]:
    """Validate a list of raw shapes, dropping malformed entries.

    Order is preserved for the surviving entries, which matters because
    painting order and animation indices are both positional.

    Args:
        raw_shapes: Decoded JSON value, expected to be a list.

    Returns:
        List of validated shapes (empty if ``raw_shapes`` is not a list).
    """
    if not isinstance(raw_shapes, list):
        return []
    shapes = [parse_shape(item) for item in raw_shapes]
    valid = [s for s in shapes if s is not None]
    if len(valid) != len(raw_shapes):
        logger.info(f"Dropped {len(raw_shapes) - len(valid)} malformed shape(s)")
    return valid


def dump_shapes(shapes: list[Shape]) -> list[dict]:
    """Serialise shapes to plain JSON-ready dictionaries."""
    return [shape.model_dump(mode="json", exclude_none=True) for shape in shapes]


def used_roles(shapes: list[Shape]) -> list[str]:
    """Return the distinct roles present in ``shapes``, in first-seen order."""
    seen: dict[str, None] = {}
    for shape in shapes:
        if shape.role:
            seen.setdefault(shape.role, None)
    return list(seen)


def empty_frame(size: int) -> Frame:
    """Allocate a ``size`` × ``size`` frame with every cell empty."""
    return [[None] * size for _ in range(size)]
