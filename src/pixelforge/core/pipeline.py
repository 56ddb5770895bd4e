"""Five-stage sprite generation pipeline.

:class:`SpritePipeline` turns a free-text prompt into a palette, a shape
list and a rasterized frame, and later turns that sprite into three idle
animation frames.  Every stage is one :class:`~pixelforge.core.model_caller.ModelCaller`
request with its own system prompt:

=========  ==========================  ==================================
Stage      Input                       Failure handling
=========  ==========================  ==================================
describe   prompt                      use the raw prompt as description
structure  prompt                      fatal: SpriteGenerationError
colour     roles used by the shapes    deterministic round-robin palette
motion     name + description          treat as static
animate    motion plan + shape summary three identical static frames
=========  ==========================  ==================================

Describe and structure are independent and run concurrently; both are
awaited before colour starts.  Colour, motion and animate are sequential.
Once shapes exist a sprite can always be drawn, so only the structure stage
can fail a request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from pixelforge.core import prompts
from pixelforge.core.animation import (
    build_frames,
    parse_offsets,
    static_frames,
    summarize_shapes,
)
from pixelforge.core.config import PixelforgeConfig
from pixelforge.core.errors import SpriteGenerationError
from pixelforge.core.model_caller import ModelCaller, ModelResult
from pixelforge.core.rasterizer import rasterize
from pixelforge.core.shapes import Frame, Palette, Shape, dump_shapes, parse_shapes, used_roles

logger = logging.getLogger(__name__)

MIN_SHAPES = 3
DEFAULT_ROLES = ["outline", "body", "accent"]
DEFAULT_PRIMARY_COLOUR = "#00d4ff"
FALLBACK_HUES = ["#2a2a2a", "#5a8a5a", "#8aba6a", "#ffffff", "#3a3a3a", "#dddddd"]

# Completion token budgets per stage.
DESCRIBE_TOKENS = 512
STRUCTURE_TOKENS = 4096
COLOUR_TOKENS = 512
MOTION_TOKENS = 256
ANIMATE_TOKENS = 512

# Values reported in the ``model`` field of an animation.
ANIMATION_STATIC = "static"
ANIMATION_STATIC_FALLBACK = "static-fallback"
ANIMATION_LLM = "llm-animated"


@dataclass
class Sprite:
    """Result of :meth:`SpritePipeline.generate_sprite`."""

    frame: Frame
    palette: Palette
    shapes: list[Shape]
    description: str
    primary_colour: str
    model: str

    def to_response(self) -> dict:
        return {
            "frame": self.frame,
            "palette": self.palette,
            "shapes": dump_shapes(self.shapes),
            "description": self.description,
            "primaryColour": self.primary_colour,
            "model": self.model,
        }


@dataclass
class Animation:
    """Result of :meth:`SpritePipeline.animate_sprite`."""

    frames: list[Frame]
    model: str
    motions: list[str] = field(default_factory=list)

    def to_response(self) -> dict:
        return {"frames": self.frames, "model": self.model, "motions": self.motions}


def fallback_palette(roles: list[str]) -> Palette:
    """Assign :data:`FALLBACK_HUES` to ``roles`` round-robin."""
    return {role: FALLBACK_HUES[i % len(FALLBACK_HUES)] for i, role in enumerate(roles)}


def is_static_plan(motions: list[str]) -> bool:
    """A motion plan is static when it is empty or any entry says so."""
    return not motions or any("static" in m.lower() for m in motions)


class SpritePipeline:
    """Runs the describe → structure → colour → motion → animate stages.

    Attributes:
        _caller (ModelCaller):
            Client used for every stage.
        _config (PixelforgeConfig):
            Supplies the preferred structure model and canvas size.
    """

    def __init__(self, caller: ModelCaller, config: PixelforgeConfig) -> None:
        self._caller = caller
        self._config = config

    @property
    def size(self) -> int:
        return self._config.canvas_size

    # -- Sprite generation --------------------------------------------------

    async def generate_sprite(self, prompt: str) -> Sprite:
        """Generate a static sprite for ``prompt``.

        Args:
            prompt: Free-text subject, e.g. ``"pufferfish"``.

        Returns:
            The rasterized sprite with its palette and shapes.

        Raises:
            SpriteGenerationError: The structure stage returned nothing, or
                fewer than :data:`MIN_SHAPES` usable shapes.
        """
        logger.info(f"Describe + structure in parallel for {prompt!r}")
        describe_result, structure_result = await asyncio.gather(
            self._caller.call(
                prompts.DESCRIBE,
                f"Describe: {prompt}",
                max_tokens=DESCRIBE_TOKENS,
            ),
            self._caller.call(
                prompts.structure_prompt(self.size),
                f"Subject: {prompt}",
                model_override=self._config.sprite_model,
                max_tokens=STRUCTURE_TOKENS,
            ),
            return_exceptions=True,
        )
        describe_result = _settled(describe_result, "describe")
        structure_result = _settled(structure_result, "structure")

        description = _description(describe_result, prompt)
        logger.info(f"Describe done: {len(description)} chars")

        if structure_result is None:
            raise SpriteGenerationError("Failed to generate sprite")

        raw_shapes = structure_result.parsed.get("shapes")
        shapes = parse_shapes(raw_shapes)
        if len(shapes) < MIN_SHAPES:
            count = len(raw_shapes) if isinstance(raw_shapes, list) else 0
            raise SpriteGenerationError("Invalid sprite format", shape_count=count)

        roles = used_roles(shapes) or _string_list(structure_result.parsed.get("roles"))
        roles = roles or list(DEFAULT_ROLES)

        palette, primary_colour = await self._colour(prompt, roles)

        # The colour key travels with each shape so clients can re-render
        # and animate without knowing about roles.
        coloured = [s.model_copy(update={"color": s.role}) if s.role else s for s in shapes]
        frame = rasterize(palette, coloured, self.size)

        return Sprite(
            frame=frame,
            palette=palette,
            shapes=coloured,
            description=description,
            primary_colour=primary_colour,
            model=structure_result.model,
        )

    async def _colour(self, subject: str, roles: list[str]) -> tuple[Palette, str]:
        logger.info(f"Colour stage: {len(roles)} roles")
        result = await self._caller.call(
            prompts.COLOUR,
            f"Subject: {subject}\nRoles: {', '.join(roles)}",
            max_tokens=COLOUR_TOKENS,
        )
        colors = result.parsed.get("colors") if result else None
        if not isinstance(colors, dict) or not colors:
            logger.warning("Colour stage failed, using fallback palette")
            return fallback_palette(roles), DEFAULT_PRIMARY_COLOUR

        palette = {str(k): v for k, v in colors.items() if isinstance(v, str)}
        # Roles the model forgot still need something drawable.
        for role, hue in fallback_palette(roles).items():
            palette.setdefault(role, hue)

        primary = result.parsed.get("primaryColour") or result.parsed.get("primaryColor")
        return palette, primary if isinstance(primary, str) else DEFAULT_PRIMARY_COLOUR

    # -- Animation ------------------------------------------------------------

    async def animate_sprite(
        self,
        palette: Palette,
        shapes: list[Shape],
        description: str | None = None,
        name: str | None = None,
    ) -> Animation:
        """Produce three idle-animation frames for an existing sprite.

        Never fails for upstream reasons: a static or failed motion plan and a
        failed animate stage both yield three identical frames.

        Args:
            palette: Palette returned by :meth:`generate_sprite`.
            shapes: Shapes returned by :meth:`generate_sprite`.
            description: Visual description; defaults to ``name``.
            name: Subject name; defaults to ``"creature"``.

        Returns:
            The animation frames and which path produced them.
        """
        subject = name or "creature"
        desc = description or subject

        logger.info(f"Motion stage for {subject!r}")
        motion_result = await self._caller.call(
            prompts.MOTION,
            f"Subject: {subject}\nDescription:\n{desc}",
            max_tokens=MOTION_TOKENS,
        )
        motions = _string_list(motion_result.parsed.get("motions")) if motion_result else []

        if is_static_plan(motions):
            logger.info("Motion stage: subject is static, skipping animation")
            return Animation(
                frames=static_frames(palette, shapes, self.size),
                model=ANIMATION_STATIC,
                motions=motions,
            )

        logger.info(f"Animate stage: {len(motions)} moving parts")
        plan = "\n".join(motions)
        anim_result = await self._caller.call(
            prompts.ANIMATE,
            f"Motion plan:\n{plan}\n\nShapes:\n{summarize_shapes(shapes)}",
            max_tokens=ANIMATE_TOKENS,
        )
        offsets = (
            parse_offsets(anim_result.parsed.get("animated"), len(shapes)) if anim_result else None
        )
        if offsets is None:
            logger.warning("Animate stage failed, returning static frames")
            return Animation(
                frames=static_frames(palette, shapes, self.size),
                model=ANIMATION_STATIC_FALLBACK,
                motions=motions,
            )

        return Animation(
            frames=build_frames(palette, shapes, offsets, self.size),
            model=ANIMATION_LLM,
            motions=motions,
        )


def _settled(result: Any, stage: str) -> ModelResult | None:
    """Normalise a ``gather(return_exceptions=True)`` outcome."""
    if isinstance(result, BaseException):
        logger.error(f"{stage} stage raised {type(result).__name__}: {result}")
        return None
    return result


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item]


def _description(result: ModelResult | None, prompt: str) -> str:
    parts = _string_list(result.parsed.get("parts")) if result else []
    return "\n".join(parts) if parts else prompt
