"""Pydantic request models for the Pixelforge API.

These models define the JSON schema for every API endpoint that accepts a
body.  FastAPI uses them for request parsing and OpenAPI documentation.
Fields are deliberately permissive (mostly optional) because the handlers
apply the service's own normalisation rules (prompt length, replica
clamping, strategy coercion) and report failures as ``{error}`` bodies.

Models
------
GenerateSpriteRequest
    Payload for ``POST /generate-sprite``.
AnimateSpriteRequest
    Payload for ``POST /animate-sprite`` — a sprite previously returned by
    ``/generate-sprite``.
DeployRequest
    Payload for ``POST /k8s/deploy``.
HeartbeatRequest
    Payload for ``POST /k8s/heartbeat``.
"""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, Field


class GenerateSpriteRequest(BaseModel):
    """Request body for ``POST /generate-sprite``.

    Attributes:
        prompt: Subject to draw, e.g. ``"pufferfish"``.  Must be non-empty
            and no longer than ``max_prompt_length`` characters.
    """

    prompt: str | None = Field(
        default=None,
        description="Subject to draw (1 to max_prompt_length characters).",
    )


class AnimateSpriteRequest(BaseModel):
    """Request body for ``POST /animate-sprite``.

    Attributes:
        palette: Role → colour mapping from ``/generate-sprite``.
        shapes: Shape list from ``/generate-sprite`` (at least 3 entries).
        description: Visual description used by the motion stage.
        name: Subject name; defaults to ``"creature"``.
    """

    palette: dict[str, str] | None = Field(
        default=None,
        description="Role to colour mapping returned by /generate-sprite.",
    )
    shapes: list[Any] | None = Field(
        default=None,
        description="Shape list returned by /generate-sprite.",
    )
    description: str | None = Field(
        default=None,
        description="Visual description of the subject.",
    )
    name: str | None = Field(
        default=None,
        description="Subject name (defaults to 'creature').",
    )


class DeployRequest(BaseModel):
    """Request body for ``POST /k8s/deploy``.

    Attributes:
        name: Creature name; sanitised into the deployment name.
        replicas: Desired replica count; clamped to ``[1, max_replicas]``.
            Non-numeric values count as 1.
        strategy: ``"RollingUpdate"`` (default) or ``"Recreate"``; anything
            else is coerced to the default.
    """

    name: str | None = Field(
        default=None,
        description="Creature name.",
    )
    replicas: Union[int, float, str, None] = Field(
        default=1,
        description="Replica count, clamped to [1, max_replicas].",
    )
    strategy: str | None = Field(
        default=None,
        description="Update strategy: 'RollingUpdate' or 'Recreate'.",
    )


class HeartbeatRequest(BaseModel):
    """Request body for ``POST /k8s/heartbeat``.

    Attributes:
        deployment: Name of the deployment whose TTL should restart.
    """

    deployment: str = Field(
        ...,
        min_length=1,
        description="Deployment name returned by /k8s/deploy.",
    )
