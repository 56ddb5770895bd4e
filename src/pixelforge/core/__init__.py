"""Core functionality for sprite generation and creature deployments.

This module provides the core components of the Pixelforge service:

- **PixelforgeConfig / config**: Configuration management using Pydantic Settings
- **ModelCaller**: Chat-completion client with model fallback and retries
- **SpritePipeline**: Five-stage prompt → sprite → animation pipeline
- **rasterize / build_frames**: Deterministic shape rasterizer and frame deltas
- **ClusterClient / DeploymentOrchestrator**: Admission-controlled,
  self-expiring creature workloads on a Kubernetes cluster

Architecture Overview
---------------------
1. **Configuration Layer** (config.py):
   - Environment-based configuration, PIXELFORGE_ prefix

2. **Rendering Layer** (shapes.py, rasterizer.py, animation.py):
   - Pure functions; no I/O

3. **Inference Layer** (model_caller.py, prompts.py, pipeline.py):
   - Talks to the chat-completion API and degrades on failure

4. **Cluster Layer** (cluster_client.py, orchestrator.py):
   - Talks to the Kubernetes API; the cluster is the only state

Usage Example
-------------
    from pixelforge.core import rasterize, parse_shapes

    shapes = parse_shapes([
        {"type": "rect", "x": 0, "y": 0, "w": 6, "h": 6, "role": "outline"},
        {"type": "rect", "x": 1, "y": 1, "w": 4, "h": 4, "role": "body"},
    ])
    frame = rasterize({"outline": "#222222", "body": "#55aa55"}, shapes, size=8)
"""

from pixelforge.core.animation import build_frames, shift_shape
from pixelforge.core.cluster_client import ClusterClient
from pixelforge.core.config import PixelforgeConfig, config
from pixelforge.core.model_caller import ModelCaller, ModelResult
from pixelforge.core.orchestrator import DeploymentOrchestrator, SweepReport
from pixelforge.core.pipeline import SpritePipeline
from pixelforge.core.rasterizer import rasterize
from pixelforge.core.shapes import parse_shapes

__all__ = [
    "ClusterClient",
    "DeploymentOrchestrator",
    "ModelCaller",
    "ModelResult",
    "PixelforgeConfig",
    "SpritePipeline",
    "SweepReport",
    "build_frames",
    "config",
    "parse_shapes",
    "rasterize",
    "shift_shape",
]
