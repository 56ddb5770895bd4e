"""Pixelforge - prompt-to-pixel-sprite generation and creature deployments."""

__version__ = "0.1.0"

from pixelforge.core.config import PixelforgeConfig, config

__all__ = [
    "PixelforgeConfig",
    "config",
]
