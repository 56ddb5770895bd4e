"""Configuration management for the Pixelforge sprite and creature service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PIXELFORGE_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PIXELFORGE_* prefix)
2. .env file in the project root
3. Default values defined in PixelforgeConfig

Example .env file:
    PIXELFORGE_LLM_API_TOKEN=ghp_xxx
    PIXELFORGE_MODEL_QUEUE=["openai/gpt-4o-mini"]
    PIXELFORGE_CLUSTER_API_URL=https://k3s.example.net:6443
    PIXELFORGE_CLUSTER_API_TOKEN=eyJhbGciOi...

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from pixelforge.core.config import config

    print(config.model_queue)
    print(config.max_pods_in_namespace)

    # Configuration is immutable after initialization
    # To change values, set environment variables and restart

Settings Groups
---------------
- Inference: endpoint, token, model fallback queue, per-attempt timeout,
  retry count and backoff.
- Rasterizer: canvas size and prompt length ceiling.
- Cluster: API URL, token, namespace, admission ceiling, replica clamp,
  workload TTL and the periodic sweep interval.
- Server: bind address, port and log level.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PixelforgeConfig(BaseSettings):
    """Main configuration for the Pixelforge service.

    Values are loaded from environment variables with the PIXELFORGE_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Inference Settings:
        llm_api_base : str
            Base URL of the chat-completion API (``/chat/completions`` is appended)
        llm_api_token : str
            Bearer token for the chat-completion API
        model_queue : list[str]
            Ordered fallback queue of model identifiers
        sprite_model : str
            Preferred model for the structure stage, tried before the queue
        model_timeout_seconds : float
            Hard wall-clock timeout for a single model request
        model_max_attempts : int
            Number of passes over the model list before giving up
        model_retry_backoff_seconds : float
            Sleep between passes
        llm_temperature : float
            Sampling temperature sent with every request

    Sprite Settings:
        canvas_size : int
            Width and height of every rasterized frame
        max_prompt_length : int
            Longest accepted ``/generate-sprite`` prompt

    Cluster Settings:
        cluster_api_url : str
            Base URL of the Kubernetes API server
        cluster_api_token : str
            Bearer token for the Kubernetes API
        cluster_verify_tls : bool
            Verify the API server certificate
        cluster_timeout_seconds : float
            Per-request timeout for cluster calls
        namespace : str
            Namespace every creature workload lives in
        max_pods_in_namespace : int
            Admission ceiling for the namespace pod count
        max_replicas : int
            Upper clamp for a single deployment's replica count
        pod_ttl_seconds : int
            Lifetime of a deployment before the sweep reclaims it
        sweep_interval_seconds : int
            Period of the background sweep (0 disables the scheduler)
        workload_image : str
            Container image of the placeholder workload

    Server Settings:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Bind port for uvicorn
        log_level : str
            Root logging level

    Examples
    --------
    Create a custom configuration:

        >>> custom_config = PixelforgeConfig(
        ...     max_replicas=3,
        ...     pod_ttl_seconds=120,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PIXELFORGE_",
        case_sensitive=False,
    )

    # Inference settings
    llm_api_base: str = Field(
        default="https://models.github.ai/inference",
        description="Base URL of the chat-completion API",
    )
    llm_api_token: str = Field(
        default="",
        description="Bearer token for the chat-completion API",
    )
    model_queue: list[str] = Field(
        default_factory=lambda: ["openai/gpt-4o-mini"],
        description="Ordered model fallback queue",
        min_length=1,
    )
    sprite_model: str = Field(
        default="openai/gpt-4o",
        description="Preferred model for the structure stage",
    )
    model_timeout_seconds: float = Field(
        default=28.0,
        description="Per-attempt wall-clock timeout for a model request",
        gt=0,
    )
    model_max_attempts: int = Field(
        default=2,
        description="Passes over the model list before giving up",
        ge=1,
        le=5,
    )
    model_retry_backoff_seconds: float = Field(
        default=3.0,
        description="Sleep between passes over the model list",
        ge=0,
    )
    llm_temperature: float = Field(default=0.4, ge=0.0, le=2.0)

    # Sprite settings
    canvas_size: int = Field(
        default=32,
        description="Width and height of rasterized frames",
        ge=8,
        le=128,
    )
    max_prompt_length: int = Field(default=100, ge=1, le=1000)

    # Cluster settings
    cluster_api_url: str = Field(
        default="",
        description="Base URL of the Kubernetes API server",
    )
    cluster_api_token: str = Field(
        default="",
        description="Bearer token for the Kubernetes API server",
    )
    cluster_verify_tls: bool = Field(
        default=True,
        description="Verify the Kubernetes API server certificate",
    )
    cluster_timeout_seconds: float = Field(default=10.0, gt=0)
    namespace: str = Field(
        default="creatures",
        description="Namespace for creature deployments",
    )
    max_pods_in_namespace: int = Field(
        default=30,
        description="Namespace-wide pod ceiling enforced at admission",
        ge=1,
    )
    max_replicas: int = Field(
        default=6,
        description="Upper clamp for requested replica counts",
        ge=1,
    )
    pod_ttl_seconds: int = Field(
        default=600,
        description="Deployment lifetime before the sweep deletes it",
        ge=1,
    )
    sweep_interval_seconds: int = Field(
        default=60,
        description="Interval of the periodic sweep (0 disables it)",
        ge=0,
    )
    workload_image: str = Field(
        default="busybox:latest",
        description="Container image of the placeholder workload",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=8787,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logging level",
    )


# Global configuration instance
# Loads values from environment variables (PIXELFORGE_* prefix) and .env file.
config = PixelforgeConfig()
