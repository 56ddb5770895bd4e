"""Pixelforge — FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST API routes, the periodic sweep scheduler,
and the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
The service is stateless between requests:

- **Sprite generation** is performed by
  :class:`~pixelforge.core.pipeline.SpritePipeline`, which calls an external
  chat-completion API through :class:`~pixelforge.core.model_caller.ModelCaller`.
- **Creature deployments** are managed by
  :class:`~pixelforge.core.orchestrator.DeploymentOrchestrator`; the
  Kubernetes API is the only record of which deployments exist.
- **Expiry** runs both as a background task after every ``GET /k8s/pods``
  and on an APScheduler interval, so an idle service still reclaims its
  workloads.
- **Errors** never escape a request: service exceptions map to structured
  ``{error}`` bodies and anything unexpected becomes a logged 500.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/config``                   Version, canvas size and limits
POST      ``/generate-sprite``          Prompt → palette, shapes, frame
POST      ``/animate-sprite``           Sprite → three idle frames
POST      ``/k8s/deploy``               Create a creature deployment
GET       ``/k8s/pods``                 Pod and replica status
DELETE    ``/k8s/deploy/{name}``        Tear down a deployment
GET       ``/k8s/pod-metrics``          Per-pod CPU and memory
DELETE    ``/k8s/pods/{pod_name}``      Restart a single pod
POST      ``/k8s/heartbeat``            Restart a deployment's TTL clock
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    pixelforge

Direct invocation::

    python -m pixelforge.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from pixelforge import __version__
from pixelforge.api.models import (
    AnimateSpriteRequest,
    DeployRequest,
    GenerateSpriteRequest,
    HeartbeatRequest,
)
from pixelforge.core.cluster_client import ClusterClient, build_http_client
from pixelforge.core.config import PixelforgeConfig, config
from pixelforge.core.errors import (
    CapacityExceededError,
    ClusterAPIError,
    InvalidRequestError,
    SpriteGenerationError,
)
from pixelforge.core.model_caller import ModelCaller
from pixelforge.core.orchestrator import STRATEGIES, DeploymentOrchestrator
from pixelforge.core.pipeline import MIN_SHAPES, SpritePipeline
from pixelforge.core.shapes import parse_shapes

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "creature-sweep"

# Paths whose error bodies carry ``fallback: true`` so the frontend shows a
# placeholder sprite instead of an error.
SPRITE_PATHS = ("/generate-sprite", "/animate-sprite")

NO_CACHE = {"Cache-Control": "no-cache"}


# ---------------------------------------------------------------------------
# Service wiring.
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Long-lived objects shared by every request.

    Attributes:
        config: Configuration the services were built from.
        pipeline: Sprite generation pipeline.
        orchestrator: Deployment orchestrator.
        http_clients: HTTP clients owned by this bundle, closed on shutdown.
    """

    config: PixelforgeConfig
    pipeline: SpritePipeline
    orchestrator: DeploymentOrchestrator
    http_clients: list[httpx.AsyncClient] = field(default_factory=list)

    async def aclose(self) -> None:
        for client in self.http_clients:
            await client.aclose()


def build_services(
    settings: PixelforgeConfig,
    *,
    llm_transport: httpx.AsyncBaseTransport | None = None,
    cluster_transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Create the HTTP clients, pipeline and orchestrator for ``settings``.

    Args:
        settings: Configuration to build from.
        llm_transport: Optional transport for the inference client (tests
            pass an :class:`httpx.MockTransport`).
        cluster_transport: Optional transport for the cluster client.

    Returns:
        A :class:`Services` bundle owning both HTTP clients.
    """
    llm_http = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.model_timeout_seconds),
        transport=llm_transport,
    )
    cluster_http = build_http_client(settings, transport=cluster_transport)
    return Services(
        config=settings,
        pipeline=SpritePipeline(ModelCaller(llm_http, settings), settings),
        orchestrator=DeploymentOrchestrator(ClusterClient(cluster_http, settings.namespace), settings),
        http_clients=[llm_http, cluster_http],
    )


async def run_sweep(orchestrator: DeploymentOrchestrator) -> None:
    """Run one sweep, logging instead of raising.

    Used both as a background task and as the scheduled job; a failed sweep
    must never fail a request or stop the scheduler.
    """
    try:
        report = await orchestrator.sweep()
    except Exception:
        logger.exception("Creature sweep failed")
        return
    if report.deleted or report.unlabeled or report.failed:
        logger.info(
            f"Sweep: deleted={report.deleted} unlabeled={report.unlabeled} failed={report.failed}"
        )


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Builds the :class:`Services` bundle from the global configuration
        unless one was already placed on ``app.state.services`` (tests do
        this), and starts the periodic sweep when
        ``sweep_interval_seconds`` is positive.

    On shutdown:
        Stops the scheduler and closes the HTTP clients this lifespan
        created.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    services: Services | None = getattr(app.state, "services", None)
    owned = services is None
    if services is None:
        services = build_services(config)
        app.state.services = services

    scheduler: AsyncIOScheduler | None = None
    interval = services.config.sweep_interval_seconds
    if interval > 0:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            run_sweep,
            IntervalTrigger(seconds=interval),
            args=[services.orchestrator],
            id=SWEEP_JOB_ID,
            name="Creature sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        logger.info(f"Sweep scheduled every {interval}s")

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    if owned:
        await services.aclose()
        del app.state.services


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Pixelforge",
    description="Prompt-to-pixel-sprite generation and short-lived creature deployments.",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def catch_unhandled(request: Request, call_next) -> Response:
    """Convert any unhandled exception into a generic 500 body.

    Registered before the CORS middleware so the error response still
    carries the cross-origin headers.
    """
    try:
        return await call_next(request)
    except Exception:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        body: dict = {"error": "Internal error"}
        if request.url.path in SPRITE_PATHS:
            body["fallback"] = True
        return JSONResponse(body, status_code=500)


class PermissiveCORSMiddleware(CORSMiddleware):
    """CORS middleware whose pre-flight answers carry an empty body."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        headers = {
            key: value
            for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=response.status_code, headers=headers)


# The frontend is served from a different origin, so every response carries
# permissive cross-origin headers.
app.add_middleware(
    PermissiveCORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error translation.
# ---------------------------------------------------------------------------


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


@app.exception_handler(InvalidRequestError)
async def invalid_request(request: Request, exc: InvalidRequestError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(SpriteGenerationError)
async def sprite_failed(request: Request, exc: SpriteGenerationError) -> JSONResponse:
    body: dict = {"error": exc.reason, "fallback": True}
    if exc.shape_count is not None:
        body["shapeCount"] = exc.shape_count
    return JSONResponse(body, status_code=503)


@app.exception_handler(CapacityExceededError)
async def capacity_exceeded(request: Request, exc: CapacityExceededError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=429)


def _services(request: Request) -> Services:
    return request.app.state.services


def _require(value: str | None, what: str) -> str:
    if not value:
        raise InvalidRequestError(f"Missing {what}")
    return value


# ---------------------------------------------------------------------------
# Routes: service info and pre-flight.
# ---------------------------------------------------------------------------


@app.options("/{path:path}")
async def preflight(path: str) -> Response:
    """Answer any OPTIONS request with an empty 200."""
    return Response(status_code=200)


@app.get("/config")
async def get_config(request: Request) -> dict:
    """Return version, canvas size and deployment limits for the frontend."""
    settings = _services(request).config
    return {
        "version": __version__,
        "canvasSize": settings.canvas_size,
        "maxReplicas": settings.max_replicas,
        "maxPodsInNamespace": settings.max_pods_in_namespace,
        "ttl": settings.pod_ttl_seconds,
        "strategies": list(STRATEGIES),
        "models": [settings.sprite_model, *settings.model_queue],
    }


# ---------------------------------------------------------------------------
# Routes: sprites.
# ---------------------------------------------------------------------------


@app.post("/generate-sprite")
async def generate_sprite(req: GenerateSpriteRequest, request: Request) -> dict:
    """Generate a sprite from a free-text prompt.

    Runs the describe and structure stages concurrently, then colours and
    rasterizes the result.

    Args:
        req: Validated :class:`GenerateSpriteRequest` payload.

    Returns:
        Dictionary with ``frame``, ``palette``, ``shapes``, ``description``,
        ``primaryColour`` and ``model``.

    Raises:
        InvalidRequestError: 400 for an empty or over-long prompt.
        SpriteGenerationError: 503 (with ``fallback: true``) when the
            structure stage produced nothing drawable.
    """
    services = _services(request)
    prompt = (req.prompt or "").strip()
    if not prompt or len(prompt) > services.config.max_prompt_length:
        raise InvalidRequestError("Bad prompt")

    sprite = await services.pipeline.generate_sprite(prompt)
    return sprite.to_response()


@app.post("/animate-sprite")
async def animate_sprite(req: AnimateSpriteRequest, request: Request) -> dict:
    """Produce three idle-animation frames for a generated sprite.

    Args:
        req: Validated :class:`AnimateSpriteRequest` payload.

    Returns:
        Dictionary with ``frames`` (three frames), ``model`` (``static``,
        ``static-fallback`` or ``llm-animated``) and ``motions``.

    Raises:
        InvalidRequestError: 400 when the palette is missing or fewer than
            three usable shapes were supplied.
    """
    shapes = parse_shapes(req.shapes)
    if not req.palette or len(shapes) < MIN_SHAPES:
        raise InvalidRequestError("Bad sprite data")

    animation = await _services(request).pipeline.animate_sprite(
        req.palette, shapes, description=req.description, name=req.name
    )
    return animation.to_response()


# ---------------------------------------------------------------------------
# Routes: creature deployments.
# ---------------------------------------------------------------------------


@app.post("/k8s/deploy")
async def deploy_creature(req: DeployRequest, request: Request) -> dict:
    """Create a creature deployment.

    Returns:
        Dictionary with ``deployment``, ``replicas``, ``strategy`` and ``ttl``.

    Raises:
        InvalidRequestError: 400 for a missing name.
        CapacityExceededError: 429 when the namespace is full.
        HTTPException: 502 when the cluster API fails.
    """
    try:
        return await _services(request).orchestrator.deploy(req.name, req.replicas, req.strategy)
    except ClusterAPIError:
        raise HTTPException(status_code=502, detail="Failed to create deployment")


@app.get("/k8s/pods", response_model=None)
async def creature_pods(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    deployment: str | None = None,
) -> Response | dict:
    """Return pod and replica status for a deployment.

    Also schedules an opportunistic sweep that runs after the response is
    sent.

    Returns:
        Dictionary with ``deployment``, ``exists``, ``replicas``,
        ``readyReplicas`` and ``pods``.  ``exists`` is ``null`` (with an
        ``error`` field) when the deployment lookup failed for a reason
        other than 404.
    """
    deployment = _require(deployment, "deployment parameter")
    orchestrator = _services(request).orchestrator
    background_tasks.add_task(run_sweep, orchestrator)

    try:
        status = await orchestrator.status(deployment)
    except ClusterAPIError as e:
        logger.error(f"Pod listing for {deployment} failed: {e}")
        return JSONResponse(
            {"deployment": deployment, "error": "Failed to query pods"},
            status_code=502,
            background=background_tasks,
        )

    response.headers.update(NO_CACHE)
    return status


@app.delete("/k8s/deploy/{name}")
async def teardown_creature(name: str, request: Request) -> dict:
    """Delete a deployment; an already-deleted deployment is success."""
    try:
        already_gone = await _services(request).orchestrator.teardown(name)
    except ClusterAPIError:
        raise HTTPException(status_code=502, detail="Failed to delete deployment")
    if already_gone:
        return {"deleted": True, "message": "Already gone"}
    return {"deleted": True}


@app.get("/k8s/pod-metrics")
async def pod_metrics(
    request: Request,
    response: Response,
    deployment: str | None = None,
) -> dict:
    """Return per-pod CPU and memory usage; empty on any metrics failure."""
    deployment = _require(deployment, "deployment parameter")
    metrics = await _services(request).orchestrator.metrics(deployment)
    response.headers.update(NO_CACHE)
    return {"metrics": metrics}


@app.delete("/k8s/pods/{pod_name}")
async def restart_pod(pod_name: str, request: Request) -> dict:
    """Delete one pod so its deployment respawns it; 404 is success."""
    try:
        await _services(request).orchestrator.restart_pod(pod_name)
    except ClusterAPIError:
        raise HTTPException(status_code=502, detail="Failed to delete pod")
    return {"restarted": True}


@app.post("/k8s/heartbeat")
async def heartbeat(req: HeartbeatRequest, request: Request) -> dict:
    """Restart a deployment's expiry clock while a viewer is watching it."""
    services = _services(request)
    try:
        extended = await services.orchestrator.heartbeat(req.deployment)
    except ClusterAPIError:
        raise HTTPException(status_code=502, detail="Failed to extend deployment")
    if not extended:
        return {"deployment": req.deployment, "extended": False, "exists": False}
    return {
        "deployment": req.deployment,
        "extended": True,
        "ttl": services.config.pod_ttl_seconds,
    }


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Configure logging and launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~pixelforge.core.config.config`
    (``PIXELFORGE_SERVER_HOST``, ``PIXELFORGE_SERVER_PORT``,
    ``PIXELFORGE_LOG_LEVEL``).  Defaults to ``0.0.0.0:8787``.

    This function is registered as the ``pixelforge`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "pixelforge.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
