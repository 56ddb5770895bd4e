"""Admission-controlled, self-expiring creature deployments.

:class:`DeploymentOrchestrator` manages short-lived placeholder workloads in
a single namespace on behalf of callers.  It keeps no state of its own: the
cluster API is the only source of truth for which deployments exist.

Lifecycle
---------
::

    validate → sweep → admission check → create → [poll]* → teardown | expiry

- **Validate** rejects an empty name, clamps replicas to
  ``[1, max_replicas]``, coerces the strategy to ``RollingUpdate`` unless
  ``Recreate`` was asked for, and slugs the name.
- **Admission** counts every pod in the namespace and refuses the request
  with :class:`~pixelforge.core.errors.CapacityExceededError` if the new
  replicas would push it past ``max_pods_in_namespace``.  The count and the
  create are not atomic, so concurrent requests can overshoot the ceiling.
  That is accepted: the ceiling protects a small shared cluster and is not
  a quota.
- **Create** submits a Deployment named ``creature-<slug>-<suffix>``
  labelled with its creation time in unix seconds.  The workload just
  sleeps for the TTL.
- **Sweep** deletes every owned deployment whose ``created-at`` label is
  older than the TTL.  A deployment created during a sweep is younger than
  the TTL, so the sweep can run concurrently with anything else.

Deletes are idempotent: a 404 from the API means the desired end state
already holds and is reported as success.
"""

from __future__ import annotations

import logging
import random
import re
import shlex
import string
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pixelforge.core.cluster_client import ClusterClient
from pixelforge.core.config import PixelforgeConfig
from pixelforge.core.errors import CapacityExceededError, ClusterAPIError, InvalidRequestError

logger = logging.getLogger(__name__)

APP_LABEL = "app"
APP_VALUE = "creature"
NAME_LABEL = "creature-name"
CREATED_LABEL = "created-at"
DEPLOYMENT_LABEL = "creature-deployment"
OWNED_SELECTOR = f"{APP_LABEL}={APP_VALUE}"

STRATEGY_ROLLING = "RollingUpdate"
STRATEGY_RECREATE = "Recreate"
STRATEGIES = (STRATEGY_ROLLING, STRATEGY_RECREATE)
DEFAULT_STRATEGY = STRATEGY_ROLLING

MAX_SLUG_LENGTH = 40
SUFFIX_LENGTH = 4
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

POD_REQUESTS = {"cpu": "5m", "memory": "8Mi"}
POD_LIMITS = {"cpu": "10m", "memory": "16Mi"}


# ---------------------------------------------------------------------------
# Request validation helpers.
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Slug a creature name for use in resource names and label values.

    Lowercases, replaces anything outside ``[a-z0-9-]`` with ``-``, collapses
    runs of hyphens, trims leading and trailing hyphens and caps the result
    at :data:`MAX_SLUG_LENGTH` characters.

    >>> sanitize_name("Mr. Sparkles!! 🐉")
    'mr-sparkles'
    """
    slug = re.sub(r"[^a-z0-9-]", "-", name.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    # Trim again so the cap cannot leave a trailing hyphen.
    return slug[:MAX_SLUG_LENGTH].strip("-")


def clamp_replicas(value: Any, max_replicas: int) -> int:
    """Coerce ``value`` to an int in ``[1, max_replicas]``; junk becomes 1."""
    try:
        replicas = int(float(value))
    except (TypeError, ValueError, OverflowError):
        replicas = 0
    if replicas < 1:
        replicas = 1
    return min(replicas, max_replicas)


def coerce_strategy(value: Any) -> str:
    """Return ``Recreate`` only when asked for explicitly, else the default."""
    return STRATEGY_RECREATE if value == STRATEGY_RECREATE else DEFAULT_STRATEGY


@dataclass(frozen=True)
class DeploymentRequest:
    """A validated deploy request.

    Attributes:
        raw_name: Name as supplied (trimmed), echoed by the workload.
        slug: Sanitised name used in resource names and labels.
        replicas: Clamped replica count.
        strategy: ``RollingUpdate`` or ``Recreate``.
    """

    raw_name: str
    slug: str
    replicas: int
    strategy: str


def validate_request(name: Any, replicas: Any, strategy: Any, max_replicas: int) -> DeploymentRequest:
    """Validate and normalise deploy parameters.

    Raises:
        InvalidRequestError: ``name`` is missing or blank.
    """
    raw_name = str(name or "").strip()
    if not raw_name:
        raise InvalidRequestError("Missing creature name")
    return DeploymentRequest(
        raw_name=raw_name,
        slug=sanitize_name(raw_name) or APP_VALUE,
        replicas=clamp_replicas(replicas, max_replicas),
        strategy=coerce_strategy(strategy),
    )


def generate_deployment_name(slug: str, rng: random.Random | None = None) -> str:
    """Return ``creature-<slug>-<suffix>`` with a random 4-character suffix."""
    chooser = rng or random
    suffix = "".join(chooser.choice(_SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{APP_VALUE}-{slug}-{suffix}"


def build_manifest(
    deployment_name: str,
    request: DeploymentRequest,
    namespace: str,
    created_at: int,
    ttl_seconds: int,
    image: str,
) -> dict:
    """Build the ``apps/v1`` Deployment manifest for a creature workload."""
    strategy: dict[str, Any] = {"type": request.strategy}
    if request.strategy == STRATEGY_ROLLING:
        strategy["rollingUpdate"] = {"maxUnavailable": 0, "maxSurge": 1}

    greeting = shlex.quote(f"creature {request.raw_name} alive")

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": deployment_name,
            "namespace": namespace,
            "labels": {
                APP_LABEL: APP_VALUE,
                NAME_LABEL: request.slug,
                CREATED_LABEL: str(created_at),
            },
        },
        "spec": {
            "replicas": request.replicas,
            "strategy": strategy,
            "selector": {"matchLabels": {DEPLOYMENT_LABEL: deployment_name}},
            "template": {
                "metadata": {
                    "labels": {
                        APP_LABEL: APP_VALUE,
                        DEPLOYMENT_LABEL: deployment_name,
                        NAME_LABEL: request.slug,
                    },
                },
                "spec": {
                    "containers": [
                        {
                            "name": APP_VALUE,
                            "image": image,
                            "command": ["sh", "-c", f"echo {greeting} && sleep {ttl_seconds}"],
                            "resources": {
                                "requests": dict(POD_REQUESTS),
                                "limits": dict(POD_LIMITS),
                            },
                        }
                    ],
                },
            },
        },
    }


def created_at_of(deployment: dict) -> int | None:
    """Return the ``created-at`` label as unix seconds, or ``None``."""
    labels = (deployment.get("metadata") or {}).get("labels") or {}
    raw = labels.get(CREATED_LABEL)
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def pod_summary(pod: dict) -> dict:
    """Map a Pod object to the status fields reported to callers."""
    metadata = pod.get("metadata") or {}
    status = pod.get("status") or {}
    conditions = status.get("conditions") or []
    containers = status.get("containerStatuses") or []
    return {
        "name": metadata.get("name") or "unknown",
        "phase": status.get("phase") or "Unknown",
        "ready": any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions),
        "started": status.get("startTime"),
        "restarts": (containers[0].get("restartCount") if containers else None) or 0,
    }


def metrics_summary(item: dict) -> dict:
    """Map a PodMetrics object to ``{podName, cpu, memory}``."""
    containers = item.get("containers") or [{}]
    usage = containers[0].get("usage") or {}
    return {
        "podName": (item.get("metadata") or {}).get("name", ""),
        "cpu": usage.get("cpu", "0m"),
        "memory": usage.get("memory", "0Mi"),
    }


@dataclass
class SweepReport:
    """Outcome of one :meth:`DeploymentOrchestrator.sweep`.

    Attributes:
        deleted: Deployments removed because they outlived the TTL.
        unlabeled: Owned deployments without a usable ``created-at`` label.
            They are never deleted by age and need operator attention.
        failed: Expired deployments whose delete call failed.
    """

    deleted: list[str] = field(default_factory=list)
    unlabeled: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Orchestrator.
# ---------------------------------------------------------------------------


class DeploymentOrchestrator:
    """Creates, inspects and reclaims creature deployments.

    Attributes:
        _client (ClusterClient):
            Namespaced cluster API wrapper.
        _config (PixelforgeConfig):
            Limits, TTL and workload image.
        _clock (Callable[[], float]):
            Source of the current unix time; injectable for tests.
    """

    def __init__(
        self,
        client: ClusterClient,
        config: PixelforgeConfig,
        clock: Callable[[], float] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._clock = clock or time.time
        self._rng = rng

    @property
    def ttl(self) -> int:
        return self._config.pod_ttl_seconds

    # -- Create ---------------------------------------------------------------

    async def count_pods(self) -> int:
        """Count every pod currently in the namespace."""
        return len(await self._client.list_pods())

    async def deploy(self, name: Any, replicas: Any = 1, strategy: Any = None) -> dict:
        """Validate, admit and create a creature deployment.

        Args:
            name: Requested creature name.
            replicas: Requested replica count (clamped).
            strategy: Requested update strategy (coerced).

        Returns:
            ``{deployment, replicas, strategy, ttl}``.

        Raises:
            InvalidRequestError: Empty name.
            CapacityExceededError: The namespace is too full.
            ClusterAPIError: Counting pods or creating the deployment failed.
        """
        request = validate_request(name, replicas, strategy, self._config.max_replicas)

        # Reclaim expired workloads first so they do not count against capacity.
        try:
            await self.sweep()
        except ClusterAPIError as e:
            logger.warning(f"Pre-deploy sweep failed: {e}")

        pod_count = await self.count_pods()
        if pod_count + request.replicas > self._config.max_pods_in_namespace:
            logger.warning(
                f"Rejecting {request.slug!r}: {pod_count} pods + {request.replicas} "
                f"replicas exceeds {self._config.max_pods_in_namespace}"
            )
            raise CapacityExceededError(pod_count, request.replicas)

        deployment_name = generate_deployment_name(request.slug, self._rng)
        manifest = build_manifest(
            deployment_name,
            request,
            namespace=self._client.namespace,
            created_at=int(self._clock()),
            ttl_seconds=self.ttl,
            image=self._config.workload_image,
        )

        try:
            await self._client.create_deployment(manifest)
        except ClusterAPIError as e:
            logger.error(f"Deployment create failed: {e} {e.detail}")
            raise

        logger.info(
            f"Created {deployment_name} ({request.replicas} replicas, {request.strategy})"
        )
        return {
            "deployment": deployment_name,
            "replicas": request.replicas,
            "strategy": request.strategy,
            "ttl": self.ttl,
        }

    # -- Observe --------------------------------------------------------------

    async def status(self, deployment: str) -> dict:
        """Report pod and replica status for a deployment.

        ``exists`` is ``False`` only when the API answered 404 for the
        deployment, meaning it is safe to forget.  Any other failure to read
        the deployment leaves ``exists`` as ``None`` and adds an ``error``
        field, meaning the caller should retry rather than assume it is gone.

        Raises:
            ClusterAPIError: Listing the deployment's pods failed.
        """
        pods = await self._client.list_pods(f"{DEPLOYMENT_LABEL}={deployment}")
        result: dict[str, Any] = {
            "deployment": deployment,
            "exists": True,
            "replicas": 0,
            "readyReplicas": 0,
            "pods": [pod_summary(p) for p in pods],
        }

        try:
            dep = await self._client.get_deployment(deployment)
        except ClusterAPIError as e:
            if e.not_found:
                result["exists"] = False
            else:
                logger.error(f"Deployment lookup for {deployment} failed: {e}")
                result["exists"] = None
                result["error"] = "Failed to query deployment"
            return result

        result["replicas"] = (dep.get("spec") or {}).get("replicas") or 0
        result["readyReplicas"] = (dep.get("status") or {}).get("readyReplicas") or 0
        return result

    async def metrics(self, deployment: str) -> list[dict]:
        """Return per-pod CPU and memory usage; empty on any API failure."""
        try:
            items = await self._client.list_pod_metrics(f"{DEPLOYMENT_LABEL}={deployment}")
        except ClusterAPIError as e:
            logger.info(f"Metrics unavailable for {deployment}: {e}")
            return []
        return [metrics_summary(item) for item in items if isinstance(item, dict)]

    # -- Mutate ---------------------------------------------------------------

    async def restart_pod(self, pod_name: str) -> None:
        """Delete one pod so its controller replaces it.  404 is success."""
        try:
            await self._client.delete_pod(pod_name)
        except ClusterAPIError as e:
            if not e.not_found:
                raise
            logger.info(f"Pod {pod_name} already gone")

    async def teardown(self, deployment: str) -> bool:
        """Delete a deployment.

        Returns:
            ``True`` if it was already gone (404), ``False`` if this call
            deleted it.

        Raises:
            ClusterAPIError: Any failure other than 404.
        """
        try:
            await self._client.delete_deployment(deployment)
        except ClusterAPIError as e:
            if not e.not_found:
                raise
            return True
        logger.info(f"Tore down {deployment}")
        return False

    async def heartbeat(self, deployment: str) -> bool:
        """Restart a deployment's expiry clock by refreshing ``created-at``.

        Returns:
            ``False`` if the deployment no longer exists, else ``True``.

        Raises:
            ClusterAPIError: Any failure other than 404.
        """
        try:
            await self._client.patch_deployment_labels(
                deployment, {CREATED_LABEL: str(int(self._clock()))}
            )
        except ClusterAPIError as e:
            if not e.not_found:
                raise
            return False
        logger.debug(f"Extended TTL of {deployment}")
        return True

    # -- Reclaim --------------------------------------------------------------

    async def sweep(self) -> SweepReport:
        """Delete owned deployments older than the TTL.

        Raises:
            ClusterAPIError: Listing deployments failed.  Individual delete
                failures are collected in :attr:`SweepReport.failed` instead.
        """
        report = SweepReport()
        now = self._clock()

        for dep in await self._client.list_deployments(OWNED_SELECTOR):
            name = (dep.get("metadata") or {}).get("name")
            if not name:
                continue

            created = created_at_of(dep)
            if created is None:
                logger.warning(f"Deployment {name} has no {CREATED_LABEL} label; not reclaimable by age")
                report.unlabeled.append(name)
                continue

            if now - created <= self.ttl:
                continue

            try:
                await self._client.delete_deployment(name)
            except ClusterAPIError as e:
                if not e.not_found:
                    logger.error(f"Sweep could not delete {name}: {e}")
                    report.failed.append(name)
                    continue
            logger.info(f"Sweep deleted {name} (age {int(now - created)}s)")
            report.deleted.append(name)

        return report
