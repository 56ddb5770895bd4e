"""Thin async wrapper around the Kubernetes REST API.

Only the handful of namespaced endpoints the orchestrator needs are
exposed.  Every method raises :class:`~pixelforge.core.errors.ClusterAPIError`
for a non-2xx reply or a transport failure; callers decide which statuses
(typically 404) are acceptable.

The underlying :class:`httpx.AsyncClient` is expected to carry the API base
URL, bearer token and TLS settings; see :func:`build_http_client`.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from pixelforge.core.config import PixelforgeConfig
from pixelforge.core.errors import ClusterAPIError

logger = logging.getLogger(__name__)

_ERROR_BODY_CHARS = 300

MERGE_PATCH = "application/merge-patch+json"


def build_http_client(config: PixelforgeConfig, **kwargs: Any) -> httpx.AsyncClient:
    """Create the HTTP client used for cluster calls.

    Args:
        config: Supplies the API URL, token, TLS flag and timeout.
        **kwargs: Extra :class:`httpx.AsyncClient` arguments (e.g. a
            ``transport`` in tests).
    """
    return httpx.AsyncClient(
        base_url=config.cluster_api_url,
        headers={
            "Authorization": f"Bearer {config.cluster_api_token}",
            "Content-Type": "application/json",
        },
        verify=config.cluster_verify_tls,
        timeout=config.cluster_timeout_seconds,
        **kwargs,
    )


class ClusterClient:
    """Namespaced Deployment/Pod/metrics operations.

    Attributes:
        _http (httpx.AsyncClient):
            Client bound to the API server; not owned by this object.
        namespace (str):
            Namespace every call is scoped to.
    """

    def __init__(self, http: httpx.AsyncClient, namespace: str) -> None:
        self._http = http
        self.namespace = namespace

    # -- Paths --------------------------------------------------------------

    def _pods_path(self, name: str | None = None) -> str:
        path = f"/api/v1/namespaces/{self.namespace}/pods"
        return f"{path}/{quote(name, safe='')}" if name else path

    def _deployments_path(self, name: str | None = None) -> str:
        path = f"/apis/apps/v1/namespaces/{self.namespace}/deployments"
        return f"{path}/{quote(name, safe='')}" if name else path

    def _metrics_path(self) -> str:
        return f"/apis/metrics.k8s.io/v1beta1/namespaces/{self.namespace}/pods"

    # -- Transport ----------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ClusterAPIError(f"{method} {path} failed: {e}", detail=str(e)) from e

        if not response.is_success:
            raise ClusterAPIError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                detail=response.text[:_ERROR_BODY_CHARS],
            )
        return response

    async def _items(self, path: str, label_selector: str | None) -> list[dict]:
        params = {"labelSelector": label_selector} if label_selector else None
        response = await self._request("GET", path, params=params)
        return _json(response).get("items") or []

    # -- Pods -----------------------------------------------------------------

    async def list_pods(self, label_selector: str | None = None) -> list[dict]:
        """List pods in the namespace, optionally filtered by label selector."""
        return await self._items(self._pods_path(), label_selector)

    async def delete_pod(self, name: str) -> None:
        await self._request("DELETE", self._pods_path(name))

    async def list_pod_metrics(self, label_selector: str | None = None) -> list[dict]:
        """List ``PodMetrics`` objects from the metrics API."""
        return await self._items(self._metrics_path(), label_selector)

    # -- Deployments ----------------------------------------------------------

    async def list_deployments(self, label_selector: str | None = None) -> list[dict]:
        return await self._items(self._deployments_path(), label_selector)

    async def get_deployment(self, name: str) -> dict:
        return _json(await self._request("GET", self._deployments_path(name)))

    async def create_deployment(self, manifest: dict) -> dict:
        return _json(await self._request("POST", self._deployments_path(), json=manifest))

    async def delete_deployment(self, name: str) -> None:
        await self._request("DELETE", self._deployments_path(name))

    async def patch_deployment_labels(self, name: str, labels: dict[str, str]) -> dict:
        """Merge ``labels`` into a deployment's metadata labels."""
        response = await self._request(
            "PATCH",
            self._deployments_path(name),
            json={"metadata": {"labels": labels}},
            headers={"Content-Type": MERGE_PATCH},
        )
        return _json(response)


def _json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
