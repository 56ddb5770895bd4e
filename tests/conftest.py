"""Shared pytest fixtures for Pixelforge tests.

External services are replaced by in-memory fakes plugged into
``httpx.MockTransport``:

- :class:`FakeLLM` answers chat-completion requests with scripted replies
  per pipeline stage.
- :class:`FakeCluster` keeps Deployments, Pods and PodMetrics in dictionaries
  and implements the handful of Kubernetes REST routes the orchestrator uses.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from collections.abc import Generator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from pixelforge.api.main import Services, app, build_services
from pixelforge.core import prompts
from pixelforge.core.config import PixelforgeConfig

# ---------------------------------------------------------------------------
# Sample sprite data.
# ---------------------------------------------------------------------------

SAMPLE_STRUCTURE = {
    "roles": ["outline", "body", "tail", "eye_white", "pupil", "unused_role"],
    "shapes": [
        {"type": "ellipse", "cx": 15, "cy": 16, "rx": 9, "ry": 6, "role": "outline"},
        {"type": "ellipse", "cx": 15, "cy": 16, "rx": 8, "ry": 5, "role": "body"},
        {"type": "triangle", "points": [[3, 12], [7, 16], [3, 20]], "role": "tail"},
        {"type": "rect", "x": 20, "y": 13, "w": 2, "h": 2, "role": "eye_white"},
        {"type": "pixels", "coords": [[21, 14]], "role": "pupil"},
        {"type": "line", "x1": 12, "y1": 22, "x2": 12, "y2": 25, "role": "outline"},
    ],
}

SAMPLE_PALETTE = {
    "outline": "#1a1a1a",
    "body": "#55aa55",
    "tail": "#338833",
    "eye_white": "#ffffff",
    "pupil": "#000000",
}

_STAGE_BY_PROMPT = {
    prompts.DESCRIBE: "describe",
    prompts.COLOUR: "colour",
    prompts.MOTION: "motion",
    prompts.ANIMATE: "animate",
}


def completion(content: str) -> dict:
    """Build a chat-completion response body carrying ``content``."""
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


# ---------------------------------------------------------------------------
# Fake inference API.
# ---------------------------------------------------------------------------


class FakeLLM:
    """Scripted chat-completion endpoint.

    Each stage has a queue of replies.  A reply is either a JSON-able object
    (wrapped in chatty prose and returned with status 200), an ``int`` status
    code, or a ``str`` returned verbatim as completion content.  The last
    reply in a queue is reused once the queue is drained.
    """

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.replies: dict[str, list[Any]] = {
            "describe": [{"parts": ["one large oval as the body, centered"]}],
            "structure": [SAMPLE_STRUCTURE],
            "colour": [{"colors": dict(SAMPLE_PALETTE), "primaryColour": "#55aa55"}],
            "motion": [{"motions": ["tail: sway"]}],
            "animate": [{"animated": [{"index": 2, "offsets": [[1, 0], [-1, 0], [0, 0]]}]}],
        }

    def script(self, stage: str, *replies: Any) -> None:
        self.replies[stage] = list(replies)

    def calls_for(self, stage: str) -> list[dict]:
        return [c for c in self.calls if c["stage"] == stage]

    @staticmethod
    def stage_of(system_prompt: str) -> str:
        return _STAGE_BY_PROMPT.get(system_prompt, "structure")

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        stage = self.stage_of(body["messages"][0]["content"])
        self.calls.append(
            {
                "stage": stage,
                "model": body["model"],
                "user": body["messages"][1]["content"],
                "max_tokens": body["max_tokens"],
            }
        )
        queue = self.replies[stage]
        reply = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(reply, int):
            return httpx.Response(reply, text="upstream says no")
        if isinstance(reply, str):
            return httpx.Response(200, json=completion(reply))
        return httpx.Response(200, json=completion(f"Here you go:\n{json.dumps(reply)}\nEnjoy!"))


# ---------------------------------------------------------------------------
# Fake cluster API.
# ---------------------------------------------------------------------------

_POD_PATH = re.compile(r"^/api/v1/namespaces/(?P<ns>[^/]+)/pods(?:/(?P<name>[^/]+))?$")
_DEP_PATH = re.compile(
    r"^/apis/apps/v1/namespaces/(?P<ns>[^/]+)/deployments(?:/(?P<name>[^/]+))?$"
)
_METRICS_PATH = re.compile(r"^/apis/metrics\.k8s\.io/v1beta1/namespaces/(?P<ns>[^/]+)/pods$")


def _matches(obj: dict, selector: str | None) -> bool:
    if not selector:
        return True
    key, _, value = selector.partition("=")
    return (obj.get("metadata", {}).get("labels") or {}).get(key) == value


class FakeCluster:
    """In-memory stand-in for a namespaced Kubernetes API.

    Attributes:
        deployments: Name → Deployment object.
        pods: Name → Pod object.
        metrics: PodMetrics objects returned by the metrics API.
        errors: ``(method, resource)`` → status code to return instead of
            handling the request; ``resource`` is ``pods``, ``deployments``
            or ``metrics``.
        requests: Every request seen, as ``(method, path)``.
    """

    def __init__(self) -> None:
        self.deployments: dict[str, dict] = {}
        self.pods: dict[str, dict] = {}
        self.metrics: list[dict] = []
        self.errors: dict[tuple[str, str], int] = {}
        self.requests: list[tuple[str, str]] = []
        self.created_manifests: list[dict] = []

    # -- Seeding helpers ----------------------------------------------------

    def add_pods(self, count: int, labels: dict[str, str] | None = None) -> None:
        for _ in range(count):
            name = f"pod-{len(self.pods)}"
            self.pods[name] = {
                "metadata": {"name": name, "labels": dict(labels or {"app": "other"})},
                "status": {"phase": "Running"},
            }

    def add_deployment(self, name: str, created_at: int | None = None, replicas: int = 1) -> None:
        labels = {"app": "creature"}
        if created_at is not None:
            labels["created-at"] = str(created_at)
        self.deployments[name] = {
            "metadata": {"name": name, "labels": labels},
            "spec": {"replicas": replicas},
            "status": {"readyReplicas": replicas},
        }

    # -- Transport handler --------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        selector = request.url.params.get("labelSelector")
        self.requests.append((method, path))

        if m := _METRICS_PATH.match(path):
            return self._guard(method, "metrics") or httpx.Response(
                200, json={"items": [i for i in self.metrics if _matches(i, selector)]}
            )
        if m := _POD_PATH.match(path):
            return self._guard(method, "pods") or self._pods(method, m["name"], selector)
        if m := _DEP_PATH.match(path):
            return self._guard(method, "deployments") or self._deployments(
                method, m["name"], selector, request
            )
        return httpx.Response(404, json={"reason": "NotFound"})

    def _guard(self, method: str, resource: str) -> httpx.Response | None:
        status = self.errors.get((method, resource))
        if status is None:
            return None
        return httpx.Response(status, json={"message": "injected failure"})

    def _pods(self, method: str, name: str | None, selector: str | None) -> httpx.Response:
        if name is None and method == "GET":
            items = [p for p in self.pods.values() if _matches(p, selector)]
            return httpx.Response(200, json={"items": items})
        if name is not None and method == "DELETE":
            if self.pods.pop(name, None) is None:
                return httpx.Response(404, json={"reason": "NotFound"})
            return httpx.Response(200, json={"status": "Success"})
        return httpx.Response(405)

    def _deployments(
        self, method: str, name: str | None, selector: str | None, request: httpx.Request
    ) -> httpx.Response:
        if name is None:
            if method == "GET":
                items = [d for d in self.deployments.values() if _matches(d, selector)]
                return httpx.Response(200, json={"items": items})
            if method == "POST":
                manifest = json.loads(request.content)
                self.created_manifests.append(manifest)
                dep_name = manifest["metadata"]["name"]
                self.deployments[dep_name] = manifest
                pod_labels = manifest["spec"]["template"]["metadata"]["labels"]
                self.add_pods(manifest["spec"]["replicas"], pod_labels)
                return httpx.Response(201, json=manifest)
            return httpx.Response(405)

        dep = self.deployments.get(name)
        if dep is None:
            return httpx.Response(404, json={"reason": "NotFound"})
        if method == "GET":
            return httpx.Response(200, json=dep)
        if method == "DELETE":
            del self.deployments[name]
            return httpx.Response(200, json={"status": "Success"})
        if method == "PATCH":
            patch = json.loads(request.content)
            dep["metadata"]["labels"].update(patch["metadata"]["labels"])
            return httpx.Response(200, json=dep)
        return httpx.Response(405)


# ---------------------------------------------------------------------------
# Fixtures.
# ---------------------------------------------------------------------------


@pytest.fixture
def test_config() -> PixelforgeConfig:
    """Create a test configuration that never sleeps or schedules.

    Returns:
        PixelforgeConfig instance for testing
    """
    return PixelforgeConfig(
        _env_file=None,
        llm_api_base="https://llm.test/inference",
        llm_api_token="llm-token",
        model_queue=["mini-a", "mini-b"],
        sprite_model="big",
        model_timeout_seconds=2.0,
        model_retry_backoff_seconds=0.0,
        cluster_api_url="https://cluster.test",
        cluster_api_token="cluster-token",
        namespace="creatures",
        max_pods_in_namespace=30,
        max_replicas=6,
        pod_ttl_seconds=600,
        sweep_interval_seconds=0,
    )


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def services(
    test_config: PixelforgeConfig, fake_llm: FakeLLM, fake_cluster: FakeCluster
) -> Generator[Services, None, None]:
    """Service bundle wired to the fake LLM and fake cluster.

    Cleanup:
        The bundle's HTTP clients are closed
    """
    bundle = build_services(
        test_config,
        llm_transport=httpx.MockTransport(fake_llm.handler),
        cluster_transport=httpx.MockTransport(fake_cluster.handler),
    )
    yield bundle
    asyncio.run(bundle.aclose())


@pytest.fixture
def test_client(services: Services) -> Generator[TestClient, None, None]:
    """TestClient for the app with fake upstream services installed.

    Yields:
        A started TestClient (lifespan has run)

    Cleanup:
        The services bundle is removed from ``app.state``
    """
    app.state.services = services
    try:
        with TestClient(app) as client:
            yield client
    finally:
        del app.state.services


@pytest.fixture
def now() -> int:
    """Current unix time in whole seconds."""
    return int(time.time())
