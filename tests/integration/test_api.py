"""Integration tests for pixelforge.api.main — FastAPI REST API endpoints.

All tests use the FastAPI TestClient with the inference API and the cluster
API replaced by the in-memory fakes from ``conftest.py``, so no network
access occurs.  Tests cover every endpoint:

- ``GET /config`` — Limits and version.
- ``POST /generate-sprite`` — Prompt to sprite.
- ``POST /animate-sprite`` — Sprite to idle frames.
- ``POST /k8s/deploy`` — Admission and creation.
- ``GET /k8s/pods`` — Status polling and background sweep.
- ``DELETE /k8s/deploy/{name}`` — Idempotent teardown.
- ``GET /k8s/pod-metrics`` — Usage metrics.
- ``DELETE /k8s/pods/{pod_name}`` — Pod restart.
- ``POST /k8s/heartbeat`` — TTL extension.
- CORS headers, pre-flight and the catch-all error handler.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re

from pixelforge.api.main import run_sweep

# ---------------------------------------------------------------------------
# Cross-cutting behaviour.
# ---------------------------------------------------------------------------


class TestCrossCutting:
    """CORS, pre-flight and error translation."""

    def test_cors_header_on_success(self, test_client):
        resp = test_client.get("/config", headers={"Origin": "https://frontend.example"})
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_cors_header_on_error(self, test_client):
        resp = test_client.post(
            "/generate-sprite", json={}, headers={"Origin": "https://frontend.example"}
        )
        assert resp.status_code == 400
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_browser_preflight(self, test_client):
        resp = test_client.options(
            "/k8s/deploy",
            headers={
                "Origin": "https://frontend.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type, x-requested-with",
            },
        )
        assert resp.status_code == 200
        assert resp.content == b""
        assert "POST" in resp.headers["access-control-allow-methods"]
        assert "x-requested-with" in resp.headers["access-control-allow-headers"]

    def test_bare_options_is_empty_200(self, test_client):
        resp = test_client.options("/anything/at/all")
        assert resp.status_code == 200
        assert resp.content == b""

    def test_wrong_method_uses_error_body(self, test_client):
        resp = test_client.put("/config")
        assert resp.status_code == 405
        assert "error" in resp.json()

    def test_malformed_body_is_400(self, test_client):
        resp = test_client.post(
            "/generate-sprite",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request body"}

    def test_unexpected_error_is_500_with_fallback(self, test_client, services, monkeypatch):
        async def explode(prompt):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(services.pipeline, "generate_sprite", explode)
        resp = test_client.post("/generate-sprite", json={"prompt": "cat"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal error", "fallback": True}

    def test_unexpected_error_elsewhere_has_no_fallback(self, test_client, services, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(services.orchestrator, "deploy", explode)
        resp = test_client.post("/k8s/deploy", json={"name": "fox"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal error"}


# ---------------------------------------------------------------------------
# Configuration endpoint tests.
# ---------------------------------------------------------------------------


class TestGetConfig:
    def test_config(self, test_client):
        data = test_client.get("/config").json()
        assert data["canvasSize"] == 32
        assert data["maxReplicas"] == 6
        assert data["maxPodsInNamespace"] == 30
        assert data["ttl"] == 600
        assert data["strategies"] == ["RollingUpdate", "Recreate"]
        assert data["models"] == ["big", "mini-a", "mini-b"]
        assert "version" in data


# ---------------------------------------------------------------------------
# Sprite endpoint tests.
# ---------------------------------------------------------------------------


class TestGenerateSprite:
    def test_generates_sprite(self, test_client, fake_llm):
        resp = test_client.post("/generate-sprite", json={"prompt": "  lizard  "})
        assert resp.status_code == 200
        data = resp.json()

        assert len(data["frame"]) == 32
        assert all(len(row) == 32 for row in data["frame"])
        assert data["model"] == "big"
        assert data["primaryColour"] == "#55aa55"
        assert data["description"] == "one large oval as the body, centered"
        assert len(data["shapes"]) == 6
        assert all(s["color"] == s["role"] for s in data["shapes"])
        # Body ellipse painted over the outline ellipse at its centre.
        assert data["frame"][16][15] == "#55aa55"

        assert fake_llm.calls_for("structure")[0]["user"] == "Subject: lizard"
        assert fake_llm.calls_for("colour")[0]["user"].endswith(
            "Roles: outline, body, tail, eye_white, pupil"
        )

    def test_empty_prompt(self, test_client):
        resp = test_client.post("/generate-sprite", json={"prompt": "   "})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Bad prompt"}

    def test_prompt_too_long(self, test_client):
        resp = test_client.post("/generate-sprite", json={"prompt": "x" * 101})
        assert resp.status_code == 400

    def test_prompt_at_limit(self, test_client):
        resp = test_client.post("/generate-sprite", json={"prompt": "x" * 100})
        assert resp.status_code == 200

    def test_structure_failure_is_503_fallback(self, test_client, fake_llm):
        fake_llm.script("structure", 429)
        resp = test_client.post("/generate-sprite", json={"prompt": "cat"})
        assert resp.status_code == 503
        assert resp.json() == {"error": "Failed to generate sprite", "fallback": True}

    def test_too_few_shapes_reports_count(self, test_client, fake_llm):
        fake_llm.script(
            "structure",
            {"shapes": [{"type": "rect", "x": 0, "y": 0, "w": 2, "h": 2, "role": "body"}]},
        )
        resp = test_client.post("/generate-sprite", json={"prompt": "cat"})
        assert resp.status_code == 503
        assert resp.json() == {"error": "Invalid sprite format", "fallback": True, "shapeCount": 1}

    def test_fallback_model_reported(self, test_client, fake_llm):
        fake_llm.script("structure", 429, 429, {"shapes": fake_llm.replies["structure"][0]["shapes"]})
        resp = test_client.post("/generate-sprite", json={"prompt": "cat"})
        assert resp.status_code == 200
        assert resp.json()["model"] == "mini-b"

    def test_colour_failure_still_draws(self, test_client, fake_llm):
        fake_llm.script("colour", "no idea")
        resp = test_client.post("/generate-sprite", json={"prompt": "cat"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["primaryColour"] == "#00d4ff"
        assert set(data["palette"]) == {"outline", "body", "tail", "eye_white", "pupil"}


class TestAnimateSprite:
    def sprite(self, test_client):
        return test_client.post("/generate-sprite", json={"prompt": "lizard"}).json()

    def test_animates(self, test_client):
        sprite = self.sprite(test_client)
        resp = test_client.post(
            "/animate-sprite",
            json={
                "palette": sprite["palette"],
                "shapes": sprite["shapes"],
                "description": sprite["description"],
                "name": "lizard",
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["model"] == "llm-animated"
        assert data["motions"] == ["tail: sway"]
        assert len(data["frames"]) == 3
        assert data["frames"][0] != data["frames"][1]

    def test_static_subject(self, test_client, fake_llm):
        sprite = self.sprite(test_client)
        fake_llm.script("motion", {"motions": ["static"]})
        resp = test_client.post(
            "/animate-sprite", json={"palette": sprite["palette"], "shapes": sprite["shapes"]}
        )
        data = resp.json()
        assert data["model"] == "static"
        assert data["frames"][0] == data["frames"][1] == data["frames"][2] == sprite["frame"]
        assert fake_llm.calls_for("animate") == []

    def test_animate_stage_failure(self, test_client, fake_llm):
        sprite = self.sprite(test_client)
        fake_llm.script("animate", 500)
        resp = test_client.post(
            "/animate-sprite", json={"palette": sprite["palette"], "shapes": sprite["shapes"]}
        )
        assert resp.status_code == 200
        assert resp.json()["model"] == "static-fallback"

    def test_missing_palette(self, test_client):
        resp = test_client.post("/animate-sprite", json={"shapes": []})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Bad sprite data"}

    def test_too_few_valid_shapes(self, test_client):
        shapes = [
            {"type": "rect", "x": 0, "y": 0, "w": 1, "h": 1, "role": "body"},
            {"type": "rect", "x": 1, "y": 1, "w": 1, "h": 1, "role": "body"},
            {"type": "cloud"},
        ]
        resp = test_client.post(
            "/animate-sprite", json={"palette": {"body": "#fff"}, "shapes": shapes}
        )
        assert resp.status_code == 400

    def test_oversized_and_non_finite_shapes(self, test_client, fake_llm):
        fake_llm.script("motion", {"motions": ["static"]})
        shapes = [
            {"type": "rect", "x": 0, "y": 0, "w": 1, "h": 1, "role": "body"},
            {"type": "line", "x1": 0, "y1": 0, "x2": 5e6, "y2": 0, "role": "body"},
            {"type": "rect", "x": 0, "y": 0, "w": float("inf"), "h": 1, "role": "body"},
            {"type": "rect", "x": 0, "y": 0, "w": 3000, "h": 3000, "role": "body"},
        ]
        # JSON with a bare Infinity literal, which the body parser accepts.
        body = json.dumps({"palette": {"body": "#fff"}, "shapes": shapes})
        assert "Infinity" in body
        resp = test_client.post(
            "/animate-sprite", content=body, headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 200
        frames = resp.json()["frames"]
        assert all(cell == "#fff" for row in frames[0] for cell in row)


# ---------------------------------------------------------------------------
# Deployment endpoint tests.
# ---------------------------------------------------------------------------


class TestDeploy:
    def test_deploy(self, test_client, fake_cluster):
        resp = test_client.post(
            "/k8s/deploy", json={"name": "Mr. Sparkles!! 🐉", "replicas": 99, "strategy": "bogus"}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert re.fullmatch(r"creature-mr-sparkles-[a-z0-9]{4}", data["deployment"])
        assert data["replicas"] == 6
        assert data["strategy"] == "RollingUpdate"
        assert data["ttl"] == 600
        assert data["deployment"] in fake_cluster.deployments

    def test_missing_name(self, test_client):
        resp = test_client.post("/k8s/deploy", json={"replicas": 2})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing creature name"}

    def test_capacity(self, test_client, fake_cluster):
        fake_cluster.add_pods(29)
        resp = test_client.post("/k8s/deploy", json={"name": "fox", "replicas": 2})
        assert resp.status_code == 429
        assert "29 pods running" in resp.json()["error"]

        resp = test_client.post("/k8s/deploy", json={"name": "fox", "replicas": 1})
        assert resp.status_code == 200

    def test_cluster_failure(self, test_client, fake_cluster):
        fake_cluster.errors[("POST", "deployments")] = 500
        resp = test_client.post("/k8s/deploy", json={"name": "fox"})
        assert resp.status_code == 502
        assert resp.json() == {"error": "Failed to create deployment"}

    def test_pod_count_failure_fails_closed(self, test_client, fake_cluster):
        fake_cluster.errors[("GET", "pods")] = 500
        resp = test_client.post("/k8s/deploy", json={"name": "fox"})
        assert resp.status_code == 502
        assert fake_cluster.created_manifests == []


class TestPods:
    def test_status(self, test_client, fake_cluster):
        name = test_client.post("/k8s/deploy", json={"name": "fox", "replicas": 2}).json()["deployment"]

        resp = test_client.get("/k8s/pods", params={"deployment": name})

        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-cache"
        data = resp.json()
        assert data["deployment"] == name
        assert data["exists"] is True
        assert data["replicas"] == 2
        assert len(data["pods"]) == 2
        assert data["pods"][0]["phase"] == "Running"

    def test_gone(self, test_client):
        data = test_client.get("/k8s/pods", params={"deployment": "creature-gone-0000"}).json()
        assert data["exists"] is False

    def test_missing_parameter(self, test_client):
        resp = test_client.get("/k8s/pods")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing deployment parameter"}

    def test_pod_query_failure(self, test_client, fake_cluster):
        fake_cluster.errors[("GET", "pods")] = 500
        resp = test_client.get("/k8s/pods", params={"deployment": "creature-fox-abcd"})
        assert resp.status_code == 502
        assert resp.json() == {"deployment": "creature-fox-abcd", "error": "Failed to query pods"}

    def test_polling_sweeps_expired(self, test_client, fake_cluster, now):
        fake_cluster.add_deployment("creature-old-aaaa", created_at=now - 3600)
        fake_cluster.add_deployment("creature-new-bbbb", created_at=now)

        test_client.get("/k8s/pods", params={"deployment": "creature-new-bbbb"})

        assert "creature-old-aaaa" not in fake_cluster.deployments
        assert "creature-new-bbbb" in fake_cluster.deployments

    def test_sweep_failure_does_not_fail_poll(self, test_client, fake_cluster, now):
        fake_cluster.add_deployment("creature-old-aaaa", created_at=now - 3600)
        fake_cluster.errors[("DELETE", "deployments")] = 500
        resp = test_client.get("/k8s/pods", params={"deployment": "creature-old-aaaa"})
        assert resp.status_code == 200
        assert "creature-old-aaaa" in fake_cluster.deployments


class TestTeardown:
    def test_delete_twice(self, test_client, fake_cluster, now):
        fake_cluster.add_deployment("creature-fox-abcd", created_at=now)

        first = test_client.delete("/k8s/deploy/creature-fox-abcd")
        second = test_client.delete("/k8s/deploy/creature-fox-abcd")

        assert first.status_code == 200
        assert first.json() == {"deleted": True}
        assert second.status_code == 200
        assert second.json() == {"deleted": True, "message": "Already gone"}

    def test_cluster_failure(self, test_client, fake_cluster):
        fake_cluster.errors[("DELETE", "deployments")] = 500
        resp = test_client.delete("/k8s/deploy/creature-fox-abcd")
        assert resp.status_code == 502
        assert resp.json() == {"error": "Failed to delete deployment"}


class TestMetrics:
    def test_metrics(self, test_client, fake_cluster):
        fake_cluster.metrics = [
            {
                "metadata": {"name": "p1", "labels": {"creature-deployment": "creature-fox-abcd"}},
                "containers": [{"usage": {"cpu": "3m", "memory": "5Mi"}}],
            }
        ]
        resp = test_client.get("/k8s/pod-metrics", params={"deployment": "creature-fox-abcd"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-cache"
        assert resp.json() == {"metrics": [{"podName": "p1", "cpu": "3m", "memory": "5Mi"}]}

    def test_metrics_api_missing(self, test_client, fake_cluster):
        fake_cluster.errors[("GET", "metrics")] = 404
        resp = test_client.get("/k8s/pod-metrics", params={"deployment": "creature-fox-abcd"})
        assert resp.status_code == 200
        assert resp.json() == {"metrics": []}

    def test_missing_parameter(self, test_client):
        assert test_client.get("/k8s/pod-metrics").status_code == 400


class TestRestartPod:
    def test_restart(self, test_client, fake_cluster):
        fake_cluster.add_pods(1)
        resp = test_client.delete("/k8s/pods/pod-0")
        assert resp.json() == {"restarted": True}
        assert fake_cluster.pods == {}

    def test_already_gone(self, test_client):
        assert test_client.delete("/k8s/pods/pod-404").json() == {"restarted": True}

    def test_failure(self, test_client, fake_cluster):
        fake_cluster.errors[("DELETE", "pods")] = 403
        resp = test_client.delete("/k8s/pods/pod-0")
        assert resp.status_code == 502
        assert resp.json() == {"error": "Failed to delete pod"}


class TestHeartbeat:
    def test_extends(self, test_client, fake_cluster, now):
        fake_cluster.add_deployment("creature-fox-abcd", created_at=now - 500)
        resp = test_client.post("/k8s/heartbeat", json={"deployment": "creature-fox-abcd"})
        assert resp.json() == {"deployment": "creature-fox-abcd", "extended": True, "ttl": 600}
        created = int(fake_cluster.deployments["creature-fox-abcd"]["metadata"]["labels"]["created-at"])
        assert created >= now

    def test_gone(self, test_client):
        resp = test_client.post("/k8s/heartbeat", json={"deployment": "creature-gone-0000"})
        assert resp.json() == {"deployment": "creature-gone-0000", "extended": False, "exists": False}

    def test_missing_deployment_field(self, test_client):
        resp = test_client.post("/k8s/heartbeat", json={})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Scheduled sweep job.
# ---------------------------------------------------------------------------


class TestRunSweep:
    """The job the scheduler runs must never raise."""

    def test_reclaims_expired(self, services, fake_cluster, now):
        fake_cluster.add_deployment("creature-old-aaaa", created_at=now - 3600)
        asyncio.run(run_sweep(services.orchestrator))
        assert fake_cluster.deployments == {}

    def test_failure_is_logged(self, services, fake_cluster, caplog):
        fake_cluster.errors[("GET", "deployments")] = 500
        with caplog.at_level(logging.ERROR, logger="pixelforge.api.main"):
            asyncio.run(run_sweep(services.orchestrator))
        assert "Creature sweep failed" in caplog.text


# ---------------------------------------------------------------------------
# Service bundle lifecycle.
# ---------------------------------------------------------------------------


class TestServices:
    def test_owns_both_http_clients(self, services):
        assert len(services.http_clients) == 2
        assert not any(client.is_closed for client in services.http_clients)

    def test_aclose_closes_clients(self, services):
        asyncio.run(services.aclose())
        assert all(client.is_closed for client in services.http_clients)
