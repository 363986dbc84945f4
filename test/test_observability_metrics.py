import importlib
from types import SimpleNamespace

from fastapi import Request
from fastapi.testclient import TestClient

from api.main import endpoint_label
from api.metrics import get_or_create_metric
from prometheus_client import Counter


def test_module_level_app_imports_without_environment() -> None:
    # Import lazily; building the app must not touch the database.
    mod = importlib.import_module("api.main")
    assert mod.app.title


def test_metrics_endpoint_exposes_prometheus_text(client) -> None:
    r = client.get("/metrics")
    assert r.status_code == 200
    # Prometheus text exposition format content-type
    assert "text/plain" in r.headers.get("content-type", "")
    body = r.text
    assert "renovation_requests_total" in body
    assert "renovation_request_latency_seconds" in body
    assert "renovation_queue_depth" in body


def _sample_labels(body: str, metric: str) -> list:
    """Label sets of every ``metric`` sample line, order-independent."""
    samples = []
    for line in body.splitlines():
        if line.startswith(metric + "{"):
            inner = line[len(metric) + 1 : line.index("}")]
            samples.append(dict(pair.split("=", 1) for pair in inner.split(",")))
    return samples


def test_requests_are_counted_per_route(client) -> None:
    r = client.get("/api/cron/punch-list?check=health")
    assert r.status_code == 200

    body = client.get("/metrics").text
    assert {"endpoint": '"/api/cron/punch-list"', "status": '"200"'} in _sample_labels(
        body, "renovation_requests_total"
    ), "Expected renovation_requests_total sample for the cron health check"


def _request(path: str, route_path=None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "query_string": b"",
        "headers": [],
    }
    if route_path is not None:
        scope["route"] = SimpleNamespace(path=route_path)
    return Request(scope)


def test_endpoint_label_keeps_router_prefix() -> None:
    assert endpoint_label(_request("/api/cron/punch-list", "/punch-list")) == "/api/cron/punch-list"
    assert endpoint_label(_request("/api/cron/punch-list", "/api/cron/punch-list")) == "/api/cron/punch-list"
    assert (
        endpoint_label(_request("/api/punch-list/items/abc/assign", "/items/{item_id}/assign"))
        == "/api/punch-list/items/{item_id}/assign"
    )
    assert endpoint_label(_request("/nowhere")) == "/nowhere"


async def test_queue_depth_matches_pending_jobs(client, services) -> None:
    await services.queue.enqueue("vm-1")
    await services.queue.enqueue("vm-2")

    m = client.get("/metrics")
    depth = None
    for line in m.text.splitlines():
        if line.startswith("renovation_queue_depth "):
            depth = line.split(" ", 1)[1].strip()
            break

    assert depth is not None, "renovation_queue_depth metric not found"
    assert int(float(depth)) == 2


async def test_stage_items_are_counted(client, services) -> None:
    await services.orchestrator.process_transcriptions(5)
    from pipeline.stage import run_items

    async def ok(_):
        return "processed"

    await run_items("metrics-demo", ["a"], ok, item_id=str)
    body = client.get("/metrics").text
    assert {"stage": '"metrics-demo"', "outcome": '"processed"'} in _sample_labels(
        body, "renovation_stage_items_total"
    )


def test_get_or_create_metric_is_idempotent() -> None:
    first = get_or_create_metric("renovation_test_idempotent", "doc", Counter)
    second = get_or_create_metric("renovation_test_idempotent", "doc", Counter)
    assert first is second


def test_health_endpoint(client) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["queue_size"] == 0
    assert body["sms_configured"] is True
