from unittest.mock import Mock

from fastapi.testclient import TestClient

from taskapi.infrastructure.pipeline import pipeline_stages
from taskapi.infrastructure.resilience import TokenBucket
from taskapi.server import create_health_app


def test_health(build_client):
    r = build_client().get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_health_app_serves_only_health():
    client = TestClient(create_health_app())
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/tasks").status_code == 404


def test_create_and_list_through_full_chain(build_client):
    client = build_client()

    created = client.post("/tasks", json={"title": "first"})
    client.post("/tasks", json={"title": "second"})
    listed = client.get("/tasks")

    assert created.status_code == 201
    assert created.headers["x-request-id"]
    assert created.headers["trace-id"]
    assert [t["title"] for t in listed.json()] == ["first", "second"]


def test_invalid_json_through_full_chain(build_client):
    r = build_client().post("/tasks", content=b'{"title":', headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_json"


def test_metrics_endpoint_reports_requests(build_client):
    client = build_client()
    client.get("/health")

    data = client.get("/metrics").json()
    assert any(
        c["name"] == "http_requests_total"
        and c["labels"] == {"method": "GET", "path": "/health", "status": "200"}
        and c["value"] == 1
        for c in data["counters"]
    )
    assert any(h["name"] == "http_request_duration_ms" for h in data["histograms"])


def test_access_log_written_per_request(build_client, logger):
    client = build_client()
    r = client.get("/tasks")

    records = [rec for rec in logger.records("http_request") if rec["path"] == "/tasks"]
    assert len(records) == 1
    assert records[0]["status"] == 200
    assert records[0]["request_id"] == r.headers["x-request-id"]


class TestAuthInChain:
    def test_api_key_required_for_tasks(self, build_client):
        client = build_client(AUTH_MODE="api_key", API_KEY="secret123")

        assert client.get("/tasks").status_code == 401
        assert client.get("/tasks", headers={"X-API-Key": "secret123"}).status_code == 200
        assert client.get("/health").status_code == 200

    def test_unauthorized_still_gets_request_id_and_metrics(self, build_client, metrics):
        client = build_client(AUTH_MODE="bearer", BEARER_TOKEN="tok")

        r = client.get("/tasks")
        assert r.status_code == 401
        assert r.headers["x-request-id"]
        # Metrics sit inside auth, so rejected requests are not counted
        assert metrics.counter_value(
            "http_requests_total", {"method": "GET", "path": "/tasks", "status": "401"}
        ) == 0

    def test_preflight_short_circuits_before_auth(self, build_client):
        client = build_client(AUTH_MODE="api_key", API_KEY="secret123")

        r = client.options(
            "/tasks",
            headers={
                "Origin": "https://example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == "*"
        assert "POST" in r.headers["access-control-allow-methods"]

    def test_cors_headers_on_simple_request(self, build_client):
        r = build_client().get("/health", headers={"Origin": "https://example.com"})
        assert r.headers["access-control-allow-origin"] == "*"
        assert "X-Request-ID" in r.headers["access-control-expose-headers"]


def test_rate_limit_in_chain(build_client):
    client = build_client(RATE_LIMIT_RPS=1, RATE_LIMIT_BURST=1)

    assert client.get("/tasks").status_code == 200
    r = client.get("/tasks")
    assert r.status_code == 429
    assert r.headers["retry-after"] == "1"


def test_injected_limiter_is_used(build_client):
    limiter = Mock(spec=TokenBucket)
    limiter.allow.return_value = False
    limiter.rate = 0.5

    r = build_client(limiter=limiter).get("/health")
    assert r.status_code == 429
    assert r.headers["retry-after"] == "2"


def test_unhandled_fault_returns_500_and_process_survives(build_client, logger):
    # A task that cannot be serialized blows up outside the handler's own error paths
    repo = Mock()
    repo.create.return_value = Mock()
    repo.list.return_value = []
    client = build_client(repository=repo)

    r = client.post("/tasks", json={"title": "x"})
    assert r.status_code == 500
    assert r.json() == {"error": "unexpected_error"}
    assert logger.records("panic_recovered")
    assert client.get("/tasks").status_code == 200


def test_detailed_health_reports_failing_check(build_client):
    repo = Mock()
    repo.ping.side_effect = RuntimeError("kaboom")

    r = build_client(repository=repo).get("/health/detailed")
    assert r.status_code == 503
    assert r.json()["status"] == "unhealthy"
    assert r.json()["checks"]["storage"]["error"] == "kaboom"


def test_detailed_health_ok(build_client):
    r = build_client().get("/health/detailed")
    assert r.status_code == 200
    assert r.json()["checks"]["storage"]["status"] == "ok"


def test_sqlite_backend_from_settings(tmp_path, settings_factory, logger, metrics, tracer_provider):
    from taskapi.server import create_app

    settings = settings_factory(STORAGE_BACKEND="sqlite", DB_PATH=str(tmp_path / "db" / "tasks.db"))
    client = TestClient(create_app(settings, logger, metrics, tracer_provider))

    assert client.post("/tasks", json={"title": "stored"}).status_code == 201
    assert [t["title"] for t in client.get("/tasks").json()] == ["stored"]
    assert (tmp_path / "db" / "tasks.db").exists()


def test_pipeline_order(settings, logger, metrics, tracer_provider):
    names = [name for name, _ in pipeline_stages(settings, logger, metrics, tracer_provider)]
    assert names == [
        "request_id",
        "recovery",
        "timeout",
        "cors",
        "auth",
        "rate_limit",
        "tracing",
        "access_log",
        "metrics",
    ]
