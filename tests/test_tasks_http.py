from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from taskapi.tasks.errors import RepositoryError, TitleRequired
from taskapi.tasks.repository import InMemoryTaskRepository
from taskapi.tasks.routes import router


def make_client(repo, logger=None) -> TestClient:
    app = FastAPI()
    app.state.repository = repo
    app.state.logger = logger
    app.include_router(router)
    return TestClient(app)


class TestCreateTask:
    def test_success(self, repo):
        client = make_client(repo)
        r = client.post("/tasks", json={"title": "learn fastapi"})

        assert r.status_code == 201
        body = r.json()
        assert body["id"] == 1
        assert body["title"] == "learn fastapi"
        assert body["done"] is False
        assert body["created_at"]
        assert r.headers["content-type"].startswith("application/json")

    def test_blank_title_is_validation_error(self, repo):
        client = make_client(repo)
        r = client.post("/tasks", json={"title": "   "})

        assert r.status_code == 422
        body = r.json()
        assert body["error"] == "validation_error"
        assert any(d["field"] == "title" and "required" in d["message"] for d in body["details"])
        assert repo.list() == []

    @pytest.mark.parametrize("body", [{}, {"title": None}])
    def test_missing_title_is_validation_error(self, repo, body):
        r = make_client(repo).post("/tasks", json=body)

        assert r.status_code == 422
        assert r.json() == {
            "error": "validation_error",
            "details": [{"field": "title", "message": "title is required"}],
        }
        assert repo.list() == []

    def test_too_long_title_is_validation_error(self, repo):
        r = make_client(repo).post("/tasks", json={"title": "x" * 201})

        assert r.status_code == 422
        details = r.json()["details"]
        assert any(d["field"] == "title" and "at most 200" in d["message"] for d in details)

    def test_max_length_title_is_accepted(self, repo):
        r = make_client(repo).post("/tasks", json={"title": "x" * 200})
        assert r.status_code == 201

    @pytest.mark.parametrize("raw", [b'{"title":', b"", b"not json", b'["a"]', b'{"title": 5}'])
    def test_malformed_body_is_invalid_json(self, repo, raw):
        client = make_client(repo)
        r = client.post("/tasks", content=raw, headers={"Content-Type": "application/json"})

        assert r.status_code == 400
        assert r.json() == {"error": "invalid_json"}

    def test_repository_title_required_maps_to_422(self, logger):
        repo = Mock()
        repo.create.side_effect = TitleRequired()
        r = make_client(repo, logger).post("/tasks", json={"title": "ok"})

        assert r.status_code == 422
        assert r.json()["details"] == [{"field": "title", "message": "title is required"}]

    def test_repository_failure_is_unexpected_error(self, logger):
        repo = Mock()
        repo.create.side_effect = RepositoryError("disk full")
        r = make_client(repo, logger).post("/tasks", json={"title": "ok"})

        assert r.status_code == 500
        assert r.json() == {"error": "unexpected_error"}
        assert "disk full" not in r.text
        failures = logger.records("task_create_failed")
        assert failures and failures[0]["error"] == "disk full"


class TestListTasks:
    def test_empty_list(self, repo):
        r = make_client(repo).get("/tasks")
        assert r.status_code == 200
        assert r.json() == []

    def test_happy_path(self):
        repo = InMemoryTaskRepository()
        seeded = repo.create("seeded task")

        r = make_client(repo).get("/tasks")
        assert r.status_code == 200
        listed = r.json()
        assert len(listed) == 1
        assert listed[0]["id"] == seeded.id
        assert listed[0]["title"] == "seeded task"

    def test_order_follows_ids(self, repo):
        client = make_client(repo)
        client.post("/tasks", json={"title": "first"})
        client.post("/tasks", json={"title": "second"})

        assert [t["title"] for t in client.get("/tasks").json()] == ["first", "second"]

    def test_repository_error(self, logger):
        repo = Mock()
        repo.list.side_effect = RuntimeError("boom")
        r = make_client(repo, logger).get("/tasks")

        assert r.status_code == 500
        assert r.json() == {"error": "unexpected_error"}
        assert logger.records("task_list_failed")
