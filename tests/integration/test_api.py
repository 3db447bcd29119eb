"""Integration tests for FastAPI API endpoints using TestClient.

The application is built through ``create_app`` with real services over a
SQLite catalog in tmp_path, hash embeddings and the in-memory vector store.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from src.config.settings import Settings
from src.main import build_components, create_app
from tests.conftest import HashEmbeddingProvider, InMemoryVectorStore, make_sentences


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_NOTES = make_sentences(8, 249, topic="Algebra").encode("utf-8")


def _settings(tmp_path: Path, **overrides: Any) -> Settings:
    defaults: dict[str, Any] = {
        "openai_api_key": "",
        "catalog_db_path": str(tmp_path / "catalog.db"),
        "upload_dir": str(tmp_path / "uploads"),
        "chromadb_persist_dir": str(tmp_path / "chroma"),
        "max_upload_bytes": 50_000,
        "retrieval_min_score": -1.0,
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _upload(
    client: TestClient,
    content: bytes = _NOTES,
    filename: str = "notes.txt",
    **form: str | None,
):
    fields = {
        "criteriaName": "AQA GCSE Maths",
        "educationalBoard": "AQA",
        "subject": "Mathematics",
        "level": "GCSE",
        "description": "Year 10 revision",
    }
    fields.update(form)
    data = {k: v for k, v in fields.items() if v is not None}
    return client.post(
        "/api/v1/knowledge-bases/upload",
        data=data,
        files={"file": (filename, content, "application/octet-stream")},
    )


def _create_kb(client: TestClient, name: str = "AQA GCSE Maths") -> dict:
    response = _upload(client, criteriaName=name)
    assert response.status_code == 200, response.text
    return response.json()["criteria"]


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def client(tmp_path: Path, vector_store: InMemoryVectorStore):
    settings = _settings(tmp_path)
    components = build_components(
        settings, embedding_provider=HashEmbeddingProvider(), vector_store=vector_store
    )
    app = create_app(settings, components=components)
    with TestClient(app) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


class TestUploadEndpoint:
    def test_upload_creates_knowledge_base(
        self, client: TestClient, vector_store: InMemoryVectorStore
    ) -> None:
        response = _upload(client)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True

        criteria = body["criteria"]
        assert criteria["name"] == "AQA GCSE Maths"
        assert criteria["description"] == "Year 10 revision"
        assert (criteria["educational_board"], criteria["subject"], criteria["level"]) == (
            "AQA",
            "Mathematics",
            "GCSE",
        )
        assert criteria["file_count"] == 1
        assert criteria["files"][0]["original_name"] == "notes.txt"
        assert criteria["files"][0]["filename"].endswith("_notes.txt")

        ingestion = body["ingestion"]
        assert ingestion["chunks_indexed"] == 4
        assert ingestion["created_knowledge_base"] is True
        assert criteria["total_chunks"] == 4
        assert len(vector_store.entries) == 4

    def test_upload_into_existing_by_id(self, client: TestClient) -> None:
        kb = _create_kb(client)
        response = _upload(
            client,
            content=b"Another file about fractions.",
            filename="fractions.txt",
            criteriaId=kb["id"],
            criteriaName="ignored when an id is given",
        )
        assert response.status_code == 200
        body = response.json()
        assert body["criteria"]["id"] == kb["id"]
        assert body["criteria"]["name"] == "AQA GCSE Maths"
        assert body["criteria"]["file_count"] == 2

    def test_reupload_replaces_file(self, client: TestClient) -> None:
        kb = _create_kb(client)
        response = _upload(client, criteriaId=kb["id"])
        assert response.status_code == 200
        body = response.json()
        assert body["ingestion"]["replaced"] is True
        assert body["criteria"]["file_count"] == 1
        assert body["criteria"]["total_chunks"] == kb["total_chunks"]

    def test_missing_file(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/knowledge-bases/upload",
            data={"criteriaName": "X", "educationalBoard": "A", "subject": "B", "level": "C"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_missing_name_and_id(self, client: TestClient) -> None:
        response = _upload(client, criteriaName=None)
        assert response.status_code == 400
        assert "criteriaId or criteriaName" in response.json()["details"]

    def test_new_kb_needs_tags(self, client: TestClient) -> None:
        response = _upload(client, educationalBoard=None, level="  ")
        assert response.status_code == 400
        details = response.json()["details"]
        assert "educationalBoard" in details
        assert "level" in details
        assert "subject" not in details

    def test_unsupported_format(self, client: TestClient) -> None:
        response = _upload(client, content=b"slides", filename="deck.pptx")
        assert response.status_code == 415
        assert response.json()["error"] == "unsupported_format"

    def test_file_too_large(self, client: TestClient) -> None:
        response = _upload(client, content=b"a" * 50_001)
        assert response.status_code == 413
        assert response.json()["error"] == "file_too_large"

    def test_unknown_criteria_id(self, client: TestClient) -> None:
        response = _upload(client, criteriaId="does-not-exist")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_duplicate_name(self, client: TestClient) -> None:
        _create_kb(client)
        response = _upload(client, filename="other.txt")
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_name"

    def test_empty_file(self, client: TestClient) -> None:
        response = _upload(client, content=b"")
        assert response.status_code == 422
        assert response.json() == {
            "error": "empty_content",
            "details": "'notes.txt' contains no usable text",
        }

    def test_corrupt_pdf(self, client: TestClient) -> None:
        response = _upload(client, content=b"not really a pdf", filename="paper.pdf")
        assert response.status_code == 422
        assert response.json()["error"] == "extraction_failed"

    def test_index_unavailable(self, client: TestClient, vector_store: InMemoryVectorStore) -> None:
        vector_store.fail_upsert = True
        response = _upload(client)
        assert response.status_code == 503
        assert response.json()["error"] == "index_unavailable"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalogEndpoints:
    def test_list_and_paginate(self, client: TestClient) -> None:
        _create_kb(client, "Algebra")
        _create_kb(client, "Geometry")

        response = client.get("/api/v1/knowledge-bases", params={"limit": 1})
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["pages"] == 2
        assert len(body["items"]) == 1

        response = client.get("/api/v1/knowledge-bases", params={"search": "geo"})
        assert [kb["name"] for kb in response.json()["items"]] == ["Geometry"]

    def test_list_empty(self, client: TestClient) -> None:
        body = client.get("/api/v1/knowledge-bases").json()
        assert body["items"] == []
        assert body["pages"] == 0

    def test_list_rejects_bad_limit(self, client: TestClient) -> None:
        assert client.get("/api/v1/knowledge-bases", params={"limit": 0}).status_code == 422

    def test_stats(self, client: TestClient) -> None:
        _create_kb(client)
        response = client.get("/api/v1/knowledge-bases/stats")
        assert response.status_code == 200
        body = response.json()
        assert body["overview"]["total_knowledge_bases"] == 1
        assert body["overview"]["total_files"] == 1
        assert body["overview"]["total_chunks"] == 4
        assert body["recent"][0]["name"] == "AQA GCSE Maths"

    def test_get_knowledge_base(self, client: TestClient) -> None:
        kb = _create_kb(client)
        response = client.get(f"/api/v1/knowledge-bases/{kb['id']}")
        assert response.status_code == 200
        assert response.json()["files"][0]["chunks"] == 4

    def test_get_unknown(self, client: TestClient) -> None:
        response = client.get("/api/v1/knowledge-bases/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_update(self, client: TestClient) -> None:
        kb = _create_kb(client)
        response = client.put(
            f"/api/v1/knowledge-bases/{kb['id']}",
            json={"name": "Renamed", "description": "New words"},
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["description"] == "New words"

    def test_update_to_taken_name(self, client: TestClient) -> None:
        _create_kb(client, "Algebra")
        other = _create_kb(client, "Geometry")
        response = client.put(f"/api/v1/knowledge-bases/{other['id']}", json={"name": "Algebra"})
        assert response.status_code == 409

    def test_delete(self, client: TestClient, vector_store: InMemoryVectorStore) -> None:
        kb = _create_kb(client)
        response = client.delete(f"/api/v1/knowledge-bases/{kb['id']}")
        assert response.status_code == 200
        assert response.json()["vectors_deleted"] == 4
        assert vector_store.entries == {}
        assert client.get(f"/api/v1/knowledge-bases/{kb['id']}").status_code == 404

    def test_delete_with_index_down_keeps_record(
        self, client: TestClient, vector_store: InMemoryVectorStore
    ) -> None:
        kb = _create_kb(client)
        vector_store.fail_delete = True
        response = client.delete(f"/api/v1/knowledge-bases/{kb['id']}")
        assert response.status_code == 503
        assert client.get(f"/api/v1/knowledge-bases/{kb['id']}").status_code == 200

    def test_delete_file(self, client: TestClient, vector_store: InMemoryVectorStore) -> None:
        kb = _create_kb(client)
        _upload(client, content=b"Fractions text.", filename="fractions.txt", criteriaId=kb["id"])

        response = client.delete(f"/api/v1/knowledge-bases/{kb['id']}/files/notes.txt")
        assert response.status_code == 200
        body = response.json()
        assert body["vectors_deleted"] == 4
        assert [f["original_name"] for f in body["criteria"]["files"]] == ["fractions.txt"]
        assert len(vector_store.entries) == 1

    def test_delete_unknown_file(self, client: TestClient) -> None:
        kb = _create_kb(client)
        response = client.delete(f"/api/v1/knowledge-bases/{kb['id']}/files/missing.txt")
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class TestRetrieveEndpoint:
    def test_retrieve(self, client: TestClient) -> None:
        kb = _create_kb(client)
        response = client.post(
            "/api/v1/retrieve",
            json={"knowledge_base_id": kb["id"], "question": "Algebra sentence 3", "top_k": 2},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OK"
        assert body["reason"] is None
        assert len(body["snippets"]) == 2
        scores = [s["score"] for s in body["snippets"]]
        assert scores == sorted(scores, reverse=True)
        assert body["context"].startswith(body["snippets"][0]["text"])

    def test_retrieve_unknown_kb(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/retrieve", json={"knowledge_base_id": "nope", "question": "Anything?"}
        )
        assert response.status_code == 404

    def test_retrieve_reports_index_trouble_in_status(
        self, client: TestClient, vector_store: InMemoryVectorStore
    ) -> None:
        kb = _create_kb(client)
        vector_store.fail_query = True
        response = client.post(
            "/api/v1/retrieve", json={"knowledge_base_id": kb["id"], "question": "Anything?"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "INDEX_UNAVAILABLE"
        assert body["snippets"] == []
        assert body["context"] == ""

    @pytest.mark.parametrize(
        "payload",
        [
            {"knowledge_base_id": "", "question": "Q?"},
            {"knowledge_base_id": "kb", "question": "Q?", "top_k": 0},
            {"question": "Q?"},
        ],
    )
    def test_retrieve_validation(self, client: TestClient, payload: dict) -> None:
        assert client.post("/api/v1/retrieve", json=payload).status_code == 422


# ---------------------------------------------------------------------------
# Health / middleware
# ---------------------------------------------------------------------------


class TestHealthEndpoint:
    def test_healthy(self, client: TestClient) -> None:
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == "0.1.0"
        assert body["providers"] == {
            "embedding": "hash-embedding",
            "vector_store": "memory-vector-store",
            "catalog": "sqlite_catalog",
        }

    def test_degraded_without_vector_store(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path, vector_store_backend="none")
        components = build_components(settings, embedding_provider=HashEmbeddingProvider())
        with TestClient(create_app(settings, components=components)) as test_client:
            body = test_client.get("/api/v1/health").json()
            assert body["status"] == "degraded"
            assert body["providers"]["vector_store"] is None

            response = _upload(test_client)
            assert response.status_code == 503
            assert response.json()["error"] == "index_unavailable"

    def test_request_id_header(self, client: TestClient) -> None:
        response = client.get("/api/v1/health", headers={"x-request-id": "abc123"})
        assert response.headers["x-request-id"] == "abc123"
        generated = client.get("/api/v1/health").headers["x-request-id"]
        assert len(generated) == 12

    @pytest.mark.parametrize(
        ("method", "path", "details"),
        [
            ("get", "/api/v1/knowledge-bases", "Catalog is not initialised"),
            ("post", "/api/v1/knowledge-bases/upload", "Ingestion is not initialised"),
            ("post", "/api/v1/retrieve", "Catalog is not initialised"),
        ],
    )
    def test_missing_services_use_error_envelope(
        self, tmp_path: Path, method: str, path: str, details: str
    ) -> None:
        # No lifespan run, so app.state holds no services.
        test_client = TestClient(create_app(_settings(tmp_path), components={}))
        question = {"knowledge_base_id": "kb1", "question": "What is a derivative?"}
        response = test_client.request(
            method.upper(), path, json=question if path.endswith("/retrieve") else None
        )
        assert response.status_code == 503
        assert response.json() == {"error": "configuration_error", "details": details}
