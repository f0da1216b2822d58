"""End-to-end API tests against the ASGI app with faked upstreams."""

import json

import httpx
import pytest

from agent_platform.clients.external_kb_client import ExternalKnowledgeClient
from agent_platform.main import app
from agent_platform.services import (
    embedding_service,
    generation_service,
    knowledge_service,
    vector_store_service,
)
from agent_platform.services.generation_service import GenerationService
from helpers import dify_handler

HEADERS = {"X-User-ID": "user-1"}
RECIPES = b"Apple pie recipe.\n\nBanana bread recipe.\n\nCherry tart recipe."


@pytest.fixture
async def client(engine, vector_store, embedding_client, monkeypatch):
    monkeypatch.setattr(vector_store_service, "_vector_store", vector_store)
    monkeypatch.setattr(embedding_service, "_embedding_client", embedding_client)
    monkeypatch.setattr(
        generation_service,
        "_generation_service",
        GenerationService(transport=httpx.MockTransport(dify_handler("hel", "lo"))),
    )

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client


def _events(body: str) -> list:
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_ready_reports_dependencies(self, client):
        response = await client.get("/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["vector_store"] == "connected"

    @pytest.mark.asyncio
    async def test_ready_fails_when_vector_store_is_down(self, client, vector_store, monkeypatch):
        async def _down():
            return False

        monkeypatch.setattr(vector_store, "ping", _down)
        response = await client.get("/ready")

        assert response.status_code == 503
        assert response.json()["vector_store"] == "disconnected"

    @pytest.mark.asyncio
    async def test_unknown_route_uses_error_envelope(self, client):
        response = await client.get("/api/v1/nowhere", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_user_header_is_unauthorized(self, client):
        response = await client.get("/api/v1/history")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"

    @pytest.mark.asyncio
    async def test_validation_errors_are_wrapped(self, client):
        response = await client.post("/api/v1/generation/start", json={}, headers=HEADERS)

        assert response.status_code == 422
        body = response.json()["error"]
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["validation_errors"]


class TestKnowledgeApi:
    @pytest.mark.asyncio
    async def test_document_lifecycle(self, client, embedding_config):
        response = await client.post(
            "/api/v1/knowledge-bases", json={"name": "Recipes"}, headers=HEADERS
        )
        assert response.status_code == 201
        kb = response.json()
        assert kb["config"] == {"chunkSize": 1000, "overlap": 200}
        assert kb["createdBy"] == "user-1"

        response = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/documents",
            files={"file": ("recipes.md", RECIPES, "text/markdown")},
            headers=HEADERS,
        )
        assert response.status_code == 201
        document = response.json()
        assert document["chunkCount"] == 3
        assert document["fileType"] == "markdown"

        response = await client.get(f"/api/v1/knowledge-bases/{kb['id']}/documents", headers=HEADERS)
        assert response.json()["total"] == 1

        response = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/search",
            json={"query": "apple", "mode": "hybrid", "similarity": 0.4},
            headers=HEADERS,
        )
        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["text"] for r in results] == ["Apple pie recipe."]
        assert results[0]["keywordScore"] == 1.0

        response = await client.get(
            f"/api/v1/documents/{document['id']}/chunks", headers=HEADERS
        )
        chunks = response.json()["chunks"]
        assert len(chunks) == 3
        assert chunks[0]["metadata"]["documentId"] == document["id"]

        response = await client.put(
            f"/api/v1/documents/{document['id']}/chunks/{chunks[2]['id']}",
            json={"text": "Cherry pie recipe."},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["metadata"]["chunkIndex"] == 2

        response = await client.delete(f"/api/v1/documents/{document['id']}", headers=HEADERS)
        assert response.status_code == 204

        response = await client.delete(f"/api/v1/knowledge-bases/{kb['id']}", headers=HEADERS)
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_upload_without_embedding_config_is_rejected(self, client):
        kb = (
            await client.post("/api/v1/knowledge-bases", json={"name": "Docs"}, headers=HEADERS)
        ).json()

        response = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/documents",
            files={"file": ("notes.txt", b"some notes", "text/plain")},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_document(self, client):
        response = await client.get("/api/v1/documents/missing/chunks", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_external_kb_connection(self, client, monkeypatch):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/retrieval"
            return httpx.Response(200, json={"records": []})

        monkeypatch.setattr(
            knowledge_service,
            "ExternalKnowledgeClient",
            lambda: ExternalKnowledgeClient(transport=httpx.MockTransport(handler)),
        )
        kb = (
            await client.post(
                "/api/v1/knowledge-bases",
                json={
                    "name": "Remote",
                    "type": "dify",
                    "config": {"baseUrl": "http://dify.test", "apiKey": "k", "knowledgeId": "k1"},
                },
                headers=HEADERS,
            )
        ).json()

        response = await client.post(
            f"/api/v1/knowledge-bases/{kb['id']}/test-connection", headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "knowledgeBaseId": kb["id"], "type": "dify"}

    @pytest.mark.asyncio
    async def test_connection_of_unknown_kb(self, client):
        response = await client.post(
            "/api/v1/knowledge-bases/missing/test-connection", headers=HEADERS
        )

        assert response.status_code == 404


class TestGenerationApi:
    @pytest.mark.asyncio
    async def test_generation_to_history(self, client, agent_and_task):
        agent, task = agent_and_task

        response = await client.post(
            "/api/v1/generation/start",
            json={"agentId": agent.id, "taskId": task.id, "input": {"text": "weekly notes"}},
            headers=HEADERS,
        )
        assert response.status_code == 202
        started = response.json()
        generation_id = started["generationId"]
        assert started["status"] == "starting"
        assert started["streamUrl"] == f"/api/v1/generation/stream?generationId={generation_id}"

        response = await client.get(started["streamUrl"])
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _events(response.text)
        assert events[0] == {"event": "connected"}
        assert events[-1] == {"event": "complete", "content": "hello"}

        response = await client.get("/api/v1/history", headers=HEADERS)
        listing = response.json()
        assert listing["total"] == 1
        assert listing["hasMore"] is False
        assert listing["history"][0]["agentName"] == "Writer"
        assert listing["history"][0]["summary"] == "hello"

        response = await client.get(f"/api/v1/history/{generation_id}", headers=HEADERS)
        detail = response.json()
        assert detail["fullContent"] == "hello"
        assert detail["input"]["text"] == "weekly notes"
        assert detail["status"] == "completed"

        response = await client.get(f"/api/v1/history/{generation_id}/export", headers=HEADERS)
        assert f'filename="history-{generation_id}.md"' in response.headers["content-disposition"]
        assert "## Status: completed" in response.text

        response = await client.get(
            f"/api/v1/generation/download/{generation_id}", headers=HEADERS
        )
        assert response.status_code == 200
        assert "hello" in response.text

        response = await client.delete(f"/api/v1/history/{generation_id}", headers=HEADERS)
        assert response.json() == {"message": "History item deleted successfully", "id": generation_id}

        response = await client.get(f"/api/v1/history/{generation_id}", headers=HEADERS)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_stream_of_unknown_generation(self, client):
        response = await client.get("/api/v1/generation/stream?generationId=missing")

        events = _events(response.text)
        assert events == [
            {"event": "connected"},
            {"event": "error", "message": "Generation not found"},
        ]

    @pytest.mark.asyncio
    async def test_start_with_unknown_agent(self, client, agent_and_task):
        _, task = agent_and_task

        response = await client.post(
            "/api/v1/generation/start",
            json={"agentId": "missing", "taskId": task.id, "input": {"text": "x"}},
            headers=HEADERS,
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_agent_connection(self, client, agent_and_task):
        agent, _ = agent_and_task

        response = await client.post(f"/api/v1/agents/{agent.id}/test-connection", headers=HEADERS)

        assert response.json() == {"success": True, "agentId": agent.id, "type": "dify"}


class TestJobsApi:
    @pytest.mark.asyncio
    async def test_history_cleanup_job(self, client):
        response = await client.post("/api/v1/jobs/cleanup-history")

        assert response.status_code == 200
        assert response.json()["deleted"] == 0

    @pytest.mark.asyncio
    async def test_user_facing_cleanup_route_is_not_an_id(self, client):
        response = await client.delete("/api/v1/history/cleanup", headers=HEADERS)

        assert response.json() == {"message": "Deleted 0 old history items", "deleted": 0}
