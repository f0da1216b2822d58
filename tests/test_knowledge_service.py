"""Tests for knowledge base ingestion, chunk editing and search."""

import json

import httpx
import pytest

from agent_platform.clients.external_kb_client import ExternalKnowledgeClient
from agent_platform.database.models import KnowledgeBaseType
from agent_platform.exceptions import (
    EmbeddingError,
    NotFoundError,
    ValidationError,
    VectorStoreError,
)
from agent_platform.repositories.knowledge_repository import DocumentRepository
from agent_platform.services.embedding_service import EmbeddingClient
from agent_platform.services.knowledge_service import KnowledgeService

RECIPES = b"Apple pie recipe.\n\nBanana bread recipe.\n\nCherry tart recipe."


@pytest.fixture
def knowledge_service(session, vector_store, embedding_client, embedding_config):
    return KnowledgeService(session, vector_store=vector_store, embedding_client=embedding_client)


async def _local_kb(service, **config):
    kb = await service.create_knowledge_base("Docs", config=config or None, created_by="user-1")
    await service.session.commit()
    return kb


class FailingDeleteStore:
    """Wraps a vector store and fails every delete."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def delete(self, collection_name, ids):
        raise VectorStoreError("store offline", collection=collection_name)

    async def delete_collection(self, kb_id):
        raise VectorStoreError("store offline")


class TestKnowledgeBases:
    @pytest.mark.asyncio
    async def test_local_config_is_validated_and_normalised(self, knowledge_service):
        kb = await _local_kb(knowledge_service, chunkSize=500)

        assert kb.config_dict == {"chunkSize": 500, "overlap": 200}
        assert knowledge_service.chunk_config_for(kb).chunk_size == 500

    @pytest.mark.asyncio
    async def test_invalid_chunk_size_rejected(self, knowledge_service):
        with pytest.raises(ValueError):
            await knowledge_service.create_knowledge_base("Docs", config={"chunkSize": 0})

    @pytest.mark.asyncio
    async def test_missing_kb(self, knowledge_service):
        with pytest.raises(NotFoundError):
            await knowledge_service.get_knowledge_base("missing")

    @pytest.mark.asyncio
    async def test_delete_tolerates_vector_store_failure(
        self, session, vector_store, embedding_client, embedding_config
    ):
        service = KnowledgeService(
            session, vector_store=FailingDeleteStore(vector_store), embedding_client=embedding_client
        )
        kb = await _local_kb(service)

        await service.delete_knowledge_base(kb.id)

        with pytest.raises(NotFoundError):
            await service.get_knowledge_base(kb.id)


class TestUploadDocument:
    @pytest.mark.asyncio
    async def test_long_text_becomes_three_chunks(self, knowledge_service):
        kb = await _local_kb(knowledge_service)

        document = await knowledge_service.upload_document(kb.id, "long.txt", b"a" * 2500)

        assert document.chunk_count == 3
        assert document.file_type == "text"
        assert document.file_size == 2500
        assert len(document.vector_id_list) == 3
        assert all(i.startswith(f"{kb.id}_") for i in document.vector_id_list)

        chunks = await knowledge_service.get_document_chunks(document.id)
        assert [c.metadata["chunkIndex"] for c in chunks] == [0, 1, 2]
        assert [(c.metadata["startChar"], c.metadata["endChar"]) for c in chunks] == [
            (0, 1000),
            (800, 1800),
            (1600, 2500),
        ]
        assert all(c.metadata["documentId"] == document.id for c in chunks)
        assert all(c.vector is None for c in chunks)

    @pytest.mark.asyncio
    async def test_metadata_records_keywords_and_chunk_config(self, knowledge_service):
        kb = await _local_kb(knowledge_service)

        document = await knowledge_service.upload_document(kb.id, "recipes.md", RECIPES)

        assert document.chunk_count == 3
        assert document.metadata_dict["chunkConfig"] == {"chunkSize": 1000, "overlap": 200}
        chunks = await knowledge_service.get_document_chunks(document.id)
        assert chunks[0].text == "Apple pie recipe."
        assert chunks[0].metadata["keywords"] == "apple,pie,recipe"

    @pytest.mark.asyncio
    async def test_empty_file_rejected(self, knowledge_service):
        kb = await _local_kb(knowledge_service)

        with pytest.raises(ValidationError):
            await knowledge_service.upload_document(kb.id, "empty.txt", b"")
        with pytest.raises(ValidationError):
            await knowledge_service.upload_document(kb.id, "blank.txt", b"   \n\n  ")

    @pytest.mark.asyncio
    async def test_external_kb_rejects_uploads(self, knowledge_service):
        kb = await knowledge_service.create_knowledge_base(
            "Remote", kb_type=KnowledgeBaseType.DIFY, config={"baseUrl": "http://dify.test"}
        )

        with pytest.raises(ValidationError):
            await knowledge_service.upload_document(kb.id, "a.txt", b"text")

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_nothing(self, session, vector_store, embedding_config):
        failing = EmbeddingClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        service = KnowledgeService(session, vector_store=vector_store, embedding_client=failing)
        kb = await _local_kb(service)

        with pytest.raises(EmbeddingError):
            await service.upload_document(kb.id, "notes.txt", b"some text")

        assert await DocumentRepository(session).get_by_knowledge_base(kb.id) == []
        assert not await vector_store.collection_exists(vector_store.collection_name(kb.id))


class TestDocuments:
    @pytest.mark.asyncio
    async def test_delete_document_removes_vectors(self, knowledge_service, vector_store):
        kb = await _local_kb(knowledge_service)
        document = await knowledge_service.upload_document(kb.id, "recipes.md", RECIPES)
        vector_ids = document.vector_id_list

        await knowledge_service.delete_document(document.id)

        assert await knowledge_service.list_documents(kb.id) == []
        collection = vector_store.collection_name(kb.id)
        assert await vector_store.get_by_ids(collection, vector_ids) == []

    @pytest.mark.asyncio
    async def test_delete_document_tolerates_vector_store_failure(
        self, session, vector_store, embedding_client, embedding_config
    ):
        service = KnowledgeService(session, vector_store=vector_store, embedding_client=embedding_client)
        kb = await _local_kb(service)
        document = await service.upload_document(kb.id, "recipes.md", RECIPES)

        service.vector_store = FailingDeleteStore(vector_store)
        await service.delete_document(document.id)

        with pytest.raises(NotFoundError):
            await service.get_document(document.id)

    @pytest.mark.asyncio
    async def test_update_chunk_reembeds_and_keeps_metadata(self, knowledge_service):
        kb = await _local_kb(knowledge_service)
        document = await knowledge_service.upload_document(kb.id, "recipes.md", RECIPES)
        banana_id = document.vector_id_list[1]

        updated = await knowledge_service.update_chunk(document.id, banana_id, "Apple crumble recipe.")

        assert updated.text == "Apple crumble recipe."
        assert updated.metadata["chunkIndex"] == 1
        chunks = await knowledge_service.get_document_chunks(document.id)
        assert chunks[1].text == "Apple crumble recipe."

        results = await knowledge_service.search(kb.id, "apple", mode="semantic", similarity=0.99)
        assert {r.id for r in results} == {document.vector_id_list[0], banana_id}

    @pytest.mark.asyncio
    async def test_update_unknown_chunk_is_not_found(self, knowledge_service):
        kb = await _local_kb(knowledge_service)
        document = await knowledge_service.upload_document(kb.id, "recipes.md", RECIPES)

        with pytest.raises(NotFoundError):
            await knowledge_service.update_chunk(document.id, "other_chunk", "text")
        with pytest.raises(ValidationError):
            await knowledge_service.update_chunk(document.id, document.vector_id_list[0], "  ")


class TestSearch:
    @pytest.mark.asyncio
    async def test_hybrid_search_filters_by_similarity(self, knowledge_service):
        kb = await _local_kb(knowledge_service)
        document = await knowledge_service.upload_document(kb.id, "recipes.md", RECIPES)

        results = await knowledge_service.search(kb.id, "apple", mode="hybrid", similarity=0.4)

        assert [r.id for r in results] == [document.vector_id_list[0]]
        assert results[0].keyword_score == 1.0
        assert results[0].hybrid_score == pytest.approx(1.0, abs=1e-4)

    @pytest.mark.asyncio
    async def test_semantic_search_ranks_by_vector_score(self, knowledge_service):
        kb = await _local_kb(knowledge_service)
        document = await knowledge_service.upload_document(kb.id, "recipes.md", RECIPES)

        results = await knowledge_service.search(kb.id, "banana", mode="semantic", similarity=0.0)

        assert len(results) == 3
        assert results[0].id == document.vector_id_list[1]
        assert results[1].vector_score == pytest.approx(0.5, abs=1e-4)

    @pytest.mark.asyncio
    async def test_search_before_any_upload_is_empty(self, knowledge_service):
        kb = await _local_kb(knowledge_service)

        assert await knowledge_service.search(kb.id, "apple") == []

    @pytest.mark.asyncio
    async def test_invalid_queries(self, knowledge_service):
        kb = await _local_kb(knowledge_service)

        with pytest.raises(ValidationError):
            await knowledge_service.search(kb.id, "   ")
        with pytest.raises(ValidationError):
            await knowledge_service.search(kb.id, "apple", mode="fuzzy")

    @pytest.mark.asyncio
    async def test_retrieve_from_local_kb(self, knowledge_service):
        kb = await _local_kb(knowledge_service)
        await knowledge_service.upload_document(kb.id, "recipes.md", RECIPES)

        passages = await knowledge_service.retrieve(kb.id, "cherry")

        assert passages[0].content == "Cherry tart recipe."
        assert passages[0].source == "recipes.md"

    @pytest.mark.asyncio
    async def test_retrieve_from_fastgpt_kb(self, session, vector_store, embedding_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/core/dataset/searchTest"
            return httpx.Response(
                200,
                json={"code": 200, "data": [{"q": "Question", "a": "Answer", "score": 0.9}]},
            )

        service = KnowledgeService(
            session,
            vector_store=vector_store,
            embedding_client=embedding_client,
            external_client=ExternalKnowledgeClient(transport=httpx.MockTransport(handler)),
        )
        kb = await service.create_knowledge_base(
            "Remote",
            kb_type=KnowledgeBaseType.FASTGPT,
            config={"baseUrl": "http://fg.test", "apiKey": "k", "datasetId": "ds"},
        )

        passages = await service.retrieve(kb.id, "question")

        assert passages[0].content == "Question\nAnswer"
        assert passages[0].score == 0.9


class TestConnection:
    @staticmethod
    def _service(session, vector_store, embedding_client, handler):
        return KnowledgeService(
            session,
            vector_store=vector_store,
            embedding_client=embedding_client,
            external_client=ExternalKnowledgeClient(transport=httpx.MockTransport(handler)),
        )

    @pytest.mark.asyncio
    async def test_fastgpt_search_with_stored_credentials(
        self, session, vector_store, embedding_client
    ):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"code": 200, "data": []})

        service = self._service(session, vector_store, embedding_client, handler)
        kb = await service.create_knowledge_base(
            "Remote",
            kb_type=KnowledgeBaseType.FASTGPT,
            config={"baseUrl": "http://fg.test/", "apiKey": "k", "datasetId": "ds"},
        )

        checked, success = await service.test_connection(kb.id)

        assert checked.id == kb.id
        assert success is True
        assert seen[0].url.path == "/api/core/dataset/searchTest"
        assert seen[0].headers["Authorization"] == "Bearer k"
        assert json.loads(seen[0].content)["datasetId"] == "ds"

    @pytest.mark.asyncio
    async def test_fastgpt_error_code_is_a_failed_check(
        self, session, vector_store, embedding_client
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": 403, "message": "unauthorized"})

        service = self._service(session, vector_store, embedding_client, handler)
        kb = await service.create_knowledge_base(
            "Remote", kb_type=KnowledgeBaseType.FASTGPT, config={"baseUrl": "http://fg.test"}
        )

        _, success = await service.test_connection(kb.id)

        assert success is False

    @pytest.mark.asyncio
    async def test_dify_rejection_is_a_failed_check(self, session, vector_store, embedding_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/retrieval"
            return httpx.Response(401, json={"error_code": 1002})

        service = self._service(session, vector_store, embedding_client, handler)
        kb = await service.create_knowledge_base(
            "Remote",
            kb_type=KnowledgeBaseType.DIFY,
            config={"baseUrl": "http://dify.test", "apiKey": "bad", "knowledgeId": "k1"},
        )

        _, success = await service.test_connection(kb.id)

        assert success is False

    @pytest.mark.asyncio
    async def test_local_kb_checks_the_vector_store(self, knowledge_service):
        kb = await _local_kb(knowledge_service)

        _, success = await knowledge_service.test_connection(kb.id)

        assert success is True

    @pytest.mark.asyncio
    async def test_missing_kb(self, knowledge_service):
        with pytest.raises(NotFoundError):
            await knowledge_service.test_connection("missing")
