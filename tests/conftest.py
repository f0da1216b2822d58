"""Pytest configuration and fixtures."""

import json
import os

# Settings are read at import time by several modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("INTERNAL_API_KEY_ENABLED", "false")

import httpx
import pytest
from qdrant_client import QdrantClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from agent_platform.database import session as session_module
from agent_platform.database.models import Agent, AgentType, Base, Task
from agent_platform.repositories.system_config_repository import SystemConfigRepository
from agent_platform.services.embedding_service import EMBEDDING_CONFIG_KEY, EmbeddingClient
from agent_platform.services.vector_store_service import VectorStoreService
from helpers import EMBEDDING_URL, embedding_handler

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine(monkeypatch):
    """Create test database engine and route the app's sessions to it."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    monkeypatch.setattr(session_module, "_session_factory", factory)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def session(engine):
    """Create test database session."""
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def vector_store():
    """Vector store backed by an in-process Qdrant."""
    return VectorStoreService(client=QdrantClient(":memory:"))


@pytest.fixture
def embedding_client():
    return EmbeddingClient(transport=httpx.MockTransport(embedding_handler))


@pytest.fixture
async def embedding_config(session):
    """Store the embedding endpoint config the way an admin would."""
    await SystemConfigRepository(session).set_value(
        EMBEDDING_CONFIG_KEY,
        json.dumps({"apiKey": "test-key", "baseUrl": EMBEDDING_URL, "model": "test-embed"}),
    )
    await session.commit()


@pytest.fixture
async def agent_and_task(session):
    """Seed one active Dify agent and one task template."""
    agent = Agent(
        name="Writer",
        type=AgentType.DIFY,
        url="http://dify.test/v1",
        api_token="app-token",
        is_active=True,
    )
    task = Task(name="Summarize", prompt_template="Summarize: {input_text}\n{file_content}")
    session.add_all([agent, task])
    await session.commit()
    return agent, task
