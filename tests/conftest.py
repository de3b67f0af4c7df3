"""
Root conftest.py - Sets environment variables before any module imports.

This file is loaded by pytest before any test modules, ensuring environment
variables are set before the settings module is imported.

Test Modes:
1. Unit Tests (default) - In-memory storage, no credentials needed
2. BigQuery storage tests - BigQuery client replaced with MagicMock
"""

import os

# Set environment variables BEFORE any imports that might load settings
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("GCP_PROJECT_ID", "test-project")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("CASCADE_RETRY_WAIT_SECONDS", "0")
os.environ.pop("SEED_FILE", None)

from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient

from assoc_registry.app.models.association_models import CreateAssociationRequest
from assoc_registry.core.engine.memory_store import InMemoryStorage
from assoc_registry.core.services.hierarchy_crud.reindexer import CascadeReindexer
from assoc_registry.core.services.hierarchy_crud.service import HierarchyService


# ============================================
# Storage & Service
# ============================================

@pytest.fixture
def storage():
    """Fresh in-memory storage per test."""
    return InMemoryStorage()


@pytest.fixture
def service(storage):
    """Hierarchy service on fresh storage, retries without waiting."""
    return HierarchyService(storage, reindexer=CascadeReindexer(storage, max_attempts=2, wait_seconds=0))


@pytest.fixture
def create(service):
    """Factory: create an association with sensible defaults."""
    async def _create(
        association_id: str,
        parent_id: Optional[str] = None,
        code: Optional[str] = None,
        **fields
    ):
        request = CreateAssociationRequest(
            id=association_id,
            code=code or association_id.upper()[:10],
            name=fields.pop("name", f"{association_id.upper()} Association"),
            parent_id=parent_id,
            **fields
        )
        return await service.create_association(request, created_by="tester")
    return _create


@pytest.fixture
async def sample_tree(create):
    """
    ha (national)
    └── hq (state)
        ├── bha (city)
        └── gcha (city)
    """
    await create("ha", name="Hockey Australia")
    await create("hq", parent_id="ha", name="Hockey Queensland")
    await create("bha", parent_id="hq", name="Brisbane Hockey Association")
    await create("gcha", parent_id="hq", name="Gold Coast Hockey Association")
    return ["ha", "hq", "bha", "gcha"]


# ============================================
# FastAPI Test Client
# ============================================

@pytest.fixture
async def async_client(service):
    """
    Async HTTP client for testing FastAPI endpoints.

    Uses httpx.AsyncClient with ASGITransport; the service dependency is
    overridden with the per-test service.
    """
    # Import app here to ensure env vars are set first
    from assoc_registry.app.main import app
    from assoc_registry.core.services.hierarchy_crud import get_hierarchy_crud_service

    app.dependency_overrides[get_hierarchy_crud_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
