"""
API tests for the association hierarchy routes.

Run with: pytest tests/test_association_routes.py -v
"""

import pytest

from assoc_registry.core.engine.memory_store import InMemoryStorage
from assoc_registry.core.engine.storage import ASSOCIATIONS, CLUBS, REGISTRATIONS
from assoc_registry.core.exceptions import StorageUnavailableError
from assoc_registry.core.services.hierarchy_crud.reindexer import CascadeReindexer
from assoc_registry.core.services.hierarchy_crud.service import HierarchyService

BASE = "/api/v1/associations"


class FailingStorage(InMemoryStorage):
    """Rejects every write to the given record ids once `armed` is set."""

    def __init__(self, failing_ids):
        super().__init__()
        self.failing_ids = set(failing_ids)
        self.armed = False

    def upsert(self, collection, record_id, fields):
        if self.armed and record_id in self.failing_ids:
            raise StorageUnavailableError(f"write to {record_id} timed out")
        super().upsert(collection, record_id, fields)


def payload(association_id, parent_id=None, **fields):
    body = {"id": association_id, "code": association_id.upper()[:10], "name": f"{association_id} name"}
    if parent_id is not None:
        body["parent_id"] = parent_id
    body.update(fields)
    return body


# ==============================================================================
# Health
# ==============================================================================

@pytest.mark.asyncio
async def test_health(async_client):
    response = await async_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["storage_backend"] == "memory"


# ==============================================================================
# Create
# ==============================================================================

class TestCreateRoutes:

    @pytest.mark.asyncio
    async def test_create_root(self, async_client):
        response = await async_client.post(BASE, json=payload("ha"), headers={"X-User-ID": "admin-1"})
        assert response.status_code == 201
        data = response.json()
        assert data["level"] == 0
        assert data["hierarchy"] == []
        assert data["level_label"] == "National"
        assert data["created_by"] == "admin-1"

    @pytest.mark.asyncio
    async def test_client_path_ignored(self, async_client):
        await async_client.post(BASE, json=payload("ha"))
        response = await async_client.post(
            BASE, json=payload("hq", parent_id="ha", level=7, hierarchy=["x", "y"])
        )
        assert response.status_code == 201
        assert response.json()["hierarchy"] == ["ha"]
        assert response.json()["level"] == 1

    @pytest.mark.asyncio
    async def test_actor_defaults_to_system(self, async_client):
        response = await async_client.post(BASE, json=payload("ha"))
        assert response.json()["created_by"] == "system"

    @pytest.mark.asyncio
    async def test_duplicate_id_conflict(self, async_client):
        await async_client.post(BASE, json=payload("ha"))
        response = await async_client.post(BASE, json=payload("ha", code="OTHER"))
        assert response.status_code == 409
        data = response.json()
        assert data["error"] == "DUPLICATE_ID"
        assert data["category"] == "CONFLICT"
        assert data["error_id"].startswith("ERR-")

    @pytest.mark.asyncio
    async def test_missing_parent(self, async_client, storage):
        response = await async_client.post(BASE, json=payload("orphan", parent_id="ghost"))
        assert response.status_code == 400
        assert response.json()["error"] == "PARENT_NOT_FOUND"
        assert storage.find_by_id(ASSOCIATIONS, "orphan") is None

    @pytest.mark.asyncio
    async def test_route_segment_id_reserved(self, async_client, storage):
        response = await async_client.post(BASE, json=payload("tree"))
        assert response.status_code == 422
        assert storage.find_by_id(ASSOCIATIONS, "tree") is None

        tree = await async_client.get(f"{BASE}/tree")
        assert tree.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, async_client):
        response = await async_client.post(BASE, json=payload("ha", colour="blue"))
        assert response.status_code == 422


# ==============================================================================
# Reads
# ==============================================================================

class TestReadRoutes:

    @pytest.mark.asyncio
    async def test_get_not_found(self, async_client):
        response = await async_client.get(f"{BASE}/ghost")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list_filters(self, sample_tree, async_client):
        response = await async_client.get(BASE, params={"level": 2})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [a["id"] for a in data["associations"]] == ["bha", "gcha"]

        response = await async_client.get(BASE, params={"search": "gold"})
        assert [a["id"] for a in response.json()["associations"]] == ["gcha"]

    @pytest.mark.asyncio
    async def test_list_limit_capped(self, async_client):
        response = await async_client.get(BASE, params={"limit": 10000})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_children_and_descendants(self, sample_tree, async_client):
        children = await async_client.get(f"{BASE}/hq/children")
        assert [c["id"] for c in children.json()] == ["bha", "gcha"]

        descendants = await async_client.get(f"{BASE}/ha/descendants")
        assert [d["id"] for d in descendants.json()] == ["hq", "bha", "gcha"]

    @pytest.mark.asyncio
    async def test_detail(self, sample_tree, async_client, storage):
        storage.insert(CLUBS, {"id": "blaze", "name": "Brisbane Blaze", "parent_id": "bha"})
        storage.insert(REGISTRATIONS, {"id": "r1", "association_id": "bha", "status": "active"})

        response = await async_client.get(f"{BASE}/bha/detail")
        assert response.status_code == 200
        data = response.json()
        assert data["parent"]["id"] == "hq"
        assert [a["id"] for a in data["ancestors"]] == ["ha", "hq"]
        assert [c["id"] for c in data["clubs"]] == ["blaze"]
        assert data["statistics"]["active"] == 1

    @pytest.mark.asyncio
    async def test_tree(self, sample_tree, async_client, storage):
        storage.insert(CLUBS, {"id": "blaze", "name": "Brisbane Blaze", "parent_id": "bha"})

        response = await async_client.get(f"{BASE}/tree")
        assert response.status_code == 200
        data = response.json()
        assert [r["id"] for r in data["roots"]] == ["ha"]
        assert data["stats"]["associations"] == 4
        assert data["stats"]["clubs"] == 1
        bha = data["roots"][0]["children"][0]["children"][0]
        assert bha["children"][0]["type"] == "club"

    @pytest.mark.asyncio
    async def test_consistency(self, sample_tree, async_client, storage):
        response = await async_client.get(f"{BASE}/tree/consistency")
        assert response.json()["consistent"] is True

        storage.upsert(ASSOCIATIONS, "gcha", {"hierarchy": ["ha"], "level": 1})
        response = await async_client.get(f"{BASE}/tree/consistency")
        data = response.json()
        assert data["consistent"] is False
        assert data["inconsistencies"][0]["id"] == "gcha"


# ==============================================================================
# Re-parent & Update
# ==============================================================================

class TestReparentRoutes:

    @pytest.mark.asyncio
    async def test_reparent_cascades(self, sample_tree, async_client, create):
        await create("nz")
        response = await async_client.put(f"{BASE}/hq/parent", json={"new_parent_id": "nz"})
        assert response.status_code == 200
        data = response.json()
        assert data["association"]["hierarchy"] == ["nz"]
        assert sorted(data["cascade"]["repaired"]) == ["bha", "gcha"]
        assert data["cascade"]["failed"] == []

        bha = await async_client.get(f"{BASE}/bha")
        assert bha.json()["hierarchy"] == ["nz", "hq"]

    @pytest.mark.asyncio
    async def test_promote_to_root(self, sample_tree, async_client):
        response = await async_client.put(f"{BASE}/bha/parent", json={"new_parent_id": None})
        assert response.status_code == 200
        assert response.json()["association"]["level"] == 0

    @pytest.mark.asyncio
    async def test_cycle_rejected(self, sample_tree, async_client, storage):
        before = storage.find_by_id(ASSOCIATIONS, "ha")
        response = await async_client.put(f"{BASE}/ha/parent", json={"new_parent_id": "bha"})
        assert response.status_code == 400
        assert response.json()["error"] == "CIRCULAR_REFERENCE"
        assert storage.find_by_id(ASSOCIATIONS, "ha") == before

    @pytest.mark.asyncio
    async def test_self_parent_rejected(self, sample_tree, async_client):
        response = await async_client.put(f"{BASE}/hq/parent", json={"new_parent_id": "hq"})
        assert response.status_code == 400
        assert response.json()["error"] == "SELF_PARENT"

    @pytest.mark.asyncio
    async def test_update_with_parent_change(self, sample_tree, async_client):
        response = await async_client.put(
            f"{BASE}/gcha",
            json={"parent_id": "ha", "name": "Gold Coast Hockey"},
            headers={"X-User-ID": "editor"}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Gold Coast Hockey"
        assert data["hierarchy"] == ["ha"]
        assert data["updated_by"] == "editor"

    @pytest.mark.asyncio
    async def test_partial_cascade_returns_207(self, async_client):
        from assoc_registry.app.main import app
        from assoc_registry.core.services.hierarchy_crud import get_hierarchy_crud_service

        flaky = FailingStorage(["bha"])
        flaky_service = HierarchyService(flaky, reindexer=CascadeReindexer(flaky, max_attempts=1, wait_seconds=0))
        app.dependency_overrides[get_hierarchy_crud_service] = lambda: flaky_service

        await async_client.post(BASE, json=payload("ha"))
        await async_client.post(BASE, json=payload("hq", parent_id="ha"))
        await async_client.post(BASE, json=payload("bha", parent_id="hq"))
        await async_client.post(BASE, json=payload("gcha", parent_id="hq"))
        flaky.armed = True

        response = await async_client.put(f"{BASE}/hq/parent", json={"new_parent_id": None})
        assert response.status_code == 207
        data = response.json()
        assert data["error"] == "PARTIAL_CASCADE_FAILURE"
        assert data["context"]["failed"] == ["bha"]
        assert data["association"]["level"] == 0

        flaky.armed = False
        repair = await async_client.post(f"{BASE}/hq/reindex")
        assert repair.status_code == 200
        assert sorted(repair.json()["repaired"]) == ["bha", "gcha"]
        assert flaky.find_by_id(ASSOCIATIONS, "bha")["hierarchy"] == ["hq"]


# ==============================================================================
# Delete
# ==============================================================================

class TestDeleteRoutes:

    @pytest.mark.asyncio
    async def test_deletion_check(self, sample_tree, async_client):
        response = await async_client.get(f"{BASE}/hq/deletion-check")
        data = response.json()
        assert data["blocked"] is True
        assert data["child_count"] == 2

        response = await async_client.get(f"{BASE}/bha/deletion-check")
        assert response.json()["blocked"] is False

    @pytest.mark.asyncio
    async def test_delete_blocked_by_children(self, sample_tree, async_client):
        response = await async_client.delete(f"{BASE}/hq")
        assert response.status_code == 409
        assert response.json()["error"] == "HAS_CHILDREN"

    @pytest.mark.asyncio
    async def test_soft_delete(self, sample_tree, async_client, storage):
        response = await async_client.delete(f"{BASE}/gcha", headers={"X-User-ID": "admin-1"})
        assert response.status_code == 200
        assert response.json()["status"] == "inactive"
        stored = storage.find_by_id(ASSOCIATIONS, "gcha")
        assert stored["status"] == "inactive"
        assert stored["updated_by"] == "admin-1"

        listed = await async_client.get(BASE)
        assert "gcha" not in [a["id"] for a in listed.json()["associations"]]
