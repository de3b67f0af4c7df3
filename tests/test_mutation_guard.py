"""
Tests for HierarchyService structural mutations.

Covers create / re-parent / update / delete and the read helpers, and checks
that the path invariants hold after every successful mutation.
"""

import random
from datetime import date

import pytest

from assoc_registry.app.models.association_models import UpdateAssociationRequest
from assoc_registry.core.engine.storage import ASSOCIATIONS, CLUBS, REGISTRATIONS, where
from assoc_registry.core.exceptions import (
    AlreadyExistsError,
    AssociationNotFoundError,
    CircularReferenceError,
    DeletionBlockedError,
    DuplicateAssociationCodeError,
    DuplicateAssociationIdError,
    HasActiveReferencesError,
    HasChildrenError,
    HasClubsError,
    ParentNotFoundError,
    SelfParentError,
    ValidationError,
)
from assoc_registry.core.services.hierarchy_crud.path_utils import ancestors_from_links, parent_lookup


def assert_invariants(storage):
    """Every stored path equals the parent-link walk."""
    records = storage.find_where(ASSOCIATIONS, where())
    parent_of = parent_lookup(records)
    for record in records:
        assert record["id"] not in record["hierarchy"]
        assert record["level"] == len(record["hierarchy"])
        assert record["hierarchy"] == ancestors_from_links(record["id"], parent_of)


def snapshot(storage):
    return {
        r["id"]: (r["parent_id"], r["level"], list(r["hierarchy"]))
        for r in storage.find_where(ASSOCIATIONS, where())
    }


# ==============================================================================
# Create
# ==============================================================================

class TestCreateAssociation:

    @pytest.mark.asyncio
    async def test_create_root(self, create):
        result = await create("ha", name="Hockey Australia")
        assert result.level == 0
        assert result.hierarchy == []
        assert result.parent_id is None
        assert result.level_label == "National"
        assert result.status.value == "active"
        assert result.created_by == "tester"

    @pytest.mark.asyncio
    async def test_defaults_applied_once(self, create, storage):
        await create("ha")
        stored = storage.find_by_id(ASSOCIATIONS, "ha")
        assert stored["settings"]["schema_version"] == 1
        assert stored["settings"]["requires_approval"] is False
        assert stored["settings"]["auto_approve_returning_players"] is True
        assert stored["settings"]["season_end_month"] == 12
        assert stored["branding"]["primary_color"] == "#06054e"
        assert stored["branding"]["secondary_color"] == "#FFD700"
        assert stored["fees"] == []
        assert stored["positions"] == []

    @pytest.mark.asyncio
    async def test_child_path_computed(self, sample_tree, service):
        bha = await service.get_association("bha")
        assert bha.level == 2
        assert bha.hierarchy == ["ha", "hq"]
        assert bha.level_label == "City"

    @pytest.mark.asyncio
    async def test_caller_supplied_path_ignored(self, create):
        await create("ha")
        result = await create("hq", parent_id="ha", level=7, hierarchy=["bogus", "path"])
        assert result.level == 1
        assert result.hierarchy == ["ha"]

    @pytest.mark.asyncio
    async def test_duplicate_id(self, create):
        await create("ha")
        with pytest.raises(DuplicateAssociationIdError) as exc_info:
            await create("ha", code="OTHER")
        assert isinstance(exc_info.value, AlreadyExistsError)
        assert exc_info.value.http_status == 409

    @pytest.mark.asyncio
    async def test_duplicate_code(self, create):
        await create("ha", code="HA")
        with pytest.raises(DuplicateAssociationCodeError):
            await create("other", code="HA")

    @pytest.mark.asyncio
    async def test_missing_parent_writes_nothing(self, create, storage):
        with pytest.raises(ParentNotFoundError):
            await create("orphan", parent_id="ghost")
        assert storage.find_by_id(ASSOCIATIONS, "orphan") is None

    @pytest.mark.asyncio
    async def test_soft_deleted_id_and_code_stay_reserved(self, create, service):
        await create("tmp", code="TMP")
        await service.delete_association("tmp")
        with pytest.raises(DuplicateAssociationIdError):
            await create("tmp", code="NEW")
        with pytest.raises(DuplicateAssociationCodeError):
            await create("tmp2", code="TMP")

    @pytest.mark.asyncio
    async def test_fee_dates_normalized(self, create):
        result = await create("ha", fees=[{
            "fee_id": "senior",
            "name": "Senior",
            "amount": 120.0,
            "valid_from": "2024-01-01T00:00:00.000Z",
            "valid_to": "2024-12-31",
        }])
        assert result.fees[0].valid_from == date(2024, 1, 1)
        assert result.fees[0].valid_to == date(2024, 12, 31)


# ==============================================================================
# Re-parent
# ==============================================================================

class TestReparentAssociation:

    @pytest.mark.asyncio
    async def test_promote_to_root_cascades(self, sample_tree, service, storage):
        result = await service.reparent_association("hq", None, updated_by="admin")

        assert result.association.level == 0
        assert result.association.hierarchy == []
        assert result.association.parent_id is None
        assert sorted(result.cascade.repaired) == ["bha", "gcha"]
        assert result.cascade.failed == []

        bha = storage.find_by_id(ASSOCIATIONS, "bha")
        assert bha["hierarchy"] == ["hq"]
        assert bha["level"] == 1
        assert bha["updated_by"] == "admin"
        assert_invariants(storage)

    @pytest.mark.asyncio
    async def test_deep_cascade(self, create, service, storage):
        await create("root")
        await create("b", parent_id="root")
        await create("c", parent_id="b")
        await create("d", parent_id="c")
        await create("r")

        await service.reparent_association("b", "r")

        c = storage.find_by_id(ASSOCIATIONS, "c")
        d = storage.find_by_id(ASSOCIATIONS, "d")
        assert c["hierarchy"] == ["r", "b"]
        assert c["level"] == 2
        assert d["hierarchy"] == ["r", "b", "c"]
        assert d["level"] == 3
        assert_invariants(storage)

    @pytest.mark.asyncio
    async def test_move_under_deeper_parent(self, sample_tree, service, storage):
        await service.reparent_association("gcha", "bha")
        gcha = storage.find_by_id(ASSOCIATIONS, "gcha")
        assert gcha["hierarchy"] == ["ha", "hq", "bha"]
        assert gcha["level"] == 3
        assert_invariants(storage)

    @pytest.mark.asyncio
    async def test_cycle_rejected_without_writes(self, sample_tree, service, storage):
        before = snapshot(storage)
        with pytest.raises(CircularReferenceError):
            await service.reparent_association("ha", "bha")
        assert snapshot(storage) == before

    @pytest.mark.asyncio
    async def test_self_parent_rejected(self, sample_tree, service, storage):
        before = snapshot(storage)
        with pytest.raises(SelfParentError):
            await service.reparent_association("hq", "hq")
        assert snapshot(storage) == before

    @pytest.mark.asyncio
    async def test_missing_parent(self, sample_tree, service, storage):
        before = snapshot(storage)
        with pytest.raises(ParentNotFoundError):
            await service.reparent_association("hq", "ghost")
        assert snapshot(storage) == before

    @pytest.mark.asyncio
    async def test_unknown_association(self, sample_tree, service):
        with pytest.raises(AssociationNotFoundError):
            await service.reparent_association("ghost", "ha")

    @pytest.mark.asyncio
    async def test_same_parent_is_noop(self, sample_tree, service, storage):
        before = storage.find_by_id(ASSOCIATIONS, "bha")
        result = await service.reparent_association("bha", "hq", updated_by="admin")
        assert result.cascade.total == 0
        assert storage.find_by_id(ASSOCIATIONS, "bha") == before

    @pytest.mark.asyncio
    async def test_random_moves_preserve_invariants(self, create, service, storage):
        rng = random.Random(42)
        ids = []
        for i in range(15):
            parent = rng.choice(ids) if ids and rng.random() < 0.8 else None
            await create(f"n{i}", parent_id=parent)
            ids.append(f"n{i}")

        for _ in range(40):
            node = rng.choice(ids)
            new_parent = rng.choice(ids + [None])
            try:
                await service.reparent_association(node, new_parent)
            except (CircularReferenceError, SelfParentError):
                pass
            assert_invariants(storage)


# ==============================================================================
# Update
# ==============================================================================

class TestUpdateAssociation:

    @pytest.mark.asyncio
    async def test_update_fields(self, sample_tree, service, storage):
        request = UpdateAssociationRequest(name="Brisbane HA", region="Brisbane North")
        result = await service.update_association("bha", request, updated_by="editor")
        assert result.name == "Brisbane HA"
        assert result.region == "Brisbane North"
        assert result.updated_by == "editor"
        assert result.hierarchy == ["ha", "hq"]

    @pytest.mark.asyncio
    async def test_parent_change_delegates_to_reparent(self, sample_tree, service, storage):
        request = UpdateAssociationRequest.model_validate({"parent_id": None, "name": "Independent"})
        result = await service.update_association("hq", request)
        assert result.parent_id is None
        assert result.level == 0
        assert result.name == "Independent"
        assert storage.find_by_id(ASSOCIATIONS, "bha")["hierarchy"] == ["hq"]
        assert_invariants(storage)

    @pytest.mark.asyncio
    async def test_omitted_parent_keeps_position(self, sample_tree, service):
        request = UpdateAssociationRequest.model_validate({"name": "Renamed"})
        assert not request.parent_change_requested
        result = await service.update_association("bha", request)
        assert result.parent_id == "hq"

    @pytest.mark.asyncio
    async def test_structural_fields_ignored(self, sample_tree, service):
        request = UpdateAssociationRequest(level=0, hierarchy=[])
        result = await service.update_association("bha", request)
        assert result.level == 2
        assert result.hierarchy == ["ha", "hq"]

    @pytest.mark.asyncio
    async def test_cycle_via_update_writes_nothing(self, sample_tree, service, storage):
        before = storage.find_by_id(ASSOCIATIONS, "ha")
        request = UpdateAssociationRequest.model_validate({"parent_id": "gcha", "name": "Changed"})
        with pytest.raises(CircularReferenceError):
            await service.update_association("ha", request)
        assert storage.find_by_id(ASSOCIATIONS, "ha") == before

    @pytest.mark.asyncio
    async def test_duplicate_code(self, sample_tree, service):
        with pytest.raises(DuplicateAssociationCodeError):
            await service.update_association("bha", UpdateAssociationRequest(code="GCHA"))

    @pytest.mark.asyncio
    async def test_deactivate_with_children_blocked(self, sample_tree, service):
        with pytest.raises(HasChildrenError):
            await service.update_association("hq", UpdateAssociationRequest(status="inactive"))


# ==============================================================================
# Delete
# ==============================================================================

class TestDeleteAssociation:

    @pytest.mark.asyncio
    async def test_soft_delete_leaf(self, sample_tree, service, storage):
        result = await service.delete_association("bha", deleted_by="admin")
        assert result.status.value == "inactive"
        stored = storage.find_by_id(ASSOCIATIONS, "bha")
        assert stored["status"] == "inactive"
        assert stored["updated_by"] == "admin"

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, sample_tree, service):
        await service.delete_association("bha")
        result = await service.delete_association("bha")
        assert result.status.value == "inactive"

    @pytest.mark.asyncio
    async def test_children_block(self, sample_tree, service, storage):
        with pytest.raises(HasChildrenError) as exc_info:
            await service.delete_association("hq")
        assert exc_info.value.count == 2
        assert exc_info.value.message == "cannot delete: 2 child associations exist"
        assert isinstance(exc_info.value, DeletionBlockedError)
        assert storage.find_by_id(ASSOCIATIONS, "hq")["status"] == "active"

    @pytest.mark.asyncio
    async def test_soft_deleted_children_still_block(self, sample_tree, service, storage):
        await service.delete_association("bha")
        await service.delete_association("gcha")
        with pytest.raises(HasChildrenError) as exc_info:
            await service.delete_association("hq")
        assert exc_info.value.count == 2
        assert storage.find_by_id(ASSOCIATIONS, "hq")["status"] == "active"

        check = await service.check_deletion_blocked("hq")
        assert check.blocked is True
        assert check.child_count == 2

    @pytest.mark.asyncio
    async def test_clubs_block(self, sample_tree, service, storage):
        storage.insert(CLUBS, {"id": "blaze", "name": "Brisbane Blaze", "parent_id": "bha"})
        with pytest.raises(HasClubsError) as exc_info:
            await service.delete_association("bha")
        assert exc_info.value.count == 1

    @pytest.mark.asyncio
    async def test_active_registrations_block(self, sample_tree, service, storage):
        storage.insert(REGISTRATIONS, {"id": "r1", "association_id": "bha", "status": "pending"})
        storage.insert(REGISTRATIONS, {"id": "r2", "association_id": "bha", "status": "active"})
        with pytest.raises(HasActiveReferencesError) as exc_info:
            await service.delete_association("bha")
        assert exc_info.value.count == 1

    @pytest.mark.asyncio
    async def test_inactive_registrations_do_not_block(self, sample_tree, service, storage):
        storage.insert(REGISTRATIONS, {"id": "r1", "association_id": "bha", "status": "expired"})
        result = await service.delete_association("bha")
        assert result.status.value == "inactive"

    @pytest.mark.asyncio
    async def test_unknown(self, service):
        with pytest.raises(AssociationNotFoundError):
            await service.delete_association("ghost")

    @pytest.mark.asyncio
    async def test_deletion_check_reports_without_mutating(self, sample_tree, service, storage):
        storage.insert(CLUBS, {"id": "club", "parent_id": "hq"})
        check = await service.check_deletion_blocked("hq")
        assert check.blocked is True
        assert check.child_count == 2
        assert check.club_count == 1
        assert check.active_reference_count == 0
        assert "2 child associations" in check.reason
        assert storage.find_by_id(ASSOCIATIONS, "hq")["status"] == "active"

        leaf = await service.check_deletion_blocked("gcha")
        assert leaf.blocked is False
        assert leaf.reason == ""


# ==============================================================================
# Read Helpers
# ==============================================================================

class TestReadHelpers:

    @pytest.mark.asyncio
    async def test_list_sorted_by_level_then_name(self, sample_tree, service):
        result = await service.list_associations()
        assert [a.id for a in result.associations] == ["ha", "hq", "bha", "gcha"]
        assert result.total == 4
        assert result.total_pages == 1

    @pytest.mark.asyncio
    async def test_list_defaults_to_active(self, sample_tree, service):
        await service.delete_association("gcha")
        active = await service.list_associations()
        everything = await service.list_associations(status="all")
        assert "gcha" not in [a.id for a in active.associations]
        assert everything.total == 4

    @pytest.mark.asyncio
    async def test_list_filters(self, sample_tree, service):
        by_level = await service.list_associations(level=2)
        assert {a.id for a in by_level.associations} == {"bha", "gcha"}
        by_parent = await service.list_associations(parent_id="ha")
        assert [a.id for a in by_parent.associations] == ["hq"]
        by_search = await service.list_associations(search_text="gold")
        assert [a.id for a in by_search.associations] == ["gcha"]

    @pytest.mark.asyncio
    async def test_list_pagination(self, sample_tree, service):
        page = await service.list_associations(page=2, limit=3)
        assert [a.id for a in page.associations] == ["gcha"]
        assert page.total == 4
        assert page.total_pages == 2

    @pytest.mark.asyncio
    async def test_list_rejects_bad_page(self, service):
        with pytest.raises(ValidationError):
            await service.list_associations(page=0)

    @pytest.mark.asyncio
    async def test_detail(self, sample_tree, service, storage):
        storage.insert(CLUBS, {"id": "club", "name": "Club", "parent_id": "hq"})
        storage.insert(REGISTRATIONS, {"id": "r1", "association_id": "hq", "status": "active"})
        storage.insert(REGISTRATIONS, {"id": "r2", "association_id": "hq", "status": "pending"})
        storage.insert(REGISTRATIONS, {"id": "r3", "association_id": "hq", "status": "expired"})

        detail = await service.get_association_detail("hq")
        assert detail.association.id == "hq"
        assert detail.parent.id == "ha"
        assert [a.id for a in detail.ancestors] == ["ha"]
        assert [c.id for c in detail.children] == ["bha", "gcha"]
        assert [c.id for c in detail.clubs] == ["club"]
        assert detail.statistics.total == 3
        assert detail.statistics.active == 1
        assert detail.statistics.pending == 1

    @pytest.mark.asyncio
    async def test_children_and_descendants(self, sample_tree, service):
        children = await service.get_children("ha")
        assert [c.id for c in children] == ["hq"]
        descendants = await service.get_descendants("ha")
        assert [d.id for d in descendants] == ["hq", "bha", "gcha"]

    @pytest.mark.asyncio
    async def test_get_unknown(self, service):
        with pytest.raises(AssociationNotFoundError):
            await service.get_association("ghost")
