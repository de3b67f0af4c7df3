"""
Association Hierarchy Service.

Keeps the association forest consistent through every structural mutation.
Each association stores a materialized path (`level` + `hierarchy`, the
ancestor ids root-first) next to its `parent_id` link.

Features:
- Create with a computed path (caller-supplied level/hierarchy are ignored)
- Re-parent with self-parent and cycle rejection, then cascade to descendants
- Idempotent descendant repair after a partial cascade
- Soft delete guarded by children, clubs and active registrations
- Forest reconstruction and path consistency audit
"""

import logging
import math
from dataclasses import asdict
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

from assoc_registry.app.config import get_settings
from assoc_registry.app.models.association_models import (
    AssociationDetailResponse,
    AssociationListResponse,
    AssociationResponse,
    AssociationSettings,
    AssociationStatus,
    AssociationSummary,
    Branding,
    CascadeReport,
    ClubSummary,
    ConsistencyReport,
    CreateAssociationRequest,
    DeletionCheckResponse,
    ForestResponse,
    RegistrationStatistics,
    ReparentResponse,
    UpdateAssociationRequest,
)
from assoc_registry.core.engine.memory_store import InMemoryStorage
from assoc_registry.core.engine.storage import (
    ASSOCIATIONS,
    CLUBS,
    REGISTRATIONS,
    StorageAdapter,
    contains,
    eq,
    in_,
    ne,
    search,
    where,
)
from assoc_registry.core.exceptions import (
    AssociationNotFoundError,
    CircularReferenceError,
    DuplicateAssociationCodeError,
    DuplicateAssociationIdError,
    HasActiveReferencesError,
    HasChildrenError,
    HasClubsError,
    ParentNotFoundError,
    PartialCascadeFailure,
    SelfParentError,
    ValidationError,
)
from assoc_registry.core.services.hierarchy_crud.locks import SubtreeLocks, root_key
from assoc_registry.core.services.hierarchy_crud.path_utils import (
    compute_path,
    level_label,
    validate_entity_id,
)
from assoc_registry.core.services.hierarchy_crud.reindexer import CascadeReindexer, CascadeResult
from assoc_registry.core.services.hierarchy_crud.tree_builder import (
    build_forest,
    count_nodes,
    find_path_inconsistencies,
)

logger = logging.getLogger(__name__)

INACTIVE = AssociationStatus.INACTIVE.value
SEARCH_FIELDS = ("name", "code", "full_name")
STRUCTURAL_FIELDS = {"id", "parent_id", "level", "hierarchy"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _cascade_report(result: CascadeResult) -> CascadeReport:
    return CascadeReport(**asdict(result))


# ==============================================================================
# Hierarchy Service Class
# ==============================================================================

class HierarchyService:
    """Service for managing the association hierarchy on a storage adapter."""

    def __init__(
        self,
        storage: StorageAdapter,
        reindexer: Optional[CascadeReindexer] = None,
        locks: Optional[SubtreeLocks] = None
    ):
        self.storage = storage
        self.reindexer = reindexer or CascadeReindexer(storage)
        self.locks = locks or SubtreeLocks()

    # ==========================================================================
    # Internal Helpers
    # ==========================================================================

    def _find(self, association_id: str) -> Optional[Dict[str, Any]]:
        return self.storage.find_by_id(ASSOCIATIONS, association_id)

    def _require(self, association_id: str) -> Dict[str, Any]:
        record = self._find(association_id)
        if record is None:
            raise AssociationNotFoundError(association_id)
        return record

    def _to_response(self, record: Dict[str, Any]) -> AssociationResponse:
        return AssociationResponse.model_validate({
            **record,
            "level_label": level_label(int(record.get("level") or 0)),
        })

    def _root_keys(self, *association_ids: Optional[str]):
        """Key resolver for SubtreeLocks: current roots of the given associations."""
        async def resolve() -> List[str]:
            keys = []
            for association_id in association_ids:
                if association_id is None:
                    continue
                record = self._find(association_id)
                keys.append(root_key(record) if record else association_id)
            return keys
        return resolve

    def count_children(self, association_id: str) -> int:
        """All child associations, soft-deleted ones included."""
        return self.storage.count_where(ASSOCIATIONS, where(eq("parent_id", association_id)))

    def count_clubs(self, association_id: str) -> int:
        return self.storage.count_where(CLUBS, where(eq("parent_id", association_id)))

    def count_active_references(self, association_id: str) -> int:
        return self.storage.count_where(
            REGISTRATIONS, where(eq("association_id", association_id), eq("status", "active"))
        )

    def _raise_if_deletion_blocked(self, association_id: str) -> None:
        child_count = self.count_children(association_id)
        if child_count > 0:
            raise HasChildrenError(association_id, child_count)
        club_count = self.count_clubs(association_id)
        if club_count > 0:
            raise HasClubsError(association_id, club_count)
        reference_count = self.count_active_references(association_id)
        if reference_count > 0:
            raise HasActiveReferencesError(association_id, reference_count)

    # ==========================================================================
    # Read Operations
    # ==========================================================================

    async def get_association(self, association_id: str) -> AssociationResponse:
        return self._to_response(self._require(association_id))

    async def list_associations(
        self,
        status: Optional[str] = AssociationStatus.ACTIVE.value,
        level: Optional[int] = None,
        parent_id: Optional[str] = None,
        search_text: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> AssociationListResponse:
        """
        List associations sorted by level then name.

        `status=None` (or "all") disables the status filter. `search_text`
        matches name, code and full name case-insensitively.
        """
        settings = get_settings()
        limit = limit or settings.default_page_size
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}", context={"page": page})
        if limit < 1 or limit > settings.max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {settings.max_page_size}, got {limit}",
                context={"limit": limit}
            )

        conditions = []
        if status and status != "all":
            conditions.append(eq("status", status))
        if level is not None:
            conditions.append(eq("level", level))
        if parent_id:
            conditions.append(eq("parent_id", parent_id))
        if search_text:
            conditions.append(search(SEARCH_FIELDS, search_text))
        query = where(*conditions)

        total = self.storage.count_where(ASSOCIATIONS, query)
        rows = self.storage.find_where(
            ASSOCIATIONS,
            query,
            limit=limit,
            offset=(page - 1) * limit,
            order_by=["level", "name"]
        )
        return AssociationListResponse(
            associations=[self._to_response(r) for r in rows],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit)
        )

    async def get_children(
        self,
        association_id: str,
        include_inactive: bool = False
    ) -> List[AssociationResponse]:
        self._require(association_id)
        conditions = [eq("parent_id", association_id)]
        if not include_inactive:
            conditions.append(ne("status", INACTIVE))
        rows = self.storage.find_where(ASSOCIATIONS, where(*conditions), order_by=["name"])
        return [self._to_response(r) for r in rows]

    async def get_descendants(self, association_id: str) -> List[AssociationResponse]:
        """All associations below `association_id`, shallowest first."""
        self._require(association_id)
        rows = self.storage.find_where(
            ASSOCIATIONS,
            where(contains("hierarchy", association_id)),
            order_by=["level", "name"]
        )
        return [self._to_response(r) for r in rows]

    async def get_association_detail(self, association_id: str) -> AssociationDetailResponse:
        """Association with parent, ancestors, active children, clubs and registration counts."""
        record = self._require(association_id)

        parent = None
        if record.get("parent_id"):
            parent_record = self._find(record["parent_id"])
            if parent_record:
                parent = AssociationSummary.model_validate(parent_record)

        ancestors: List[AssociationSummary] = []
        hierarchy = list(record.get("hierarchy") or [])
        if hierarchy:
            found = {
                r["id"]: r for r in self.storage.find_where(ASSOCIATIONS, where(in_("id", hierarchy)))
            }
            ancestors = [AssociationSummary.model_validate(found[a]) for a in hierarchy if a in found]

        children = self.storage.find_where(
            ASSOCIATIONS,
            where(eq("parent_id", association_id), eq("status", AssociationStatus.ACTIVE.value)),
            order_by=["name"]
        )
        clubs = self.storage.find_where(CLUBS, where(eq("parent_id", association_id)), order_by=["name"])

        statistics = RegistrationStatistics(
            total=self.storage.count_where(REGISTRATIONS, where(eq("association_id", association_id))),
            active=self.count_active_references(association_id),
            pending=self.storage.count_where(
                REGISTRATIONS, where(eq("association_id", association_id), eq("status", "pending"))
            ),
        )

        return AssociationDetailResponse(
            association=self._to_response(record),
            parent=parent,
            ancestors=ancestors,
            children=[AssociationSummary.model_validate(c) for c in children],
            clubs=[ClubSummary.model_validate(c) for c in clubs],
            statistics=statistics
        )

    # ==========================================================================
    # Create Operations
    # ==========================================================================

    async def create_association(
        self,
        request: CreateAssociationRequest,
        created_by: str = "system"
    ) -> AssociationResponse:
        """
        Create an association with its path computed from the parent.

        Raises:
            DuplicateAssociationIdError: id already used (soft-deleted included)
            DuplicateAssociationCodeError: code already used
            ParentNotFoundError: parent_id does not resolve
        """
        association_id = validate_entity_id(request.id)

        lock_target = request.parent_id or association_id
        async with self.locks.hold(self._root_keys(lock_target)):
            if self._find(association_id) is not None:
                raise DuplicateAssociationIdError(association_id)
            if self.storage.find_one_where(ASSOCIATIONS, where(eq("code", request.code))) is not None:
                raise DuplicateAssociationCodeError(request.code)

            parent = None
            if request.parent_id:
                parent = self._find(request.parent_id)
                if parent is None:
                    raise ParentNotFoundError(request.parent_id)

            path = compute_path(parent)
            now = _now()

            record = request.model_dump(mode="json", exclude={"level", "hierarchy"})
            record.update({
                "parent_id": request.parent_id or None,
                "level": path.level,
                "hierarchy": path.hierarchy,
                "settings": (request.settings or AssociationSettings()).model_dump(mode="json"),
                "branding": (request.branding or Branding()).model_dump(mode="json"),
                "created_at": now,
                "created_by": created_by,
                "updated_at": now,
                "updated_by": created_by,
            })

            try:
                self.storage.insert(ASSOCIATIONS, record)
            except ValueError as e:
                raise DuplicateAssociationIdError(association_id) from e

        logger.info(
            f"Created association {association_id} at level {path.level}",
            extra={
                "association_id": association_id,
                "parent_id": request.parent_id,
                "level": path.level,
                "created_by": created_by,
            }
        )
        return self._to_response(record)

    # ==========================================================================
    # Update Operations
    # ==========================================================================

    async def update_association(
        self,
        association_id: str,
        request: UpdateAssociationRequest,
        updated_by: str = "system"
    ) -> AssociationResponse:
        """
        Update non-structural fields, re-parenting first when `parent_id` was sent
        and differs from the stored value.

        Setting status to inactive goes through the same guard as delete. The
        guard runs up front and again under the subtree lock with the write.
        """
        existing = self._require(association_id)
        changes = request.model_dump(mode="json", exclude_unset=True, exclude=STRUCTURAL_FIELDS)

        new_code = changes.get("code")
        if new_code and new_code != existing.get("code"):
            clash = self.storage.find_one_where(ASSOCIATIONS, where(eq("code", new_code)))
            if clash is not None and clash["id"] != association_id:
                raise DuplicateAssociationCodeError(new_code)

        deactivating = changes.get("status") == INACTIVE and existing.get("status") != INACTIVE
        if deactivating:
            self._raise_if_deletion_blocked(association_id)

        partial: Optional[PartialCascadeFailure] = None
        if request.parent_change_requested and (request.parent_id or None) != existing.get("parent_id"):
            try:
                await self.reparent_association(association_id, request.parent_id, updated_by)
            except PartialCascadeFailure as e:
                partial = e

        if changes:
            async with self.locks.hold(self._root_keys(association_id)):
                if deactivating:
                    self._raise_if_deletion_blocked(association_id)
                changes.update({"updated_at": _now(), "updated_by": updated_by})
                self.storage.upsert(ASSOCIATIONS, association_id, changes)
            logger.info(
                f"Updated association {association_id}",
                extra={"association_id": association_id, "fields": sorted(changes), "updated_by": updated_by}
            )

        updated = self._to_response(self._require(association_id))
        if partial is not None:
            raise PartialCascadeFailure(updated, partial.repaired, partial.failed, partial.skipped) from partial
        return updated

    async def reparent_association(
        self,
        association_id: str,
        new_parent_id: Optional[str],
        updated_by: str = "system"
    ) -> ReparentResponse:
        """
        Move an association under `new_parent_id` (None promotes it to a root).

        The association's own path is written first, then every descendant is
        re-spliced. Validation failures write nothing.

        Raises:
            AssociationNotFoundError: association does not exist
            SelfParentError: new_parent_id == association_id
            ParentNotFoundError: new parent does not exist
            CircularReferenceError: new parent is a descendant
            PartialCascadeFailure: own path committed but some descendants failed
        """
        new_parent_id = new_parent_id or None

        async with self.locks.hold(self._root_keys(association_id, new_parent_id)):
            existing = self._require(association_id)

            if new_parent_id == existing.get("parent_id"):
                logger.debug(f"Re-parent of {association_id} is a no-op")
                return ReparentResponse(
                    association=self._to_response(existing),
                    cascade=CascadeReport(moved_id=association_id)
                )

            if new_parent_id == association_id:
                raise SelfParentError(association_id)

            new_parent = None
            if new_parent_id is not None:
                new_parent = self._find(new_parent_id)
                if new_parent is None:
                    raise ParentNotFoundError(new_parent_id)

            path = compute_path(new_parent)
            if association_id in path.hierarchy:
                raise CircularReferenceError(association_id, new_parent_id)

            self.storage.upsert(ASSOCIATIONS, association_id, {
                "parent_id": new_parent_id,
                "level": path.level,
                "hierarchy": path.hierarchy,
                "updated_at": _now(),
                "updated_by": updated_by,
            })
            logger.info(
                f"Moved association {association_id} from {existing.get('parent_id')} to {new_parent_id}",
                extra={
                    "association_id": association_id,
                    "old_parent_id": existing.get("parent_id"),
                    "new_parent_id": new_parent_id,
                    "level": path.level,
                }
            )

            cascade = await self.reindexer.reindex(association_id, path.hierarchy, updated_by)
            moved = self._to_response(self._require(association_id))

        if cascade.failed:
            raise PartialCascadeFailure(moved, cascade.repaired, cascade.failed, cascade.skipped)
        return ReparentResponse(association=moved, cascade=_cascade_report(cascade))

    async def repair_descendants(
        self,
        association_id: str,
        updated_by: str = "system"
    ) -> CascadeReport:
        """
        Re-run the cascade using the association's stored path as the target.

        Safe to call any number of times; consistent descendants are not rewritten.
        """
        async with self.locks.hold(self._root_keys(association_id)):
            record = self._require(association_id)
            cascade = await self.reindexer.reindex(
                association_id, list(record.get("hierarchy") or []), updated_by
            )
            if cascade.failed:
                raise PartialCascadeFailure(
                    self._to_response(record), cascade.repaired, cascade.failed, cascade.skipped
                )
        return _cascade_report(cascade)

    # ==========================================================================
    # Delete Operations
    # ==========================================================================

    async def check_deletion_blocked(self, association_id: str) -> DeletionCheckResponse:
        """Report what blocks deletion without changing anything."""
        self._require(association_id)

        child_count = self.count_children(association_id)
        club_count = self.count_clubs(association_id)
        reference_count = self.count_active_references(association_id)

        reasons = []
        if child_count:
            reasons.append(HasChildrenError(association_id, child_count).message)
        if club_count:
            reasons.append(HasClubsError(association_id, club_count).message)
        if reference_count:
            reasons.append(HasActiveReferencesError(association_id, reference_count).message)

        return DeletionCheckResponse(
            association_id=association_id,
            blocked=bool(reasons),
            reason="; ".join(reasons),
            child_count=child_count,
            club_count=club_count,
            active_reference_count=reference_count
        )

    async def delete_association(
        self,
        association_id: str,
        deleted_by: str = "system"
    ) -> AssociationResponse:
        """
        Soft delete: set status to inactive.

        Raises:
            AssociationNotFoundError: association does not exist
            HasChildrenError / HasClubsError / HasActiveReferencesError: still referenced
        """
        async with self.locks.hold(self._root_keys(association_id)):
            record = self._require(association_id)
            if record.get("status") == INACTIVE:
                return self._to_response(record)

            self._raise_if_deletion_blocked(association_id)

            fields = {"status": INACTIVE, "updated_at": _now(), "updated_by": deleted_by}
            self.storage.upsert(ASSOCIATIONS, association_id, fields)
            record.update(fields)

        logger.info(
            f"Soft deleted association {association_id}",
            extra={"association_id": association_id, "deleted_by": deleted_by}
        )
        return self._to_response(record)

    # ==========================================================================
    # Tree Operations
    # ==========================================================================

    async def build_forest(self, include_inactive: bool = True) -> ForestResponse:
        """Load associations and clubs and rebuild the forest from parent links."""
        query = where() if include_inactive else where(ne("status", INACTIVE))
        associations = self.storage.find_where(ASSOCIATIONS, query, order_by=["level", "name"])
        clubs = self.storage.find_where(CLUBS, query, order_by=["name"])
        return build_forest(associations, clubs)

    async def verify_consistency(self) -> ConsistencyReport:
        """Compare every stored path against the parent-link tree."""
        forest = await self.build_forest(include_inactive=True)
        inconsistencies = find_path_inconsistencies(forest)
        report = ConsistencyReport(
            checked=count_nodes(forest),
            inconsistencies=inconsistencies,
            unreachable_ids=forest.unreachable_ids
        )
        if not report.consistent:
            logger.warning(
                f"Hierarchy consistency check found {len(inconsistencies)} inconsistent paths",
                extra={"unreachable": len(forest.unreachable_ids)}
            )
        return report


# ==============================================================================
# Service Instance
# ==============================================================================

def get_storage() -> StorageAdapter:
    """Storage backend selected by STORAGE_BACKEND."""
    settings = get_settings()
    if settings.storage_backend == "bigquery":
        from assoc_registry.core.engine.bq_storage import BigQueryStorage
        return BigQueryStorage()
    return InMemoryStorage()


@lru_cache()
def get_hierarchy_crud_service() -> HierarchyService:
    """Get the process-wide hierarchy service instance."""
    return HierarchyService(get_storage())
