"""
Association Hierarchy API Routes

Endpoints for managing the association hierarchy.

URL Structure: /api/v1/associations/...

Features:
- CRUD operations for associations (soft delete)
- Re-parenting with cascade to descendants and idempotent repair
- Tree view of associations with clubs as leaves
- Consistency audit of stored paths
- Deletion blocking when associations have children, clubs or active registrations

Registry errors raised by the service are turned into responses by the
application's exception handler (see app/main.py).
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, status

from assoc_registry.app.config import settings
from assoc_registry.app.models.association_models import (
    AssociationDetailResponse,
    AssociationListResponse,
    AssociationResponse,
    CascadeReport,
    ConsistencyReport,
    CreateAssociationRequest,
    DeletionCheckResponse,
    ForestResponse,
    ReparentRequest,
    ReparentResponse,
    UpdateAssociationRequest,
)
from assoc_registry.core.services.hierarchy_crud import HierarchyService, get_hierarchy_crud_service

router = APIRouter()
logger = logging.getLogger(__name__)


def get_actor(x_user_id: Optional[str] = Header(default=None, alias="X-User-ID")) -> str:
    """Actor recorded in audit fields. Authentication happens upstream."""
    return x_user_id or "system"


# ============================================================================
# List & Tree Endpoints
# ============================================================================

@router.get(
    "",
    response_model=AssociationListResponse,
    summary="List associations",
    description="List associations sorted by level then name, with optional filters and pagination"
)
async def list_associations(
    status_filter: Optional[str] = Query(
        "active", alias="status", description="Filter by status; 'all' disables the filter"
    ),
    level: Optional[int] = Query(None, ge=0, description="Filter by hierarchy level"),
    parent_id: Optional[str] = Query(None, description="Filter by parent association"),
    search: Optional[str] = Query(None, max_length=100, description="Search name, code and full name"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.list_associations(
        status=status_filter,
        level=level,
        parent_id=parent_id,
        search_text=search,
        page=page,
        limit=limit
    )


@router.get(
    "/tree",
    response_model=ForestResponse,
    summary="Get association forest",
    description="Rebuild the hierarchy from parent links with clubs attached as leaves"
)
async def get_tree(
    include_inactive: bool = Query(True, description="Include soft-deleted associations and clubs"),
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.build_forest(include_inactive=include_inactive)


@router.get(
    "/tree/consistency",
    response_model=ConsistencyReport,
    summary="Audit stored paths",
    description="Compare every stored level/hierarchy against the parent-link tree"
)
async def check_consistency(
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.verify_consistency()


# ============================================================================
# Create
# ============================================================================

@router.post(
    "",
    response_model=AssociationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create association",
    description="Create an association. Level and hierarchy are computed from the parent."
)
async def create_association(
    request: CreateAssociationRequest,
    actor: str = Depends(get_actor),
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.create_association(request, created_by=actor)


# ============================================================================
# Single Association Endpoints
# ============================================================================

@router.get("/{association_id}", response_model=AssociationResponse, summary="Get association")
async def get_association(
    association_id: str,
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.get_association(association_id)


@router.get(
    "/{association_id}/detail",
    response_model=AssociationDetailResponse,
    summary="Get association detail",
    description="Association with parent, ancestors, children, clubs and registration statistics"
)
async def get_association_detail(
    association_id: str,
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.get_association_detail(association_id)


@router.get("/{association_id}/children", response_model=List[AssociationResponse], summary="Get children")
async def get_children(
    association_id: str,
    include_inactive: bool = Query(False),
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.get_children(association_id, include_inactive=include_inactive)


@router.get("/{association_id}/descendants", response_model=List[AssociationResponse], summary="Get descendants")
async def get_descendants(
    association_id: str,
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.get_descendants(association_id)


@router.put(
    "/{association_id}",
    response_model=AssociationResponse,
    summary="Update association",
    description="Update fields. Sending parent_id re-parents the association and its subtree."
)
async def update_association(
    association_id: str,
    request: UpdateAssociationRequest,
    actor: str = Depends(get_actor),
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.update_association(association_id, request, updated_by=actor)


@router.put(
    "/{association_id}/parent",
    response_model=ReparentResponse,
    summary="Re-parent association",
    description="Move an association under a new parent (null makes it a root) and cascade to descendants"
)
async def reparent_association(
    association_id: str,
    request: ReparentRequest,
    actor: str = Depends(get_actor),
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.reparent_association(association_id, request.new_parent_id, updated_by=actor)


@router.post(
    "/{association_id}/reindex",
    response_model=CascadeReport,
    summary="Repair descendant paths",
    description="Re-run the cascade from the stored path. Safe to retry."
)
async def reindex_descendants(
    association_id: str,
    actor: str = Depends(get_actor),
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.repair_descendants(association_id, updated_by=actor)


# ============================================================================
# Delete Endpoints
# ============================================================================

@router.get(
    "/{association_id}/deletion-check",
    response_model=DeletionCheckResponse,
    summary="Check if deletion is blocked"
)
async def check_deletion(
    association_id: str,
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.check_deletion_blocked(association_id)


@router.delete(
    "/{association_id}",
    response_model=AssociationResponse,
    summary="Delete association",
    description="Soft delete. Blocked while children, clubs or active registrations reference it."
)
async def delete_association(
    association_id: str,
    actor: str = Depends(get_actor),
    service: HierarchyService = Depends(get_hierarchy_crud_service)
):
    return await service.delete_association(association_id, deleted_by=actor)
