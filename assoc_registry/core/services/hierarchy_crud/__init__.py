"""
Hierarchy CRUD Service

Consistency-preserving operations on the association hierarchy.

Usage:
    from assoc_registry.core.services.hierarchy_crud import get_hierarchy_crud_service

    service = get_hierarchy_crud_service()
    result = await service.reparent_association("hq", None, updated_by="admin")
"""

from assoc_registry.core.services.hierarchy_crud.service import (
    HierarchyService,
    get_hierarchy_crud_service,
    get_storage,
)
from assoc_registry.core.services.hierarchy_crud.path_utils import validate_entity_id

__all__ = [
    "HierarchyService",
    "get_hierarchy_crud_service",
    "get_storage",
    "validate_entity_id",
]
