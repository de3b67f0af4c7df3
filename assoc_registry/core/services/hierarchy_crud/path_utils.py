"""
Path utilities for the association hierarchy.

Provides functions for:
- Computing the materialized path (level + ancestor ids) under a parent
- Splicing a descendant's path after an ancestor moves
- Walking parent links to derive the expected path
- Validating identifiers
"""

import re
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional

from assoc_registry.app.models.association_models import RESERVED_IDS

ENTITY_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{1,50}$')

LEVEL_LABELS = {
    0: "National",
    1: "State",
    2: "City",
    3: "Region",
}


class HierarchyPath(NamedTuple):
    level: int
    hierarchy: List[str]


def compute_path(parent: Optional[Mapping[str, Any]]) -> HierarchyPath:
    """
    Compute level and hierarchy for a node placed under `parent`.

    Args:
        parent: The persisted parent record, or None for a root

    Returns:
        HierarchyPath with hierarchy listing ancestor ids root-first,
        excluding the node itself

    Examples:
        >>> compute_path(None)
        HierarchyPath(level=0, hierarchy=[])
        >>> compute_path({'id': 'hq', 'level': 1, 'hierarchy': ['ha']})
        HierarchyPath(level=2, hierarchy=['ha', 'hq'])
    """
    if parent is None:
        return HierarchyPath(level=0, hierarchy=[])
    return HierarchyPath(
        level=int(parent.get("level") or 0) + 1,
        hierarchy=list(parent.get("hierarchy") or []) + [parent["id"]],
    )


def splice_descendant_path(
    descendant_hierarchy: List[str],
    moved_id: str,
    new_hierarchy: List[str]
) -> HierarchyPath:
    """
    Rebuild a descendant's path after `moved_id` was re-parented.

    The part of the descendant's hierarchy below `moved_id` is the relative
    path from the moved node down to the descendant's direct parent; it does
    not change when the moved node changes parent.

    Raises:
        ValueError: if `moved_id` is not in `descendant_hierarchy`

    Examples:
        >>> splice_descendant_path(['ha', 'hq', 'bha'], 'hq', [])
        HierarchyPath(level=2, hierarchy=['hq', 'bha'])
        >>> splice_descendant_path(['old', 'b', 'c'], 'b', ['r'])
        HierarchyPath(level=3, hierarchy=['r', 'b', 'c'])
    """
    index = descendant_hierarchy.index(moved_id)
    suffix = descendant_hierarchy[index + 1:]
    hierarchy = list(new_hierarchy) + [moved_id] + list(suffix)
    return HierarchyPath(level=len(hierarchy), hierarchy=hierarchy)


def ancestors_from_links(
    entity_id: str,
    parent_of: Callable[[str], Optional[str]]
) -> List[str]:
    """
    Walk parent links upward and return ancestor ids root-first.

    Args:
        entity_id: Starting node
        parent_of: Returns the parent id of a node, or None for a root or an
            unknown node

    Raises:
        ValueError: if the parent links contain a cycle
    """
    chain: List[str] = []
    seen = {entity_id}
    current = parent_of(entity_id)
    while current is not None:
        if current in seen:
            raise ValueError(f"Parent links of '{entity_id}' contain a cycle at '{current}'")
        seen.add(current)
        chain.append(current)
        current = parent_of(current)
    chain.reverse()
    return chain


def parent_lookup(records: List[Dict[str, Any]]) -> Callable[[str], Optional[str]]:
    """Build a `parent_of` function for `ancestors_from_links` from flat records."""
    parents = {r["id"]: r.get("parent_id") for r in records}
    return lambda entity_id: parents.get(entity_id)


def validate_entity_id(entity_id: str) -> str:
    """Validate association/club ID format."""
    if not entity_id or not ENTITY_ID_PATTERN.match(entity_id):
        raise ValueError(f"Invalid entity ID format: {entity_id}")
    if entity_id in RESERVED_IDS:
        raise ValueError(f"Entity ID is reserved: {entity_id}")
    return entity_id


def level_label(level: int) -> str:
    """Display label for a hierarchy level."""
    return LEVEL_LABELS.get(level, "Other")
