"""
Tree Builder

Reconstructs the association forest from flat records using only `parent_id`
links, never the stored `hierarchy`. That makes the built tree an independent
check on the materialized paths: `find_path_inconsistencies` compares each
stored path with the ancestor chain the tree actually has.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping

from assoc_registry.app.models.association_models import (
    ForestResponse,
    ForestStats,
    PathInconsistency,
    TreeNode,
)

logger = logging.getLogger(__name__)


def _association_node(record: Mapping[str, Any]) -> TreeNode:
    branding = record.get("branding") or {}
    return TreeNode(
        type="association",
        id=record["id"],
        name=record.get("name"),
        code=record.get("code"),
        parent_id=record.get("parent_id"),
        level=record.get("level"),
        hierarchy=list(record.get("hierarchy") or []),
        status=record.get("status"),
        branding=dict(branding),
        logo_url=branding.get("logo_url"),
        children=[]
    )


def _club_node(record: Mapping[str, Any]) -> TreeNode:
    name = record.get("name")
    code = record.get("code") or (name[:3].upper() if name else None)
    return TreeNode(
        type="club",
        id=record["id"],
        name=name,
        code=code,
        parent_id=record.get("parent_id"),
        status=record.get("status"),
        logo_url=record.get("logo_url"),
        colors=dict(record.get("colors") or {}),
        children=[]
    )


def build_forest(
    associations: Iterable[Mapping[str, Any]],
    clubs: Iterable[Mapping[str, Any]] = ()
) -> ForestResponse:
    """
    Build the forest in one pass over associations and one over clubs.

    Associations whose parent is absent from the input become roots. Clubs
    attach as leaves under their association; clubs with no id or an
    unresolvable parent are skipped and reported as orphaned.
    """
    nodes: Dict[str, TreeNode] = {}
    ordered: List[TreeNode] = []

    # First pass: create all association nodes
    for record in associations:
        association_id = record.get("id")
        if not association_id:
            logger.warning("Skipping association record without id")
            continue
        if association_id in nodes:
            logger.warning(f"Duplicate association id {association_id} in tree input, keeping first")
            continue
        node = _association_node(record)
        nodes[association_id] = node
        ordered.append(node)

    # Second pass: link to parents
    roots: List[TreeNode] = []
    for node in ordered:
        if node.parent_id and node.parent_id in nodes:
            nodes[node.parent_id].children.append(node)
        else:
            roots.append(node)

    # Clubs are leaves
    club_count = 0
    orphaned: List[str] = []
    for record in clubs:
        club_id = record.get("id")
        parent = nodes.get(record.get("parent_id") or "")
        if not club_id or parent is None:
            orphaned.append(club_id or "")
            continue
        parent.children.append(_club_node(record))
        club_count += 1

    # Anything not reachable from a root sits on a parent-link cycle
    reachable = set()
    stack = list(roots)
    while stack:
        node = stack.pop()
        if node.type != "association" or node.id in reachable:
            continue
        reachable.add(node.id)
        stack.extend(node.children)
    unreachable = sorted(set(nodes) - reachable)

    if orphaned:
        logger.warning(f"{len(orphaned)} clubs reference missing associations", extra={"club_ids": orphaned})
    if unreachable:
        logger.warning(
            f"{len(unreachable)} associations are unreachable from any root",
            extra={"association_ids": unreachable}
        )

    return ForestResponse(
        roots=roots,
        stats=ForestStats(
            associations=len(nodes),
            clubs=club_count,
            roots=len(roots),
            orphaned_clubs=len(orphaned),
            unreachable_associations=len(unreachable),
        ),
        orphaned_club_ids=[c for c in orphaned if c],
        unreachable_ids=unreachable,
    )


def find_path_inconsistencies(forest: ForestResponse) -> List[PathInconsistency]:
    """
    Compare every association's stored path with its ancestor chain in the tree.

    Returns one entry per association whose `level` or `hierarchy` disagrees,
    in depth-first order.
    """
    found: List[PathInconsistency] = []
    stack = [(root, []) for root in reversed(forest.roots)]
    while stack:
        node, chain = stack.pop()
        if node.type != "association":
            continue
        if node.level != len(chain) or node.hierarchy != chain:
            found.append(PathInconsistency(
                id=node.id,
                expected_level=len(chain),
                actual_level=node.level,
                expected_hierarchy=list(chain),
                actual_hierarchy=list(node.hierarchy),
            ))
        child_chain = chain + [node.id]
        for child in reversed(node.children):
            stack.append((child, child_chain))
    return found


def count_nodes(forest: ForestResponse) -> int:
    """Number of association nodes reachable from the roots."""
    total = 0
    stack = list(forest.roots)
    while stack:
        node = stack.pop()
        if node.type == "association":
            total += 1
            stack.extend(node.children)
    return total
