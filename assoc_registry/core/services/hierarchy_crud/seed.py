"""
Registry seed loader.

Loads associations (and optionally clubs and registrations) from a YAML file
and creates them through `HierarchyService.create_association`, so seeded
records get the same computed paths and defaults as API-created ones.

File format:

    associations:
      - id: ha
        code: HA
        name: Hockey Australia
      - id: hq
        code: HQ
        name: Hockey Queensland
        parent_id: ha
    clubs:
      - id: club-1
        name: Brisbane Blaze
        parent_id: bha
    registrations:
      - id: reg-1
        association_id: bha
        status: active
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from assoc_registry.app.models.association_models import CreateAssociationRequest
from assoc_registry.core.engine.storage import ASSOCIATIONS, CLUBS, REGISTRATIONS
from assoc_registry.core.exceptions import AlreadyExistsError, ValidationError
from assoc_registry.core.services.hierarchy_crud.path_utils import ancestors_from_links, parent_lookup
from assoc_registry.core.services.hierarchy_crud.service import HierarchyService

logger = logging.getLogger(__name__)


def load_seed_file(path: Union[str, Path]) -> Dict[str, List[Dict[str, Any]]]:
    """Read and shape-check a seed file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValidationError(f"Seed file {path} must contain a mapping")
    for section in ("associations", "clubs", "registrations"):
        rows = data.setdefault(section, []) or []
        if not isinstance(rows, list):
            raise ValidationError(f"Seed section '{section}' must be a list")
        data[section] = rows
    return data


def order_parent_first(rows: List[Dict[str, Any]], existing_ids: set) -> List[Dict[str, Any]]:
    """
    Sort seed rows so every parent precedes its children.

    Raises:
        ValidationError: a parent_id resolves neither within the file nor in
            storage, or the parent links form a cycle
    """
    ids = {row["id"] for row in rows}
    orphans = [
        f"{row['id']} -> {row['parent_id']}"
        for row in rows
        if row.get("parent_id") and row["parent_id"] not in ids and row["parent_id"] not in existing_ids
    ]
    if orphans:
        raise ValidationError(
            f"Invalid parent_id references in seed: {len(orphans)} orphan(s). Examples: {', '.join(orphans[:5])}"
        )

    parent_of = parent_lookup(rows)
    try:
        depth = {row["id"]: len(ancestors_from_links(row["id"], parent_of)) for row in rows}
    except ValueError as e:
        raise ValidationError(f"Seed parent links contain a cycle: {e}") from e
    return sorted(rows, key=lambda row: depth[row["id"]])


async def seed_registry(
    service: HierarchyService,
    path: Union[str, Path],
    created_by: str = "seed"
) -> Dict[str, Any]:
    """
    Seed the registry from `path`. Records that already exist are skipped.

    Returns:
        Dict with seeded / skipped counts and per-row errors
    """
    result: Dict[str, Any] = {
        "associations_seeded": 0,
        "associations_skipped": 0,
        "clubs_seeded": 0,
        "registrations_seeded": 0,
        "errors": [],
    }

    data = load_seed_file(path)
    rows = data["associations"]
    missing_ids = [i for i, row in enumerate(rows) if not row.get("id")]
    if missing_ids:
        raise ValidationError(f"Seed associations without id at positions {missing_ids}")

    parent_ids = {row["parent_id"] for row in rows if row.get("parent_id")}
    existing_parents = {p for p in parent_ids if service.storage.find_by_id(ASSOCIATIONS, p)}

    for row in order_parent_first(rows, existing_parents):
        try:
            request = CreateAssociationRequest.model_validate(row)
            await service.create_association(request, created_by=created_by)
            result["associations_seeded"] += 1
        except AlreadyExistsError:
            result["associations_skipped"] += 1
        except (PydanticValidationError, ValidationError) as e:
            result["errors"].append(f"{row['id']}: {e}")
            logger.warning(f"Seed row {row['id']} rejected: {e}")

    for collection, section, key in ((CLUBS, "clubs", "clubs_seeded"),
                                     (REGISTRATIONS, "registrations", "registrations_seeded")):
        for row in data[section]:
            if row.get("id") and service.storage.find_by_id(collection, row["id"]):
                continue
            service.storage.insert(collection, dict(row))
            result[key] += 1

    logger.info(
        f"Seeded registry from {path}: associations={result['associations_seeded']}, "
        f"skipped={result['associations_skipped']}, clubs={result['clubs_seeded']}, "
        f"registrations={result['registrations_seeded']}, errors={len(result['errors'])}"
    )
    return result
