"""
Cascade Reindexer

Propagates a re-parented association's new path to every descendant.

The descendant set is read once, before any write, using the moved node's id
in the stored `hierarchy` arrays. Each descendant keeps the part of its path
below the moved node and gets the moved node's new prefix. Writes are retried
on transient storage errors; a write that still fails is recorded and the
cascade moves on, so one bad record never stalls the rest of the subtree.

Running the cascade again with the same target converges: descendants already
at their target path are counted as repaired without being rewritten.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from assoc_registry.app.config import get_settings
from assoc_registry.core.engine.bq_client import is_transient_error
from assoc_registry.core.engine.storage import ASSOCIATIONS, StorageAdapter, contains, where
from assoc_registry.core.exceptions import RegistryException
from assoc_registry.core.services.hierarchy_crud.path_utils import splice_descendant_path

logger = logging.getLogger(__name__)


def is_retryable_write_error(exc: BaseException) -> bool:
    if isinstance(exc, RegistryException):
        return exc.is_retryable()
    return isinstance(exc, Exception) and is_transient_error(exc)


@dataclass
class CascadeResult:
    """Outcome of one cascade run."""
    moved_id: str
    total: int = 0
    repaired: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class CascadeReindexer:
    """Rewrites descendant paths through a storage adapter."""

    def __init__(
        self,
        storage: StorageAdapter,
        max_attempts: Optional[int] = None,
        wait_seconds: Optional[float] = None
    ):
        settings = get_settings()
        self.storage = storage
        self.max_attempts = max_attempts or settings.cascade_max_retry_attempts
        self.wait_seconds = settings.cascade_retry_wait_seconds if wait_seconds is None else wait_seconds

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.wait_seconds),
            retry=retry_if_exception(is_retryable_write_error),
            reraise=True
        )

    def _write_path(self, descendant_id: str, fields: Dict[str, Any]) -> None:
        for attempt in self._retrying():
            with attempt:
                self.storage.upsert(ASSOCIATIONS, descendant_id, fields)

    def find_descendants(self, association_id: str) -> List[Dict[str, Any]]:
        """All associations whose stored hierarchy contains `association_id`, shallowest first."""
        rows = self.storage.find_where(
            ASSOCIATIONS,
            where(contains("hierarchy", association_id)),
            order_by=["level", "id"]
        )
        rows.sort(key=lambda r: (r.get("level") or 0, r["id"]))
        return rows

    async def reindex(
        self,
        moved_id: str,
        new_hierarchy: List[str],
        updated_by: str = "system"
    ) -> CascadeResult:
        """
        Rewrite the path of every descendant of `moved_id`.

        Args:
            moved_id: The association whose own path was just committed
            new_hierarchy: The moved association's new hierarchy
            updated_by: Actor recorded on rewritten descendants

        Returns:
            CascadeResult with repaired, failed and skipped descendant ids
        """
        descendants = self.find_descendants(moved_id)
        result = CascadeResult(moved_id=moved_id, total=len(descendants))

        for descendant in descendants:
            descendant_id = descendant["id"]
            current = list(descendant.get("hierarchy") or [])

            if descendant_id == moved_id or moved_id not in current:
                logger.warning(
                    f"Skipping descendant {descendant_id}: hierarchy does not contain {moved_id}",
                    extra={"moved_id": moved_id, "descendant_id": descendant_id, "hierarchy": current}
                )
                result.skipped.append(descendant_id)
                continue

            target = splice_descendant_path(current, moved_id, new_hierarchy)
            if descendant.get("level") == target.level and current == target.hierarchy:
                result.repaired.append(descendant_id)
                continue

            fields = {
                "hierarchy": target.hierarchy,
                "level": target.level,
                "updated_at": datetime.now(timezone.utc),
                "updated_by": updated_by,
            }
            try:
                self._write_path(descendant_id, fields)
            except Exception as e:
                logger.error(
                    f"Failed to rewrite path for descendant {descendant_id}: {e}",
                    extra={"moved_id": moved_id, "descendant_id": descendant_id}
                )
                result.failed.append(descendant_id)
                continue
            result.repaired.append(descendant_id)

        logger.info(
            f"Cascade for {moved_id}: repaired={len(result.repaired)}, "
            f"failed={len(result.failed)}, skipped={len(result.skipped)}",
            extra={"moved_id": moved_id, "total": result.total}
        )
        return result
