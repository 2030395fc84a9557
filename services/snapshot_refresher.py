"""
Snapshot Refresher

Batch sweep over members whose snapshot is missing or stale.

- Selects at most batch_size members per run
- Rebuilds each member independently; one failure is logged and counted,
  never aborts the batch
- Stops starting new members once the wall-clock budget is spent and
  reports partial results (timed_out=True, remaining members as skipped)
- A single rebuild is bounded by the remaining budget; one that overruns
  it is counted as an error and ends the sweep
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.logging import log_fields
from services.snapshot_builder import SnapshotBuilder
from services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    updated: int = 0
    errors: int = 0
    skipped: int = 0
    elapsed_ms: int = 0
    timed_out: bool = False
    failed_member_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "updated": self.updated,
            "errors": self.errors,
            "skipped": self.skipped,
            "elapsed_ms": self.elapsed_ms,
            "timed_out": self.timed_out,
            "failed_member_ids": self.failed_member_ids,
        }


class SnapshotRefresher:
    def __init__(
        self,
        store: SnapshotStore,
        builder: SnapshotBuilder,
        batch_size: Optional[int] = None,
        budget_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.builder = builder
        self.batch_size = batch_size or settings.SNAPSHOT_REFRESH_BATCH_SIZE
        self.budget_s = budget_s if budget_s is not None else settings.SNAPSHOT_REFRESH_BUDGET_S
        self.clock = clock

    def run(self) -> RefreshResult:
        started = self.clock()
        result = RefreshResult()

        member_ids = self.store.find_members_needing_refresh(limit=self.batch_size)
        logger.info(f"Snapshot refresh: {len(member_ids)} members need a rebuild")

        for index, member_id in enumerate(member_ids):
            elapsed = self.clock() - started
            if elapsed >= self.budget_s:
                result.timed_out = True
                result.skipped = len(member_ids) - index
                logger.warning(
                    f"Snapshot refresh budget of {self.budget_s}s exhausted; "
                    f"skipping {result.skipped} members"
                )
                break

            try:
                version = self._rebuild_within(member_id, self.budget_s - elapsed)
                result.updated += 1
                logger.debug(f"Snapshot rebuilt for {member_id} (version={version})")
            except FuturesTimeout:
                result.errors += 1
                result.failed_member_ids.append(str(member_id))
                result.timed_out = True
                result.skipped = len(member_ids) - index - 1
                logger.warning(
                    f"Snapshot rebuild for {member_id} ran past the {self.budget_s}s budget; "
                    f"skipping {result.skipped} members"
                )
                break
            except Exception as e:
                result.errors += 1
                result.failed_member_ids.append(str(member_id))
                logger.error(f"Failed to rebuild snapshot for {member_id}: {e}", exc_info=True)

        result.elapsed_ms = int((self.clock() - started) * 1000)
        logger.info(
            f"Snapshot refresh complete: {result.updated} updated, {result.errors} errors, "
            f"{result.skipped} skipped in {result.elapsed_ms}ms",
            extra=log_fields(
                updated=result.updated,
                errors=result.errors,
                skipped=result.skipped,
                elapsed_ms=result.elapsed_ms,
                timed_out=result.timed_out,
            ),
        )
        return result

    def _rebuild_within(self, member_id, timeout_s: float) -> int:
        """Rebuild one member, giving up after timeout_s. A hung rebuild keeps its worker thread."""
        pool = ThreadPoolExecutor(max_workers=1)
        future = pool.submit(self.builder.rebuild, member_id)
        try:
            return future.result(timeout=timeout_s)
        finally:
            future.cancel()
            pool.shutdown(wait=False)


def run_snapshot_refresh(db: Session, session_factory: Callable[[], Session]) -> RefreshResult:
    """One sweep with configured limits. Shared by the trigger endpoint and the beat task."""
    refresher = SnapshotRefresher(
        store=SnapshotStore(db),
        builder=SnapshotBuilder(session_factory),
    )
    return refresher.run()
