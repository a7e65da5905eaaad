"""Dedup and retention sweep.

Runs on a timer, independent of request traffic:
- Per typed store, keep the earliest row per (scope, normalized title) and
  delete later duplicates
- Delete active sessions that never received a message within the window
- Delete old messages belonging to completed sessions, bounded per cycle

Each step is isolated: a failure is logged and counted, and the cycle moves
on to the next step.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from knowledge_sorter.backend.scheduler import RunGuard
from knowledge_sorter.db.schema import TYPED_TABLES
from knowledge_sorter.db.store import Datastore
from knowledge_sorter.log_config import get_logger, log_timing
from knowledge_sorter.models import dedup_key

log = get_logger("sweep")

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class SweepReport:
    """Report from one sweep cycle."""

    duplicates_removed: dict[str, int] = field(default_factory=dict)
    empty_sessions_removed: int = 0
    messages_removed: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False
    elapsed_ms: float = 0.0

    @property
    def total_duplicates(self) -> int:
        return sum(self.duplicates_removed.values())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_duplicates"] = self.total_duplicates
        return data


class RetentionSweep:
    """Periodic dedup/retention pass over the datastore."""

    def __init__(
        self,
        store: Datastore,
        tables: tuple[str, ...] = TYPED_TABLES,
        empty_session_retention_days: float = 1,
        completed_message_retention_days: float = 14,
        message_prune_batch_size: int = 100,
        guard: RunGuard | None = None,
    ):
        self.store = store
        self.tables = tables
        self.empty_session_retention_days = empty_session_retention_days
        self.completed_message_retention_days = completed_message_retention_days
        self.message_prune_batch_size = message_prune_batch_size
        self.guard = guard or RunGuard("sweep")

    def dedupe_table(self, table: str) -> int:
        """Delete every row whose dedup key was already seen earlier.

        Rows are visited oldest first, so the first-created row survives.
        Rows without a usable title are never treated as duplicates.
        """
        seen: set[tuple[str, str]] = set()
        duplicates: list[str] = []
        for row in self.store.list_records_for_dedup(table):
            key = dedup_key(row["project_id"], row["project_path"], row["title"])
            if not key[1]:
                continue
            if key in seen:
                duplicates.append(row["id"])
            else:
                seen.add(key)

        if not duplicates:
            return 0
        removed = self.store.delete_records(table, duplicates)
        log.info(f"Removed {removed} duplicate rows from {table}")
        return removed

    def prune_empty_sessions(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        cutoff = now - self.empty_session_retention_days * SECONDS_PER_DAY
        removed = self.store.delete_empty_sessions(cutoff)
        if removed:
            log.info(f"Removed {removed} empty sessions")
        return removed

    def prune_completed_messages(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        cutoff = now - self.completed_message_retention_days * SECONDS_PER_DAY
        removed = self.store.delete_completed_messages(cutoff, self.message_prune_batch_size)
        if removed:
            log.info(f"Removed {removed} old messages from completed sessions")
        return removed

    def _step(self, report: SweepReport, name: str, fn, *args) -> int:
        try:
            return fn(*args)
        except Exception as e:
            log.error(f"Sweep step {name} failed: {e}")
            report.errors.append(f"{name}: {e}")
            return 0

    async def run_cycle(self, now: float | None = None) -> SweepReport:
        """Run one full sweep cycle unless one is already in progress."""
        report = SweepReport()
        if not self.guard.try_acquire():
            log.warning("Sweep already running, skipping")
            report.skipped = True
            return report

        try:
            log.info("Starting sweep cycle")
            with log_timing("sweep cycle", log, level="info") as timing:
                report.empty_sessions_removed = self._step(
                    report, "empty_sessions", self.prune_empty_sessions, now
                )
                report.messages_removed = self._step(
                    report, "completed_messages", self.prune_completed_messages, now
                )
                for table in self.tables:
                    report.duplicates_removed[table] = self._step(
                        report, f"dedupe:{table}", self.dedupe_table, table
                    )
            report.elapsed_ms = timing["elapsed_ms"]
        finally:
            self.guard.release()

        log.info(
            f"Sweep complete: {report.total_duplicates} duplicates, "
            f"{report.empty_sessions_removed} empty sessions, "
            f"{report.messages_removed} messages, {len(report.errors)} errors"
        )
        return report
