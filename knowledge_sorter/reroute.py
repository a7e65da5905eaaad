"""Re-attribute records that were stored without a project.

Records land unattributed when their path was not registered yet or their
content carried too little signal. After new paths or signatures are
registered, this pass retries:
- rows with a project_path go through the path resolver (legacy roots included)
- the rest are re-scored from title + content, accepting >= min_confidence
  (0.2 by default, below the router's 0.3)
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from knowledge_sorter.db.schema import TYPED_TABLES
from knowledge_sorter.db.store import Datastore
from knowledge_sorter.log_config import get_logger
from knowledge_sorter.models import Attribution
from knowledge_sorter.paths import PathResolver
from knowledge_sorter.router import PATH_CONFIDENCE, attribution_from_detection
from knowledge_sorter.signals import SignalScorer

log = get_logger("reroute")

MIN_CONFIDENCE = 0.2
DEFAULT_LIMIT = 500


@dataclass
class TableReroute:
    processed: int = 0
    routed: int = 0
    errors: int = 0


@dataclass
class RerouteReport:
    """Per-table and total counts from a reroute pass."""

    tables: dict[str, TableReroute] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def processed(self) -> int:
        return sum(t.processed for t in self.tables.values())

    @property
    def routed(self) -> int:
        return sum(t.routed for t in self.tables.values())

    @property
    def errors(self) -> int:
        return sum(t.errors for t in self.tables.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "tables": {name: asdict(t) for name, t in self.tables.items()},
            "processed": self.processed,
            "routed": self.routed,
            "errors": self.errors,
            "still_unattributed": self.processed - self.routed,
            "dry_run": self.dry_run,
        }


class Rerouter:
    def __init__(self, store: Datastore, scorer: SignalScorer, resolver: PathResolver):
        self.store = store
        self.scorer = scorer
        self.resolver = resolver

    def attribution_for(self, row: dict[str, Any], min_confidence: float = MIN_CONFIDENCE) -> Attribution | None:
        """New attribution for an unattributed row, or None if still unknown."""
        if row.get("project_path"):
            match = self.resolver.resolve(row["project_path"])
            if match is not None:
                return Attribution(
                    project_path=self.resolver.normalize(row["project_path"]),
                    project_id=match.project_id,
                    client_id=match.client_id,
                    platform_id=match.platform_id,
                    confidence=PATH_CONFIDENCE,
                    source="path_reroute",
                )

        content = f"{row.get('title') or ''} {row.get('content') or ''}".strip()
        if not content:
            return None

        # No fallback: anything under min_confidence comes back unattributed
        detection = self.scorer.detect(content, min_confidence=min_confidence)
        if detection.project is None:
            return None

        attribution = attribution_from_detection(self.scorer, self.resolver, detection, "signals_reroute")
        return attribution if attribution.attributed else None

    def reroute_table(
        self,
        table: str,
        limit: int = DEFAULT_LIMIT,
        min_confidence: float = MIN_CONFIDENCE,
        dry_run: bool = False,
    ) -> TableReroute:
        result = TableReroute()
        rows = self.store.list_unattributed(table, limit=limit)
        result.processed = len(rows)

        for row in rows:
            try:
                attribution = self.attribution_for(row, min_confidence)
                if attribution is None:
                    continue
                if not dry_run:
                    self.store.update_attribution(
                        table,
                        row["id"],
                        project_id=attribution.project_id,
                        project_path=attribution.project_path,
                        client_id=attribution.client_id,
                        platform_id=attribution.platform_id,
                        confidence=attribution.confidence,
                        source=attribution.source,
                    )
                result.routed += 1
            except Exception as e:
                log.error(f"Error rerouting {table}/{row['id']}: {e}")
                result.errors += 1

        if result.processed:
            log.info(f"{table}: processed {result.processed}, routed {result.routed}, errors {result.errors}")
        return result

    def run(
        self,
        tables: tuple[str, ...] | list[str] = TYPED_TABLES,
        limit: int = DEFAULT_LIMIT,
        min_confidence: float = MIN_CONFIDENCE,
        dry_run: bool = False,
    ) -> RerouteReport:
        report = RerouteReport(dry_run=dry_run)
        for table in tables:
            report.tables[table] = self.reroute_table(table, limit, min_confidence, dry_run)
        log.info(f"Reroute complete: routed {report.routed}/{report.processed}")
        return report
