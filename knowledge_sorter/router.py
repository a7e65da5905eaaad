"""Extraction router: turn captured fragments into typed records.

Pipeline per extraction:
1. Noise filter (ANSI stripped first); noise is skipped, not failed
2. Category -> destination table
3. Attribution via explicit path, signal scorer, or capture-service session
4. Dedup guard on (scope, normalized title)
5. Insert and mark processed; datastore failures mark the item failed

Failed items stay failed until an operator requeues them.
"""

import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any

from knowledge_sorter.backend.scheduler import RunGuard
from knowledge_sorter.db.store import Datastore
from knowledge_sorter.errors import DownstreamError
from knowledge_sorter.extractors import ExtractorRegistry
from knowledge_sorter.log_config import get_logger, log_timing
from knowledge_sorter.models import (
    Attribution,
    Detection,
    Extraction,
    ExtractionStatus,
    RouteResult,
    make_title,
    map_priority,
    normalize_title,
)
from knowledge_sorter.noise import DEFAULT_MAX_LENGTH, DEFAULT_MIN_LENGTH, noise_reason, strip_ansi
from knowledge_sorter.paths import PathResolver
from knowledge_sorter.signals import MIN_CONFIDENCE, SignalScorer
from knowledge_sorter.siblings import CaptureClient

log = get_logger("router")

CATEGORY_TO_TABLE: dict[str, str] = {
    "todo": "bugs",
    "bug": "bugs",
    "issue": "bugs",
    "decision": "decisions",
    "lesson": "lessons",
}
DEFAULT_TABLE = "knowledge"

# Initial status per destination table
TABLE_STATUS: dict[str, str] = {
    "bugs": "open",
    "decisions": "decided",
    "todos": "pending",
}

PATH_CONFIDENCE = 1.0
SESSION_CONFIDENCE = 0.5

DEFAULT_BATCH_SIZE = 50


def table_for(category: str | None) -> str:
    """Destination table for a category hint (unknown or missing -> knowledge)."""
    return CATEGORY_TO_TABLE.get((category or "").strip().lower(), DEFAULT_TABLE)


def attribution_from_detection(
    scorer: SignalScorer,
    resolver: PathResolver,
    detection: Detection,
    source: str,
) -> Attribution:
    """Denormalize a scorer verdict through the detected project's server path."""
    signature = scorer.get(detection.project)
    server_path = signature.server_path if signature else None

    match = resolver.resolve(server_path) if server_path else None
    if match is None and detection.project is not None:
        match = resolver.for_project(detection.project)

    if match is None:
        # Detected but not registered: keep the path, leave ids empty
        return Attribution(project_path=server_path, confidence=detection.confidence, source=source)
    return Attribution(
        project_path=server_path or match.path,
        project_id=match.project_id,
        client_id=match.client_id,
        platform_id=match.platform_id,
        confidence=detection.confidence,
        source=source,
    )


class _AlreadyConsumed(Exception):
    """Another worker moved the extraction out of pending mid-route."""


@dataclass
class SortReport:
    """Counts from one router batch."""

    found: int = 0
    processed: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0
    errors: int = 0
    run_skipped: bool = False
    elapsed_ms: float = 0.0
    results: list[RouteResult] = field(default_factory=list)

    def add(self, result: RouteResult) -> None:
        self.results.append(result)
        if result.status == ExtractionStatus.PROCESSED.value:
            self.processed += 1
        elif result.status == ExtractionStatus.FAILED.value:
            self.failed += 1
        elif result.status == ExtractionStatus.SKIPPED.value:
            self.skipped += 1
            if result.reason == "duplicate":
                self.duplicates += 1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["results"] = [r.to_dict() for r in self.results]
        return data


class ExtractionRouter:
    """Consumes pending extractions and writes typed records.

    Args:
        store: Datastore holding the queue and typed tables
        scorer: Signal scorer used when no path is supplied
        resolver: Path resolver for project/client/platform ids
        extractors: Registry consulted for knowledge-bound items
        capture_client: Optional capture-service client for session paths
        fallback_project: Project the scorer falls back to on weak signals
        guard: Overlap guard; one is created when omitted
    """

    def __init__(
        self,
        store: Datastore,
        scorer: SignalScorer,
        resolver: PathResolver,
        extractors: ExtractorRegistry | None = None,
        capture_client: CaptureClient | None = None,
        fallback_project: str | None = None,
        min_length: int = DEFAULT_MIN_LENGTH,
        max_length: int = DEFAULT_MAX_LENGTH,
        batch_size: int = DEFAULT_BATCH_SIZE,
        guard: RunGuard | None = None,
    ):
        self.store = store
        self.scorer = scorer
        self.resolver = resolver
        self.extractors = extractors if extractors is not None else ExtractorRegistry()
        self.capture_client = capture_client
        self.fallback_project = fallback_project
        self.min_length = min_length
        self.max_length = max_length
        self.batch_size = batch_size
        self.guard = guard or RunGuard("router")

    # ------------------------------------------------------------------
    # Attribution
    # ------------------------------------------------------------------

    def _from_path(self, raw_path: str, confidence: float, source: str) -> Attribution | None:
        match = self.resolver.resolve(raw_path)
        if match is None:
            return None
        return Attribution(
            project_path=self.resolver.normalize(raw_path),
            project_id=match.project_id,
            client_id=match.client_id,
            platform_id=match.platform_id,
            confidence=confidence,
            source=source,
        )

    async def attribute(self, extraction: Extraction, content: str) -> Attribution:
        """Work out which project an extraction belongs to.

        Order: explicit path, confident signals, capture-service session path,
        then whatever weak/fallback verdict the scorer produced.
        """
        if extraction.project_path:
            attribution = self._from_path(extraction.project_path, PATH_CONFIDENCE, "path")
            if attribution:
                return attribution
            log.debug(f"Unregistered path {extraction.project_path}, leaving unattributed")
            return Attribution(
                project_path=self.resolver.normalize(extraction.project_path),
                confidence=0.0,
                source="path_unresolved",
            )

        detection = self.scorer.detect(content, self.fallback_project)
        if detection.project is not None and detection.confidence >= MIN_CONFIDENCE:
            return attribution_from_detection(self.scorer, self.resolver, detection, "signals")

        if extraction.session_id and self.capture_client is not None:
            session_path = await self.capture_client.get_session_project_path(extraction.session_id)
            if session_path:
                attribution = self._from_path(session_path, SESSION_CONFIDENCE, "session")
                if attribution:
                    return attribution

        if detection.project is not None:
            source = "fallback" if detection.project == self.fallback_project else "signals"
            return attribution_from_detection(self.scorer, self.resolver, detection, source)

        return Attribution()

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _record_fields(self, table: str, extraction: Extraction, content: str) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "title": make_title(content),
            "content": content,
            "category": extraction.category or ("general" if table == DEFAULT_TABLE else None),
            "priority": map_priority(extraction.priority),
            "status": TABLE_STATUS.get(table),
            "source": "extraction",
            "source_session_id": extraction.session_id,
            "extraction_id": extraction.id,
            "tags": [],
            "metadata": {},
        }
        if table == DEFAULT_TABLE:
            extractor = self.extractors.find_matching(content, extraction.metadata)
            if extractor is not None:
                extracted = extractor.extract(content, {"extraction_id": extraction.id})
                if not extraction.category:
                    fields["category"] = extracted.category
                fields["tags"] = extracted.tags
                fields["importance"] = extracted.importance
                fields["metadata"] = {"extractor": extractor.name, "extracted": extracted.to_dict()}
        return fields

    def _skip(self, extraction: Extraction, reason: str, **extra: Any) -> None:
        metadata = {**extraction.metadata, "skip_reason": reason, **extra}
        self.store.mark_extraction(extraction.id, ExtractionStatus.SKIPPED, metadata)

    def _fail(self, extraction: Extraction, error: Exception) -> None:
        metadata = {**extraction.metadata, "error": str(error), "error_type": type(error).__name__}
        try:
            self.store.mark_extraction(extraction.id, ExtractionStatus.FAILED, metadata)
        except Exception as e:
            log.error(f"Could not mark extraction {extraction.id} failed: {e}")

    def _failed(self, extraction: Extraction, table: str, error: Exception) -> RouteResult:
        log.error(f"Error routing extraction {extraction.id}: {type(error).__name__}: {error}")
        self._fail(extraction, error)
        return RouteResult(extraction.id, ExtractionStatus.FAILED.value, table=table, reason=str(error))

    async def route(self, extraction: Extraction) -> RouteResult:
        """Route a single extraction into its typed store.

        Never raises for per-item problems: the outcome is in the result and
        on the extraction's status.
        """
        if extraction.status != ExtractionStatus.PENDING.value:
            return RouteResult(extraction.id, extraction.status, reason="not_pending")

        content = strip_ansi(extraction.content or "")
        reason = noise_reason(content, self.min_length, self.max_length)
        if reason is not None:
            log.trace(f"Skipping noise {extraction.id}: {reason}")
            try:
                self._skip(extraction, "noise", noise=reason)
            except Exception as e:
                self._fail(extraction, e)
                return RouteResult(extraction.id, ExtractionStatus.FAILED.value, reason=str(e))
            return RouteResult(extraction.id, ExtractionStatus.SKIPPED.value, reason="noise")

        table = table_for(extraction.category)
        try:
            attribution = await self.attribute(extraction, content)
            fields = self._record_fields(table, extraction, content)

            existing = self.store.find_duplicate(table, attribution.scope, normalize_title(fields["title"]))
            if existing is not None:
                self._skip(extraction, "duplicate", duplicate_of=existing, table=table)
                log.debug(f"Extraction {extraction.id} duplicates {table}/{existing}")
                return RouteResult(
                    extraction.id,
                    ExtractionStatus.SKIPPED.value,
                    table=table,
                    id=existing,
                    reason="duplicate",
                    confidence=attribution.confidence,
                )

            with self.store.transaction():
                record_id = self.store.insert_record(
                    table,
                    project_path=attribution.project_path,
                    project_id=attribution.project_id,
                    client_id=attribution.client_id,
                    platform_id=attribution.platform_id,
                    attribution_confidence=attribution.confidence,
                    attribution_source=attribution.source,
                    **fields,
                )
                if not self.store.mark_extraction(extraction.id, ExtractionStatus.PROCESSED):
                    raise _AlreadyConsumed(extraction.id)

        except _AlreadyConsumed:
            log.debug(f"Extraction {extraction.id} consumed elsewhere, insert rolled back")
            return RouteResult(extraction.id, ExtractionStatus.SKIPPED.value, table=table, reason="not_pending")
        except sqlite3.Error as e:
            return self._failed(extraction, table, DownstreamError(str(e)))
        except Exception as e:
            return self._failed(extraction, table, e)

        log.debug(
            f"Routed {extraction.id} -> {table}/{record_id} "
            f"({attribution.project_id or 'unattributed'}, {attribution.confidence:.2f})"
        )
        return RouteResult(
            extraction.id,
            ExtractionStatus.PROCESSED.value,
            table=table,
            id=record_id,
            confidence=attribution.confidence,
        )

    async def process_pending(self, batch_size: int | None = None) -> SortReport:
        """Route one bounded batch of pending extractions, oldest first."""
        report = SortReport()
        if not self.guard.try_acquire():
            log.warning("Router batch already running, skipping")
            report.run_skipped = True
            return report

        try:
            with log_timing("extraction batch", log) as timing:
                try:
                    pending = self.store.get_pending_extractions(batch_size or self.batch_size)
                except Exception as e:
                    log.error(f"Error fetching pending extractions: {e}")
                    report.errors += 1
                    pending = []

                report.found = len(pending)
                for extraction in pending:
                    report.add(await self.route(extraction))
            report.elapsed_ms = timing["elapsed_ms"]
        finally:
            self.guard.release()

        if report.found:
            log.info(
                f"Processed {report.processed}, skipped {report.skipped} "
                f"({report.duplicates} duplicates), failed {report.failed}"
            )
        return report
