"""Tests for the extraction router.

Covers:
- Category mapping and attribution (path, signals, session, fallback)
- Noise and duplicate skips
- Failure isolation and the absence of automatic retries
- Idempotence across repeated batches
"""

import sqlite3

import pytest
import respx
from httpx import Response

from knowledge_sorter.router import ExtractionRouter, table_for
from knowledge_sorter.siblings import CaptureClient

CAPTURE_URL = "http://capture.test"


@pytest.fixture
def router(seeded_store, scorer, resolver):
    return ExtractionRouter(seeded_store, scorer, resolver)


class TestTableFor:
    @pytest.mark.parametrize(
        "category,table",
        [
            ("todo", "bugs"),
            ("bug", "bugs"),
            ("Issue", "bugs"),
            ("decision", "decisions"),
            (" lesson ", "lessons"),
            ("note", "knowledge"),
            ("", "knowledge"),
            (None, "knowledge"),
        ],
    )
    def test_category_mapping(self, category, table):
        assert table_for(category) == table


class TestAttribution:
    """Tests for how routed records get their project."""

    @pytest.mark.asyncio
    async def test_explicit_path_resolves_deepest_project(self, router, seeded_store):
        extraction_id = seeded_store.add_extraction(
            "Fixed the sidebar collapse when resizing the window",
            category="bug",
            project_path="/var/www/Studio/ai-team/sub/app.js",
        )

        result = await router.route(seeded_store.get_extraction(extraction_id))

        assert result.status == "processed"
        assert result.table == "bugs"
        record = seeded_store.get_record("bugs", result.id)
        assert record["project_id"] == "studio-sub"
        assert record["client_id"] == "kodiack"
        assert record["platform_id"] == "cli"
        assert record["project_path"] == "/var/www/Studio/ai-team/sub/app.js"
        assert record["attribution_confidence"] == 1.0
        assert record["attribution_source"] == "path"
        assert record["status"] == "open"
        assert seeded_store.get_extraction(extraction_id).status == "processed"

    @pytest.mark.asyncio
    async def test_legacy_path_attributed(self, router, seeded_store):
        seeded_store.add_project("foo", "Foo")
        seeded_store.register_path("foo", "/var/www/NextBid_Dev/foo")
        router.resolver = type(router.resolver).from_store(seeded_store)
        extraction_id = seeded_store.add_extraction(
            "Decided to keep the queue in SQLite for now",
            category="decision",
            project_path=r"C:\Projects\NextBid_Dev\foo\queue.js",
        )

        result = await router.route(seeded_store.get_extraction(extraction_id))

        record = seeded_store.get_record("decisions", result.id)
        assert record["project_id"] == "foo"
        assert record["project_path"] == "/var/www/NextBid_Dev/foo/queue.js"
        assert record["status"] == "decided"

    @pytest.mark.asyncio
    async def test_unregistered_path_left_unattributed(self, router, seeded_store):
        extraction_id = seeded_store.add_extraction(
            "auction reserve prices should be hidden from bidders",
            project_path="/opt/unknown/tool",
        )

        result = await router.route(seeded_store.get_extraction(extraction_id))

        record = seeded_store.get_record("knowledge", result.id)
        assert record["project_id"] is None
        assert record["project_path"] == "/opt/unknown/tool"
        assert record["attribution_confidence"] == 0.0
        assert record["attribution_source"] == "path_unresolved"

    @pytest.mark.asyncio
    async def test_signals_used_without_path(self, router, seeded_store):
        """Content signals attribute and the project's server path supplies the ids."""
        extraction_id = seeded_store.add_extraction("auction bid increment for lot needs a floor")

        result = await router.route(seeded_store.get_extraction(extraction_id))

        assert result.table == "knowledge"
        assert result.confidence == pytest.approx(0.45)
        record = seeded_store.get_record("knowledge", result.id)
        assert record["project_id"] == "auction-house"
        assert record["client_id"] == "nextbid"
        assert record["project_path"] == "/srv/auction-house"
        assert record["attribution_source"] == "signals"
        assert record["category"] == "general"

    @pytest.mark.asyncio
    async def test_no_signal_stored_with_zero_confidence(self, router, seeded_store):
        extraction_id = seeded_store.add_extraction("Remember to rotate the staging credentials monthly")

        result = await router.route(seeded_store.get_extraction(extraction_id))

        assert result.status == "processed"
        record = seeded_store.get_record("knowledge", result.id)
        assert record["project_id"] is None
        assert record["attribution_confidence"] == 0.0

    @pytest.mark.asyncio
    async def test_weak_signal_uses_fallback_project(self, seeded_store, scorer, resolver):
        router = ExtractionRouter(seeded_store, scorer, resolver, fallback_project="studio")
        extraction_id = seeded_store.add_extraction("someone placed a bid on this lot today")

        result = await router.route(seeded_store.get_extraction(extraction_id))

        record = seeded_store.get_record("knowledge", result.id)
        assert record["project_id"] == "studio"
        assert record["attribution_confidence"] == pytest.approx(0.1)
        assert record["attribution_source"] == "fallback"

    @pytest.mark.asyncio
    @respx.mock
    async def test_session_path_from_capture_service(self, seeded_store, scorer, resolver):
        respx.get(f"{CAPTURE_URL}/api/sessions/s1").mock(
            return_value=Response(200, json={"id": "s1", "project_path": "/srv/auction-house/api"})
        )
        client = CaptureClient(CAPTURE_URL)
        router = ExtractionRouter(seeded_store, scorer, resolver, capture_client=client)
        extraction_id = seeded_store.add_extraction(
            "Remember to rotate the staging credentials monthly", session_id="s1"
        )

        result = await router.route(seeded_store.get_extraction(extraction_id))
        await client.close()

        record = seeded_store.get_record("knowledge", result.id)
        assert record["project_id"] == "auction-house"
        assert record["attribution_confidence"] == 0.5
        assert record["attribution_source"] == "session"
        assert record["source_session_id"] == "s1"

    @pytest.mark.asyncio
    @respx.mock
    async def test_capture_service_down_is_tolerated(self, seeded_store, scorer, resolver):
        respx.get(f"{CAPTURE_URL}/api/sessions/s1").mock(return_value=Response(503))
        client = CaptureClient(CAPTURE_URL)
        router = ExtractionRouter(seeded_store, scorer, resolver, capture_client=client)
        extraction_id = seeded_store.add_extraction(
            "Remember to rotate the staging credentials monthly", session_id="s1"
        )

        result = await router.route(seeded_store.get_extraction(extraction_id))
        await client.close()

        assert result.status == "processed"
        assert seeded_store.get_record("knowledge", result.id)["project_id"] is None


class TestRouting:
    """Tests for skip/failure handling and batch behavior."""

    @pytest.mark.asyncio
    async def test_noise_is_skipped_not_failed(self, router, seeded_store):
        extraction_id = seeded_store.add_extraction("| id | name | status |")

        result = await router.route(seeded_store.get_extraction(extraction_id))

        assert result.status == "skipped"
        assert result.reason == "noise"
        extraction = seeded_store.get_extraction(extraction_id)
        assert extraction.status == "skipped"
        assert extraction.metadata["skip_reason"] == "noise"
        assert seeded_store.count_records("knowledge") == 0

    @pytest.mark.asyncio
    async def test_ansi_only_content_is_noise(self, router, seeded_store):
        extraction_id = seeded_store.add_extraction("\x1b[31m\x1b[0m\x1b[2K")

        result = await router.route(seeded_store.get_extraction(extraction_id))

        assert result.status == "skipped"
        assert seeded_store.get_extraction(extraction_id).metadata["noise"] == "too_short"

    @pytest.mark.asyncio
    async def test_ansi_stripped_before_storing(self, router, seeded_store):
        extraction_id = seeded_store.add_extraction("\x1b[32mLesson: pin the node version in CI\x1b[0m", category="lesson")

        result = await router.route(seeded_store.get_extraction(extraction_id))

        record = seeded_store.get_record("lessons", result.id)
        assert record["content"] == "Lesson: pin the node version in CI"

    @pytest.mark.asyncio
    async def test_duplicate_title_in_scope_skipped(self, router, seeded_store):
        path = "/srv/auction-house/bids.js"
        first = seeded_store.add_extraction(
            "Bid increments are wrong above 1000", category="bug", project_path=path, created_at=1.0
        )
        second = seeded_store.add_extraction(
            "bid increments   ARE wrong above 1000", category="bug", project_path=path, created_at=2.0
        )

        report = await router.process_pending()

        assert report.processed == 1
        assert report.duplicates == 1
        assert seeded_store.count_records("bugs") == 1
        original = report.results[0]
        duplicate = report.results[1]
        assert duplicate.extraction_id == second
        assert duplicate.reason == "duplicate"
        assert duplicate.id == original.id
        assert seeded_store.get_extraction(second).metadata["duplicate_of"] == original.id
        assert seeded_store.get_extraction(first).status == "processed"

    @pytest.mark.asyncio
    async def test_same_title_in_other_scope_is_kept(self, router, seeded_store):
        seeded_store.add_extraction("Bid increments are wrong above 1000", category="bug", project_path="/srv/auction-house")
        seeded_store.add_extraction("Bid increments are wrong above 1000", category="bug", project_path="/var/www/Studio/ai-team")

        report = await router.process_pending()

        assert report.processed == 2
        assert seeded_store.count_records("bugs") == 2

    @pytest.mark.asyncio
    async def test_leading_blank_line_does_not_make_duplicates(self, router, seeded_store):
        seeded_store.add_extraction(
            "\nAlways pin the node version in .nvmrc before upgrading",
            category="lesson",
            project_path="/srv/auction-house",
            created_at=1.0,
        )
        seeded_store.add_extraction(
            "\nNever run migrations during the nightly auction close",
            category="lesson",
            project_path="/srv/auction-house",
            created_at=2.0,
        )

        report = await router.process_pending()

        assert report.processed == 2
        assert report.duplicates == 0
        titles = sorted(r["title"] for r in seeded_store.list_records("lessons"))
        assert titles == [
            "Always pin the node version in .nvmrc before upgrading",
            "Never run migrations during the nightly auction close",
        ]

    @pytest.mark.asyncio
    async def test_code_fragment_enriched_by_extractor(self, router, seeded_store):
        extraction_id = seeded_store.add_extraction("class OrderBook keeps the auction bids sorted by price")

        result = await router.route(seeded_store.get_extraction(extraction_id))

        record = seeded_store.get_record("knowledge", result.id)
        assert record["category"] == "class-definition"
        assert "orderbook" in record["tags"]
        assert record["metadata"]["extractor"] == "code-knowledge"
        # The extracted title is descriptive; the record keeps the content's first line
        assert record["metadata"]["extracted"]["title"] == "Class: OrderBook"
        assert record["title"] == "class OrderBook keeps the auction bids sorted by price"

    @pytest.mark.asyncio
    async def test_datastore_failure_marks_failed_and_continues(self, router, seeded_store, monkeypatch):
        bad = seeded_store.add_extraction("This one hits a locked database", created_at=1.0)
        good = seeded_store.add_extraction("This one is stored normally", created_at=2.0)
        original_insert = seeded_store.insert_record

        def flaky_insert(table, **fields):
            if fields.get("extraction_id") == bad:
                raise sqlite3.OperationalError("database is locked")
            return original_insert(table, **fields)

        monkeypatch.setattr(seeded_store, "insert_record", flaky_insert)

        report = await router.process_pending()

        assert report.failed == 1
        assert report.processed == 1
        failed = seeded_store.get_extraction(bad)
        assert failed.status == "failed"
        assert failed.metadata["error"] == "database is locked"
        assert failed.metadata["error_type"] == "DownstreamError"
        assert seeded_store.get_extraction(good).status == "processed"

    @pytest.mark.asyncio
    async def test_failed_items_not_retried_until_requeued(self, router, seeded_store, monkeypatch):
        extraction_id = seeded_store.add_extraction("This one hits a locked database")

        def broken_insert(table, **fields):
            raise sqlite3.OperationalError("database is locked")

        with monkeypatch.context() as m:
            m.setattr(seeded_store, "insert_record", broken_insert)
            await router.process_pending()

        report = await router.process_pending()
        assert report.found == 0

        seeded_store.requeue_failed([extraction_id])
        report = await router.process_pending()

        assert report.processed == 1
        assert seeded_store.get_extraction(extraction_id).metadata["attempts"] == 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, router, seeded_store):
        for text in ("First useful fragment here", "Second useful fragment here"):
            seeded_store.add_extraction(text)

        first = await router.process_pending()
        count = seeded_store.count_records("knowledge")
        second = await router.process_pending()

        assert first.processed == 2
        assert second.found == 0
        assert seeded_store.count_records("knowledge") == count

    @pytest.mark.asyncio
    async def test_route_processed_extraction_is_noop(self, router, seeded_store):
        extraction_id = seeded_store.add_extraction("First useful fragment here")
        extraction = seeded_store.get_extraction(extraction_id)
        await router.route(extraction)

        result = await router.route(seeded_store.get_extraction(extraction_id))

        assert result.reason == "not_pending"
        assert seeded_store.count_records("knowledge") == 1

    @pytest.mark.asyncio
    async def test_stale_pending_copy_rolls_back_insert(self, router, seeded_store):
        """A second worker holding an old pending copy inserts nothing."""
        extraction_id = seeded_store.add_extraction("Fragment consumed by two workers")
        stale = seeded_store.get_extraction(extraction_id)
        seeded_store.mark_extraction(extraction_id, "skipped")

        result = await router.route(stale)

        assert result.reason == "not_pending"
        assert seeded_store.count_records("knowledge") == 0

    @pytest.mark.asyncio
    async def test_batch_size_bounds_work(self, router, seeded_store):
        for i in range(5):
            seeded_store.add_extraction(f"Useful fragment number {i}", created_at=float(i + 1))

        report = await router.process_pending(batch_size=2)

        assert report.found == 2
        assert seeded_store.count_extractions()["pending"] == 3

    @pytest.mark.asyncio
    async def test_empty_queue_is_silent_noop(self, router):
        report = await router.process_pending()
        assert report.found == 0
        assert report.results == []

    @pytest.mark.asyncio
    async def test_overlapping_batch_skipped(self, router, seeded_store):
        seeded_store.add_extraction("First useful fragment here")
        assert router.guard.try_acquire()
        try:
            report = await router.process_pending()
        finally:
            router.guard.release()

        assert report.run_skipped is True
        assert seeded_store.count_extractions()["pending"] == 1
