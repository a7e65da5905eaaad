"""Shared pytest fixtures for Knowledge Sorter tests."""

from __future__ import annotations

import os
import tempfile

# Log sinks are configured at import time; keep them out of the home directory
os.environ.setdefault("KNOWLEDGE_SORTER_LOG_DIR", tempfile.mkdtemp(prefix="knowledge_sorter_logs_"))
os.environ.setdefault("KNOWLEDGE_SORTER_LOG_LEVEL", "WARNING")

import pytest

from knowledge_sorter.db.review import ReviewRepository
from knowledge_sorter.db.store import Datastore
from knowledge_sorter.models import ProjectSignature
from knowledge_sorter.paths import PathResolver
from knowledge_sorter.signals import SignalScorer

AUCTION_SIGNATURE = ProjectSignature(
    id="auction-house",
    name="Auction House",
    aliases=("auction",),
    keywords=("bid", "increment", "lot", "reserve"),
    path_fragments=("auction-house",),
    server_path="/srv/auction-house",
)

STUDIO_SIGNATURE = ProjectSignature(
    id="studio",
    name="Studio",
    aliases=("studio",),
    keywords=("sidebar", "panel", "terminal"),
    path_fragments=("studio/",),
    weight=0.8,
    server_path="/var/www/Studio/ai-team",
)


@pytest.fixture
def auction_signature() -> ProjectSignature:
    return AUCTION_SIGNATURE


@pytest.fixture
def studio_signature() -> ProjectSignature:
    return STUDIO_SIGNATURE


@pytest.fixture
def store(tmp_path) -> Datastore:
    """Empty datastore in a temporary directory."""
    db = Datastore(tmp_path / "knowledge.db")
    yield db
    db.close()


@pytest.fixture
def seeded_store(store) -> Datastore:
    """Datastore with two projects whose paths nest.

    /var/www/Studio/ai-team      -> studio
    /var/www/Studio/ai-team/sub  -> studio-sub
    /srv/auction-house           -> auction-house
    """
    store.add_project("studio", "Studio", client_id="kodiack", platform_id="web")
    store.add_project("studio-sub", "Studio Sub", client_id="kodiack", platform_id="cli")
    store.add_project("auction-house", "Auction House", client_id="nextbid", platform_id="web")
    store.register_path("studio", "/var/www/Studio/ai-team")
    store.register_path("studio-sub", "/var/www/Studio/ai-team/sub")
    store.register_path("auction-house", "/srv/auction-house")
    return store


@pytest.fixture
def reviews(store) -> ReviewRepository:
    return ReviewRepository(store)


@pytest.fixture
def scorer() -> SignalScorer:
    return SignalScorer([AUCTION_SIGNATURE, STUDIO_SIGNATURE])


@pytest.fixture
def resolver(seeded_store) -> PathResolver:
    return PathResolver.from_store(seeded_store)


@pytest.fixture
def api_env(monkeypatch, tmp_path):
    """Fresh config + service caches pointing at a temporary data dir.

    Background jobs are disabled so tests drive the router and sweep
    explicitly.
    """
    import knowledge_sorter.config as config_module
    from knowledge_sorter.backend.services import clear_service_caches

    monkeypatch.setenv("KNOWLEDGE_SORTER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("KNOWLEDGE_SORTER_MODE", "dev")
    monkeypatch.setenv("KNOWLEDGE_SORTER_ROUTER_ENABLED", "false")
    monkeypatch.setenv("KNOWLEDGE_SORTER_SWEEP_ENABLED", "false")
    monkeypatch.delenv("KNOWLEDGE_SORTER_API_KEY", raising=False)
    monkeypatch.delenv("KNOWLEDGE_SORTER_CAPTURE_URL", raising=False)
    monkeypatch.delenv("KNOWLEDGE_SORTER_SIGNATURES_FILE", raising=False)
    monkeypatch.delenv("KNOWLEDGE_SORTER_FALLBACK_PROJECT", raising=False)
    config_module._config = None
    clear_service_caches()

    yield tmp_path

    config_module._config = None
    clear_service_caches()
