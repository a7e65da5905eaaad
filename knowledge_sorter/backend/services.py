"""Service layer for the Knowledge Sorter backend.

Provides lazy-initialized service instances for API endpoints, the CLI and
the background jobs. Services are singletons for the process lifetime;
registries are read once and then treated as immutable.
"""

from functools import lru_cache
from typing import TYPE_CHECKING

from knowledge_sorter.config import get_config
from knowledge_sorter.log_config import get_logger

if TYPE_CHECKING:
    from knowledge_sorter.backend.scheduler import RunGuard
    from knowledge_sorter.db.review import ReviewRepository
    from knowledge_sorter.db.store import Datastore
    from knowledge_sorter.gate import ConflictGate, NotificationCenter, PurgeExecutor, PurgeGate
    from knowledge_sorter.paths import PathResolver
    from knowledge_sorter.reroute import Rerouter
    from knowledge_sorter.router import ExtractionRouter
    from knowledge_sorter.siblings import CaptureClient
    from knowledge_sorter.signals import SignalScorer
    from knowledge_sorter.sweep import RetentionSweep

log = get_logger("backend.services")


@lru_cache(maxsize=1)
def get_store() -> "Datastore":
    """Get the Datastore instance (cached)."""
    from knowledge_sorter.db.store import Datastore

    config = get_config()
    log.info("Initializing Datastore")
    return Datastore(config.db_path)


@lru_cache(maxsize=1)
def get_review_repository() -> "ReviewRepository":
    from knowledge_sorter.db.review import ReviewRepository

    return ReviewRepository(get_store())


@lru_cache(maxsize=1)
def get_scorer() -> "SignalScorer":
    """Get the SignalScorer (cached).

    Signatures come from the configured JSON file, the datastore, or the
    built-in table, in that order.
    """
    from knowledge_sorter.signals import SignalScorer, load_signatures

    config = get_config()
    return SignalScorer(load_signatures(get_store(), config.signatures_file))


@lru_cache(maxsize=1)
def get_resolver() -> "PathResolver":
    """Get the PathResolver built from registered project paths (cached)."""
    from knowledge_sorter.paths import PathResolver, load_legacy_roots

    config = get_config()
    resolver = PathResolver.from_store(get_store(), load_legacy_roots(config.legacy_roots_file))
    log.info(f"PathResolver loaded with {len(resolver)} paths")
    return resolver


@lru_cache(maxsize=1)
def get_capture_client() -> "CaptureClient | None":
    """Capture-service client, or None when no URL is configured."""
    from knowledge_sorter.siblings import CaptureClient

    config = get_config()
    if not config.capture_url:
        return None
    return CaptureClient(config.capture_url, timeout=config.capture_timeout_seconds)


@lru_cache(maxsize=1)
def get_router_guard() -> "RunGuard":
    """Overlap guard shared by every router instance built in this process."""
    from knowledge_sorter.backend.scheduler import RunGuard

    return RunGuard("router")


@lru_cache(maxsize=1)
def get_router() -> "ExtractionRouter":
    from knowledge_sorter.router import ExtractionRouter

    config = get_config()
    return ExtractionRouter(
        store=get_store(),
        scorer=get_scorer(),
        resolver=get_resolver(),
        capture_client=get_capture_client(),
        fallback_project=config.fallback_project,
        min_length=config.min_content_length,
        max_length=config.max_content_length,
        batch_size=config.router_batch_size,
        guard=get_router_guard(),
    )


@lru_cache(maxsize=1)
def get_sweep() -> "RetentionSweep":
    from knowledge_sorter.sweep import RetentionSweep

    config = get_config()
    return RetentionSweep(
        store=get_store(),
        empty_session_retention_days=config.empty_session_retention_days,
        completed_message_retention_days=config.completed_message_retention_days,
        message_prune_batch_size=config.message_prune_batch_size,
    )


@lru_cache(maxsize=1)
def get_rerouter() -> "Rerouter":
    from knowledge_sorter.reroute import Rerouter

    return Rerouter(get_store(), get_scorer(), get_resolver())


@lru_cache(maxsize=1)
def get_conflict_gate() -> "ConflictGate":
    from knowledge_sorter.gate import ConflictGate

    return ConflictGate(get_store(), get_review_repository())


@lru_cache(maxsize=1)
def get_purge_gate() -> "PurgeGate":
    from knowledge_sorter.gate import PurgeGate

    return PurgeGate(get_store(), get_review_repository())


@lru_cache(maxsize=1)
def get_purge_executor() -> "PurgeExecutor":
    from knowledge_sorter.gate import PurgeExecutor

    return PurgeExecutor(get_store(), get_review_repository())


@lru_cache(maxsize=1)
def get_notification_center() -> "NotificationCenter":
    from knowledge_sorter.gate import NotificationCenter

    return NotificationCenter(get_store(), get_review_repository())


def reload_registries() -> None:
    """Rebuild scorer/resolver (and their dependents) after reference data changes."""
    get_scorer.cache_clear()
    get_resolver.cache_clear()
    get_router.cache_clear()
    get_rerouter.cache_clear()
    log.info("Registries reloaded")


def clear_service_caches() -> None:
    """Clear all service caches (for testing)."""
    get_store.cache_clear()
    get_review_repository.cache_clear()
    get_scorer.cache_clear()
    get_resolver.cache_clear()
    get_capture_client.cache_clear()
    get_router_guard.cache_clear()
    get_router.cache_clear()
    get_sweep.cache_clear()
    get_rerouter.cache_clear()
    get_conflict_gate.cache_clear()
    get_purge_gate.cache_clear()
    get_purge_executor.cache_clear()
    get_notification_center.cache_clear()
    log.info("Service caches cleared")


async def shutdown_services() -> None:
    """Close the capture client and the datastore if they were created."""
    log.info("Shutting down services...")

    if get_capture_client.cache_info().currsize > 0:
        client = get_capture_client()
        if client is not None:
            await client.close()

    if get_store.cache_info().currsize > 0:
        try:
            get_store().close()
            log.info("Datastore closed")
        except Exception as e:
            log.error(f"Error closing datastore: {e}")

    clear_service_caches()
    log.info("Services shutdown complete")
