"""Path resolver: map raw filesystem paths onto registered projects.

Paths arrive in several conventions (Windows workstations, server roots,
trailing slashes). Everything is normalized to the canonical server form
before matching, and the deepest registered path always wins.
"""

import json
from pathlib import Path
from typing import Iterable, Mapping

from knowledge_sorter.log_config import get_logger
from knowledge_sorter.models import PathMatch, PathType, ProjectPathRecord

log = get_logger("paths")

# Legacy workstation roots and their canonical server roots
LEGACY_ROOTS: dict[str, str] = {
    r"C:\Projects\Studio\kodiack-studio": "/var/www/Studio/kodiack-studio",
    r"C:\Projects\Kodiack-Studio\kodiack-dashboard-5500": "/var/www/Studio/kodiack-dashboard-5500",
    r"C:\Projects\Studio\kodiack-dashboard-5500": "/var/www/Studio/kodiack-dashboard-5500",
    r"C:\Projects\Studio\ai-team": "/var/www/Studio/ai-team",
    r"C:\Projects\NextBid_Dev": "/var/www/NextBid_Dev",
    r"C:\Projects\Premier_Group": "/var/www/Premier_Group",
}


def _slashes(path: str) -> str:
    path = path.strip().replace("\\", "/")
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def _is_under(path: str, root: str) -> bool:
    """Boundary-safe prefix test: "/proj" covers "/proj/x" but not "/project2"."""
    return path == root or path.startswith(root + "/")


class PathNormalizer:
    """Converts raw paths to canonical form.

    Legacy prefixes are compared case-insensitively (Windows paths) and
    longest-first, so a specific legacy root beats a broader one.
    """

    def __init__(self, legacy_roots: Mapping[str, str] | None = None):
        roots = LEGACY_ROOTS if legacy_roots is None else legacy_roots
        pairs = [(_slashes(legacy), _slashes(canonical)) for legacy, canonical in roots.items()]
        pairs.sort(key=lambda pair: len(pair[0]), reverse=True)
        self._legacy = [(legacy.lower(), legacy, canonical) for legacy, canonical in pairs]

    def __call__(self, raw_path: str | None) -> str | None:
        if not raw_path or not raw_path.strip():
            return None
        path = _slashes(raw_path)
        lowered = path.lower()
        for legacy_lower, legacy, canonical in self._legacy:
            if _is_under(lowered, legacy_lower):
                return canonical + path[len(legacy):]
        return path


_default_normalizer = PathNormalizer()


def normalize_path(raw_path: str | None, legacy_roots: Mapping[str, str] | None = None) -> str | None:
    """Normalize a raw path with the default (or given) legacy root table."""
    if legacy_roots is None:
        return _default_normalizer(raw_path)
    return PathNormalizer(legacy_roots)(raw_path)


def load_legacy_roots(path: Path | str | None) -> dict[str, str]:
    """Built-in legacy roots extended by an optional JSON mapping file."""
    roots = dict(LEGACY_ROOTS)
    if path is not None:
        extra = json.loads(Path(path).read_text())
        roots.update(extra)
        log.info(f"Loaded {len(extra)} legacy roots from {path}")
    return roots


class PathResolver:
    """Longest-prefix-wins index over registered project paths."""

    def __init__(
        self,
        records: Iterable[ProjectPathRecord] = (),
        legacy_roots: Mapping[str, str] | None = None,
    ):
        self.normalize = PathNormalizer(legacy_roots)

        index: dict[str, ProjectPathRecord] = {}
        for record in records:
            normalized = self.normalize(record.path)
            if normalized is None:
                continue
            if normalized in index:
                if index[normalized].project_id != record.project_id:
                    log.warning(
                        f"Path {normalized} registered to both "
                        f"{index[normalized].project_id} and {record.project_id}; keeping first"
                    )
                continue
            index[normalized] = ProjectPathRecord(
                path=normalized,
                project_id=record.project_id,
                path_type=record.path_type,
                project_name=record.project_name,
                client_id=record.client_id,
                platform_id=record.platform_id,
            )

        # Deepest paths first
        self._records = sorted(index.values(), key=lambda r: len(r.path), reverse=True)
        log.debug(f"PathResolver indexed {len(self._records)} paths")

    @classmethod
    def from_store(cls, store, legacy_roots: Mapping[str, str] | None = None) -> "PathResolver":
        return cls(store.list_project_paths(), legacy_roots)

    @property
    def records(self) -> list[ProjectPathRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def resolve(self, raw_path: str | None) -> PathMatch | None:
        """Find the registered project owning raw_path.

        Returns None when nothing matches; callers leave the item unattributed.
        """
        path = self.normalize(raw_path)
        if path is None:
            return None

        for record in self._records:
            if path == record.path:
                return PathMatch.from_record(record, exact=True)

        for record in self._records:
            if path.startswith(record.path + "/"):
                return PathMatch.from_record(record, exact=False)

        log.trace(f"No registered path for {path}")
        return None

    def for_project(self, project_id: str) -> PathMatch | None:
        """Preferred registered path of a project (server paths first)."""
        candidates = [r for r in self._records if r.project_id == project_id]
        if not candidates:
            return None
        candidates.sort(key=lambda r: (r.path_type != PathType.SERVER.value, len(r.path)))
        return PathMatch.from_record(candidates[0], exact=True)


__all__ = [
    "LEGACY_ROOTS",
    "PathNormalizer",
    "PathResolver",
    "load_legacy_roots",
    "normalize_path",
]
