"""Data models shared across Knowledge Sorter components.

Reference data (signatures, project paths) is immutable once loaded.
Review-queue rows (conflicts, purge requests, notifications) are plain
dataclasses built from sqlite3.Row objects and serialized with to_dict().
"""

import json
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

# Length of the normalized title prefix used for duplicate detection
TITLE_KEY_LENGTH = 100

# Titles are the first line of the first 200 characters of content
TITLE_MAX_LENGTH = 200

_WHITESPACE_RE = re.compile(r"\s+")


class ExtractionStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ConflictType(str, Enum):
    CONTRADICTION = "contradiction"
    OUTDATED = "outdated"
    DUPLICATE = "duplicate"
    AMBIGUOUS = "ambiguous"


class Resolution(str, Enum):
    """How a reviewer settles a conflict."""

    KEEP_EXISTING = "keep_existing"
    UPDATE = "update"
    BOTH_VALID = "both_valid"
    DISMISS = "dismiss"

    @property
    def terminal_status(self) -> "ConflictStatus":
        return ConflictStatus(f"resolved_{self.value}")


class ConflictStatus(str, Enum):
    PENDING = "pending"
    RESOLVED_KEEP_EXISTING = "resolved_keep_existing"
    RESOLVED_UPDATE = "resolved_update"
    RESOLVED_BOTH_VALID = "resolved_both_valid"
    RESOLVED_DISMISS = "resolved_dismiss"


class PurgeStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PurgeDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    DISMISSED = "dismissed"


class PathType(str, Enum):
    LOCAL = "local"
    SERVER = "server"
    FOLDER = "folder"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def map_priority(priority: str | None) -> str:
    """Map capture priorities (low/normal/high/critical) onto record priorities."""
    mapping = {
        "low": Priority.LOW,
        "normal": Priority.MEDIUM,
        "high": Priority.HIGH,
        "critical": Priority.CRITICAL,
    }
    return mapping.get((priority or "").lower(), Priority.MEDIUM).value


def make_title(content: str) -> str:
    """First non-blank line of the first 200 characters."""
    lines = (line.strip() for line in content[:TITLE_MAX_LENGTH].splitlines())
    return next((line for line in lines if line), "")


def normalize_title(title: str | None) -> str:
    """Lowercase, collapse whitespace and truncate for duplicate detection."""
    if not title:
        return ""
    return _WHITESPACE_RE.sub(" ", title).strip().lower()[:TITLE_KEY_LENGTH]


def attribution_scope(project_id: str | None, project_path: str | None) -> str:
    """Scope a record is deduplicated within: project id, else path, else global."""
    return project_id or project_path or ""


def dedup_key(project_id: str | None, project_path: str | None, title: str | None) -> tuple[str, str]:
    return (attribution_scope(project_id, project_path), normalize_title(title))


def _loads(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ProjectSignature:
    """Signals that identify a project in free text.

    Attributes:
        id: Project identifier (e.g. "engine-dev-5101")
        name: Display name
        aliases: Names matched as case-insensitive substrings (3 x weight each)
        keywords: Domain words matched on word boundaries (0.5 x weight per hit)
        path_fragments: Path pieces matched case-sensitively (2 x weight each)
        weight: Dampens generic projects that would otherwise match too eagerly
        server_path: Canonical root handed to the path resolver after detection
    """

    id: str
    name: str
    aliases: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    path_fragments: tuple[str, ...] = ()
    weight: float = 1.0
    server_path: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectSignature":
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            aliases=tuple(a.lower() for a in data.get("aliases") or ()),
            keywords=tuple(data.get("keywords") or ()),
            path_fragments=tuple(data.get("path_fragments") or data.get("paths") or ()),
            weight=float(data.get("weight", 1.0)),
            server_path=data.get("server_path"),
        )

    @classmethod
    def from_row(cls, row: Any) -> "ProjectSignature":
        return cls.from_dict(
            {
                "id": row["project_id"],
                "name": row["name"],
                "aliases": _loads(row["aliases"], []),
                "keywords": _loads(row["keywords"], []),
                "path_fragments": _loads(row["path_fragments"], []),
                "weight": row["weight"],
                "server_path": row["server_path"],
            }
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("aliases", "keywords", "path_fragments"):
            data[key] = list(data[key])
        return data


@dataclass(frozen=True)
class ProjectPathRecord:
    """A registered absolute path and the project that owns it."""

    path: str
    project_id: str
    path_type: str = PathType.SERVER.value
    project_name: str | None = None
    client_id: str | None = None
    platform_id: str | None = None


@dataclass(frozen=True)
class PathMatch:
    """Result of resolving a raw path against the registered index."""

    path: str
    project_id: str
    project_name: str | None = None
    client_id: str | None = None
    platform_id: str | None = None
    path_type: str = PathType.SERVER.value
    exact: bool = False

    @classmethod
    def from_record(cls, record: ProjectPathRecord, exact: bool) -> "PathMatch":
        return cls(
            path=record.path,
            project_id=record.project_id,
            project_name=record.project_name,
            client_id=record.client_id,
            platform_id=record.platform_id,
            path_type=record.path_type,
            exact=exact,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Detection:
    """Signal scorer verdict."""

    project: str | None
    confidence: float
    matched_signals: list[str] = field(default_factory=list)
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Attribution:
    """Routing metadata denormalized onto a typed record."""

    project_path: str | None = None
    project_id: str | None = None
    client_id: str | None = None
    platform_id: str | None = None
    confidence: float = 0.0
    source: str = "none"

    @property
    def attributed(self) -> bool:
        return self.project_id is not None

    @property
    def scope(self) -> str:
        return attribution_scope(self.project_id, self.project_path)


@dataclass
class Extraction:
    """A captured fragment awaiting classification."""

    id: str
    content: str
    category: str | None = None
    project_path: str | None = None
    session_id: str | None = None
    priority: str | None = None
    status: str = ExtractionStatus.PENDING.value
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    processed_at: float | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Extraction":
        return cls(
            id=row["id"],
            content=row["content"] or "",
            category=row["category"],
            project_path=row["project_path"],
            session_id=row["session_id"],
            priority=row["priority"],
            status=row["status"],
            metadata=_loads(row["metadata"], {}),
            created_at=row["created_at"],
            processed_at=row["processed_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RouteResult:
    """Outcome of routing a single extraction."""

    extraction_id: str
    status: str
    table: str | None = None
    id: str | None = None
    reason: str | None = None
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ConflictRecord:
    """A flagged (existing record, new content) pair awaiting a reviewer."""

    id: str
    existing_table: str
    existing_id: str
    existing_content: str | None
    new_content: str
    new_source: str | None
    conflict_type: str
    description: str | None
    priority: str
    status: str
    project_id: str | None
    detected_by: str | None
    resolution_notes: str | None
    resolved_by: str | None
    resolved_at: float | None
    created_at: float

    @classmethod
    def from_row(cls, row: Any) -> "ConflictRecord":
        return cls(**{name: row[name] for name in cls.__dataclass_fields__})

    @property
    def is_pending(self) -> bool:
        return self.status == ConflictStatus.PENDING.value

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PurgeRequest:
    """A proposal to delete a set of rows; approval alone deletes nothing."""

    id: str
    table_name: str
    record_ids: list[str]
    record_count: int
    cutoff_date: str | None
    reason: str
    project_id: str | None
    status: str
    flagged_by: str
    reviewed_by: str | None
    reviewed_at: float | None
    review_notes: str | None
    executed_at: float | None
    executed_by: str | None
    deleted_count: int | None
    created_at: float

    @classmethod
    def from_row(cls, row: Any) -> "PurgeRequest":
        data = {name: row[name] for name in cls.__dataclass_fields__}
        data["record_ids"] = _loads(data["record_ids"], [])
        return cls(**data)

    @property
    def executed(self) -> bool:
        return self.executed_at is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Notification:
    id: str
    reviewer_id: str
    notification_type: str
    title: str
    message: str | None
    related_table: str | None
    related_id: str | None
    status: str
    read_at: float | None
    created_at: float

    @classmethod
    def from_row(cls, row: Any) -> "Notification":
        return cls(**{name: row[name] for name in cls.__dataclass_fields__})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
