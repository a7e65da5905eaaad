"""Knowledge extractors for routed fragments.

Extractors enrich knowledge-bound records with a category, tags and
importance. Their title is descriptive only and lands in record metadata.
They are registered in a static table assembled at import time; adding one
means adding an entry to EXTRACTORS.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from knowledge_sorter.log_config import get_logger

log = get_logger("extractors")


@dataclass
class ExtractedKnowledge:
    """Structured knowledge produced by an extractor."""

    category: str
    title: str = ""
    summary: str = ""
    tags: list[str] = field(default_factory=list)
    importance: int = 5

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "title": self.title,
            "summary": self.summary,
            "tags": list(self.tags),
            "importance": self.importance,
        }


class Extractor(Protocol):
    """Capability interface every registered extractor implements."""

    name: str

    def matches(self, content: str, metadata: dict[str, Any] | None = None) -> bool:
        ...

    def extract(self, content: str, context: dict[str, Any] | None = None) -> ExtractedKnowledge:
        ...


class CodeKnowledgeExtractor:
    """Recognizes code snippets (functions, classes, imports) in fragments."""

    name = "code-knowledge"

    _CODE_PATTERNS = [
        re.compile(r"function\s+\w+"),
        re.compile(r"class\s+\w+"),
        re.compile(r"const\s+\w+\s*="),
        re.compile(r"export\s+(default\s+)?"),
        re.compile(r"import\s+.*from"),
        re.compile(r"async\s+function"),
        re.compile(r"=>\s*\{"),
        re.compile(r"module\.exports"),
    ]
    _CLASS_RE = re.compile(r"class\s+(\w+)")
    _FUNCTION_RE = re.compile(r"function\s+(\w+)|const\s+(\w+)\s*=")
    _IMPORT_RE = re.compile(r"from\s+['\"]([^'\"]+)['\"]")

    # (substrings that trigger, tags added)
    _TAG_RULES = [
        (("useState", "useEffect"), ("react", "hooks")),
        (("express", "router"), ("express", "api")),
        (("async", "await"), ("async",)),
        (("WebSocket",), ("websocket", "realtime")),
    ]

    def matches(self, content: str, metadata: dict[str, Any] | None = None) -> bool:
        return any(p.search(content) for p in self._CODE_PATTERNS)

    def extract(self, content: str, context: dict[str, Any] | None = None) -> ExtractedKnowledge:
        knowledge = ExtractedKnowledge(category="code-pattern")

        if "class " in content:
            knowledge.category = "class-definition"
            match = self._CLASS_RE.search(content)
            if match:
                knowledge.title = f"Class: {match.group(1)}"
                knowledge.tags += ["class", match.group(1).lower()]
        elif "function " in content or "=>" in content:
            knowledge.category = "function"
            match = self._FUNCTION_RE.search(content)
            if match:
                fn_name = match.group(1) or match.group(2)
                knowledge.title = f"Function: {fn_name}"
                knowledge.tags += ["function", fn_name.lower()]
        elif "import " in content:
            knowledge.category = "dependency"
            match = self._IMPORT_RE.search(content)
            if match:
                knowledge.title = f"Import: {match.group(1)}"
                knowledge.tags += ["import", "dependency"]

        knowledge.summary = re.sub(r"\s+", " ", content[:200]).strip()

        for triggers, tags in self._TAG_RULES:
            if any(t in content for t in triggers):
                knowledge.tags += list(tags)

        log.debug(f"Code knowledge extracted: {knowledge.category} {knowledge.title!r} {knowledge.tags}")
        return knowledge


@dataclass(frozen=True)
class ExtractorRegistration:
    name: str
    extractor: Extractor
    priority: int = 0
    enabled: bool = True
    display_name: str | None = None


# Static registration table, higher priority is consulted first
EXTRACTORS: tuple[ExtractorRegistration, ...] = (
    ExtractorRegistration(
        name="code-knowledge",
        extractor=CodeKnowledgeExtractor(),
        priority=10,
        display_name="Code Knowledge",
    ),
)


class ExtractorRegistry:
    """Ordered view over registered extractors."""

    def __init__(self, registrations: tuple[ExtractorRegistration, ...] | list | None = None):
        registrations = EXTRACTORS if registrations is None else registrations
        self._registrations = sorted(
            (r for r in registrations if r.enabled),
            key=lambda r: r.priority,
            reverse=True,
        )

    def __len__(self) -> int:
        return len(self._registrations)

    def get(self, name: str) -> Extractor | None:
        for registration in self._registrations:
            if registration.name == name:
                return registration.extractor
        return None

    def find_matching(self, content: str, metadata: dict[str, Any] | None = None) -> Extractor | None:
        """First extractor (by priority) that accepts content."""
        for registration in self._registrations:
            try:
                if registration.extractor.matches(content, metadata):
                    return registration.extractor
            except Exception as e:
                log.error(f"Extractor {registration.name} match check failed: {e}")
        return None

    def find_all_matching(self, content: str, metadata: dict[str, Any] | None = None) -> list[Extractor]:
        matched = []
        for registration in self._registrations:
            try:
                if registration.extractor.matches(content, metadata):
                    matched.append(registration.extractor)
            except Exception as e:
                log.error(f"Extractor {registration.name} match check failed: {e}")
        return matched

    def list(self) -> list[dict[str, Any]]:
        return [
            {
                "name": r.name,
                "display_name": r.display_name or r.name,
                "enabled": r.enabled,
                "priority": r.priority,
            }
            for r in self._registrations
        ]


__all__ = [
    "EXTRACTORS",
    "CodeKnowledgeExtractor",
    "ExtractedKnowledge",
    "Extractor",
    "ExtractorRegistration",
    "ExtractorRegistry",
]
