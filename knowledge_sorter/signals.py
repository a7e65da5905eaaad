"""Signal scorer: guess which project a piece of free text belongs to.

Each registered ProjectSignature contributes a weighted score:
- 3 x weight per alias found in the text (case-insensitive substring)
- 2 x weight per path fragment found in the text (case-sensitive substring)
- 0.5 x weight x occurrences per keyword (word boundary, case-insensitive)

Confidence is min(score / 10, 1). A weak best match (< 0.3) never beats the
fallback project, which keeps low-signal fragments from hopping between
projects.
"""

import json
import re
from pathlib import Path
from typing import Any, Iterable

from knowledge_sorter.log_config import get_logger
from knowledge_sorter.models import Detection, ProjectSignature

log = get_logger("signals")

ALIAS_POINTS = 3.0
PATH_POINTS = 2.0
KEYWORD_POINTS = 0.5
CONFIDENCE_SCALE = 10.0
MIN_CONFIDENCE = 0.3
FALLBACK_CONFIDENCE = 0.1

# detect_all() counts aliases/paths unweighted and keeps scores >= this
MULTI_PROJECT_MIN_SCORE = 2

# Reported signals per detection
MAX_REPORTED_SIGNALS = 5

DEFAULT_SIGNATURES: tuple[ProjectSignature, ...] = (
    ProjectSignature(
        id="engine-dev-5101",
        name="NextBid Engine",
        aliases=("engine", "nextbid engine", "auction engine", "bidding engine"),
        keywords=(
            "auction", "bid", "bidding", "lot", "paddle", "gavel", "hammer",
            "reserve", "increment", "proxy bid", "absentee", "live auction",
            "tradeline", "solicitation", "opportunity", "contract",
        ),
        path_fragments=("engine-dev", "5101", "engine/"),
        weight=1.0,
        server_path="/var/www/NextBid_Dev/engine-dev-5101",
    ),
    ProjectSignature(
        id="source-dev-5102",
        name="NextBid Source",
        aliases=("source", "nextbid source", "source manager", "inventory"),
        keywords=(
            "inventory", "consignment", "consignor", "pickup", "intake",
            "catalog item", "item condition", "provenance",
        ),
        path_fragments=("source-dev", "5102", "source/"),
        weight=1.0,
        server_path="/var/www/NextBid_Dev/source-dev-5102",
    ),
    ProjectSignature(
        id="dev-studio-5000",
        name="Kodiack Studio",
        aliases=("studio", "dev studio", "kodiack", "kodiack studio", "dev-studio"),
        keywords=(
            "sidebar", "panel", "ai worker", "chad", "susan", "clair", "ryan",
            "terminal", "claude code", "mcp",
        ),
        path_fragments=("dev-studio", "5000", "studio/"),
        # Only match when clearly about the studio itself
        weight=0.8,
        server_path="/var/www/NextBid_Dev/dev-studio-5000",
    ),
    ProjectSignature(
        id="auth-7000",
        name="Auth Service",
        aliases=("auth", "authentication", "auth service"),
        keywords=(
            "login", "logout", "jwt", "token", "session", "oauth", "password",
            "credential",
        ),
        path_fragments=("auth-7000", "7000"),
        weight=1.0,
        server_path="/var/www/NextBid_Dev/auth-7000",
    ),
    ProjectSignature(
        id="ai-workers",
        name="AI Workers",
        aliases=("workers", "ai workers", "ai-workers"),
        keywords=(
            "cataloger", "cleaner", "session detector", "project organizer",
            "knowledge service",
        ),
        path_fragments=("ai-workers/", "chad-5401", "susan-5403", "ryan-5402", "clair-5406"),
        weight=0.9,
        server_path="/var/www/Studio/ai-team",
    ),
)


class SignalScorer:
    """Scores text against an immutable signature registry.

    Pure: no I/O, no mutable state after construction.
    """

    def __init__(self, signatures: Iterable[ProjectSignature] | None = None):
        self.signatures: tuple[ProjectSignature, ...] = tuple(
            DEFAULT_SIGNATURES if signatures is None else signatures
        )
        self._by_id = {sig.id: sig for sig in self.signatures}
        # Keyword regexes compiled once; keywords may contain spaces
        self._keyword_res = {
            sig.id: [
                (kw, re.compile(rf"\b{re.escape(kw)}\b", re.IGNORECASE))
                for kw in sig.keywords
            ]
            for sig in self.signatures
        }
        log.debug(f"SignalScorer loaded {len(self.signatures)} signatures")

    def get(self, project_id: str | None) -> ProjectSignature | None:
        if project_id is None:
            return None
        return self._by_id.get(project_id)

    def score(self, content: str, signature: ProjectSignature) -> tuple[float, list[str]]:
        """Weighted score of content against a single signature."""
        content_lower = content.lower()
        score = 0.0
        matched: list[str] = []

        for alias in signature.aliases:
            if alias.lower() in content_lower:
                score += ALIAS_POINTS * signature.weight
                matched.append(f"alias: {alias}")

        for fragment in signature.path_fragments:
            if fragment in content:
                score += PATH_POINTS * signature.weight
                matched.append(f"path: {fragment}")

        for keyword, pattern in self._keyword_res[signature.id]:
            hits = len(pattern.findall(content))
            if hits:
                score += KEYWORD_POINTS * hits * signature.weight
                matched.append(f"keyword: {keyword} ({hits}x)")

        return score, matched

    def detect(
        self,
        content: Any,
        fallback: str | None = None,
        min_confidence: float = MIN_CONFIDENCE,
    ) -> Detection:
        """Pick the best-scoring project for content.

        Args:
            content: Text to analyze (non-text input is treated as empty)
            fallback: Project returned when nothing scores convincingly
            min_confidence: Below this the fallback wins over the best match

        Returns:
            Detection with confidence in [0, 1]
        """
        if not content or not isinstance(content, str):
            return Detection(project=fallback, confidence=0.0, reason="no content")

        best_project = fallback
        best_score = 0.0
        best_matches: list[str] = []

        # Strictly greater keeps registry order as the tiebreak
        for signature in self.signatures:
            score, matched = self.score(content, signature)
            if score > best_score:
                best_project = signature.id
                best_score = score
                best_matches = matched

        confidence = min(best_score / CONFIDENCE_SCALE, 1.0)

        if confidence < min_confidence and best_project != fallback:
            log.debug(
                f"Low confidence detection ({best_project}, {confidence:.2f}), "
                f"using fallback {fallback}"
            )
            return Detection(
                project=fallback,
                confidence=FALLBACK_CONFIDENCE,
                matched_signals=best_matches[:MAX_REPORTED_SIGNALS],
                reason="low confidence, using fallback",
            )

        top = best_matches[:MAX_REPORTED_SIGNALS]
        if best_score > 0:
            log.info(f"Project detected: {best_project} ({confidence:.2f}) via {top}")
        return Detection(
            project=best_project,
            confidence=confidence,
            matched_signals=top,
            reason=", ".join(top),
        )

    def detect_all(self, content: str | None) -> list[dict[str, Any]]:
        """Every project mentioned by alias or path, strongest first.

        Used for fragments that span several projects. Scores are unweighted.
        """
        if not content:
            return []

        content_lower = content.lower()
        detected = []
        for signature in self.signatures:
            score = 0
            matches = []
            for alias in signature.aliases:
                if alias.lower() in content_lower:
                    score += int(ALIAS_POINTS)
                    matches.append(alias)
            for fragment in signature.path_fragments:
                if fragment in content:
                    score += int(PATH_POINTS)
                    matches.append(fragment)
            if score >= MULTI_PROJECT_MIN_SCORE:
                detected.append(
                    {
                        "project": signature.id,
                        "name": signature.name,
                        "score": score,
                        "matches": matches,
                    }
                )
        return sorted(detected, key=lambda d: d["score"], reverse=True)

    def list_projects(self) -> list[dict[str, Any]]:
        return [
            {"id": sig.id, "name": sig.name, "aliases": list(sig.aliases)}
            for sig in self.signatures
        ]


def load_signatures_file(path: Path | str) -> list[ProjectSignature]:
    """Load signatures from a JSON file (a list, or a dict keyed by project id)."""
    data = json.loads(Path(path).read_text())
    if isinstance(data, dict):
        data = [{"id": key, **value} for key, value in data.items()]
    return [ProjectSignature.from_dict(item) for item in data]


def load_signatures(store=None, path: Path | str | None = None) -> tuple[ProjectSignature, ...]:
    """Assemble the signature registry at startup.

    Priority: explicit JSON file, then the project_signatures table, then the
    built-in defaults.
    """
    if path is not None:
        signatures = load_signatures_file(path)
        log.info(f"Loaded {len(signatures)} signatures from {path}")
        return tuple(signatures)

    if store is not None:
        signatures = store.list_signatures()
        if signatures:
            log.info(f"Loaded {len(signatures)} signatures from datastore")
            return tuple(signatures)

    log.info(f"Using {len(DEFAULT_SIGNATURES)} built-in signatures")
    return DEFAULT_SIGNATURES


__all__ = [
    "DEFAULT_SIGNATURES",
    "SignalScorer",
    "load_signatures",
    "load_signatures_file",
]
