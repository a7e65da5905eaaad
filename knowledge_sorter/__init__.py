"""Knowledge Sorter - attribution, routing and review gating for captured knowledge.

Turns captured fragments into typed, project-attributed records with:
- Weighted signal scoring for project detection
- Longest-prefix path resolution (legacy roots included)
- A polling extraction router with noise and duplicate guards
- Human-gated conflict resolution and purge requests
- A periodic dedup/retention sweep
"""

__version__ = "0.1.0"

from knowledge_sorter.config import Config
from knowledge_sorter.db import Datastore
from knowledge_sorter.gate import ConflictGate, PurgeExecutor, PurgeGate
from knowledge_sorter.paths import PathResolver
from knowledge_sorter.router import ExtractionRouter
from knowledge_sorter.signals import SignalScorer
from knowledge_sorter.sweep import RetentionSweep

__all__ = [
    "Config",
    "Datastore",
    "SignalScorer",
    "PathResolver",
    "ExtractionRouter",
    "ConflictGate",
    "PurgeGate",
    "PurgeExecutor",
    "RetentionSweep",
]
