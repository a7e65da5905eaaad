"""Persistence layer for Knowledge Sorter."""

from knowledge_sorter.db.review import ReviewRepository
from knowledge_sorter.db.schema import PURGEABLE_TABLES, TYPED_TABLES
from knowledge_sorter.db.store import Datastore

__all__ = ["Datastore", "ReviewRepository", "TYPED_TABLES", "PURGEABLE_TABLES"]
