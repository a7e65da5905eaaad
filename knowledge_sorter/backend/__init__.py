"""Knowledge Sorter Backend API.

FastAPI backend that runs the sorting pipeline in the background:
- Extraction router (pending extractions -> typed stores)
- Dedup/retention sweep
- Conflict and purge review gate
"""

from knowledge_sorter.backend.app import create_app

__all__ = ["create_app"]
