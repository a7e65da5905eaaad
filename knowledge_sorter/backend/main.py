"""uvicorn entry point (`knowledge-sorter-backend`)."""

import uvicorn

from knowledge_sorter.backend.app import create_app
from knowledge_sorter.config import get_config
from knowledge_sorter.log_config import get_logger

log = get_logger("backend.main")


def run(host: str | None = None, port: int | None = None) -> None:
    """Serve the API and background jobs, defaulting to the configured bind address."""
    config = get_config()
    host = host or config.host
    port = port or config.port
    log.info(f"Serving Knowledge Sorter on {host}:{port} (db={config.db_path})")
    uvicorn.run(create_app(), host=host, port=port, log_level="info")


def main() -> None:
    run()


if __name__ == "__main__":
    main()
