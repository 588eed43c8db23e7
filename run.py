#!/usr/bin/env python3
"""
Main entrypoint: bootstrap the database and serve the HTTP API.
Run with: python run.py
Or: python -m web_app
"""
from __future__ import annotations

import logging
import sys

# Ensure service loggers (task_service, occurrence_service, taskloop.api) emit to the same stream as uvicorn
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)

from config import load as load_config
from database import init_database


def main() -> None:
    # Bootstrap SQLite database on first run
    path = init_database()
    logging.getLogger("taskloop").info("Database ready: %s", path)

    import uvicorn
    config = load_config()
    uvicorn.run(
        "web_app:app",
        host="0.0.0.0",
        port=config.web_ui_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
