from __future__ import annotations

import logging
import sys

import uvicorn

from clutter.api.main import app
from clutter.config import Config
from clutter.data.errors import StorageError

logger = logging.getLogger(__name__)


def run() -> None:
    config = Config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )

    db_path = config.database_path
    if db_path:
        try:
            app.state.engine.initialize(db_path)
        except StorageError as exc:
            # The host can still retry through POST /database/init.
            logger.error(f"Could not open {db_path}: {exc}")
    else:
        logger.info("No storage folder configured; waiting for /database/init")

    uvicorn.run(app, host=config.api_host, port=config.api_port, log_level="info")


if __name__ == "__main__":
    run()
