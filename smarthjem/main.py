from __future__ import annotations

import logging
import os

import uvicorn

from smarthjem.config_manager import ConfigManager

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def main() -> None:
    config = ConfigManager(os.getenv("SMARTHJEM_CONFIG_PATH", "config.yaml")).load()
    logging.basicConfig(level=config.logging.level, format=LOG_FORMAT)
    host = os.getenv("SMARTHJEM_HOST", "0.0.0.0")
    port = int(os.getenv("SMARTHJEM_PORT", "8080"))
    logging.getLogger(__name__).info("Starting Smart Hjem Kalender on %s:%s", host, port)
    uvicorn.run(
        "smarthjem.web_app:app",
        host=host,
        port=port,
        reload=False,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
