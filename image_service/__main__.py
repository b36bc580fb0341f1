from __future__ import annotations

import logging
import os
import sys

import uvicorn

from .app import create_app
from .config_loader import get_service_info, load_config_from_env


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for service deployment.

    Logs are formatted with timestamp, level, logger name, and message,
    and all go to stdout.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Set uvicorn logging to INFO to capture server events
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)

    # botocore is very chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)


def main() -> None:
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    logger = logging.getLogger(__name__)
    logger.info("Starting image service")

    config = load_config_from_env()
    logger.info(
        f"Server configuration: host={config.host}, port={config.port}, "
        f"worker={config.run_analysis_worker}, concurrency={config.worker_concurrency}"
    )
    logger.info(f"Managed services: {get_service_info()}")

    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
