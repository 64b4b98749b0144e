from __future__ import annotations

import logging
import os

import structlog

def configure_logging(service_name: str, debug: bool | None = None) -> None:
    if debug is None:
        debug = os.getenv("FUNCTION_DEBUG", "").lower() == "true"
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    logger = structlog.get_logger(service=service_name)
    logger.info("logging_configured", debug=debug)


def get_logger(service_name: str) -> structlog.BoundLogger:
    return structlog.get_logger(service=service_name)
