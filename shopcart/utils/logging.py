# shopcart/utils/logging.py
import logging
import sys

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Konfiguracja structlog + stdlib, wolana raz przy starcie aplikacji."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(
                key_order=["timestamp", "level", "logger", "event"]
            ),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # urllib3 jest zbyt gadatliwy na INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str):
    return structlog.get_logger(name)
