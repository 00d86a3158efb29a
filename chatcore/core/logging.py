from __future__ import annotations

import logging

# Loggers that emit a debug line per feed event.
PER_EVENT_LOGGERS = (
    "chatcore.realtime.feed",
    "chatcore.realtime.publisher",
    "chatcore.sync.merge",
)


def configure_logging(*, debug: bool, per_event_debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        force=True,
    )

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)

    per_event_level = logging.DEBUG if debug and per_event_debug else logging.INFO
    for name in PER_EVENT_LOGGERS:
        logging.getLogger(name).setLevel(per_event_level)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured debug=%s per_event_debug=%s", debug, per_event_debug)
