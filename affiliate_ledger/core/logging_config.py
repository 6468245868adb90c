# affiliate_ledger/core/logging_config.py
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Root logging setup, called once by the application factory.
    Modules log through `logging.getLogger(__name__)` and pass context via `extra=`.
    """
    root = logging.getLogger()
    root.setLevel((level or "INFO").upper())

    if not any(getattr(h, "_affiliate_ledger", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._affiliate_ledger = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    # SQL echo is controlled by the engine, keep the driver loggers quiet
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
