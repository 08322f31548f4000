"""Process-wide logging setup."""

from __future__ import annotations

import logging


def setup_logging(level: str = "INFO") -> None:
    if logging.getLogger().handlers:
        return

    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
