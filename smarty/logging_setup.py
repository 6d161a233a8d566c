from __future__ import annotations

import logging
import sys


def configure_logging(level: str | int = "INFO") -> None:
    """Attach one stderr handler to the ``smarty`` logger; safe to call again."""
    logger = logging.getLogger("smarty")
    logger.setLevel(level)

    if any(getattr(h, "_smarty", False) for h in logger.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler._smarty = True
    logger.addHandler(handler)
