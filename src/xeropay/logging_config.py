from __future__ import annotations

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Send xeropay logs to stdout with level and logger name.

    Leaves an already configured root logger alone (pytest, uvicorn with a
    custom log config).
    """
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(level.upper())
