from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the root logger once per process.

    ``LIMA_LOG_LEVEL`` wins over both flags when set to a known level name.
    """
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    env_level = os.environ.get("LIMA_LOG_LEVEL", "").upper()
    if env_level in logging.getLevelNamesMapping():
        level = logging.getLevelNamesMapping()[env_level]
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("lima").setLevel(level)


def use_color() -> bool:
    if os.environ.get("NO_COLOR") is not None:
        return False
    if os.environ.get("CLICOLOR") == "0":
        return False
    return True
