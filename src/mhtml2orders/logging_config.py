from __future__ import annotations
import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

def setup_logging(level: str = "INFO") -> None:
    lvl = getattr(logging, str(level).upper(), None)
    if not isinstance(lvl, int):
        lvl = logging.INFO
    logging.basicConfig(
        level=lvl,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
