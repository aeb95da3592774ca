from __future__ import annotations

import logging
import time

LOG_FORMAT = "[%(asctime)s %(levelname)-5s %(name)s] %(message)s"


def configure_logging(level: str = "info") -> None:
    """Root logging setup, done once by the process entry point."""
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.basicConfig(level=resolved, handlers=[handler], force=True)
    # The Kubernetes client logs every request at DEBUG.
    if resolved > logging.DEBUG:
        logging.getLogger("kubernetes").setLevel(logging.WARNING)
