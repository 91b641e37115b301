from heap_scope import (
    compaction as compaction,
    downsample as downsample,
    dump as dump,
    timeline as timeline,
    utils as utils,
)
import logging


def init_logging(level=logging.INFO):
    """
    Configure logging for heap_scope library at INFO level.
    Adds a StreamHandler if none exists.
    """
    logger = logging.getLogger("heap_scope")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(name)s - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False
