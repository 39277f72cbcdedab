# CodeAI assistant package init
import logging
import os


def _configure_logging() -> None:
    level_name = (os.getenv("CODEAI_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger("codeai")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[CODEAI][%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)

    # Stream parsing is chatty at DEBUG; allow tuning it apart from the rest.
    stream_level_name = (os.getenv("CODEAI_STREAM_LOG_LEVEL") or level_name).upper()
    stream_level = getattr(logging, stream_level_name, level)
    logging.getLogger("codeai.stream").setLevel(stream_level)


_configure_logging()
