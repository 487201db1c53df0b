from __future__ import annotations

import logging

LOGGER_NAME = "financeit"
_HANDLER_MARK = "_financeit_handler"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Safe to call more than once (uvicorn reload, tests); the handler is only
    installed the first time and later calls just adjust the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    if not any(getattr(h, _HANDLER_MARK, False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        setattr(handler, _HANDLER_MARK, True)
        logger.addHandler(handler)
    return logger
