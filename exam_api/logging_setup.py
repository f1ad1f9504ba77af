from __future__ import annotations
import logging

# Chatty libraries kept at WARNING unless the app itself runs at DEBUG
_NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access")


def setup_console_logging(level: int | str = logging.INFO) -> None:
    """
    Call once from create_app(). Log lines carry the thread name so
    scheduler jobs can be told apart from request handling.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root = logging.getLogger()
    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    if root.handlers:
        root.setLevel(level)
        return

    root.setLevel(level)
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s (%(threadName)s): %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
