import logging
from pathlib import Path

from app.core.config import settings

LOGGER_NAMESPACE = "giftgroup"
_NOISY_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "httpx")
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _file_handler_exists(root: logging.Logger, log_path: Path) -> bool:
    return any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(log_path.resolve())
        for handler in root.handlers
    )


def configure_logging() -> logging.Logger:
    level_name = (settings.log_level or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()

    new_handlers: list[logging.Handler] = []
    if not root.handlers:
        new_handlers.append(logging.StreamHandler())
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if not _file_handler_exists(root, log_path):
            new_handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    formatter = logging.Formatter(_FORMAT)
    for handler in new_handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)

    # Driver chatter only above INFO unless DEBUG was asked for explicitly.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(level)
    return logger
