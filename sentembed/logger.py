import logging
import os
from typing import Optional

ROOT_LOGGER_NAME = "sentembed"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("SENTEMBED_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, name, logging.INFO)


def _configure_root(log_file: Optional[str], log_dir: Optional[str], level: Optional[str]):
    """Attach console and file handlers to the package root logger once."""
    if log_dir is None:
        log_dir = os.getenv("SENTEMBED_LOG_PATH", "logs")

    root = logging.getLogger(ROOT_LOGGER_NAME)
    # Module loggers created later must not reset a level chosen by settings
    if level is not None or root.level == logging.NOTSET:
        root.setLevel(_resolve_level(level))
    formatter = logging.Formatter(_FORMAT)

    # Console handler
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(formatter)
        root.addHandler(ch)

    # File handler (SENTEMBED_LOG_PATH="" keeps output on the console)
    if log_dir and log_file:
        if not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.abspath(os.path.join(log_dir, log_file))
        if not any(
            isinstance(h, logging.FileHandler) and h.baseFilename == log_path
            for h in root.handlers
        ):
            fh = logging.FileHandler(log_path, encoding="utf-8")
            fh.setFormatter(formatter)
            root.addHandler(fh)
    return root


def configure_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    log_file: Optional[str] = "sentembed.log",
) -> logging.Logger:
    """Apply the logging section of the app settings to the package root logger."""
    return _configure_root(log_file, log_dir, level)


def get_logger(
    name: str = ROOT_LOGGER_NAME,
    log_file: Optional[str] = "sentembed.log",
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """Return a logger under the ``sentembed`` hierarchy.

    Handlers live on the package root only; module loggers propagate to it so
    every record is written once.
    """
    _configure_root(log_file, log_dir, level)
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
