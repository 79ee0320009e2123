"""Process-wide logging for chatgate.

Everything logs through the root logger into ``<log_dir>/<name>.log``.
httpx and httpcore are held at WARNING because their INFO lines print full
request URLs, and Google upstream URLs carry the API key as a query param.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

__all__ = ["configure_logging", "resolve_log_dir"]

LOG_DIR_ENV = "CHATGATE_LOG_DIR"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
NOISY_LOGGERS = ("httpx", "httpcore")

_OWNED = "_chatgate_owned"


def resolve_log_dir(log_dir: Optional[Path] = None) -> Path:
    if log_dir:
        return Path(log_dir).expanduser()
    override = os.environ.get(LOG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    here = Path(__file__).resolve()
    for parent in here.parents:
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent / "logs"
    return Path.cwd() / "logs"


def _owned(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    setattr(handler, _OWNED, True)
    return handler


def _drop_owned(root: logging.Logger) -> None:
    for handler in [h for h in root.handlers if getattr(h, _OWNED, False)]:
        root.removeHandler(handler)
        handler.close()


def configure_logging(
    log_name: str,
    *,
    level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    include_console: bool = True,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> Path:
    """Point root logging at ``<log_dir>/<log_name>.log`` and return that path.

    Repeated calls swap out the handlers of the previous call; handlers added
    by anything else (pytest, uvicorn) are left alone.
    """
    directory = resolve_log_dir(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"{log_name}.log"

    root = logging.getLogger()
    root.setLevel(level)
    _drop_owned(root)
    root.addHandler(_owned(logging.FileHandler(log_path, encoding="utf-8"), level))
    if include_console:
        root.addHandler(_owned(logging.StreamHandler(), level))

    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.captureWarnings(True)
    return log_path
