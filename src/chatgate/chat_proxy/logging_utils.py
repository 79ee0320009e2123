from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

# Field names that are dropped from request records before they are written.
SECRET_FIELDS = frozenset({"api_key", "key", "x-api-key", "authorization"})


class JsonlLogger:
    """Request log: one JSON object per line, rotated by size.

    Failures to write are reported on the module logger and otherwise
    ignored, so a full disk never breaks a relay.
    """

    def __init__(self, path: str | Path, max_bytes: int = 25_000_000):
        self.path = Path(path)
        self.max_bytes = max_bytes
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.warning("Cannot create request log directory %s", self.path.parent)

    def _rotate(self) -> None:
        try:
            if self.path.exists() and self.path.stat().st_size > self.max_bytes:
                stamp = time.strftime("%Y%m%d-%H%M%S")
                self.path.rename(self.path.with_name(f"{self.path.name}.{stamp}"))
        except OSError:
            logger.warning("Request log rotation failed for %s", self.path)

    def log(self, record: Dict[str, Any]) -> None:
        clean = {k: v for k, v in record.items() if k.lower() not in SECRET_FIELDS}
        line = json.dumps(clean, ensure_ascii=False) + "\n"
        with self._lock:
            self._rotate()
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
            except OSError:
                logger.warning("Request log write failed for %s", self.path)
