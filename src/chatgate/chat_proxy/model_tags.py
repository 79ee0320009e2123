from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List

logger = logging.getLogger(__name__)


class ModelTagStore:
    """User-assigned tags per model id, persisted as a single JSON object."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def read(self) -> Dict[str, List[str]]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError):
            logger.exception("Error reading model tags from %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def set_tags(self, model_id: str, tags: List[str]) -> Dict[str, List[str]]:
        """Replace ``model_id``'s tags; an empty list removes the entry."""
        with self._lock:
            all_tags = self.read()
            if tags:
                all_tags[model_id] = tags
            else:
                all_tags.pop(model_id, None)
            self._write(all_tags)
            return all_tags

    def _write(self, tags: Dict[str, List[str]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(
            prefix=".modelTags_", suffix=".json", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(tags, handle, indent=2, ensure_ascii=False)
            Path(tmp_path).replace(self.path)
        finally:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
