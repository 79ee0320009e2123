from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    OPENAI = "openai"
    GOOGLE = "google"

    @classmethod
    def parse(cls, value: Any) -> Optional["Provider"]:
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``.

    Only ``provider``, ``model`` and ``messages`` are interpreted. Every other
    top-level field lands in ``extra`` in the order the caller sent it and is
    forwarded to the upstream body untouched.
    """

    model_config = ConfigDict(extra="allow")

    provider: Optional[Any] = None
    model: Optional[Any] = None
    messages: Optional[Any] = None

    @property
    def extra(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class ModelTagsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(..., alias="modelId", min_length=1)
    tags: list[str]
