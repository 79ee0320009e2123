from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import List, Optional

REDACTED = "***"


@dataclass
class ProxyConfig:
    host: str = "0.0.0.0"
    port: int = 3001
    # Fallback key used when a request carries no x-api-key header.
    api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    connect_timeout_s: float = 10.0
    # None leaves reads unbounded; upstream streams may idle between tokens.
    read_timeout_s: Optional[float] = None
    chat_rate_limit: int = 30
    status_rate_limit: int = 120
    rate_limit_window_s: int = 60
    max_body_bytes: int = 50 * 1024 * 1024
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    static_dir: Optional[str] = None
    model_tags_path: str = "data/modelTags.json"
    log_path: str = "logs/chat_proxy.jsonl"
    max_log_bytes: int = 25_000_000
    enable_metrics: bool = False
    config_file_path: Optional[str] = None

    @classmethod
    def load(cls) -> "ProxyConfig":
        from .config_loader import load_proxy_config

        return load_proxy_config()

    def redacted(self) -> dict:
        data = asdict(self)
        if data.get("api_key"):
            data["api_key"] = REDACTED
        return data
