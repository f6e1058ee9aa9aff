from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List


def _origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass
class Settings:
    host: str = "127.0.0.1"
    port: int = 4000
    log_level: str = "INFO"
    cache_size: int = 16
    fetch_timeout_s: float = 10.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.getenv("HEATMAP_HOST", "127.0.0.1"),
            port=int(os.getenv("HEATMAP_PORT", "4000")),
            log_level=os.getenv("HEATMAP_LOG_LEVEL", "INFO").upper(),
            cache_size=int(os.getenv("HEATMAP_CACHE_SIZE", "16")),
            fetch_timeout_s=float(os.getenv("HEATMAP_FETCH_TIMEOUT", "10")),
            cors_origins=_origins(os.getenv("HEATMAP_CORS_ORIGINS", "*")),
        )
