from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_SERVICE_CONFIG = "service-config.yaml"
DEFAULT_IMAGE_TAG = "latest"


@dataclass(frozen=True)
class Settings:
    """Process-wide settings resolved from the environment."""

    service_config_path: Optional[Path] = None
    default_tag: str = DEFAULT_IMAGE_TAG
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        raw_path = (os.environ.get("DOCKERIZE_SERVICE_CONFIG") or "").strip()
        tag = (os.environ.get("DOCKERIZE_DEFAULT_TAG") or "").strip()
        level = (os.environ.get("DOCKERIZE_LOG_LEVEL") or "").strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            level = "INFO"
        return cls(
            service_config_path=Path(raw_path) if raw_path else None,
            default_tag=tag or DEFAULT_IMAGE_TAG,
            log_level=level,
        )

    def resolve_service_config(self) -> Path:
        if self.service_config_path is not None:
            return self.service_config_path
        return Path.cwd() / DEFAULT_SERVICE_CONFIG


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
