"""
unillm - Configuration

Environment-driven settings for the streaming pipeline.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_MAX_FRAME_BYTES = 8 * 1024 * 1024

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid {name}. Use one of: true, false, 1, 0, yes, no, on, off")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"Invalid {name}: expected an integer, got '{raw}'") from None
    if value <= 0:
        raise ValueError(f"Invalid {name}: must be positive")
    return value


@dataclass(frozen=True)
class StreamingSettings:
    """Settings read once from the environment."""
    log_level: str = "INFO"
    log_format: str = "json"
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES
    metrics_enabled: bool = True
    tracing_enabled: bool = True
    log_payloads: bool = False

    @classmethod
    def from_env(cls) -> "StreamingSettings":
        log_format = os.getenv("LOG_FORMAT", "json").lower().strip()
        if log_format not in {"json", "text"}:
            raise ValueError("Invalid LOG_FORMAT. Use one of: json, text")
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper().strip(),
            log_format=log_format,
            max_frame_bytes=_env_int("UNILLM_MAX_FRAME_BYTES", DEFAULT_MAX_FRAME_BYTES),
            metrics_enabled=_env_bool("UNILLM_METRICS_ENABLED", True),
            tracing_enabled=_env_bool("UNILLM_TRACING_ENABLED", True),
            log_payloads=_env_bool("UNILLM_LOG_PAYLOADS", False),
        )


_settings: Optional[StreamingSettings] = None


def get_settings() -> StreamingSettings:
    """Get settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = StreamingSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (for testing)."""
    global _settings
    _settings = None
