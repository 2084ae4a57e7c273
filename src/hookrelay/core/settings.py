"""Settings Management Module.

Dispatch defaults, loaded from ``HOOKRELAY_*`` environment variables.
"""

import os
from functools import lru_cache
from typing import Mapping, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "HOOKRELAY_"


class DispatchSettings(BaseModel):
    """Global dispatch settings."""

    # Per-subscription defaults
    default_max_attempts: int = Field(3, ge=1, le=20)
    default_attempt_timeout_seconds: float = Field(30.0, gt=0, le=300)

    # Backoff: delay after attempt n is base * 2**n, capped
    backoff_base_seconds: float = Field(1.0, gt=0)
    max_backoff_seconds: float = Field(3600.0, gt=0)

    user_agent: str = "HookRelay-Webhook/1.0"
    delivery_history_size: int = Field(1000, ge=0)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DispatchSettings":
        """Build settings from ``HOOKRELAY_<FIELD>`` variables.

        Unset variables fall back to field defaults; values are validated
        by pydantic.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)


@lru_cache
def get_settings() -> DispatchSettings:
    """Cached settings instance."""
    return DispatchSettings.from_env()
