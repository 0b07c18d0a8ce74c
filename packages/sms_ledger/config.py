"""Runtime settings for the sync pipeline.

Defaults live on :class:`PipelineSettings`; :meth:`PipelineSettings.from_env`
overlays ``SMS_LEDGER_*`` environment variables (typically loaded from a local
``.env`` by the CLI). Malformed values fall back to the default with a warning
rather than aborting startup.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any, Literal, TypeAlias

from .logging_setup import get_logger

Backend: TypeAlias = Literal["gemini", "openai"]

_DEFAULT_MODELS: dict[str, str] = {
    "gemini": "gemini-2.0-flash",
    "openai": "gpt-5",
}

_ENV_PREFIX = "SMS_LEDGER_"

_logger = get_logger("sms_ledger.config")


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    # Batching and pacing
    batch_size: int = 5
    delay_base_sec: float = 1.0
    delay_step_sec: float = 0.5
    delay_cap_sec: float = 5.0

    # Classifier retry policy
    max_retries: int = 2
    rate_limit_cooldown_sec: float = 10.0
    network_backoff_sec: tuple[float, ...] = (2.0, 4.0)
    malformed_retries: int = 1

    # Classifier transport
    backend: Backend = "gemini"
    model: str | None = None
    max_output_tokens: int = 2048
    temperature: float = 0.1
    request_timeout_sec: float = 30.0

    # Message source
    lookback_days: int = 90
    max_messages: int = 500
    source_retries: int = 2
    source_backoff_sec: float = 1.0
    prefilter: bool = False

    # Dedup and persistence
    fingerprint_prefix_chars: int = 50
    database_url: str | None = None

    # Background refresh
    auto_refresh_interval_sec: float = 300.0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        if self.max_retries < 0 or self.malformed_retries < 0 or self.source_retries < 0:
            raise ValueError("retry counts must be non-negative")
        if not self.network_backoff_sec:
            raise ValueError("network_backoff_sec must contain at least one delay")
        if self.backend not in _DEFAULT_MODELS:
            raise ValueError(f"unknown classifier backend: {self.backend!r}")

    @property
    def resolved_model(self) -> str:
        return self.model or _DEFAULT_MODELS[self.backend]

    def with_overrides(self, **overrides: Any) -> PipelineSettings:
        """Return a copy with the non-``None`` overrides applied."""

        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PipelineSettings:
        """Build settings from ``SMS_LEDGER_<FIELD>`` variables plus ``DATABASE_URL``."""

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None or not raw.strip():
                continue
            default = f.default
            try:
                values[f.name] = _coerce(raw.strip(), default)
            except ValueError:
                _logger.warning(
                    "config:invalid_env name=%s value=%r; using default",
                    _ENV_PREFIX + f.name.upper(),
                    raw,
                )
        if "database_url" not in values and env.get("DATABASE_URL"):
            values["database_url"] = env["DATABASE_URL"]
        return cls(**values)


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        v = raw.lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
        raise ValueError(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, tuple):
        return tuple(float(p) for p in raw.split(",") if p.strip())
    return raw


__all__ = ["Backend", "PipelineSettings"]
