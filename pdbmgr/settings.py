from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import FatalConfigError
from .policy import DEFAULT_MIN_PLAYERS, ConstraintField, ThresholdPolicy

DEFAULT_UPDATE_INTERVAL_S = 10.0
DEFAULT_PROBE_TIMEOUT_S = 5.0


def _env_str(env: Mapping[str, str], name: str, default: str | None = None) -> str:
    raw = env.get(name)
    if raw is None or not raw.strip():
        if default is None:
            raise FatalConfigError(f"No {name} specified!")
        return default
    return raw.strip()


def _env_int(env: Mapping[str, str], name: str, default: int | None = None) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        if default is None:
            raise FatalConfigError(f"No {name} specified!")
        return default
    try:
        return int(raw)
    except ValueError:
        raise FatalConfigError(f"{name} conversion to integer failed: {raw!r}") from None


def _env_float(env: Mapping[str, str], name: str, default: float | None = None) -> float | None:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise FatalConfigError(f"{name} conversion to float failed: {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    # Target
    namespace: str
    pdb_name: str
    server_host: str
    server_port: int

    # Loop
    update_interval_s: float = DEFAULT_UPDATE_INTERVAL_S
    probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S
    shutdown_grace_s: float = 5.0

    # Policy
    policy: ThresholdPolicy = ThresholdPolicy()
    pdb_field: ConstraintField = ConstraintField.MIN_AVAILABLE

    # Apply retries
    apply_max_attempts: int = 5
    apply_backoff_s: float = 0.2
    apply_backoff_max_s: float = 2.0

    # Status API
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    log_level: str = "info"

    def __post_init__(self) -> None:
        if not 1 <= self.server_port <= 65535:
            raise FatalConfigError(f"SERVER_PORT out of range: {self.server_port}")
        if self.update_interval_s <= 0:
            raise FatalConfigError(f"UPDATE_INTERVAL must be positive: {self.update_interval_s}")
        # A probe must finish inside its own tick.
        if not 0 < self.probe_timeout_s < self.update_interval_s:
            raise FatalConfigError(
                f"PROBE_TIMEOUT ({self.probe_timeout_s}) must be positive and below "
                f"UPDATE_INTERVAL ({self.update_interval_s})"
            )
        if self.apply_max_attempts < 1:
            raise FatalConfigError(f"APPLY_MAX_ATTEMPTS must be at least 1: {self.apply_max_attempts}")
        if self.apply_backoff_s < 0 or self.shutdown_grace_s < 0:
            raise FatalConfigError("APPLY_BACKOFF and SHUTDOWN_GRACE must not be negative")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Resolve settings once from environment variables."""
        env = os.environ if env is None else env

        field_raw = _env_str(env, "PDB_FIELD", ConstraintField.MIN_AVAILABLE.value)
        try:
            pdb_field = ConstraintField(field_raw)
        except ValueError:
            choices = ", ".join(f.value for f in ConstraintField)
            raise FatalConfigError(f"PDB_FIELD must be one of {choices}, got {field_raw!r}") from None

        min_players = _env_int(env, "MIN_PLAYERS", DEFAULT_MIN_PLAYERS)
        percent = _env_float(env, "MIN_PLAYERS_PERCENT")
        # A zero percentage reads as "no percentage": MIN_PLAYERS applies.
        if percent == 0:
            percent = None
        interval = _env_float(env, "UPDATE_INTERVAL", DEFAULT_UPDATE_INTERVAL_S)
        # Keep the default timeout valid for short intervals.
        timeout_default = min(DEFAULT_PROBE_TIMEOUT_S, interval / 2)

        return cls(
            namespace=_env_str(env, "POD_NAMESPACE"),
            pdb_name=_env_str(env, "PDB_NAME"),
            server_host=_env_str(env, "SERVER_HOST"),
            server_port=_env_int(env, "SERVER_PORT"),
            update_interval_s=interval,
            probe_timeout_s=_env_float(env, "PROBE_TIMEOUT", timeout_default),
            shutdown_grace_s=_env_float(env, "SHUTDOWN_GRACE", 5.0),
            policy=ThresholdPolicy(
                min_players=min_players,
                min_players_percent=percent,
            ),
            pdb_field=pdb_field,
            apply_max_attempts=_env_int(env, "APPLY_MAX_ATTEMPTS", 5),
            apply_backoff_s=_env_float(env, "APPLY_BACKOFF", 0.2),
            api_host=_env_str(env, "API_HOST", "0.0.0.0"),
            api_port=_env_int(env, "API_PORT", 8080),
            log_level=_env_str(env, "LOG_LEVEL", env.get("RUST_LOG") or "info").lower(),
        )
