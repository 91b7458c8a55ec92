"""Runtime configuration for the backlog store, arbiter and sweeper."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from uuid import uuid4


@dataclass(slots=True)
class ArbiterSettings:
    """Claim arbitration and liveness settings."""

    stale_after_seconds: int = 1_800
    sweep_interval_seconds: float = 60.0
    claim_candidate_limit: int = 25


@dataclass(slots=True)
class IdentitySettings:
    """Default actor identities used by the CLI."""

    owner_id: str = field(default_factory=lambda: f"session-{uuid4().hex[:12]}")
    admin_id: str = "operator"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".todo_arbiter.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "WARNING"
    arbiter: ArbiterSettings = field(default_factory=ArbiterSettings)
    identity: IdentitySettings = field(default_factory=IdentitySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        identity = IdentitySettings(admin_id=os.getenv("TODO_ARBITER_ADMIN_ID", "operator"))
        owner_id = os.getenv("TODO_ARBITER_OWNER_ID", "").strip()
        if owner_id:
            identity.owner_id = owner_id
        return cls(
            db_path=db_path or Path(os.getenv("TODO_ARBITER_DB_PATH", ".todo_arbiter.db")),
            sqlite_busy_timeout_ms=_env_int("TODO_ARBITER_SQLITE_BUSY_TIMEOUT_MS", 5_000),
            log_level=os.getenv("TODO_ARBITER_LOG_LEVEL", "WARNING").strip().upper(),
            arbiter=ArbiterSettings(
                stale_after_seconds=_env_int("TODO_ARBITER_STALE_AFTER_SECONDS", 1_800),
                sweep_interval_seconds=_env_float("TODO_ARBITER_SWEEP_INTERVAL_SECONDS", 60.0),
                claim_candidate_limit=_env_int("TODO_ARBITER_CLAIM_CANDIDATE_LIMIT", 25),
            ),
            identity=identity,
        )

    def validate(self) -> None:
        """Raise configuration error if thresholds are unusable."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("TODO_ARBITER_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.arbiter.stale_after_seconds <= 0:
            raise ValueError("TODO_ARBITER_STALE_AFTER_SECONDS must be > 0.")
        if self.arbiter.sweep_interval_seconds <= 0:
            raise ValueError("TODO_ARBITER_SWEEP_INTERVAL_SECONDS must be > 0.")
        if self.arbiter.claim_candidate_limit <= 0:
            raise ValueError("TODO_ARBITER_CLAIM_CANDIDATE_LIMIT must be > 0.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid TODO_ARBITER_LOG_LEVEL: {self.log_level!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {raw!r}") from error
