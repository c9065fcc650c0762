"""Configuration for engine selection and analysis.

Every field has a working default; ``from_env()`` overlays
``CHESS_INSIGHT_*`` environment variables on top of those defaults.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field, fields

_ENV_PREFIX = "CHESS_INSIGHT_"

TIERS = ("auto", "native", "external", "stub")


def _env_value(name: str, kind: type, default):
    raw = os.environ.get(_ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        if kind is bool:
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if kind is list:
            return shlex.split(raw)
        return kind(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {_ENV_PREFIX}{name}: {raw!r}") from exc


def _from_env(cls):
    instance = cls()
    for f in fields(cls):
        kind = _FIELD_TYPES[f.name]
        setattr(instance, f.name, _env_value(f.name.upper(), kind, getattr(instance, f.name)))
    return instance


@dataclass
class EngineConfig:
    """How to obtain and drive the engine."""

    tier: str = "auto"
    engine_path: str | None = None
    engine_args: list[str] = field(default_factory=list)
    native_module: str = "chess_insight_native"
    handshake_timeout: float = 5.0
    search_timeout: float = 120.0
    search_grace: float = 5.0
    quit_grace: float = 2.0
    hash_mb: int = 256
    threads: int = 1
    skill_level: int = 20
    stub_delay: float = 0.01

    def __post_init__(self) -> None:
        if self.tier not in TIERS:
            raise ValueError(f"Unknown engine tier {self.tier!r}; expected one of {TIERS}")
        if not 0 <= self.skill_level <= 20:
            raise ValueError(f"skill_level must be within 0-20, got {self.skill_level}")

    @classmethod
    def from_env(cls) -> EngineConfig:
        config = _from_env(cls)
        config.__post_init__()
        return config


@dataclass
class AnalysisConfig:
    """Analysis defaults and assessment thresholds (pawn units)."""

    default_depth: int = 20
    max_multipv: int = 5
    game_depth: int = 15
    book_depth: int = 8
    cache_size: int = 100
    cache_ttl: float = 300.0
    history_limit: int = 100
    # |score| below equal_band reads as equal
    equal_band: float = 0.3
    small_limit: float = 0.3
    clear_limit: float = 1.0
    significant_limit: float = 3.0
    winning_threshold: float = 3.0
    critical_threshold: float = 5.0

    def __post_init__(self) -> None:
        if self.max_multipv < 1:
            raise ValueError(f"max_multipv must be at least 1, got {self.max_multipv}")
        if not self.small_limit <= self.clear_limit <= self.significant_limit:
            raise ValueError("Magnitude limits must be non-decreasing")

    @classmethod
    def from_env(cls) -> AnalysisConfig:
        config = _from_env(cls)
        config.__post_init__()
        return config


_FIELD_TYPES = {
    "tier": str,
    "engine_path": str,
    "engine_args": list,
    "native_module": str,
    "handshake_timeout": float,
    "search_timeout": float,
    "search_grace": float,
    "quit_grace": float,
    "hash_mb": int,
    "threads": int,
    "skill_level": int,
    "stub_delay": float,
    "default_depth": int,
    "max_multipv": int,
    "game_depth": int,
    "book_depth": int,
    "cache_size": int,
    "cache_ttl": float,
    "history_limit": int,
    "equal_band": float,
    "small_limit": float,
    "clear_limit": float,
    "significant_limit": float,
    "winning_threshold": float,
    "critical_threshold": float,
}
