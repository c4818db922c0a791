"""
Civitas configuration.

Each component takes a small config dataclass. Defaults mirror the
values the platform launched with; override them per instance or through
``CIVITAS_*`` environment variables.

Authority-settable parameters (caps, cooldowns, base reward) are changed
on the component's own copy, never on the object passed in.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Mapping, Optional, TypeVar

_C = TypeVar("_C")

_HOME_DIR = ".civitas"
ENV_HOME = "CIVITAS_HOME"
ENV_TRACE_ID = "CIVITAS_TRACE_ID"


def civitas_home() -> Path:
    """Return the Civitas data directory.

    Uses $CIVITAS_HOME when set, otherwise ~/.civitas/.
    """
    override = os.environ.get(ENV_HOME)
    if override:
        return Path(override)
    return Path.home() / _HOME_DIR


def _from_env(cls: type, prefix: str, env: Optional[Mapping[str, str]]) -> _C:
    """Build a config dataclass, overriding int fields from PREFIX_<FIELD>."""
    source = os.environ if env is None else env
    overrides = {}
    for f in fields(cls):
        raw = source.get(f"{prefix}_{f.name.upper()}")
        if raw is None or raw == "":
            continue
        try:
            overrides[f.name] = int(raw)
        except ValueError:
            raise ValueError(f"{prefix}_{f.name.upper()} must be an integer, got {raw!r}") from None
    return cls(**overrides)


@dataclass
class RegistryConfig:
    """IdentityRegistry limits."""
    max_users: int = 10000
    min_age: int = 18
    max_age: int = 30
    max_name_length: int = 50
    max_email_length: int = 100

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RegistryConfig":
        return _from_env(cls, "CIVITAS_REGISTRY", env)

    def copy(self) -> "RegistryConfig":
        return replace(self)


@dataclass
class QuizConfig:
    """QuizEngine limits. Per-question shape rules live on civitas.models.Question."""
    max_quizzes: int = 50
    max_questions: int = 20
    min_threshold: int = 50
    max_threshold: int = 100

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "QuizConfig":
        return _from_env(cls, "CIVITAS_QUIZ", env)

    def copy(self) -> "QuizConfig":
        return replace(self)


@dataclass
class RewardConfig:
    """
    RewardLedger parameters.

    reset_source_id is the only source id whose claim markers are cleared
    by an authority reset.
    """
    base_reward_amount: int = 100
    bonus_multiplier: int = 50
    cooldown_blocks: int = 100
    max_rewards_per_user: int = 1000
    min_score: int = 50
    max_score: int = 100
    min_quiz_id: int = 1
    max_quiz_id: int = 100
    reset_source_id: int = 1

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RewardConfig":
        return _from_env(cls, "CIVITAS_REWARD", env)

    def copy(self) -> "RewardConfig":
        return replace(self)


__all__ = [
    "ENV_HOME",
    "ENV_TRACE_ID",
    "civitas_home",
    "RegistryConfig",
    "QuizConfig",
    "RewardConfig",
]
