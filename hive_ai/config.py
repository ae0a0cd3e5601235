"""Scorer configuration.

Options come from a comma-separated string, as passed on a command line::

    "model,cpu,session_pool_size=2,batch_size=8,model_file=/models/hive"

and from the environment (HIVE_FORCE_CPU, HIVE_SESSION_POOL_SIZE,
HIVE_AUTO_BATCH_SIZE, HIVE_MODEL_BASENAME). ``build_scorer`` turns the
result into a scorer.
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL_BASENAME = "hive_model"


def _is_truthy_env(name: str) -> Optional[bool]:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        parsed = int(raw)
        return parsed if parsed > 0 else default
    except ValueError:
        return default


def _parse_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class ScorerConfig(BaseModel):
    """How to build the scorer."""
    use_model: bool = False
    force_cpu: bool = False
    session_pool_size: int = Field(default=1, ge=1)
    auto_batch_size: int = 1
    model_basename: str = DEFAULT_MODEL_BASENAME
    # Rescore values with a linear model (distillation); probabilities still
    # come from the network.
    linear_weights_path: Optional[str] = None

    class Config:
        frozen = True

    @field_validator("auto_batch_size", mode="before")
    @classmethod
    def _clamp_batch_size(cls, v):
        return max(1, int(v))


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(
            f"Option {key} needs an integer, got {value!r}", context={"option": key}
        ) from e


def parse_scorer_options(options: str, base: Optional[ScorerConfig] = None) -> ScorerConfig:
    """Apply a comma-separated option string on top of ``base``.

    Raises:
        ConfigurationError: unknown option or invalid value.
    """
    updates = (base or ScorerConfig()).model_dump()
    for part in options.split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        key = key.strip()
        value = value.strip()
        if key == "model" and not sep:
            updates["use_model"] = True
        elif key == "cpu" and not sep:
            updates["force_cpu"] = True
        elif key == "session_pool_size" and sep:
            updates["session_pool_size"] = _parse_int(key, value)
        elif key == "batch_size" and sep:
            updates["auto_batch_size"] = _parse_int(key, value)
        elif key == "model_file" and sep and value:
            updates["model_basename"] = value
        elif key == "linear" and sep and value:
            updates["linear_weights_path"] = value
        else:
            raise ConfigurationError(f"Unknown scorer option {part!r}", context={"options": options})
    try:
        return ScorerConfig(**updates)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid scorer options {options!r}: {e}") from e


def config_from_env(base: Optional[ScorerConfig] = None) -> ScorerConfig:
    """Overlay HIVE_* environment variables on ``base``."""
    base = base or ScorerConfig()
    updates = {}
    force_cpu = _is_truthy_env("HIVE_FORCE_CPU")
    if force_cpu is not None:
        updates["force_cpu"] = force_cpu
    updates["session_pool_size"] = _parse_positive_int("HIVE_SESSION_POOL_SIZE", base.session_pool_size)
    # Batch sizes below 1 clamp to 1, like the option string.
    updates["auto_batch_size"] = max(1, _parse_int_env("HIVE_AUTO_BATCH_SIZE", base.auto_batch_size))
    basename = os.environ.get("HIVE_MODEL_BASENAME", "").strip()
    if basename:
        updates["model_basename"] = basename
    return base.model_copy(update=updates)


def build_scorer(config: ScorerConfig) -> Union["ModelScorer", "LinearScorer", None]:
    """Model scorer when enabled, else the linear scorer if configured, else None."""
    from .ai.linear_scorer import LinearScorer
    from .ai.model_scorer import ModelScorer

    linear = None
    if config.linear_weights_path:
        linear = LinearScorer.from_file(config.linear_weights_path)
    if not config.use_model:
        return linear
    if not config.model_basename:
        raise ConfigurationError("Model scorer enabled without a model basename")
    logger.info(
        f"Building model scorer from {config.model_basename} "
        f"(session_pool_size={config.session_pool_size}, batch_size={config.auto_batch_size}, "
        f"force_cpu={config.force_cpu})"
    )
    return ModelScorer(
        config.model_basename,
        session_pool_size=config.session_pool_size,
        force_cpu=config.force_cpu,
        auto_batch_size=config.auto_batch_size,
        linear=linear,
    )
