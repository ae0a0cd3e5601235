"""
Hive scoring error hierarchy

Unified exception hierarchy for the scoring pipeline. All custom exceptions
inherit from HiveAIError for easy catching and filtering.

Errors split in two families:

- FatalError: invariant violations that mean the model and the encoder have
  drifted apart, or that the process is misconfigured. They propagate up to
  :func:`fatal_boundary`, which terminates the process.
- ModelLoadError: load-time failures (restoring or initializing weights)
  that are reported to the caller, since nothing is being served yet.

Usage:
    from hive_ai.errors import SchemaVersionError, fatal_boundary

    with fatal_boundary():
        scorer = build_scorer(config)
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

__all__ = [
    # Base error
    "HiveAIError",
    # Fatal errors
    "ConfigurationError",
    "EmptyBatchError",
    "FatalError",
    "InternalConsistencyError",
    "LabelMismatchError",
    "ModelArtifactError",
    "RegistryError",
    "SchemaVersionError",
    # Recoverable load errors
    "CheckpointRestoreError",
    "ModelInitError",
    "ModelLoadError",
    # Top-level boundary
    "FATAL_EXIT_CODE",
    "fatal_boundary",
]

logger = logging.getLogger(__name__)

# EX_SOFTWARE from sysexits.h
FATAL_EXIT_CODE = 70


class HiveAIError(Exception):
    """Base exception for all scoring pipeline errors.

    Attributes:
        code: Machine-readable error code for categorization
        message: Human-readable error description
        context: Additional context for debugging
    """
    code: str = "HIVE_AI_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.code}] {self.message} ({ctx})"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Fatal Errors
# =============================================================================


class FatalError(HiveAIError):
    """Unrecoverable error: the process should not continue.

    Raised for model/encoder skew, output cardinality mismatches and
    misconfiguration. Catch it only at the top-level boundary.
    """
    code: str = "FATAL_ERROR"


class RegistryError(FatalError):
    """Feature registry definitions are inconsistent."""
    code: str = "REGISTRY_ERROR"


class SchemaVersionError(FatalError):
    """Requested feature schema version the registry cannot produce.

    Attributes:
        requested: Schema version (feature width) that was asked for
        known_width: Full width of the registry
    """
    code: str = "SCHEMA_VERSION_ERROR"

    def __init__(
        self,
        message: str,
        requested: int | None = None,
        known_width: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        if requested is not None:
            self.context["requested"] = requested
        if known_width is not None:
            self.context["known_width"] = known_width


class InternalConsistencyError(FatalError):
    """Model outputs do not line up with the inputs fed to it.

    Raised when the number of predictions returned by the execution backend
    differs from the number of boards or actions submitted.
    """
    code: str = "INTERNAL_CONSISTENCY"

    def __init__(
        self,
        message: str,
        expected: int | None = None,
        actual: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        if expected is not None:
            self.context["expected"] = expected
        if actual is not None:
            self.context["actual"] = actual


class EmptyBatchError(FatalError):
    """A batch with no boards was submitted for scoring or learning."""
    code: str = "EMPTY_BATCH"


class LabelMismatchError(FatalError):
    """Training labels do not match the boards or their legal actions."""
    code: str = "LABEL_MISMATCH"


class ModelArtifactError(FatalError):
    """Graph definition is missing, malformed, or incompatible."""
    code: str = "MODEL_ARTIFACT_ERROR"

    def __init__(
        self,
        message: str,
        path: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        if path:
            self.context["path"] = path


class ConfigurationError(FatalError):
    """Invalid configuration (unknown option, multi-session learning...)."""
    code: str = "CONFIGURATION_ERROR"


# =============================================================================
# Load-time Errors (recoverable)
# =============================================================================


class ModelLoadError(HiveAIError):
    """Failed to bring model weights into a usable state.

    Raised at load time, before any request is served, so callers may fall
    back to another scorer instead of terminating.
    """
    code: str = "MODEL_LOAD_ERROR"

    def __init__(
        self,
        message: str,
        model_path: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        if model_path:
            self.context["model_path"] = model_path


class CheckpointRestoreError(ModelLoadError):
    """Checkpoint exists but could not be restored into the sessions."""
    code: str = "CHECKPOINT_RESTORE_ERROR"


class ModelInitError(ModelLoadError):
    """Fresh weight initialization failed."""
    code: str = "MODEL_INIT_ERROR"


# =============================================================================
# Top-level boundary
# =============================================================================


@contextmanager
def fatal_boundary(exit_code: int = FATAL_EXIT_CODE) -> Iterator[None]:
    """Terminate the process on :class:`FatalError`.

    Everything else propagates unchanged.
    """
    try:
        yield
    except FatalError as e:
        logger.error(f"Fatal error, terminating: {e}")
        sys.exit(exit_code)
