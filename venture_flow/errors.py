"""Exception hierarchy for the VentureForge pipeline.

Generation failures come in four flavours so callers can tell them apart:

- ``InputValidationError``: the stage input failed its contract, nothing was sent.
- ``ProviderError``: the provider call itself failed (network, auth, rate limit).
- ``EmptyOutputError``: the provider answered but returned no usable payload.
- ``OutputValidationError``: the payload did not satisfy the stage contract.

Only ``ProviderError`` is considered retryable by the orchestrator.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class FailureKind(str, Enum):
    """Categorise why a stage failed."""

    INPUT_VALIDATION = "input_validation"
    PROVIDER = "provider"
    EMPTY_OUTPUT = "empty_output"
    OUTPUT_VALIDATION = "output_validation"
    TIMEOUT = "timeout"
    STORE_CONFLICT = "store_conflict"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class VentureFlowError(Exception):
    """Base exception for all VentureForge errors."""

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


# ── Generation errors ────────────────────────────────────────────


class GenerationError(VentureFlowError):
    """Raised when a stage cannot produce a contract-conformant result."""

    kind: FailureKind = FailureKind.INTERNAL
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.stage = stage


class InputValidationError(GenerationError):
    """The stage input does not satisfy its input contract."""

    kind = FailureKind.INPUT_VALIDATION

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        errors: Optional[list[dict[str, Any]]] = None,
    ):
        super().__init__(message, stage=stage, details={"errors": errors or []})
        self.errors = errors or []


class ProviderError(GenerationError):
    """The generation provider could not be reached or rejected the call."""

    kind = FailureKind.PROVIDER
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(message, stage=stage, details={"status_code": status_code})
        self.status_code = status_code
        self.retryable = retryable


class EmptyOutputError(GenerationError):
    """The provider succeeded but returned nothing usable."""

    kind = FailureKind.EMPTY_OUTPUT


class OutputValidationError(GenerationError):
    """The provider response violates the stage output contract."""

    kind = FailureKind.OUTPUT_VALIDATION

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        errors: Optional[list[dict[str, Any]]] = None,
        raw: Optional[str] = None,
    ):
        super().__init__(message, stage=stage, details={"errors": errors or []})
        self.errors = errors or []
        self.raw = raw


# ── Orchestration errors ─────────────────────────────────────────


class InvalidTransitionError(VentureFlowError):
    """An operation was requested in a pipeline state that does not allow it."""

    def __init__(self, message: str, *, state: Optional[str] = None):
        super().__init__(message, details={"state": state})
        self.state = state


class BuildModeTimeoutError(VentureFlowError):
    """No build mode was chosen before the configured wait elapsed."""


class StageFailedError(VentureFlowError):
    """A pipeline run aborted because one of its stages failed."""

    def __init__(self, failure: Any):
        super().__init__(failure.message, details={"stage": failure.stage, "kind": failure.kind})
        self.failure = failure


# ── Storage errors ───────────────────────────────────────────────


class StoreConflictError(VentureFlowError):
    """A plan write raced another writer for the same key."""

    def __init__(self, key: str, *, expected: Optional[int], actual: Optional[int]):
        super().__init__(
            f"Plan '{key}' is at version {actual}, expected {expected}.",
            details={"key": key, "expected": expected, "actual": actual},
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class PlanNotFoundError(VentureFlowError):
    """No stored plan exists for the requested key."""


class UnknownOpportunityError(VentureFlowError):
    """The requested opportunity is not among the discovered ones."""


class RunCancelledError(StageFailedError):
    """The operation a caller was awaiting was torn down by ``cancel``."""
