"""Explicit outcome type for best-effort pipeline steps.

Title generation and note extraction never raise to the orchestrator. They
return a StepResult that the orchestrator inspects, logs and discards.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class StepResult(Generic[T]):
    """Outcome of a best-effort step: a value on success, an error string otherwise."""

    ok: bool
    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T) -> "StepResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "StepResult[T]":
        return cls(ok=False, error=error)

