"""Service-level exceptions raised by the planning core and its collaborators."""
from __future__ import annotations


class PlanValidationError(ValueError):
    """A plan or replan batch does not match the required shape."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason

    def to_detail(self) -> dict[str, str]:
        return {"field": self.field, "reason": self.reason}


class GenerationError(RuntimeError):
    """The language model could not be reached or returned unusable output."""


class ReplanConflictError(RuntimeError):
    """The plan changed while replacement tasks were being generated."""
