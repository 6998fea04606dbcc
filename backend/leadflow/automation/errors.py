"""Error taxonomy of the automation engine."""

from __future__ import annotations


class AutomationError(Exception):
    """Base class for automation engine errors."""


class ValidationError(AutomationError):
    """Raised when a workflow graph violates its structural invariants."""

    def __init__(self, errors: list[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid workflow graph")


class GraphRuntimeError(AutomationError):
    """Raised when a stored graph turns out to be unusable while a run is walking it."""


class RuntimeActionError(AutomationError):
    """Raised when an action cannot be applied to the CRM."""

    def __init__(self, node_id: str, subtype: str, message: str) -> None:
        self.node_id = node_id
        self.subtype = subtype
        super().__init__(f"action {subtype} ({node_id}) failed: {message}")


class LoopGuardError(AutomationError):
    """Raised when a run exceeds the configured hop limit."""

    def __init__(self, hops: int, max_hops: int) -> None:
        self.hops = hops
        self.max_hops = max_hops
        super().__init__(f"loop guard: hop limit of {max_hops} exceeded ({hops} hops)")


class DispatchIsolationError(AutomationError):
    """Wraps an unexpected exception raised inside one automation run."""

    def __init__(self, run_id: int | None, original: BaseException) -> None:
        self.run_id = run_id
        self.original = original
        super().__init__(f"unexpected error: {type(original).__name__}: {original}")


class RunStateError(AutomationError):
    """Raised on an attempt to change a run that is already terminal."""
