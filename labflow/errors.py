"""Workflow error taxonomy.

Every error here is recoverable at the caller (service/HTTP boundary) and
is surfaced to the operator as a rejected operation with a reason.
InvariantViolation is the exception: it signals a bug in the engine itself.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for rejected workflow operations."""

    code = "workflow_error"


class NotFound(WorkflowError, LookupError):
    """Reference to an entity that does not exist."""

    code = "not_found"

    def __init__(self, entity: str, key: object) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class InvalidTransition(WorkflowError):
    """Status change not permitted by the transition table."""

    code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str, reason: str | None = None) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        msg = f"Invalid {entity} transition: {current} -> {target}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class Locked(WorkflowError):
    """Mutation attempted after the assignment latch was set."""

    code = "locked"


class InvalidReference(WorkflowError):
    """Cross-entity reference pointing outside what the target allows."""

    code = "invalid_reference"


class InvalidValue(WorkflowError):
    """Update that would leave a record failing its own validation."""

    code = "invalid_value"


class OutOfSequence(WorkflowError):
    """Identifier counter exhausted for its scope."""

    code = "out_of_sequence"


class InvariantViolation(RuntimeError):
    """Internal consistency failure, e.g. a duplicate minted id. Always a bug."""

    code = "invariant_violation"
