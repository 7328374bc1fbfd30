"""Table-driven state machine shared by requests and CRFs.

The machine only validates and resolves transitions; it holds no entity.
The engine asks it for the next state and writes the result to the store.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Generic, TypeVar

from labflow.errors import InvalidTransition
from labflow.models.enums import CRFStatus, RequestStatus
from labflow.workflow.states import CRF_TRANSITIONS, REQUEST_TRANSITIONS, REVIEW_TRIGGERS

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)


class StateMachine(Generic[S]):
    """Validates transitions against a {state: {trigger: next_state}} table."""

    def __init__(
        self,
        entity: str,
        transitions: dict[S, dict[str, S]],
        restricted_triggers: frozenset[str] = frozenset(),
    ) -> None:
        self.entity = entity
        self.transitions = transitions
        self.restricted_triggers = restricted_triggers

    def can_transition(self, current: S, trigger: str) -> bool:
        """Check if a trigger is valid from the current state."""
        return trigger in self.transitions.get(current, {})

    def get_valid_triggers(self, current: S) -> list[str]:
        return list(self.transitions.get(current, {}).keys())

    def allowed_targets(self, current: S, *, include_restricted: bool = False) -> list[S]:
        return [
            target
            for trigger, target in self.transitions.get(current, {}).items()
            if include_restricted or trigger not in self.restricted_triggers
        ]

    def trigger_for(self, current: S, target: S) -> str | None:
        for trigger, next_state in self.transitions.get(current, {}).items():
            if next_state == target:
                return trigger
        return None

    def fire(self, current: S, trigger: str) -> S:
        """Next state for ``trigger``.

        Raises:
            InvalidTransition: If the trigger is not valid from ``current``.
        """
        state_transitions = self.transitions.get(current, {})
        if trigger not in state_transitions:
            raise InvalidTransition(
                self.entity,
                current.value,
                f"--{trigger}-->",
                f"valid: {list(state_transitions.keys())}",
            )
        target = state_transitions[trigger]
        logger.debug("%s transition: %s --%s--> %s", self.entity, current.value, trigger, target.value)
        return target

    def resolve(self, current: S, target: S) -> str:
        """Trigger for a direct status change, refusing restricted edges.

        Raises:
            InvalidTransition: If no unrestricted edge leads to ``target``.
        """
        if current == target:
            raise InvalidTransition(self.entity, current.value, target.value, "already in this state")
        trigger = self.trigger_for(current, target)
        if trigger is None:
            allowed = [s.value for s in self.allowed_targets(current)]
            raise InvalidTransition(self.entity, current.value, target.value, f"allowed: {allowed}")
        if trigger in self.restricted_triggers:
            raise InvalidTransition(
                self.entity, current.value, target.value, f"'{trigger}' requires a review outcome"
            )
        return trigger

    def is_terminal(self, state: S) -> bool:
        return len(self.transitions.get(state, {})) == 0


request_machine: StateMachine[RequestStatus] = StateMachine("Request", REQUEST_TRANSITIONS)
crf_machine: StateMachine[CRFStatus] = StateMachine("CRF", CRF_TRANSITIONS, REVIEW_TRIGGERS)
