"""
Canonical workflow types (``fleet_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  A workflow is one
declarative table of (operation, permitted roles, source statuses, target
status); every mutating entry point of a workflow service asks the table
before touching the row.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* Terminal states have no outgoing transitions.
* ADMIN passes the role and ownership checks, never the status check.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from fleet_kernel.domain.context import ActorContext, Role
from fleet_kernel.exceptions import PreconditionFailedError


@dataclass(frozen=True)
class Guard:
    """A descriptive precondition checked by the service (not by the table)."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """One row of a workflow table.

    ``from_states`` empty means the operation creates the document.
    ``owner_roles`` are the roles that may only act on their own documents.
    A transition whose source and target are equal is an in-place edit.
    """
    action: str
    from_states: frozenset[Enum]
    to_state: Enum
    roles: frozenset[Role]
    owner_roles: frozenset[Role] = frozenset()
    guards: tuple[Guard, ...] = ()

    @property
    def creates(self) -> bool:
        return not self.from_states


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    initial_state: Enum
    states: frozenset[Enum]
    transitions: tuple[Transition, ...]
    terminal_states: frozenset[Enum] = frozenset()
    _by_action: dict[str, Transition] = field(
        init=False, repr=False, compare=False,
    )

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state not in states")
        by_action: dict[str, Transition] = {}
        for t in self.transitions:
            if t.action in by_action:
                raise ValueError(f"{self.name}: duplicate action {t.action}")
            unknown = (t.from_states | {t.to_state}) - self.states
            if unknown:
                raise ValueError(
                    f"{self.name}.{t.action}: unknown states {sorted(s.value for s in unknown)}"
                )
            if t.from_states & self.terminal_states:
                raise ValueError(
                    f"{self.name}.{t.action}: transition out of a terminal state"
                )
            by_action[t.action] = t
        object.__setattr__(self, "_by_action", by_action)

    def transition(self, action: str) -> Transition:
        try:
            return self._by_action[action]
        except KeyError:
            raise ValueError(f"{self.name}: unknown action {action!r}") from None

    def successors(self, state: Enum) -> frozenset[Enum]:
        """States reachable from ``state`` in one operation."""
        return frozenset(
            t.to_state for t in self.transitions if state in t.from_states
        )

    def is_path(self, states: Iterable[Enum]) -> bool:
        """True if consecutive observed states are each one operation apart.

        Repeated states are allowed (in-place edits keep the status).
        """
        seq = list(states)
        if not seq or seq[0] != self.initial_state:
            return False
        for before, after in zip(seq, seq[1:]):
            if before != after and after not in self.successors(before):
                return False
            if before == after and before in self.terminal_states:
                return False
        return True

    def authorize(
        self,
        action: str,
        actor: ActorContext,
        current: Enum | None,
        *,
        owner_id: str | None = None,
    ) -> Transition:
        """
        Check role, ownership and source status for ``action``.

        Returns the matching transition.

        Raises:
            PreconditionFailedError: naming the failed check, the expected
                set and the actual value.
        """
        t = self.transition(action)

        if not actor.has_role(t.roles):
            raise PreconditionFailedError(
                action, "role", {r.value for r in t.roles}, actor.role.value,
            )

        if (
            actor.role in t.owner_roles
            and not actor.is_admin
            and actor.actor_id != owner_id
        ):
            raise PreconditionFailedError(
                action, "owner", {owner_id or ""}, actor.actor_id,
            )

        if t.creates:
            if current is not None:
                raise PreconditionFailedError(
                    action, "status", set(), current.value,
                )
        elif current not in t.from_states:
            raise PreconditionFailedError(
                action,
                "status",
                {s.value for s in t.from_states},
                current.value if current is not None else None,
            )
        return t
