"""
Workflow primitives shared by the order modules.

A workflow is a frozen table of legal transitions.  Services consult it
before every status write; the table is the single source of which moves
are legal, who may make them, and which ones return reserved stock.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    roles: frozenset[str] = frozenset()  # empty: any caller
    restores_inventory: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def find(self, from_state: str, to_state: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def allows(self, from_state: str, to_state: str, role: str | None = None) -> bool:
        t = self.find(from_state, to_state)
        if t is None:
            return False
        return not t.roles or role in t.roles

    def targets(self, from_state: str) -> frozenset[str]:
        return frozenset(t.to_state for t in self.transitions if t.from_state == from_state)

    def terminal_states(self) -> frozenset[str]:
        return frozenset(s for s in self.states if not self.targets(s))
