"""
State machine used to trace a run through its lifecycle states.

Tasks may carry a state label. The executor follows each branch's current
state and checks every move against the transition table; unexpected moves
are logged, not enforced.
"""

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class StateMachine:
    initial: str
    rejected: str
    transitions: Mapping[str, frozenset[str]] = field(default_factory=dict)

    def allows(self, current: str, target: str) -> bool:
        if current == target:
            return True
        return target in self.transitions.get(current, frozenset())

    @property
    def terminal_states(self) -> frozenset[str]:
        return frozenset({self.rejected})
