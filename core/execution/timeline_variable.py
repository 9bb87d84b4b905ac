"""
Deferred timeline-variable references.

A TimelineVariable placed in a leaf's parameter bag stands for "the value of
this variable for whichever variable set is active when the trial runs". It is
replaced during the resolution pass, against an explicit EvaluationContext.
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class EvaluationContext:
    """
    Where timeline-variable lookups are resolved.

    Attributes:
        node: Timeline node to resolve against (normally the root; the lookup
              descends to the active leaf)
    """
    node: Any

    def lookup(self, name: str) -> Any:
        """Value bound to ``name`` for the active trial (None if unbound)."""
        return self.node.timeline_variable(name)


class TimelineVariable:
    """
    Placeholder for a timeline variable in a parameter bag.

    Example:
        {'type': 'fixation', 'duration': TimelineVariable('fix_duration')}
    """

    def __init__(self, name: str):
        self.name = name

    def evaluate(self, context: EvaluationContext) -> Any:
        return context.lookup(self.name)

    def __eq__(self, other):
        return isinstance(other, TimelineVariable) and other.name == self.name

    def __hash__(self):
        return hash(('TimelineVariable', self.name))

    def __repr__(self):
        return f"TimelineVariable('{self.name}')"
