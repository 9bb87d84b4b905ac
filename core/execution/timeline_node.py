"""
TimelineNode class for trialflow.

Turns a declarative timeline description into a steppable sequence of trials.

Every node is either composite (it owns child nodes plus the sampling, looping
and conditional configuration of its timeline) or a leaf (it owns one trial's
parameter bag). The scheduler drives the root with two calls:

- advance(): move to the next trial that still has to run; returns True when
  the whole tree is done
- mark_current_trial_complete(): flag the active leaf as done

advance() is a dispatch loop over an explicit per-node state:

    NOT_STARTED --(conditional passes / leaf reached)--> ACTIVE --> DONE

A composite that has finished all children of a pass picks a PassOutcome:
next variable set, next repetition, or finished (where the loop function may
send it back to NOT_STARTED through reset()).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import copy
import logging
import weakref

from core.data_ledger import DataCollection
from . import randomization
from .spec import CompositeSpec, merge_defaults, parse_spec
from .trial_type import trial_type_name

logger = logging.getLogger(__name__)

_UNBOUND = object()


def copy_parameters(value: Any) -> Any:
    """
    Deep copy a parameter bag, keeping callables (functions, bound methods,
    trial type classes, mocks) as references.
    """
    if isinstance(value, dict):
        return {k: copy_parameters(v) for k, v in value.items()}
    if isinstance(value, list):
        return [copy_parameters(v) for v in value]
    if isinstance(value, tuple):
        return tuple(copy_parameters(v) for v in value)
    if callable(value):
        return value
    return copy.deepcopy(value)


class NodeState(Enum):
    """Lifecycle state of a timeline node."""
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    DONE = "done"


class PassOutcome(Enum):
    """What a composite does once every child of the current pass is done."""
    NEXT_VARIABLE_SET = "next_variable_set"
    NEXT_REPETITION = "next_repetition"
    FINISHED = "finished"


@dataclass
class Progress:
    """
    Mutable traversal state of one node.

    Attributes:
        state: NodeState
        current_location: Index of the active child (-1 = not started)
        current_variable_set: Position in ``order`` of the active variable set
        current_repetition: Completed repetitions of the timeline
        current_iteration: Number of resets (loop passes), part of the node id
        order: Variable-set indices for the current pass
    """
    state: NodeState = NodeState.NOT_STARTED
    current_location: int = -1
    current_variable_set: int = 0
    current_repetition: int = 0
    current_iteration: int = 0
    order: List[int] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.state is NodeState.DONE


class TimelineNode:
    """
    One node of the runtime timeline tree.

    Composite nodes own their children exclusively; the parent link is a weak
    back-reference used only for variable lookup and node ids.
    """

    def __init__(self, spec, host=None, parent: Optional['TimelineNode'] = None, relative_id: int = 0):
        """
        Build a node (and, for a composite, its whole subtree).

        Args:
            spec: Timeline mapping, list of timeline entries (root only) or parsed spec
            host: Experiment owning the tree (provides ``data`` for generated_data())
            parent: Composite node this node belongs to (None = root)
            relative_id: Index of this node among its siblings
        """
        if isinstance(spec, (list, tuple)):
            spec = {'timeline': list(spec)}

        self.host = host
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self.relative_id = relative_id if parent is not None else 0
        self.progress = Progress()

        self.timeline_parameters: Optional[CompositeSpec] = None
        self.children: List['TimelineNode'] = []
        self.node_trial_data: Dict[str, Any] = {}
        self.trial_parameters: Optional[Dict[str, Any]] = None

        parsed = parse_spec(spec)
        self.spec_errors: List[str] = list(parsed.errors)

        if isinstance(parsed, CompositeSpec):
            self.timeline_parameters = parsed
            self.node_trial_data = dict(parsed.defaults)
            self.set_timeline_variables_order()
            for i, child_spec in enumerate(parsed.timeline):
                merged = merge_defaults(self.node_trial_data, child_spec)
                self.children.append(TimelineNode(merged, host, self, i))
        else:
            self.trial_parameters = copy_parameters(parsed.parameters)

        for error in self.spec_errors:
            logger.error(f"Timeline node {self.id()}: {error}")

    # ==================== STRUCTURE ====================

    @property
    def parent(self) -> Optional['TimelineNode']:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def is_composite(self) -> bool:
        return self.timeline_parameters is not None

    def id(self) -> str:
        """
        Hierarchical id of this node for its current iteration.

        Root: "0.<iteration>"; child: "<parent id>-<relative index>.<iteration>"
        """
        parent = self.parent
        if parent is None:
            return f"0.{self.progress.current_iteration}"
        return f"{parent.id()}-{self.relative_id}.{self.progress.current_iteration}"

    def length(self) -> int:
        """
        Number of trials in this subtree, assuming every conditional runs and
        every loop runs once (used for progress estimates only).
        """
        if not self.is_composite:
            return 1
        return sum(child.length() for child in self.children)

    def percent_complete(self) -> float:
        """Share of trials (0-100) under first-level children that are complete."""
        total = self.length()
        if total == 0:
            return 100.0 if self.is_complete() else 0.0
        completed = sum(child.length() for child in self.children if child.is_complete())
        return completed / total * 100

    def insert(self, spec):
        """
        Append a child to this timeline; may be called while it is running.

        Args:
            spec: Timeline entry for the new child
        """
        if not self.is_composite:
            logger.error(f"Timeline node {self.id()}: cannot add new trials to a trial-level node")
            return
        merged = merge_defaults(self.node_trial_data, spec)
        self.children.append(TimelineNode(merged, self.host, self, len(self.children)))

    def validate(self) -> List[str]:
        """
        Collect spec problems in this subtree.

        Returns:
            List of error messages (empty if valid)
        """
        errors = [f"Node {self.id()}: {e}" for e in self.spec_errors]
        for child in self.children:
            errors.extend(child.validate())
        return errors

    def trials_of_type(self, trial_type) -> List[Dict[str, Any]]:
        """All leaf parameter bags in this subtree with the given trial type."""
        if not self.is_composite:
            if trial_type_name(self.trial_parameters.get('type')) == trial_type_name(trial_type):
                return [self.trial_parameters]
            return []
        trials = []
        for child in self.children:
            trials.extend(child.trials_of_type(trial_type))
        return trials

    # ==================== ORDERING ====================

    def set_timeline_variables_order(self):
        """Compute ``progress.order`` for a fresh pass (sampling, then randomize_order)."""
        if not self.is_composite:
            return

        params = self.timeline_parameters
        order = list(range(len(params.timeline_variables)))
        sample = params.sample

        if sample is not None:
            if sample.type == 'custom':
                order = list(sample.fn(order))
            elif sample.type == 'with-replacement':
                order = randomization.sample_with_replacement(order, sample.size, sample.weights)
            elif sample.type == 'without-replacement':
                order = randomization.sample_without_replacement(order, sample.size)
            elif sample.type == 'fixed-repetitions':
                order = randomization.repeat(order, sample.size)
            elif sample.type == 'alternate-groups':
                order = randomization.shuffle_alternate_groups(sample.groups, sample.randomize_group_order)

        if params.randomize_order:
            order = randomization.shuffle(order)

        self.progress.order = order

    # ==================== STATE MACHINE ====================

    def advance(self) -> bool:
        """
        Move this subtree forward to its next incomplete trial.

        Returns:
            True if this node and its whole subtree are done
        """
        while True:
            handler = self._TRANSITIONS[self.progress.state]
            result = handler(self)
            if result is not None:
                return result

    def _advance_done(self) -> bool:
        return True

    def _advance_not_started(self) -> Optional[bool]:
        progress = self.progress
        params = self.timeline_parameters

        if params is not None:
            # the conditional only runs before the first repetition and variable set
            if params.conditional_function is not None and \
                    progress.current_repetition == 0 and progress.current_variable_set == 0:
                result = params.conditional_function()
                if result is not None and not result:
                    logger.debug(f"Timeline node {self.id()}: conditional_function returned False, skipping")
                    self._set_done()
                    return True

            if params.on_timeline_start is not None and progress.current_variable_set == 0:
                params.on_timeline_start()

        progress.current_location = 0
        progress.state = NodeState.ACTIVE
        return None

    def _advance_active(self) -> Optional[bool]:
        if not self.is_composite:
            # leaves only become done through mark_current_trial_complete()
            return False

        progress = self.progress
        while progress.current_location < len(self.children):
            if not self.children[progress.current_location].advance():
                return False
            progress.current_location += 1

        outcome = self._pass_outcome()
        logger.debug(f"Timeline node {self.id()}: pass complete -> {outcome.value}")
        return self._PASS_TRANSITIONS[outcome](self)

    def _pass_outcome(self) -> PassOutcome:
        progress = self.progress
        if progress.current_variable_set < len(progress.order) - 1:
            return PassOutcome.NEXT_VARIABLE_SET
        if progress.current_repetition < self.timeline_parameters.repetitions - 1:
            return PassOutcome.NEXT_REPETITION
        return PassOutcome.FINISHED

    def _continue_with_next_set(self) -> None:
        self.next_set()
        return None

    def _continue_with_next_repetition(self) -> None:
        self.next_repetition()
        if self.timeline_parameters.on_timeline_finish is not None:
            self.timeline_parameters.on_timeline_finish()
        return None

    def _finish(self) -> Optional[bool]:
        params = self.timeline_parameters
        if params.on_timeline_finish is not None:
            params.on_timeline_finish()

        if params.loop_function is not None and params.loop_function(self.generated_data()):
            if self.length() == 0:
                logger.error(f"Timeline node {self.id()}: loop_function requested another pass "
                             f"of a timeline without trials; ending it instead")
            else:
                logger.debug(f"Timeline node {self.id()}: loop_function returned True, looping")
                self.reset()
                return None

        self._set_done()
        return True

    _TRANSITIONS = {
        NodeState.DONE: _advance_done,
        NodeState.NOT_STARTED: _advance_not_started,
        NodeState.ACTIVE: _advance_active,
    }

    _PASS_TRANSITIONS = {
        PassOutcome.NEXT_VARIABLE_SET: _continue_with_next_set,
        PassOutcome.NEXT_REPETITION: _continue_with_next_repetition,
        PassOutcome.FINISHED: _finish,
    }

    def _set_done(self):
        self.progress.state = NodeState.DONE

    def _reset_children(self):
        for child in self.children:
            child.reset()

    def next_set(self):
        """Start the next variable set of the current repetition."""
        progress = self.progress
        progress.current_location = -1
        progress.state = NodeState.NOT_STARTED
        progress.current_variable_set += 1
        self._reset_children()

    def next_repetition(self):
        """Start the next repetition with a freshly sampled order."""
        self.set_timeline_variables_order()
        progress = self.progress
        progress.current_location = -1
        progress.state = NodeState.NOT_STARTED
        progress.current_variable_set = 0
        progress.current_repetition += 1
        self._reset_children()

    def reset(self):
        """Restore this subtree to NOT_STARTED and bump the iteration counter."""
        progress = self.progress
        progress.current_location = -1
        progress.state = NodeState.NOT_STARTED
        progress.current_repetition = 0
        progress.current_variable_set = 0
        progress.current_iteration += 1
        self.set_timeline_variables_order()
        self._reset_children()

    def mark_current_trial_complete(self):
        """Mark the active leaf of this subtree as done."""
        if not self.is_composite:
            self._set_done()
            return

        location = self.progress.current_location
        if not 0 <= location < len(self.children):
            logger.warning(f"Timeline node {self.id()}: no active trial to mark complete")
            return
        self.children[location].mark_current_trial_complete()

    def is_complete(self) -> bool:
        return self.progress.done

    def end(self):
        """Mark this node done without running the rest of it."""
        self._set_done()

    def end_active_node(self):
        """End the timeline that directly contains the active trial."""
        if not self.is_composite:
            self.end()
            parent = self.parent
            if parent is not None:
                parent.end()
            return

        location = self.progress.current_location
        if 0 <= location < len(self.children):
            self.children[location].end_active_node()

    # ==================== ACTIVE TRIAL ====================

    def _active_child(self) -> Optional['TimelineNode']:
        location = self.progress.current_location
        if 0 <= location < len(self.children):
            return self.children[location]
        return None

    def active_node(self) -> Optional['TimelineNode']:
        """The leaf that is currently running in this subtree (None if none)."""
        if not self.is_composite:
            return self
        child = self._active_child()
        return child.active_node() if child is not None else None

    def active_id(self) -> Optional[str]:
        node = self.active_node()
        return node.id() if node is not None else None

    def trial(self) -> Optional[Dict[str, Any]]:
        """
        Fresh deep copy of the active leaf's parameter bag.

        Returns:
            Parameter bag, or None if no trial is active
        """
        if not self.is_composite:
            return copy_parameters(self.trial_parameters)
        child = self._active_child()
        return child.trial() if child is not None else None

    def generated_data(self) -> DataCollection:
        """All data rows recorded under this node's current iteration."""
        ledger = getattr(self.host, 'data', None)
        if ledger is None:
            return DataCollection()
        return ledger.query_by_node_prefix(self.id())

    # ==================== TIMELINE VARIABLES ====================

    def _variable_set(self) -> Dict[str, Any]:
        if not self.is_composite:
            return {}
        progress = self.progress
        if not 0 <= progress.current_variable_set < len(progress.order):
            return {}
        return self.timeline_parameters.timeline_variables[progress.order[progress.current_variable_set]]

    def _lookup_child(self) -> Optional['TimelineNode']:
        # before the first child starts (-1) use the first child; after the
        # last one finished (e.g. inside loop_function) use the last child
        if not self.children:
            return None
        location = max(0, self.progress.current_location)
        location = min(location, len(self.children) - 1)
        return self.children[location]

    def get_timeline_variable_value(self, name: str) -> Any:
        """Value bound to ``name`` at this level only (_UNBOUND sentinel if absent)."""
        return self._variable_set().get(name, _UNBOUND)

    def find_timeline_variable(self, name: str) -> Any:
        """
        Search this node and then its ancestors for ``name``.

        Returns:
            Innermost bound value, or None if no level binds it
        """
        value = self.get_timeline_variable_value(name)
        if value is not _UNBOUND:
            return value
        parent = self.parent
        if parent is not None:
            return parent.find_timeline_variable(name)
        logger.warning(f"Timeline variable '{name}' is not defined for trial {self.id()}")
        return None

    def timeline_variable(self, name: str) -> Any:
        """Resolve ``name`` for the active trial (descends, then searches upward)."""
        child = self._lookup_child() if self.is_composite else None
        if child is None:
            return self.find_timeline_variable(name)
        return child.timeline_variable(name)

    def _timeline_variable_names(self, so_far: List[str]) -> List[str]:
        if not self.is_composite:
            return so_far
        names = so_far + [n for n in self._variable_set().keys() if n not in so_far]
        child = self._lookup_child()
        return child._timeline_variable_names(names) if child is not None else names

    def all_timeline_variables(self) -> Dict[str, Any]:
        """Every variable visible from the active trial, resolved innermost-first."""
        return {name: self.timeline_variable(name) for name in self._timeline_variable_names([])}

    def __repr__(self):
        kind = f"timeline, {len(self.children)} children" if self.is_composite else \
            f"trial, type={trial_type_name(self.trial_parameters.get('type'))}"
        return f"TimelineNode(id='{self.id()}', {kind}, state={self.progress.state.value})"
