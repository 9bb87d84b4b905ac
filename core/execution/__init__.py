"""
Execution module for trialflow.

This module contains the core execution architecture:
- TimelineNode: Recursive state machine over a timeline description
- TrialType: Base class for presentation collaborators
- TimelineVariable: Deferred reference to a variable-set value
- randomization: Sampling and ordering algorithms
"""

from .errors import InvalidArgumentError, SchedulerError, TimelineSpecError
from .parameters import ParameterInfo, ParameterType, TrialTypeInfo
from .spec import CompositeSpec, LeafSpec, SampleConfig, parse_spec
from .timeline_node import NodeState, PassOutcome, TimelineNode
from .timeline_variable import EvaluationContext, TimelineVariable
from .trial_type import TrialType, register_trial_type
from . import trial_types

__all__ = [
    'InvalidArgumentError',
    'SchedulerError',
    'TimelineSpecError',
    'ParameterInfo',
    'ParameterType',
    'TrialTypeInfo',
    'CompositeSpec',
    'LeafSpec',
    'SampleConfig',
    'parse_spec',
    'NodeState',
    'PassOutcome',
    'TimelineNode',
    'EvaluationContext',
    'TimelineVariable',
    'TrialType',
    'register_trial_type',
    'trial_types',
]
