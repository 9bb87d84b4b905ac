"""
Timeline descriptions for trialflow.

A timeline is described with plain mappings, exactly as an experimenter
writes it:

    {'timeline': [
        {'type': 'fixation', 'duration': 0.5},
        {'type': 'call-function', 'func': record_onset},
     ],
     'timeline_variables': [{'word': 'cat'}, {'word': 'dog'}],
     'randomize_order': True,
     'repetitions': 2}

parse_spec() turns such a mapping into a CompositeSpec or LeafSpec. Problems
are collected in ``errors`` instead of raised, so the timeline node built from
a broken spec keeps its place in the tree and reports the problem when it is
reached.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .errors import TimelineSpecError
from .parameters import TIMELINE_KEYS
from .timeline_variable import TimelineVariable
from .trial_type import resolve_trial_type, trial_type_name


SAMPLE_TYPES = (
    'custom',
    'with-replacement',
    'without-replacement',
    'fixed-repetitions',
    'alternate-groups',
)


@dataclass
class SampleConfig:
    """
    How a timeline picks and orders its variable sets.

    Attributes:
        type: One of SAMPLE_TYPES
        size: Sample size (with/without replacement) or repetitions per set
              (fixed-repetitions)
        weights: Relative weights for with-replacement sampling
        groups: Lists of variable-set indices for alternate-groups
        randomize_group_order: Shuffle group order for alternate-groups
        fn: custom: function(order) -> new order
    """
    type: str
    size: Any = None
    weights: Optional[List[float]] = None
    groups: Optional[List[List[int]]] = None
    randomize_group_order: bool = False
    fn: Optional[Callable] = None

    def validate(self) -> List[str]:
        errors = []
        if self.type not in SAMPLE_TYPES:
            errors.append(
                f"Invalid type in timeline sample parameters: '{self.type}'. "
                f"Valid options for type are {', '.join(SAMPLE_TYPES)}"
            )
        elif self.type == 'custom' and not callable(self.fn):
            errors.append("custom sampling requires a callable 'fn'")
        elif self.type in ('with-replacement', 'without-replacement', 'fixed-repetitions') \
                and self.size is None:
            errors.append(f"{self.type} sampling requires 'size'")
        elif self.type == 'alternate-groups' and not self.groups:
            errors.append("alternate-groups sampling requires 'groups'")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        data = {'type': self.type}
        for key in ('size', 'weights', 'groups', 'fn'):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.randomize_group_order:
            data['randomize_group_order'] = True
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SampleConfig':
        return cls(
            type=data.get('type'),
            size=data.get('size'),
            weights=data.get('weights'),
            groups=data.get('groups'),
            randomize_group_order=bool(data.get('randomize_group_order', False)),
            fn=data.get('fn'),
        )


@dataclass
class LeafSpec:
    """
    A single trial: its type and parameter bag.

    Attributes:
        parameters: Full parameter bag, including 'type'
        errors: Problems found while validating the bag
    """
    parameters: Dict[str, Any]
    errors: List[str] = field(default_factory=list)

    @property
    def type(self):
        return self.parameters.get('type')

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.parameters)


@dataclass
class CompositeSpec:
    """
    A timeline of child specs plus its sampling/looping configuration.

    Attributes:
        timeline: Child specs (mappings or parsed specs)
        timeline_variables: Variable sets, one pass over the children per set
        sample: Optional sampling configuration
        randomize_order: Shuffle the variable-set order on every pass
        repetitions: Number of passes over all variable sets
        loop_function: function(generated_data) -> bool, re-run when True
        conditional_function: function() -> bool, skip the timeline when False
        on_timeline_start / on_timeline_finish: Lifecycle hooks
        defaults: Shared parameters copied down to every child
        errors: Problems found while parsing
    """
    timeline: List[Any]
    timeline_variables: List[Dict[str, Any]] = field(default_factory=lambda: [{}])
    sample: Optional[SampleConfig] = None
    randomize_order: bool = False
    repetitions: int = 1
    loop_function: Optional[Callable] = None
    conditional_function: Optional[Callable] = None
    on_timeline_start: Optional[Callable] = None
    on_timeline_finish: Optional[Callable] = None
    defaults: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.defaults)
        data['timeline'] = list(self.timeline)
        data['timeline_variables'] = self.timeline_variables
        data['randomize_order'] = self.randomize_order
        data['repetitions'] = self.repetitions
        if self.sample is not None:
            data['sample'] = self.sample.to_dict()
        for hook in ('loop_function', 'conditional_function', 'on_timeline_start', 'on_timeline_finish'):
            if getattr(self, hook) is not None:
                data[hook] = getattr(self, hook)
        return data


TimelineSpec = Union[CompositeSpec, LeafSpec]


def _as_mapping(raw) -> Mapping[str, Any]:
    if isinstance(raw, (CompositeSpec, LeafSpec)):
        return raw.to_dict()
    if isinstance(raw, Mapping):
        return raw
    raise TimelineSpecError(f"Timeline entries must be mappings, got {type(raw).__name__}: {raw!r}")


def merge_defaults(defaults: Mapping[str, Any], child) -> Dict[str, Any]:
    """
    Merge a parent's shared parameters under a child's own parameters.

    The child wins key-wise; when both define a ``data`` mapping the two are
    merged key-wise as well.

    Args:
        defaults: Parent's shared parameters
        child: Child spec (mapping or parsed spec)

    Returns:
        New merged mapping
    """
    child_data = _as_mapping(child)
    merged = dict(defaults)
    merged.update(child_data)
    if isinstance(defaults.get('data'), Mapping) and isinstance(child_data.get('data'), Mapping):
        merged['data'] = {**defaults['data'], **child_data['data']}
    return merged


def _parse_composite(raw: Mapping[str, Any]) -> CompositeSpec:
    errors = []

    timeline = raw['timeline']
    if not isinstance(timeline, (list, tuple)):
        errors.append(f"'timeline' must be a list, got {type(timeline).__name__}")
        timeline = []

    timeline_variables = raw.get('timeline_variables')
    if timeline_variables is None:
        timeline_variables = [{}]
    elif not isinstance(timeline_variables, (list, tuple)) or \
            not all(isinstance(v, Mapping) for v in timeline_variables):
        errors.append("'timeline_variables' must be a list of mappings")
        timeline_variables = [{}]
    elif len(timeline_variables) == 0:
        errors.append("'timeline_variables' is empty; running the timeline once without variables")
        timeline_variables = [{}]

    sample = None
    sample_data = raw.get('sample', raw.get('sampling'))
    if sample_data is not None:
        if isinstance(sample_data, SampleConfig):
            sample = sample_data
        elif isinstance(sample_data, Mapping):
            sample = SampleConfig.from_dict(sample_data)
        else:
            errors.append("'sample' must be a mapping")
        if sample is not None:
            sample_errors = sample.validate()
            if sample_errors:
                errors.extend(sample_errors)
                sample = None

    repetitions = raw.get('repetitions', 1)
    if isinstance(repetitions, bool) or not isinstance(repetitions, int) or repetitions < 1:
        errors.append(f"'repetitions' must be a positive integer, got {repetitions!r}")
        repetitions = 1

    hooks = {}
    for hook in ('loop_function', 'conditional_function', 'on_timeline_start', 'on_timeline_finish'):
        value = raw.get(hook)
        if value is not None and not callable(value):
            errors.append(f"'{hook}' must be callable")
            value = None
        hooks[hook] = value

    defaults = {k: v for k, v in raw.items() if k not in TIMELINE_KEYS}

    return CompositeSpec(
        timeline=list(timeline),
        timeline_variables=list(timeline_variables),
        sample=sample,
        randomize_order=bool(raw.get('randomize_order', False)),
        repetitions=repetitions,
        defaults=defaults,
        errors=errors,
        **hooks,
    )


def validate_leaf(parameters: Mapping[str, Any]) -> List[str]:
    """
    Check a leaf parameter bag against its trial type's declared schema.

    Args:
        parameters: Leaf parameter bag

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    if parameters.get('type') is None:
        errors.append('Trial level node is missing the "type" parameter')
        return errors

    trial_type = resolve_trial_type(parameters['type'])
    if trial_type is None:
        errors.append(f"Unknown trial type: {trial_type_name(parameters['type'])}")
        return errors

    for name in trial_type.info.missing_required(parameters):
        errors.append(
            f"You must specify a value for the {name} parameter in the {trial_type.info.name} trial type"
        )

    for name, info in trial_type.info.parameters.items():
        value = parameters.get(name)
        if info.array and value is not None and not isinstance(value, (list, tuple, TimelineVariable)) \
                and not callable(value):
            errors.append(f"Parameter {name} of {trial_type.info.name} must be a list")

    return errors


def parse_spec(raw) -> TimelineSpec:
    """
    Parse one timeline entry.

    Args:
        raw: Mapping (or an already parsed spec)

    Returns:
        CompositeSpec if the entry has a 'timeline' key, else LeafSpec

    Raises:
        TimelineSpecError: If the entry is not a mapping at all
    """
    if isinstance(raw, (CompositeSpec, LeafSpec)):
        return raw

    raw = _as_mapping(raw)
    if 'timeline' in raw:
        return _parse_composite(raw)

    parameters = dict(raw)
    return LeafSpec(parameters=parameters, errors=validate_leaf(parameters))
