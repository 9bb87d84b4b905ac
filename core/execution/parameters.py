"""
Parameter schema declarations for trial types.

Each trial type declares its parameters (type, default, nesting) in a
TrialTypeInfo. The scheduler uses the declared types to decide which
function-valued parameters are evaluated before a trial is presented, and the
timeline builder uses them to validate leaf specs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ParameterType(Enum):
    """Declared type of a trial parameter."""
    BOOL = "bool"
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    FUNCTION = "function"  # passed through unevaluated
    KEY = "key"
    KEYS = "keys"
    SELECT = "select"
    HTML_STRING = "html_string"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    OBJECT = "object"
    COMPLEX = "complex"  # mapping (or list of mappings) with nested parameters
    TIMELINE = "timeline"


class _Required:
    """Sentinel default for parameters that must be supplied."""

    def __repr__(self):
        return "REQUIRED"


REQUIRED = _Required()


@dataclass
class ParameterInfo:
    """
    Declaration of one trial parameter.

    Attributes:
        type: Declared ParameterType
        default: Default value (REQUIRED = must be given in the timeline)
        pretty_name: Human-readable name
        array: For COMPLEX parameters, the value is a list of mappings
        nested: For COMPLEX parameters, declarations of the nested keys
    """
    type: ParameterType
    default: Any = REQUIRED
    pretty_name: str = ""
    array: bool = False
    nested: Optional[Dict[str, 'ParameterInfo']] = None

    @property
    def required(self) -> bool:
        return self.default is REQUIRED


@dataclass
class TrialTypeInfo:
    """Name and parameter declarations of a trial type."""
    name: str
    parameters: Dict[str, ParameterInfo] = field(default_factory=dict)

    def missing_required(self, trial: Dict[str, Any]) -> List[str]:
        """
        Names of required parameters the bag does not provide.

        Args:
            trial: Leaf parameter bag

        Returns:
            List of missing parameter names
        """
        return [
            name for name, info in self.parameters.items()
            if info.required and trial.get(name) is None
        ]


# Parameters every trial accepts regardless of its type
UNIVERSAL_PARAMETERS: Dict[str, ParameterInfo] = {
    'data': ParameterInfo(ParameterType.OBJECT, default=None, pretty_name="Data"),
    'on_start': ParameterInfo(ParameterType.FUNCTION, default=None, pretty_name="On start"),
    'on_finish': ParameterInfo(ParameterType.FUNCTION, default=None, pretty_name="On finish"),
    'on_load': ParameterInfo(ParameterType.FUNCTION, default=None, pretty_name="On load"),
    'post_trial_gap': ParameterInfo(ParameterType.INT, default=None, pretty_name="Post trial gap"),
    'save_trial_parameters': ParameterInfo(ParameterType.OBJECT, default=None,
                                           pretty_name="Save trial parameters"),
    'simulation_options': ParameterInfo(ParameterType.COMPLEX, default=None,
                                        pretty_name="Simulation options"),
}

# Keys that configure a composite timeline and are never copied down to children
TIMELINE_KEYS = (
    'timeline',
    'timeline_variables',
    'sample',
    'sampling',
    'randomize_order',
    'repetitions',
    'loop_function',
    'conditional_function',
    'on_timeline_start',
    'on_timeline_finish',
)
