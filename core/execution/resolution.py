"""
Trial parameter resolution for trialflow.

Before a trial is presented its parameter bag (a deep copy of the leaf's bag)
goes through three passes:

1. evaluate_timeline_variables(): TimelineVariable placeholders -> values
2. evaluate_function_parameters(): function-valued parameters are called once,
   unless the trial type declares the parameter as FUNCTION
3. set_default_values(): absent parameters take the declared defaults
"""

from typing import Any, Dict, Mapping, Optional
import copy
import logging

from .parameters import ParameterInfo, ParameterType, TrialTypeInfo, UNIVERSAL_PARAMETERS
from .timeline_variable import EvaluationContext, TimelineVariable

logger = logging.getLogger(__name__)


def _replace_variables(value: Any, context: EvaluationContext) -> Any:
    if isinstance(value, TimelineVariable):
        return value.evaluate(context)
    if isinstance(value, dict):
        return {k: _replace_variables(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [_replace_variables(v, context) for v in value]
    return value


def evaluate_timeline_variables(trial: Dict[str, Any], context: EvaluationContext) -> Dict[str, Any]:
    """
    Replace every TimelineVariable in the bag (nested mappings/lists included).

    Args:
        trial: Parameter bag, modified in place
        context: Where variables are looked up

    Returns:
        The same bag
    """
    for key in list(trial.keys()):
        if key == 'type':
            continue
        trial[key] = _replace_variables(trial[key], context)
    return trial


def _replace_functions(value: Any, info: Optional[ParameterInfo]) -> Any:
    """
    Call every function found in value, walking into mappings and lists.

    Without a nested schema every key except 'type' is walked. With one, only
    the declared nested keys that are not FUNCTION typed are.
    """
    if isinstance(value, list):
        return [_replace_functions(item, info) for item in value]
    if isinstance(value, dict):
        evaluated = dict(value)
        if info is None or not info.nested:
            for key in evaluated:
                if key != 'type':
                    evaluated[key] = _replace_functions(evaluated[key], None)
        else:
            for key, nested_info in info.nested.items():
                if key in evaluated and nested_info.type is not ParameterType.FUNCTION:
                    evaluated[key] = _replace_functions(evaluated[key], nested_info)
        return evaluated
    if callable(value) and not isinstance(value, type):
        return value()
    return value


def _evaluate_parameter(value: Any, info: Optional[ParameterInfo]) -> Any:
    if info is not None and info.type is ParameterType.FUNCTION:
        return value
    return _replace_functions(value, info)


def evaluate_function_parameters(trial: Dict[str, Any], info: TrialTypeInfo) -> Dict[str, Any]:
    """
    Call function-valued parameters that are not declared as FUNCTION.

    Universal parameters (data, post_trial_gap, ...) are evaluated the same way
    as the trial type's own parameters, including functions nested inside
    mappings and lists; undeclared keys are left untouched.

    Args:
        trial: Parameter bag, modified in place
        info: Declared parameter schema of the trial's type

    Returns:
        The same bag
    """
    for name, parameter in UNIVERSAL_PARAMETERS.items():
        if name in trial and name not in info.parameters:
            trial[name] = _evaluate_parameter(trial[name], parameter)

    for name, parameter in info.parameters.items():
        if name in trial:
            trial[name] = _evaluate_parameter(trial[name], parameter)

    return trial


def _fill_nested_defaults(value: Any, nested: Mapping[str, ParameterInfo], path: str) -> Any:
    if isinstance(value, list):
        return [_fill_nested_defaults(item, nested, f"{path}[{i}]") for i, item in enumerate(value)]
    if not isinstance(value, dict):
        return value
    for name, info in nested.items():
        if value.get(name) is None:
            if info.required:
                logger.error(f"Missing required parameter {path}.{name}")
            else:
                value[name] = copy.deepcopy(info.default)
    return value


def set_default_values(trial: Dict[str, Any], info: TrialTypeInfo) -> Dict[str, Any]:
    """
    Fill in declared defaults for parameters the bag does not provide.

    Missing required parameters are logged and left absent.

    Args:
        trial: Parameter bag, modified in place
        info: Declared parameter schema of the trial's type

    Returns:
        The same bag
    """
    for name, parameter in info.parameters.items():
        if trial.get(name) is None:
            if parameter.required:
                logger.error(f"You must specify a value for the {name} parameter in the "
                             f"{info.name} trial type")
                continue
            trial[name] = copy.deepcopy(parameter.default)
        elif parameter.type is ParameterType.COMPLEX and parameter.nested:
            trial[name] = _fill_nested_defaults(trial[name], parameter.nested, name)

    for name, parameter in UNIVERSAL_PARAMETERS.items():
        trial.setdefault(name, copy.deepcopy(parameter.default))

    return trial


def resolve_trial(trial: Dict[str, Any], info: TrialTypeInfo, context: EvaluationContext) -> Dict[str, Any]:
    """
    Run all three resolution passes on a trial bag.

    Args:
        trial: Deep copy of the leaf's parameter bag
        info: Declared parameter schema of the trial's type
        context: Where timeline variables are looked up

    Returns:
        The resolved bag
    """
    evaluate_timeline_variables(trial, context)
    evaluate_function_parameters(trial, info)
    set_default_values(trial, info)
    return trial
