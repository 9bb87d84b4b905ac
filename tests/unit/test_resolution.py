"""
Unit tests for trial parameter resolution.

Tests timeline-variable substitution, function evaluation and defaults.
"""

from unittest.mock import MagicMock

import pytest

from core.execution.parameters import ParameterInfo, ParameterType, TrialTypeInfo
from core.execution.resolution import (
    evaluate_function_parameters, evaluate_timeline_variables, resolve_trial, set_default_values
)
from core.execution.timeline_node import TimelineNode
from core.execution.timeline_variable import EvaluationContext, TimelineVariable


INFO = TrialTypeInfo('test', {
    'stimulus': ParameterInfo(ParameterType.STRING, default='+'),
    'duration': ParameterInfo(ParameterType.FLOAT),
    'callback': ParameterInfo(ParameterType.FUNCTION, default=None),
    'buttons': ParameterInfo(ParameterType.COMPLEX, default=None, array=True, nested={
        'label': ParameterInfo(ParameterType.STRING),
        'color': ParameterInfo(ParameterType.STRING, default='grey'),
    }),
})


class FixedContext:
    """Context with fixed variable values."""

    def __init__(self, **values):
        self.values = values

    def lookup(self, name):
        return self.values.get(name)


# ==================== TIMELINE VARIABLE TESTS ====================

@pytest.mark.unit
def test_timeline_variables_replaced_recursively():
    trial = {
        'type': 'test',
        'stimulus': TimelineVariable('word'),
        'data': {'word': TimelineVariable('word'), 'list': [TimelineVariable('n'), 3]},
    }

    evaluate_timeline_variables(trial, FixedContext(word='cat', n=7))

    assert trial['stimulus'] == 'cat'
    assert trial['data'] == {'word': 'cat', 'list': [7, 3]}


@pytest.mark.unit
def test_timeline_variables_resolved_against_active_trial():
    root = TimelineNode([{
        'timeline': [{'type': 'manual', 'stimulus': TimelineVariable('word')}],
        'timeline_variables': [{'word': 'cat'}, {'word': 'dog'}],
    }])
    root.advance()
    root.mark_current_trial_complete()
    root.advance()

    trial = evaluate_timeline_variables(root.trial(), EvaluationContext(root))

    assert trial['stimulus'] == 'dog'


@pytest.mark.unit
def test_timeline_variable_equality():
    assert TimelineVariable('a') == TimelineVariable('a')
    assert TimelineVariable('a') != TimelineVariable('b')
    assert len({TimelineVariable('a'), TimelineVariable('a')}) == 1


# ==================== FUNCTION PARAMETER TESTS ====================

@pytest.mark.unit
def test_function_parameters_evaluated_once():
    duration_fn = MagicMock(return_value=0.75)
    trial = {'type': 'test', 'duration': duration_fn}

    evaluate_function_parameters(trial, INFO)

    assert trial['duration'] == 0.75
    duration_fn.assert_called_once_with()


@pytest.mark.unit
def test_function_typed_parameters_left_alone():
    callback = MagicMock()
    trial = {'type': 'test', 'callback': callback, 'on_finish': callback}

    evaluate_function_parameters(trial, INFO)

    assert trial['callback'] is callback
    assert trial['on_finish'] is callback
    callback.assert_not_called()


@pytest.mark.unit
def test_universal_parameters_evaluated():
    """data and post_trial_gap may be given as functions."""
    trial = {'type': 'test', 'data': lambda: {'x': 1}, 'post_trial_gap': lambda: 250}

    evaluate_function_parameters(trial, INFO)

    assert trial['data'] == {'x': 1}
    assert trial['post_trial_gap'] == 250


@pytest.mark.unit
def test_undeclared_parameters_untouched():
    fn = MagicMock()
    trial = {'type': 'test', 'extra': fn}

    evaluate_function_parameters(trial, INFO)

    assert trial['extra'] is fn


@pytest.mark.unit
def test_nested_complex_parameters_evaluated():
    trial = {'type': 'test', 'buttons': [{'label': lambda: 'OK'}, {'label': 'Cancel'}]}

    evaluate_function_parameters(trial, INFO)

    assert trial['buttons'] == [{'label': 'OK'}, {'label': 'Cancel'}]


@pytest.mark.unit
def test_functions_inside_data_evaluated():
    condition_fn = MagicMock(return_value='congruent')
    trial = {
        'type': 'test',
        'data': {'cond': condition_fn, 'block': 2, 'scores': [lambda: 1, 3], 'meta': {'type': print}},
    }

    evaluate_function_parameters(trial, INFO)

    assert trial['data'] == {'cond': 'congruent', 'block': 2, 'scores': [1, 3], 'meta': {'type': print}}
    condition_fn.assert_called_once_with()


@pytest.mark.unit
def test_nested_function_typed_keys_left_alone():
    info = TrialTypeInfo('test', {
        'options': ParameterInfo(ParameterType.COMPLEX, default=None, nested={
            'label': ParameterInfo(ParameterType.STRING),
            'on_pick': ParameterInfo(ParameterType.FUNCTION, default=None),
        }),
    })
    on_pick = MagicMock()
    trial = {'type': 'test', 'options': {'label': lambda: 'Yes', 'on_pick': on_pick}}

    evaluate_function_parameters(trial, info)

    assert trial['options']['label'] == 'Yes'
    assert trial['options']['on_pick'] is on_pick
    on_pick.assert_not_called()


# ==================== DEFAULT VALUE TESTS ====================

@pytest.mark.unit
def test_defaults_filled():
    trial = set_default_values({'type': 'test', 'duration': 1.0}, INFO)

    assert trial['stimulus'] == '+'
    assert trial['callback'] is None
    assert trial['post_trial_gap'] is None
    assert trial['data'] is None


@pytest.mark.unit
def test_missing_required_logged(caplog):
    trial = set_default_values({'type': 'test'}, INFO)

    assert 'duration' not in trial
    assert "duration" in caplog.text


@pytest.mark.unit
def test_nested_defaults_filled(caplog):
    trial = set_default_values({'type': 'test', 'duration': 1.0,
                                'buttons': [{'label': 'OK'}, {'color': 'red'}]}, INFO)

    assert trial['buttons'][0] == {'label': 'OK', 'color': 'grey'}
    assert trial['buttons'][1] == {'color': 'red'}
    assert "buttons[1].label" in caplog.text


@pytest.mark.unit
def test_resolve_trial_runs_all_passes():
    trial = {'type': 'test', 'duration': TimelineVariable('d')}

    resolve_trial(trial, INFO, FixedContext(d=2.5))

    assert trial['duration'] == 2.5
    assert trial['stimulus'] == '+'
