"""
CallFunctionTrial implementation for trialflow.

Runs arbitrary code at a point in the timeline (e.g. saving data mid-session,
toggling a device) without showing anything.
"""

from typing import Any, Dict

from ..parameters import ParameterInfo, ParameterType, TrialTypeInfo
from ..trial_type import TrialType, register_trial_type


@register_trial_type
class CallFunctionTrial(TrialType):
    """
    Trial that calls ``func`` and records its return value as ``value``.

    With ``async_call`` the function receives a ``done(value)`` callback and
    the trial ends when it is called.
    """

    info = TrialTypeInfo('call-function', {
        'func': ParameterInfo(ParameterType.FUNCTION, pretty_name="Function"),
        'async_call': ParameterInfo(ParameterType.BOOL, default=False, pretty_name="Asynchronous"),
    })

    def present(self, container, trial: Dict[str, Any], on_load):
        # Nothing to load; report it before the function can end the trial
        on_load()

        if trial['async_call']:
            def done(value=None):
                self.experiment.complete_current_trial({'value': value})

            trial['func'](done)
        else:
            value = trial['func']()
            self.experiment.complete_current_trial({'value': value})
        return True

    def simulate(self, trial: Dict[str, Any], mode: str, options: Dict[str, Any], on_load):
        # The function runs exactly as in a live session
        return self.present(self.experiment.display_element, trial, on_load)
