"""
FixationTrial implementation for trialflow.

Holds a fixation interval for a fixed duration, timed on the experiment's
pyglet clock. Drawing the cross is left to the container.
"""

from typing import Any, Dict
import logging

from ..parameters import ParameterInfo, ParameterType, TrialTypeInfo
from ..trial_type import TrialType, register_trial_type

logger = logging.getLogger(__name__)


@register_trial_type
class FixationTrial(TrialType):
    """
    Trial that lasts ``duration`` seconds.

    If the container has a ``show_fixation()`` method it is called when the
    interval starts and ``clear()`` (when present) when it ends.
    """

    info = TrialTypeInfo('fixation', {
        'duration': ParameterInfo(ParameterType.FLOAT, default=3.0, pretty_name="Duration (s)"),
    })

    def present(self, container, trial: Dict[str, Any], on_load):
        duration = trial['duration']
        if duration < 0:
            logger.warning(f"FixationTrial: negative duration {duration}s treated as 0")
            duration = 0.0

        if container is not None and hasattr(container, 'show_fixation'):
            container.show_fixation()

        start_time = self.experiment.clock.time()

        def end_fixation(dt):
            if container is not None and hasattr(container, 'clear'):
                container.clear()
            self.experiment.complete_current_trial({
                'duration': duration,
                'start_time': start_time,
                'end_time': self.experiment.clock.time(),
            })

        self.experiment.clock.schedule_once(end_fixation, duration)
        return None

    def simulate(self, trial: Dict[str, Any], mode: str, options: Dict[str, Any], on_load):
        if mode == 'visual':
            return self.present(self.experiment.display_element, trial, on_load)

        # data-only: skip the wait
        on_load()
        now = self.experiment.clock.time()
        self.experiment.complete_current_trial({
            'duration': trial['duration'],
            'start_time': now,
            'end_time': now,
        })
        return True
