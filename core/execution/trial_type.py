"""
TrialType base class for trialflow.

A trial type is the presentation collaborator for one kind of leaf: it shows
the stimulus, collects the response and reports back by calling
``experiment.complete_current_trial(data)`` exactly once.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type, Union
import logging

from .parameters import TrialTypeInfo

logger = logging.getLogger(__name__)


class TrialType(ABC):
    """
    Abstract base class for all trial types.

    Subclasses declare ``info`` (name + parameter schema) and implement
    present(). Rendering, input capture and timers are the subclass's
    business; the scheduler only waits for the completion call.

    Example:
        class KeypressTrial(TrialType):
            info = TrialTypeInfo('keypress', {
                'stimulus': ParameterInfo(ParameterType.HTML_STRING),
            })

            def present(self, container, trial, on_load):
                container.show(trial['stimulus'])
                container.on_key(lambda key: self.experiment.complete_current_trial({'key': key}))
    """

    info: TrialTypeInfo = TrialTypeInfo(name='trial')

    def __init__(self, experiment):
        """
        Initialize trial type.

        Args:
            experiment: Experiment scheduler driving this trial
        """
        self.experiment = experiment

    @abstractmethod
    def present(self, container, trial: Dict[str, Any], on_load) -> Optional[Any]:
        """
        Present one trial.

        Args:
            container: Host display element (opaque to the scheduler)
            trial: Fully resolved parameter bag
            on_load: Callback to run once the trial is on screen

        Returns:
            None if the trial loaded synchronously (the scheduler then calls
            on_load), or any other value if the trial calls on_load itself
        """
        pass

    def simulate(self, trial: Dict[str, Any], mode: str, options: Dict[str, Any], on_load):
        """
        Run the trial without a participant.

        Subclasses that support simulation override this and complete the
        trial with plausible data. The default presents the trial normally.
        """
        return self.present(self.experiment.display_element, trial, on_load)

    @classmethod
    def supports_simulation(cls) -> bool:
        return cls.simulate is not TrialType.simulate


# Trial type registry for name lookups in timeline specs
TRIAL_TYPES: Dict[str, Type[TrialType]] = {}


def register_trial_type(trial_type: Type[TrialType]) -> Type[TrialType]:
    """
    Register a trial type under its info.name (usable as a class decorator).

    Args:
        trial_type: TrialType subclass

    Returns:
        The same class
    """
    name = trial_type.info.name
    if name in TRIAL_TYPES and TRIAL_TYPES[name] is not trial_type:
        logger.warning(f"Trial type '{name}' registered twice; replacing {TRIAL_TYPES[name].__name__}")
    TRIAL_TYPES[name] = trial_type
    return trial_type


def resolve_trial_type(value: Union[str, Type[TrialType], None]) -> Optional[Type[TrialType]]:
    """
    Look up the TrialType class a leaf's ``type`` entry refers to.

    Args:
        value: Registered name or TrialType subclass

    Returns:
        TrialType subclass, or None if the value names nothing usable
    """
    if isinstance(value, type) and issubclass(value, TrialType):
        return value
    if isinstance(value, str):
        return TRIAL_TYPES.get(value)
    return None


def trial_type_name(value) -> str:
    """Display name for a leaf's ``type`` entry (registered or not)."""
    trial_type = resolve_trial_type(value)
    if trial_type is not None:
        return trial_type.info.name
    return str(value)
