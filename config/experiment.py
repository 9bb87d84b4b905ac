"""
Experiment-level settings: timing defaults, response handling, randomness and host hooks.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
import json
import logging

logger = logging.getLogger(__name__)

# Fields that hold callables or live objects and are never written to JSON
_RUNTIME_FIELDS = (
    'random_source',
    'display_element',
    'on_trial_start',
    'on_trial_finish',
    'on_data_update',
    'on_finish',
)


@dataclass
class ExperimentSettings:
    """
    Host configuration for an Experiment.

    Attributes:
        name: Experiment name/identifier
        default_iti: Gap between trials in milliseconds, unless a trial sets post_trial_gap
        case_sensitive_responses: compare_keys() distinguishes letter case
        minimum_valid_rt: Responses faster than this (ms) are ignored by trial types
        random_seed: Seed for the sampling engine (None = leave it as it is)
        random_source: Object with a random() method replacing the sampling engine's source
        display_element: Container handed to every trial type's present()
        on_trial_start: function(trial) before each trial is presented
        on_trial_finish: function(data) after each trial's data is recorded
        on_data_update: function(data) after each record is added
        on_finish: function(data_collection) when the experiment ends
        metadata: Additional metadata (creation date, version, etc.)
    """
    name: str = "trialflow experiment"
    default_iti: float = 0
    case_sensitive_responses: bool = False
    minimum_valid_rt: float = 0
    random_seed: Optional[Any] = None
    random_source: Optional[Any] = None
    display_element: Optional[Any] = None
    on_trial_start: Optional[Callable] = None
    on_trial_finish: Optional[Callable] = None
    on_data_update: Optional[Callable] = None
    on_finish: Optional[Callable] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Reject unusable numeric settings and stamp metadata."""
        for name in ('default_iti', 'minimum_valid_rt'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

        if 'created' not in self.metadata:
            self.metadata['created'] = datetime.now().isoformat()
        if 'version' not in self.metadata:
            self.metadata['version'] = '1.0'

    def validate(self) -> List[str]:
        """
        Check settings that can only be judged as a whole.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if self.random_source is not None and not callable(getattr(self.random_source, 'random', None)):
            errors.append("random_source must provide a random() method")

        for hook in ('on_trial_start', 'on_trial_finish', 'on_data_update', 'on_finish'):
            value = getattr(self, hook)
            if value is not None and not callable(value):
                errors.append(f"{hook} must be callable")

        return errors

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization (hooks and live objects are skipped)."""
        return {
            'name': self.name,
            'default_iti': self.default_iti,
            'case_sensitive_responses': self.case_sensitive_responses,
            'minimum_valid_rt': self.minimum_valid_rt,
            'random_seed': self.random_seed,
            'metadata': self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ExperimentSettings':
        """Create ExperimentSettings instance from dictionary."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning(f"Ignoring unknown experiment settings: {', '.join(unknown)}")
        skipped = [k for k in _RUNTIME_FIELDS if k in known]
        if skipped:
            logger.warning(f"Settings {', '.join(skipped)} cannot be loaded from data; set them in code")
            for k in skipped:
                del known[k]
        return cls(**known)

    def save(self, path: str):
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved experiment settings to {path}")


def load_settings(path: str) -> ExperimentSettings:
    """
    Load experiment settings from a JSON file.

    Args:
        path: Path to JSON file

    Returns:
        ExperimentSettings instance
    """
    with open(path, 'r') as f:
        data = json.load(f)
    return ExperimentSettings.from_dict(data)
