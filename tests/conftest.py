"""
Pytest configuration and fixtures for trialflow tests.

Provides common test fixtures and configuration for unit and integration tests.
"""

import pytest
import sys
from pathlib import Path

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import pyglet  # noqa: E402

from config.experiment import ExperimentSettings  # noqa: E402
from core.data_ledger import DataLedger  # noqa: E402
from core.execution import randomization  # noqa: E402
from core.execution.parameters import ParameterInfo, ParameterType, TrialTypeInfo  # noqa: E402
from core.execution.trial_type import TrialType, register_trial_type  # noqa: E402


# ==================== PYTEST CONFIGURATION ====================

def pytest_configure(config):
    """Add custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: unit test (fast, no I/O)")
    config.addinivalue_line("markers", "integration: integration test (full scheduler, fake clock)")
    config.addinivalue_line("markers", "slow: slow test (real file I/O)")


# ==================== TEST TRIAL TYPES ====================

@register_trial_type
class ManualTrial(TrialType):
    """
    Trial type that records what it was given and waits for the test to
    call experiment.complete_current_trial().
    """

    info = TrialTypeInfo('manual', {
        'stimulus': ParameterInfo(ParameterType.STRING, default=None),
        'choices': ParameterInfo(ParameterType.KEYS, default=None),
        'response_fn': ParameterInfo(ParameterType.FUNCTION, default=None),
    })

    presented = []

    def present(self, container, trial, on_load):
        ManualTrial.presented.append(trial)
        return None


@register_trial_type
class InstantTrial(TrialType):
    """Trial type that completes as soon as it is presented, echoing its stimulus."""

    info = TrialTypeInfo('instant', {
        'stimulus': ParameterInfo(ParameterType.STRING, default=None),
        'response': ParameterInfo(ParameterType.STRING, default='none'),
    })

    presented = []

    def present(self, container, trial, on_load):
        InstantTrial.presented.append(trial)
        on_load()
        self.experiment.complete_current_trial({
            'stimulus': trial['stimulus'],
            'response': trial['response'],
        })
        return True


# ==================== FIXTURES ====================

class FakeTime:
    """Manually advanced time source driving a pyglet clock."""

    def __init__(self):
        self.now = 0.0
        self.clock = pyglet.clock.Clock(time_function=lambda: self.now)
        self.clock.tick()

    def advance(self, seconds: float):
        """Move time forward and run whatever became due."""
        self.now += seconds
        self.clock.tick()


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def make_experiment(fake_time):
    """
    Factory for Experiments on the fake clock.

    Example:
        exp = make_experiment(default_iti=500)
    """
    from core.experiment import Experiment

    def factory(**settings):
        return Experiment(ExperimentSettings(**settings), clock=fake_time.clock)

    return factory


@pytest.fixture
def manual_trials():
    """List of trial bags presented by ManualTrial during the test."""
    ManualTrial.presented = []
    return ManualTrial.presented


@pytest.fixture
def instant_trials():
    """List of trial bags presented by InstantTrial during the test."""
    InstantTrial.presented = []
    return InstantTrial.presented


@pytest.fixture
def ledger():
    return DataLedger()


@pytest.fixture(autouse=True)
def seeded_random():
    """Every test starts from the same random state."""
    randomization.set_seed(1234)
    yield
    randomization.set_seed(1234)

