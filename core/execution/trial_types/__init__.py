"""
Built-in trial types for trialflow.

Available trial types:
- CallFunctionTrial: Call a function and record its return value
- FixationTrial: Hold a fixation interval for a fixed duration
"""

from .call_function import CallFunctionTrial
from .fixation import FixationTrial

__all__ = [
    'CallFunctionTrial',
    'FixationTrial',
]
