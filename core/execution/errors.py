"""
Exception types for the trialflow execution layer.
"""


class InvalidArgumentError(ValueError):
    """Raised by the sampling functions when called with unusable arguments."""


class TimelineSpecError(ValueError):
    """
    A timeline description could not be interpreted.

    Most malformed specs are logged and kept in the tree so their position
    stays locatable; this is only raised for input that is not a spec at all.
    """


class SchedulerError(RuntimeError):
    """Fatal misuse of the experiment scheduler (e.g. advancing without a timeline)."""
