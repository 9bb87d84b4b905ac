"""
Configuration structures for trialflow experiments.

This module contains the data classes holding host-level settings: timing
defaults, response handling, randomness and lifecycle hooks.
"""

from .experiment import ExperimentSettings, load_settings

__all__ = ['ExperimentSettings', 'load_settings']
