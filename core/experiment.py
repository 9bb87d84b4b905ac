"""
Experiment class for trialflow.

Top-level experiment orchestrator: owns the timeline tree, presents one trial
at a time and advances the tree exactly once per completed trial.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
import logging

import pyglet

from config.experiment import ExperimentSettings
from .data_ledger import DataCollection, DataLedger
from .execution import randomization
from .execution.errors import InvalidArgumentError, SchedulerError
from .execution.resolution import resolve_trial
from .execution.timeline_node import TimelineNode
from .execution.timeline_variable import EvaluationContext, TimelineVariable
from .execution.trial_type import resolve_trial_type, trial_type_name

logger = logging.getLogger(__name__)

SIMULATION_MODES = ('data-only', 'visual')


class SchedulerState(Enum):
    """Lifecycle state of an Experiment."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"


class Experiment:
    """
    Top-level experiment orchestrator.

    Responsibilities:
    - Build the timeline tree and drive it trial by trial
    - Resolve each trial's parameters and hand it to its trial type
    - Record one data row per completed trial
    - Honour inter-trial gaps, pause/resume and early termination

    Lifecycle:
    1. __init__: Apply settings (seed, hooks)
    2. run: Build the timeline and present the first trial
    3. complete_current_trial: Called by the trial type; records data and
       (after the inter-trial gap) presents the next trial
    4. FINISHED: settings.on_finish receives all data

    Example:
        exp = Experiment(ExperimentSettings(default_iti=500))
        exp.run([
            {'type': 'fixation', 'duration': 0.5},
            {'type': 'call-function', 'func': lambda: 42},
        ])
        pyglet.app.run()
    """

    def __init__(self, settings: Optional[ExperimentSettings] = None, clock: Optional[pyglet.clock.Clock] = None):
        """
        Initialize experiment.

        Args:
            settings: Host settings (defaults if None)
            clock: pyglet clock used for timing (pyglet's default clock if None)

        Raises:
            ValueError: If the settings are inconsistent
        """
        self.settings = settings if settings is not None else ExperimentSettings()
        errors = self.settings.validate()
        if errors:
            raise ValueError(f"Invalid experiment settings: {'; '.join(errors)}")

        self.clock = clock if clock is not None else pyglet.clock.get_default()
        self.data = DataLedger()

        # Runtime state
        self.timeline: Optional[TimelineNode] = None
        self.state = SchedulerState.IDLE
        self.global_trial_index: int = 0
        self.current_trial: Optional[Dict[str, Any]] = None
        self.current_trial_finished: bool = False
        self.current_node_id: Optional[str] = None
        self.waiting: bool = False
        self.end_message: Optional[str] = None
        self.exp_start_time: Optional[float] = None
        self.exp_end_time: Optional[float] = None

        self.simulation_mode: Optional[str] = None
        self.simulation_options: Dict[str, Any] = {}

        self._pending_advance = None
        self._dispatching: bool = False
        self._advance_requested: bool = False

        if self.settings.random_source is not None:
            randomization.set_random_source(self.settings.random_source)
        elif self.settings.random_seed is not None:
            randomization.set_seed(self.settings.random_seed)

    @property
    def display_element(self):
        return self.settings.display_element

    # ==================== LIFECYCLE ====================

    def run(self, timeline):
        """
        Build the timeline tree and start the experiment.

        Args:
            timeline: List of timeline entries, or a single timeline mapping

        Raises:
            SchedulerError: If the experiment was already started
        """
        if self.state is not SchedulerState.IDLE:
            raise SchedulerError(f"Experiment cannot be run from state '{self.state.value}'")

        if isinstance(timeline, Mapping) and 'timeline' not in timeline:
            timeline = [timeline]
        self.timeline = TimelineNode(timeline, host=self)

        spec_errors = self.timeline.validate()
        if spec_errors:
            logger.warning(f"Timeline has {len(spec_errors)} problem(s); affected trials will be skipped")

        self.exp_start_time = self.clock.time()
        self.start()

    def simulate(self, timeline, mode: str = 'data-only', options: Optional[Dict[str, Any]] = None):
        """
        Run the experiment without a participant.

        Trial types that implement simulate() are asked to produce data instead
        of waiting for responses.

        Args:
            timeline: Same as run()
            mode: 'data-only' or 'visual'
            options: Simulation options; the 'default' entry applies to every trial
        """
        if mode not in SIMULATION_MODES:
            raise InvalidArgumentError(f"Simulation mode must be one of {', '.join(SIMULATION_MODES)}, got '{mode}'")
        self.simulation_mode = mode
        self.simulation_options = dict(options or {})
        logger.info(f"Simulating experiment in {mode} mode")
        self.run(timeline)

    def start(self):
        """
        Advance the tree to its first trial and present it.

        Raises:
            SchedulerError: If there is no timeline or the experiment already started
        """
        if self.timeline is None:
            raise SchedulerError("No timeline to start; call run() with a timeline first")
        if self.state is not SchedulerState.IDLE:
            raise SchedulerError(f"Experiment cannot be started from state '{self.state.value}'")

        self.state = SchedulerState.RUNNING
        if self.exp_start_time is None:
            self.exp_start_time = self.clock.time()
        logger.info(f"Starting experiment: {self.settings.name} ({self.timeline.length()} trials)")

        if self.timeline.advance():
            self._finish_experiment()
        else:
            self._run_trials()

    def _finish_experiment(self):
        self._unschedule_pending()
        self.state = SchedulerState.FINISHED
        self.exp_end_time = self.clock.time()
        if self.end_message:
            logger.info(f"Experiment ended: {self.end_message}")
        logger.info(f"Experiment finished after {self.data.get().count()} trials")
        if self.settings.on_finish is not None:
            self.settings.on_finish(self.data.get())

    def _unschedule_pending(self):
        if self._pending_advance is not None:
            self.clock.unschedule(self._pending_advance)
            self._pending_advance = None

    # ==================== TRIAL DISPATCH ====================

    def _run_trials(self):
        """
        Present the active trial, and keep presenting while trials complete
        synchronously.

        A trial that completes inside present() only requests the advance;
        it is carried out here once present() has returned, so the stack
        does not grow with the number of trials.
        """
        self._dispatching = True
        try:
            while True:
                self._advance_requested = False
                self._do_trial()
                if not self._advance_requested or self.state is SchedulerState.FINISHED:
                    break
                if not self._step_to_next_trial():
                    break
        finally:
            self._dispatching = False

    def _step_to_next_trial(self) -> bool:
        """Move the tree past the current trial; False once the experiment is over."""
        self.global_trial_index += 1
        self.timeline.mark_current_trial_complete()

        if self.timeline.advance():
            self._finish_experiment()
            return False
        return True

    def _do_trial(self):
        node = self.timeline.active_node()
        trial = self.timeline.trial()
        self.current_trial = trial
        self.current_trial_finished = False
        self.current_node_id = node.id()

        trial_type = resolve_trial_type(trial.get('type'))
        if node.spec_errors or trial_type is None:
            self._skip_malformed_trial(node)
            return

        resolve_trial(trial, trial_type.info, EvaluationContext(self.timeline))
        logger.debug(f"Trial {self.global_trial_index} ({trial_type.info.name}) at node {self.current_node_id}")

        if self.settings.on_trial_start is not None:
            self.settings.on_trial_start(trial)
        if callable(trial.get('on_start')):
            trial['on_start'](trial)

        def load_callback():
            if callable(trial.get('on_load')):
                trial['on_load']()

        plugin = trial_type(self)
        options = self._simulation_options_for(trial)
        if self.simulation_mode is not None and options.get('simulate', True) \
                and trial_type.supports_simulation():
            mode = options.get('mode', self.simulation_mode)
            result = plugin.simulate(trial, mode, options, load_callback)
        else:
            result = plugin.present(self.display_element, trial, load_callback)

        if result is None:
            load_callback()

    def _simulation_options_for(self, trial: Dict[str, Any]) -> Dict[str, Any]:
        if self.simulation_mode is None:
            return {}
        options = dict(self.simulation_options.get('default', {}))
        trial_options = trial.get('simulation_options')
        if isinstance(trial_options, str):
            trial_options = self.simulation_options.get(trial_options, {})
        if isinstance(trial_options, Mapping):
            options.update(trial_options)
        return options

    def _skip_malformed_trial(self, node: TimelineNode):
        errors = node.spec_errors or [f"Unknown trial type: {trial_type_name(self.current_trial.get('type'))}"]
        message = '; '.join(errors)
        logger.error(f"Skipping malformed trial at node {self.current_node_id}: {message}")
        self.complete_current_trial({'spec_error': message})

    # ==================== COMPLETION ====================

    def complete_current_trial(self, result_data: Optional[Mapping[str, Any]] = None):
        """
        Record the current trial's data and move on.

        Called by the trial type exactly once per trial; later calls for the
        same trial are ignored.

        Args:
            result_data: Data collected by the trial type
        """
        if self.current_trial is None or self.current_trial_finished:
            logger.debug("complete_current_trial() called with no running trial; ignored")
            return
        self.current_trial_finished = True

        trial = self.current_trial
        record = self._build_record(trial, result_data)
        stored = self.data.append(record, self.current_node_id)

        if callable(trial.get('on_finish')):
            trial['on_finish'](stored)
        if self.settings.on_trial_finish is not None:
            self.settings.on_trial_finish(stored)
        if self.settings.on_data_update is not None:
            self.settings.on_data_update(stored)

        if self.timeline.is_complete():
            # end_experiment() was called
            self._finish_experiment()
            return

        gap = self._post_trial_gap(trial)
        if gap > 0:
            def advance_after_gap(dt):
                self._pending_advance = None
                self.advance_to_next_trial()

            self._pending_advance = advance_after_gap
            self.clock.schedule_once(advance_after_gap, gap / 1000)
        else:
            self.advance_to_next_trial()

    def _build_record(self, trial: Dict[str, Any], result_data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        record = dict(result_data or {})
        if isinstance(trial.get('data'), Mapping):
            record.update(trial['data'])
        record.update({
            'trial_type': trial_type_name(trial.get('type')),
            'trial_index': self.global_trial_index,
            'time_elapsed': self.get_total_time(),
        })

        save_parameters = trial.get('save_trial_parameters')
        if isinstance(save_parameters, Mapping):
            for name, keep in save_parameters.items():
                if keep:
                    if name not in trial:
                        logger.warning(f"Cannot save trial parameter '{name}': the trial has no such parameter")
                        continue
                    record[name] = trial[name]
                else:
                    record.pop(name, None)

        return record

    def _post_trial_gap(self, trial: Dict[str, Any]) -> float:
        gap = trial.get('post_trial_gap')
        if isinstance(gap, bool) or not isinstance(gap, (int, float)):
            gap = self.settings.default_iti
        return max(0, gap)

    def advance_to_next_trial(self):
        """
        Mark the current trial complete and present the next one.

        Deferred (see resume()) while the experiment is paused.

        Raises:
            SchedulerError: If there is no timeline or the experiment has finished
        """
        if self.timeline is None:
            raise SchedulerError("No timeline to advance; call run() with a timeline first")
        if self.state is SchedulerState.FINISHED:
            raise SchedulerError("Experiment has already finished")

        if self.state is SchedulerState.PAUSED:
            self.waiting = True
            logger.debug("Experiment paused; next trial deferred")
            return

        if self._dispatching:
            # completed from inside present(); _run_trials() advances
            self._advance_requested = True
            return

        if self._step_to_next_trial():
            self._run_trials()

    def pause(self):
        """Pause before the next trial starts."""
        if self.state is not SchedulerState.RUNNING:
            logger.warning(f"pause() ignored in state '{self.state.value}'")
            return
        self.state = SchedulerState.PAUSED
        logger.info("Experiment paused")

    def resume(self):
        """Resume a paused experiment, presenting the next trial if one was deferred."""
        if self.state is not SchedulerState.PAUSED:
            logger.warning(f"resume() ignored in state '{self.state.value}'")
            return
        self.state = SchedulerState.RUNNING
        logger.info("Experiment resumed")
        if self.waiting:
            self.waiting = False
            self.advance_to_next_trial()

    def end_experiment(self, message: Optional[str] = None, data: Optional[Mapping[str, Any]] = None):
        """
        End the experiment after recording the current trial.

        Args:
            message: Reason, logged when the experiment finishes
            data: Result data for the running trial
        """
        if self.state in (SchedulerState.IDLE, SchedulerState.FINISHED):
            logger.warning(f"end_experiment() ignored in state '{self.state.value}'")
            return

        self.end_message = message
        self.timeline.end()
        self._unschedule_pending()

        if self.current_trial is not None and not self.current_trial_finished:
            self.complete_current_trial(data)
        else:
            self._finish_experiment()

    def end_current_timeline(self):
        """End the timeline containing the running trial after that trial completes."""
        if self.timeline is None:
            raise SchedulerError("No timeline is running")
        self.timeline.end_active_node()

    def add_node_to_end_of_timeline(self, spec):
        """Append a timeline entry to the root timeline (also while running)."""
        if self.timeline is None:
            raise SchedulerError("No timeline to add to; call run() with a timeline first")
        self.timeline.insert(spec)

    # ==================== TIMELINE VARIABLES ====================

    def timeline_variable(self, name: str) -> TimelineVariable:
        """Placeholder resolved when the trial using it is presented."""
        return TimelineVariable(name)

    def evaluate_timeline_variable(self, name: str) -> Any:
        """
        Current value of a timeline variable (for use inside functions).

        Raises:
            SchedulerError: If no timeline is running
        """
        if self.timeline is None:
            raise SchedulerError(f"Cannot evaluate timeline variable '{name}' before run()")
        return self.timeline.timeline_variable(name)

    def get_all_timeline_variables(self) -> Dict[str, Any]:
        if self.timeline is None:
            return {}
        return self.timeline.all_timeline_variables()

    # ==================== STATUS ====================

    def get_current_trial(self) -> Optional[Dict[str, Any]]:
        return self.current_trial

    def get_total_time(self) -> int:
        """Milliseconds since the experiment started (0 before run())."""
        if self.exp_start_time is None:
            return 0
        end = self.exp_end_time if self.exp_end_time is not None else self.clock.time()
        return int(round((end - self.exp_start_time) * 1000))

    def get_progress(self) -> Dict[str, Any]:
        """
        Get current experiment progress.

        Returns:
            Dictionary with progress information
        """
        if self.timeline is None:
            return {'total_trials': 0, 'current_trial_global': 0, 'percent_complete': 0.0,
                    'state': self.state.value}
        return {
            'total_trials': self.timeline.length(),
            'current_trial_global': self.global_trial_index,
            'percent_complete': self.timeline.percent_complete(),
            'state': self.state.value,
        }

    def get_data(self) -> DataCollection:
        return self.data.get()

    def compare_keys(self, key1: Optional[str], key2: Optional[str]) -> bool:
        """
        Compare two key names, honouring settings.case_sensitive_responses.

        None only matches None; anything that is neither a string nor None is
        logged and never matches.
        """
        for key in (key1, key2):
            if key is not None and not isinstance(key, str):
                logger.error(f"compare_keys() expects key names or None, got {key!r}")
                return False
        if key1 is None or key2 is None:
            return key1 is None and key2 is None
        if self.settings.case_sensitive_responses:
            return key1 == key2
        return key1.lower() == key2.lower()

    def validate(self) -> List[str]:
        """
        Validate settings and (if built) the timeline.

        Returns:
            List of error messages (empty if valid)
        """
        errors = [f"Settings: {e}" for e in self.settings.validate()]
        if self.timeline is not None:
            errors.extend([f"Timeline: {e}" for e in self.timeline.validate()])
        return errors

    def __repr__(self):
        total = self.timeline.length() if self.timeline is not None else 0
        return (
            f"Experiment(name='{self.settings.name}', "
            f"state={self.state.value}, "
            f"total_trials={total})"
        )
