"""
Pipeline router.

The router owns the active operation. When an operation completes, the
router classifies the run into a :class:`Stage`, looks up the handler for
``(outcome name, topology class, stage)`` in the transition table, and the
handler starts the next operation or ends the run. The router never retries:
retries live inside the operations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from metercal.config import Topology
from metercal.errors import InvalidTransitionError
from metercal.loads import accuracy_load
from metercal.operations import (
    ConnectMeter,
    GenericCommand,
    HttpAction,
    OperatorPause,
    PhaseCalibrate,
    PollAccuracy,
    SetLoad,
)

logger = logging.getLogger(__name__)

# === Meter commands ===
INIT_COMMAND = "IMS:CAL:INIT"
RESUME_COMMAND = "IMS:CAL:RESUME"
WRITE_COMMAND = "IMS:CAL:WRITE"
RESTART_COMMAND = "IMS:SYS:RESTART"

RESUME_RETRIES = 5
RESUME_TIMEOUT = 5.0
WRITE_TIMEOUT = 5.0
RESTART_DELAY = 8.0

# Split-element meters are power cycled after the first phase of the list.
SPLIT_BOUNDARY = 0

MOVE_FEED_PROMPT = (
    "Phase L{done} is calibrated. Switch the meter off, move the power feed to"
    " element L{next}, switch it on again and press Enter."
)
SPLIT_GUIDANCE = (
    "Calibration of the split-element meter is complete.\n"
    "Run the accuracy check as a separate unattended pass with"
    " --accuracy-only --yes and the reference service options."
)


class TopologyClass(Enum):
    STANDARD = "standard"
    SPLIT = "split"


class Stage(Enum):
    CALIBRATION = "calibration"
    NEXT_PHASE = "next-phase"
    POWER_CYCLE = "power-cycle"
    RESUMING = "resuming"
    LAST_PHASE = "last-phase"
    RESTARTED = "restarted"
    ACCURACY_ONLY = "accuracy-only"


ANY = None

_TRANSITIONS = {
    ("start", ANY, Stage.CALIBRATION): "_connect",
    ("start", ANY, Stage.ACCURACY_ONLY): "_connect",
    ("connected", ANY, Stage.CALIBRATION): "_prepare_calibration",
    ("load-set", ANY, Stage.CALIBRATION): "_init_calibration",
    ("cal-initialized", ANY, Stage.CALIBRATION): "_first_phase",
    ("phase-calibrated", ANY, Stage.NEXT_PHASE): "_next_phase",
    ("phase-calibrated", TopologyClass.SPLIT, Stage.POWER_CYCLE): "_power_cycle",
    ("operator-ready", TopologyClass.SPLIT, Stage.RESUMING): "_reload_or_resume",
    ("load-set", TopologyClass.SPLIT, Stage.RESUMING): "_resume_calibration",
    ("cal-resumed", TopologyClass.SPLIT, Stage.RESUMING): "_next_phase",
    ("phase-calibrated", ANY, Stage.LAST_PHASE): "_write_calibration",
    ("cal-written", ANY, Stage.CALIBRATION): "_warm_restart",
    ("warm-restarted", ANY, Stage.CALIBRATION): "_reconnect",
    ("connected", TopologyClass.STANDARD, Stage.RESTARTED): "_accuracy_load",
    ("connected", TopologyClass.SPLIT, Stage.RESTARTED): "_split_guidance",
    ("connected", ANY, Stage.ACCURACY_ONLY): "_accuracy_load",
    ("load-set", ANY, Stage.RESTARTED): "_start_test",
    ("load-set", ANY, Stage.ACCURACY_ONLY): "_start_test",
    ("accuracy-started", ANY, Stage.RESTARTED): "_poll_accuracy",
    ("accuracy-started", ANY, Stage.ACCURACY_ONLY): "_poll_accuracy",
    ("accuracy-polled", ANY, Stage.RESTARTED): "_stop_test",
    ("accuracy-polled", ANY, Stage.ACCURACY_ONLY): "_stop_test",
    ("accuracy-stopped", ANY, Stage.RESTARTED): "_complete",
    ("accuracy-stopped", ANY, Stage.ACCURACY_ONLY): "_complete",
}


@dataclass
class PipelinePosition:
    phase_index: int = 0
    power_cycled: bool = False
    restarted: bool = False


class Router:
    """
    Drives one calibration run over a :class:`~metercal.controller.Controller`.

    Args:
        ctrl: Controller providing meter, console, timer and service access.
        config: The run's :class:`~metercal.config.RunConfig`.
        connect_verified: The meter link was already confirmed by a presence
            ping; the first ``ConnectMeter`` runs in skip mode.
    """

    def __init__(self, ctrl, config, connect_verified=False):
        self._ctrl = ctrl
        self.config = config
        self._connect_verified = connect_verified
        self.position = PipelinePosition()
        self.topology_class = TopologyClass.SPLIT if config.is_split else TopologyClass.STANDARD

        self._active = None
        self.finished = False
        self.error = None
        self.history = []
        self.operations = []
        self.readings = {}
        self.samples = {}
        self.accuracy_results = []

    @property
    def active(self):
        return self._active

    @property
    def succeeded(self):
        return self.finished and self.error is None

    # === Owner interface ===

    def start(self):
        self._dispatch("start")

    def on_line(self, text):
        if self._active is not None:
            self._active.on_line(text)

    def on_operation_end(self, error, outcome):
        if self.finished:
            return
        self._active = None
        if error is not None:
            self._finish(error)
            return
        self._record(outcome)
        self._dispatch(outcome.name)

    def abort(self, error):
        if not self.finished:
            self._finish(error)

    # === Transition lookup ===

    def stage_for(self, name):
        """Classify the run position for an outcome named ``name``."""
        if self.config.skip_calibration:
            return Stage.ACCURACY_ONLY
        pos = self.position
        if pos.restarted:
            return Stage.RESTARTED
        if name == "phase-calibrated":
            if pos.phase_index + 1 >= len(self.config.phase_list):
                return Stage.LAST_PHASE
            if self.config.is_split and not pos.power_cycled:
                return Stage.POWER_CYCLE
            return Stage.NEXT_PHASE
        if pos.power_cycled and pos.phase_index == SPLIT_BOUNDARY:
            return Stage.RESUMING
        return Stage.CALIBRATION

    def transition_for(self, name):
        stage = self.stage_for(name)
        handler = _TRANSITIONS.get((name, self.topology_class, stage))
        if handler is None:
            handler = _TRANSITIONS.get((name, ANY, stage))
        return stage, handler

    def _dispatch(self, name):
        stage, handler = self.transition_for(name)
        if handler is None:
            self._finish(InvalidTransitionError(name, stage.value))
            return
        logger.info("%s [%s] -> %s", name, stage.value, handler.lstrip("_"))
        self.history.append(name)
        getattr(self, handler)()

    def _run(self, operation):
        self._active = operation
        self.operations.append(operation.label)
        operation.start()

    def _record(self, outcome):
        if outcome.name == "phase-calibrated":
            phase = outcome.data["phase"]
            self.readings[phase] = outcome.data["reading"]
            if outcome.data.get("samples"):
                self.samples[phase] = outcome.data["samples"]
        elif outcome.name == "accuracy-polled":
            self.accuracy_results = outcome.data.get("results", [])

    def _finish(self, error):
        self.finished = True
        self.error = error
        if error is None:
            logger.info("calibration run completed")
        else:
            logger.error("calibration run failed: %s", error)

    # === Handlers ===

    def _connect(self):
        self._run(ConnectMeter(self._ctrl, self.config.vendor, skip=self._connect_verified))

    def _prepare_calibration(self):
        if self.config.use_reference and self.config.calibration_load is not None:
            self._run(SetLoad(self._ctrl, self.config.calibration_load, label="setup calibration load"))
            return
        self._init_calibration()

    def _init_calibration(self):
        self._run(GenericCommand(self._ctrl, INIT_COMMAND, "cal-initialized",
                                 argument=len(self.config.phase_list),
                                 label="initialize calibration"))

    def _first_phase(self):
        self.position.phase_index = 0
        self._calibrate_phase()

    def _next_phase(self):
        self.position.phase_index += 1
        self._calibrate_phase()

    def _calibrate_phase(self):
        phase = self.config.phase_list[self.position.phase_index]
        self._run(PhaseCalibrate(
            self._ctrl,
            phase,
            read_line=self.config.read_line(phase),
            use_reference=self.config.use_reference,
            auto_answer=self.config.auto_answer,
            stabilization=self.config.stabilization,
        ))

    def _power_cycle(self):
        self.position.power_cycled = True
        phases = self.config.phase_list
        index = self.position.phase_index
        message = MOVE_FEED_PROMPT.format(done=phases[index], next=phases[index + 1])
        self._run(OperatorPause(self._ctrl, message))

    def _reload_or_resume(self):
        if self.config.use_reference and self.config.calibration_load is not None:
            self._run(SetLoad(self._ctrl, self.config.calibration_load, label="reload calibration load"))
            return
        self._resume_calibration()

    def _resume_calibration(self):
        self._run(GenericCommand(self._ctrl, RESUME_COMMAND, "cal-resumed",
                                 label="resume calibration",
                                 max_retries=RESUME_RETRIES, timeout=RESUME_TIMEOUT))

    def _write_calibration(self):
        self._run(GenericCommand(self._ctrl, WRITE_COMMAND, "cal-written",
                                 label="write calibration", timeout=WRITE_TIMEOUT))

    def _warm_restart(self):
        self._run(GenericCommand(self._ctrl, RESTART_COMMAND, "warm-restarted", argument="WARM",
                                 label="warm restart", fire_and_forget=True,
                                 settle_delay=RESTART_DELAY))

    def _reconnect(self):
        self.position.restarted = True
        self._run(ConnectMeter(self._ctrl, self.config.vendor))

    def _accuracy_load(self):
        if not self.config.use_reference:
            self._ctrl.write_user("No reference service configured: skipping the accuracy test.")
            self._complete()
            return
        load = accuracy_load(self.config.topology is Topology.THREE, self.config.frequency)
        self._run(SetLoad(self._ctrl, load, label="setup accuracy load"))

    def _start_test(self):
        test_id = self.config.test_id
        self._run(HttpAction(self._ctrl, "accuracy-started",
                             lambda: self._ctrl.reference.start_test(test_id),
                             "start accuracy test"))

    def _poll_accuracy(self):
        self._run(PollAccuracy(self._ctrl, test_id=self.config.test_id))

    def _stop_test(self):
        test_id = self.config.test_id
        self._run(HttpAction(self._ctrl, "accuracy-stopped",
                             lambda: self._ctrl.reference.stop_test(test_id),
                             "stop accuracy test"))

    def _split_guidance(self):
        self._ctrl.write_user(SPLIT_GUIDANCE)
        self._complete()

    def _complete(self):
        self._finish(None)
