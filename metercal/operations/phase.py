"""
Calibrate one phase: obtain the real V, I, P, Q and send them with
``IMS:CALibration:L<n>``.

The reading comes either from the operator or from the reference service.
In the second case instantaneous samples are fetched until the last few
agree (see :mod:`metercal.stabilization`), and the most recent sample is
taken. Meter lines are discarded while the reading is being acquired.
"""

from __future__ import annotations

import logging

from metercal.errors import InputFormatError, ServiceUnavailable, StabilizationError
from metercal.operations.command import CommandExchange
from metercal.readings import READING_PROMPT, parse_operator_reading
from metercal.stabilization import StabilizationEvaluator

logger = logging.getLogger(__name__)

PHASE_COMMAND = "IMS:CALibration:L{phase}"
MAX_RETRIES = 3
WAIT_DELAY = 3.0
SETTLE_DELAY = 2.0
SAMPLE_INTERVAL = 1.0
MAX_FETCH_ERRORS = 2
MAX_SAMPLES = 300
READY_PROMPT = "Prepare phase L{phase} for calibration and press Enter when ready."


class PhaseCalibrate(CommandExchange):
    outcome = "phase-calibrated"

    def __init__(self, ctrl, phase, read_line=None, use_reference=False,
                 auto_answer=False, stabilization=None,
                 max_retries=MAX_RETRIES, timeout=WAIT_DELAY,
                 settle_delay=SETTLE_DELAY, sample_interval=SAMPLE_INTERVAL,
                 max_samples=MAX_SAMPLES):
        super().__init__(ctrl, max_retries=max_retries, timeout=timeout)
        self.phase = phase
        self.label = f"calibration phase {phase}"
        self._read_line = read_line or phase
        self._use_reference = use_reference
        self._auto_answer = auto_answer
        self._evaluator = StabilizationEvaluator(stabilization)
        self._settle_delay = settle_delay
        self._sample_interval = sample_interval
        self._max_samples = max_samples

        self.reading = None
        self.samples = []
        self._fetch_errors = 0

    def command_line(self):
        return f"{PHASE_COMMAND.format(phase=self.phase)} {self.reading.command_argument()}"

    def outcome_data(self):
        return {"phase": self.phase, "reading": self.reading, "samples": list(self.samples)}

    def start(self):
        self._discard_input = True
        if self._auto_answer:
            self._acquire()
        else:
            self._ask(READY_PROMPT.format(phase=self.phase), lambda _answer: self._acquire())

    def _acquire(self):
        if self._use_reference:
            self._arm_timer(self._settle_delay, self._fetch)
        else:
            self._ask_reading()

    def _calibrate(self, reading):
        self.reading = reading
        self._discard_input = False
        self._ctrl.write_user(f"{self.label}: V={reading.voltage} I={reading.current}"
                              f" P={reading.active_power} Q={reading.reactive_power}")
        self._send()

    # === Operator entry ===

    def _ask_reading(self):
        self._ask(READING_PROMPT.format(phase=self.phase), self._on_answer)

    def _on_answer(self, answer):
        try:
            reading = parse_operator_reading(answer)
        except InputFormatError as exc:
            self._ctrl.write_user(str(exc))
            self._ask_reading()
            return
        self._calibrate(reading)

    # === Reference service ===

    def _fetch(self):
        self._call(self._ctrl.reference.read_instantaneous, self._on_sample, self._on_fetch_error)

    def _on_sample(self, sample):
        try:
            reading = sample.reading(self._read_line)
        except ServiceUnavailable as exc:
            self._on_fetch_error(exc)
            return
        self._fetch_errors = 0
        self.samples.append(reading)
        logger.debug("L%d sample %d: %s", self.phase, len(self.samples), reading)

        if self._evaluator.is_stable(self.samples):
            self._calibrate(reading)
            return
        if len(self.samples) >= self._max_samples:
            self._fail(StabilizationError(
                f"{self.label}: reading did not stabilize after {len(self.samples)} samples"))
            return
        self._arm_timer(self._sample_interval, self._fetch)

    def _on_fetch_error(self, exc):
        self._fetch_errors += 1
        logger.warning("%s: fetch error %d: %s", self.label, self._fetch_errors, exc)
        if self._fetch_errors >= MAX_FETCH_ERRORS:
            self._fail(ServiceUnavailable(f"{self.label}: cannot fetch instantaneous values: {exc}"))
            return
        self._arm_timer(self._sample_interval, self._fetch)
