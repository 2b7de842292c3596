"""
tests/conftest.py: deterministic pipeline harness.

``SimController`` reuses the real :class:`~metercal.controller.Controller`
queue and dispatch, but replaces threads with a virtual clock: timers fire
when the test advances time, background calls run as queued events, and
operator answers come from a script.
"""

from __future__ import annotations

import heapq
import itertools
import queue

import pytest

from metercal.config import RunConfig
from metercal.controller import Controller, OperationHarness, TimerHandle
from metercal.readings import InstantaneousSample

IDN_LINE = "LANDIS+GYR,E355,01.02,0345"


# ──────────────────────────────────────────────────────────────
# Fakes for the external collaborators
# ──────────────────────────────────────────────────────────────

class FakeMeter:
    """Answers ``*IDN?`` with an identification and every IMS command with SUCCESS."""

    def __init__(self, idn=IDN_LINE, fail_on=None):
        self.idn = idn
        self.fail_on = fail_on
        self.received = []

    def respond(self, line):
        self.received.append(line)
        if line == "*IDN?":
            return [self.idn]
        if line.startswith("IMS:SYS:RESTART"):
            return []
        if self.fail_on and line.startswith(self.fail_on):
            return [f"{line.split()[0]} FAIL"]
        if line.startswith("IMS:"):
            return [f"{line.split()[0]} SUCCESS"]
        return []

    def commands(self):
        return [line for line in self.received if line.startswith("IMS:")]


def _next(items):
    """Pop the head of a script, repeating the last entry forever."""
    item = items.pop(0) if len(items) > 1 else items[0]
    if isinstance(item, Exception):
        raise item
    return item


class FakeReference:
    def __init__(self, samples=None, results=None, load_replies=None):
        self.samples = samples or [make_sample(1_000_000_000, 0)]
        self.results = results or [{"seqno": n} for n in (1, 2, 3, 4)]
        self.load_replies = load_replies or [{"result": "success"}]
        self.calls = []

    def set_load(self, definition):
        self.calls.append(("set_load", definition))
        return _next(self.load_replies)

    def read_instantaneous(self):
        self.calls.append(("read_instantaneous",))
        return _next(self.samples)

    def start_test(self, test_id=1):
        self.calls.append(("start_test", test_id))
        return {"result": "success"}

    def stop_test(self, test_id=1):
        self.calls.append(("stop_test", test_id))
        return {"result": "success"}

    def poll_result(self, test_id=1):
        self.calls.append(("poll_result", test_id))
        return _next(self.results)

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


def make_sample(p, q, v=240_000, i=5_000, lines=None):
    """Instantaneous sample with the same values on all three lines, unless ``lines`` overrides some."""
    columns = {line: (v, i, p, q) for line in (1, 2, 3)}
    columns.update(lines or {})
    return InstantaneousSample(*(tuple(columns[line][k] for line in (1, 2, 3)) for k in range(4)))


# ──────────────────────────────────────────────────────────────
# Deterministic controller
# ──────────────────────────────────────────────────────────────

class Recorder(OperationHarness):
    """Harness that also keeps every completion it receives."""

    def __init__(self, operation):
        super().__init__(operation)
        self.ends = []

    def on_operation_end(self, error, outcome):
        self.ends.append((error, outcome))
        super().on_operation_end(error, outcome)


class SimController(Controller):
    def __init__(self, config=None, meter=None, reference=None, answers=None):
        super().__init__(config or RunConfig(), reference=reference)
        self.clock = 0.0
        self.meter = meter
        self.answers = answers if answers is not None else []
        self.written = []
        self.user_output = []
        self.prompts = []
        self.pending_prompts = []
        self.hold_calls = False
        self.held_calls = []
        self._timers = []
        self._order = itertools.count()

    # === Services ===

    def write_meter(self, line):
        self.written.append(line)
        if self.meter is not None:
            for reply in self.meter.respond(line):
                self.deliver_line(reply)

    def write_user(self, text):
        self.user_output.append(text)

    def create_timer(self, delay, callback):
        handle = TimerHandle(callback)
        due = self.clock + delay * self.config.time_scale
        heapq.heappush(self._timers, (due, next(self._order), handle))
        return handle

    def submit(self, func, on_result, on_error):
        def work():
            try:
                result = func()
            except Exception as exc:  # noqa: BLE001
                self.post(on_error, exc)
            else:
                self.post(on_result, result)

        if self.hold_calls:
            self.held_calls.append(work)
        else:
            self.post(work)

    def prompt(self, message, callback):
        self.prompts.append(message)
        if callable(self.answers):
            answer = self.answers(message)
        elif self.answers:
            answer = self.answers.pop(0)
        else:
            raise AssertionError(f"unexpected prompt: {message}")
        if answer is None:
            self.pending_prompts.append(callback)
        else:
            self.post(callback, answer)

    # === Test controls ===

    @property
    def pending_timers(self):
        return [handle for _, _, handle in self._timers if not handle.cancelled]

    def host(self, operation):
        """Start ``operation`` under a :class:`Recorder` and process the events it queued."""
        recorder = Recorder(operation)
        self._owner = recorder
        operation.start()
        self.settle()
        return recorder

    def settle(self):
        while True:
            try:
                func, args = self._events.get_nowait()
            except queue.Empty:
                return
            func(*args)

    def feed(self, line):
        self.deliver_line(line)
        self.settle()

    def answer(self, text):
        self.post(self.pending_prompts.pop(0), text)
        self.settle()

    def release(self, index=0):
        self.post(self.held_calls.pop(index))
        self.settle()

    def advance(self, seconds):
        target = self.clock + seconds
        self.settle()
        while self._timers and self._timers[0][0] <= target + 1e-9:
            due, _, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self.clock = due
            handle.fire()
            self.settle()
        self.clock = target

    def step(self):
        try:
            func, args = self._events.get_nowait()
        except queue.Empty:
            pass
        else:
            func(*args)
            return True
        while self._timers:
            due, _, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self.clock = max(self.clock, due)
            handle.fire()
            return True
        return False

    def run(self, owner, max_steps=100_000):
        self._owner = owner
        self.post(owner.start)
        for _ in range(max_steps):
            if owner.finished:
                return owner
            if not self.step():
                raise AssertionError("pipeline stalled with nothing left to do")
        raise AssertionError("pipeline did not finish")


# ──────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture()
def ctrl() -> SimController:
    return SimController()

