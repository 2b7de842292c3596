"""
Single-threaded dispatcher for the calibration pipeline.

Meter lines, timer expiries, reference-service replies and operator answers
arrive on their own threads; each of them only posts a callable to the
controller queue. The queue is drained on the thread that called
:meth:`Controller.run`, so pipeline and operation code never runs
concurrently.

The object passed to :meth:`run` (the owner, normally the router) must
provide ``start()``, ``on_line(text)``, ``on_operation_end(error, outcome)``,
``abort(error)`` and a ``finished`` attribute.
"""

from __future__ import annotations

import logging
import queue
import threading

from metercal.errors import CalibrationError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2


class TimerHandle:
    """Cancelable timer; cancel() also suppresses an expiry already queued."""

    def __init__(self, callback):
        self._callback = callback
        self._timer = None
        self.cancelled = False

    def cancel(self):
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()

    def fire(self):
        if self.cancelled:
            return
        self.cancelled = True
        self._callback()


class Controller:
    def __init__(self, config, link=None, reference=None):
        self.config = config
        self.reference = reference
        self._link = link
        self._owner = None
        self._events = queue.Queue()

    @property
    def owner(self):
        return self._owner

    def post(self, func, *args):
        self._events.put((func, args))

    # === Services used by operations ===

    def write_meter(self, line):
        logger.debug("meter <- %s", line)
        self._link.write(line)

    def write_user(self, text):
        print(text)

    def create_timer(self, delay, callback):
        handle = TimerHandle(callback)
        handle._timer = threading.Timer(delay * self.config.time_scale, self.post, args=(handle.fire,))
        handle._timer.daemon = True
        handle._timer.start()
        return handle

    def submit(self, func, on_result, on_error):
        def work():
            try:
                result = func()
            except Exception as exc:  # noqa: BLE001 - handed to the operation
                self.post(on_error, exc)
            else:
                self.post(on_result, result)

        threading.Thread(target=work, daemon=True).start()

    def prompt(self, message, callback):
        def ask():
            try:
                answer = input(f"{message}\n> ")
            except EOFError:
                self.abort(CalibrationError("operator console closed"))
                return
            self.post(callback, answer)

        threading.Thread(target=ask, daemon=True).start()

    def operation_ended(self, error, outcome):
        self.post(self._owner.on_operation_end, error, outcome)

    # === Input from transports ===

    def deliver_line(self, text):
        logger.debug("meter -> %s", text)
        self.post(self._dispatch_line, text)

    def abort(self, error):
        self.post(self._owner.abort, error)

    def _dispatch_line(self, text):
        self._owner.on_line(text)

    # === Event loop ===

    def run(self, owner):
        """Start ``owner`` and dispatch events until it has finished."""
        self._owner = owner
        self.post(owner.start)
        while not owner.finished:
            try:
                func, args = self._events.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            func(*args)
        return owner


class OperationHarness:
    """Owner that hosts a single operation instead of a whole pipeline."""

    def __init__(self, operation):
        self.operation = operation
        self.error = None
        self.outcome = None
        self.finished = False

    def start(self):
        self.operation.start()

    def on_line(self, text):
        self.operation.on_line(text)

    def on_operation_end(self, error, outcome):
        self.error, self.outcome = error, outcome
        self.finished = True

    def abort(self, error):
        if not self.finished:
            self.on_operation_end(error, None)
