"""
Operation base class.

An operation is one stateful step of the calibration pipeline. It is started
once, receives every meter line while it is the active operation, and reports
exactly one completion to the controller: an error or an :class:`Outcome`.

All timers, background calls and prompts go through the helpers below so that
nothing reaches the operation after it has completed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outcome:
    name: str
    data: dict = field(default_factory=dict)


class Operation:
    label = "operation"

    def __init__(self, ctrl):
        self._ctrl = ctrl
        self._timer = None
        self._request_id = 0
        self._finished = False
        self._discard_input = False

    @property
    def finished(self):
        return self._finished

    def start(self):
        raise NotImplementedError

    def on_line(self, line):
        if self._finished or self._discard_input:
            return
        self.handle_line(line)

    def handle_line(self, line):
        """Meter lines are ignored unless a subclass handles them."""

    # === Timers ===

    def _arm_timer(self, delay, callback):
        """Replace the pending timer with one that calls ``callback`` after ``delay`` seconds."""
        self._cancel_timer()
        handle = None

        def expire():
            if self._finished or self._timer is not handle:
                return
            self._timer = None
            callback()

        handle = self._ctrl.create_timer(delay, expire)
        self._timer = handle

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # === Background calls and prompts ===

    def _call(self, func, on_result, on_error):
        """
        Run ``func`` off the dispatcher thread.

        Only the reply to the latest call is delivered; a reply to a call that
        has since been reissued is dropped.
        """
        self._request_id += 1
        request_id = self._request_id

        def deliver(handler):
            def wrapped(value):
                if self._finished or request_id != self._request_id:
                    logger.debug("%s: dropping stale reply %r", self.label, value)
                    return
                handler(value)
            return wrapped

        self._ctrl.submit(func, deliver(on_result), deliver(on_error))

    def _ask(self, message, on_answer):
        def wrapped(answer):
            if not self._finished:
                on_answer(answer)

        self._ctrl.prompt(message, wrapped)

    # === Completion ===

    def _succeed(self, name, **data):
        if self._finished:
            return
        self._finished = True
        self._cancel_timer()
        logger.debug("%s: completed with '%s'", self.label, name)
        self._ctrl.operation_ended(None, Outcome(name, data))

    def _fail(self, error):
        if self._finished:
            return
        self._finished = True
        self._cancel_timer()
        logger.debug("%s: failed: %s", self.label, error)
        self._ctrl.operation_ended(error, None)

    def __repr__(self):
        state = "finished" if self._finished else "active"
        return f"{type(self).__name__}({self.label}, {state})"
