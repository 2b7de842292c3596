"""
Reference-service actions.

Each action is a single call whose JSON reply carries ``result``. A
``success`` result completes the operation; any other result means the
service has not applied the request yet and the call is repeated straight
away without counting it. A timeout or a service error counts as a failed
attempt, and the call is repeated until ``max_retries`` attempts have failed.
"""

from __future__ import annotations

import logging

from metercal.errors import ServiceUnavailable
from metercal.operations.base import Operation

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
TIMEOUT = 5.0


class HttpAction(Operation):
    def __init__(self, ctrl, outcome, action, label, timeout=TIMEOUT, max_retries=MAX_RETRIES):
        super().__init__(ctrl)
        self.outcome = outcome
        self.label = label
        self._action = action
        self._timeout = timeout
        self._max_retries = max_retries
        self._fail_count = 0

    def start(self):
        self._push()

    def _push(self):
        self._arm_timer(self._timeout, lambda: self._count_failure("no response from reference service"))
        self._call(self._action, self._on_reply, self._on_error)

    def _on_reply(self, body):
        self._cancel_timer()
        if isinstance(body, dict) and body.get("result") == "success":
            self._ctrl.write_user(f"{self.label} succeeded")
            self._succeed(self.outcome, reply=body)
            return
        logger.debug("%s: not applied yet (%r), retrying", self.label, body)
        self._push()

    def _on_error(self, exc):
        self._cancel_timer()
        self._count_failure(str(exc))

    def _count_failure(self, reason):
        self._fail_count += 1
        logger.warning("%s: attempt %d failed: %s", self.label, self._fail_count, reason)
        if self._fail_count >= self._max_retries:
            self._fail(ServiceUnavailable(f"{self.label}: {reason}"))
            return
        self._push()


class SetLoad(HttpAction):
    """Push a :class:`~metercal.loads.LoadDefinition` with ``PUT /api/loadef``."""

    def __init__(self, ctrl, definition, label="setup load", timeout=TIMEOUT, max_retries=MAX_RETRIES):
        self.definition = definition
        super().__init__(ctrl, "load-set", lambda: ctrl.reference.set_load(definition), label,
                         timeout=timeout, max_retries=max_retries)
