"""
Request/response meter commands.

A command is written and the operation waits for a line carrying the success
marker. A timeout, or any other line, counts as a failed attempt and the
command is sent again until ``max_retries`` attempts have failed. A line
carrying the failure marker ends the operation at once.
"""

from __future__ import annotations

import logging

from metercal.errors import LinkFailure, ProtocolFailure
from metercal.operations.base import Operation

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "SUCCESS"
FAILURE_MARKER = "FAIL"
MAX_RETRIES = 2
WAIT_DELAY = 3.0
FIRE_AND_FORGET_DELAY = 8.0


def format_command(command, argument=None):
    if argument is None or argument == "":
        return command
    return f"{command} {argument}"


class CommandExchange(Operation):
    """Shared send/wait/retry loop of meter commands."""

    outcome = None

    def __init__(self, ctrl, max_retries=MAX_RETRIES, timeout=WAIT_DELAY):
        super().__init__(ctrl)
        self._max_retries = max_retries
        self._timeout = timeout
        self._fail_count = 0

    @property
    def fail_count(self):
        return self._fail_count

    def command_line(self):
        raise NotImplementedError

    def outcome_data(self):
        return {}

    def handle_line(self, line):
        self._cancel_timer()
        if SUCCESS_MARKER in line:
            self._succeed(self.outcome, **self.outcome_data())
            return
        if FAILURE_MARKER in line:
            self._fail(ProtocolFailure(f"{self.label} failed: meter answered '{line.strip()}'"))
            return
        logger.debug("%s: unexpected answer %r", self.label, line)
        self._count_failure()

    def _send(self):
        self._arm_timer(self._timeout, self._count_failure)
        self._ctrl.write_meter(self.command_line())

    def _count_failure(self):
        self._fail_count += 1
        if self._fail_count >= self._max_retries:
            self._fail(LinkFailure(f"{self.label}: no valid response from meter after {self._fail_count} attempts"))
            return
        logger.debug("%s: attempt %d failed, resending", self.label, self._fail_count)
        self._send()


class GenericCommand(CommandExchange):
    """
    Send one command and wait for its terminal response.

    With ``fire_and_forget`` the meter is not expected to answer (a restart
    command, for instance): the operation succeeds ``settle_delay`` seconds
    after writing the command and ignores every line in between.
    """

    def __init__(self, ctrl, command, outcome, argument=None, label=None,
                 max_retries=MAX_RETRIES, timeout=WAIT_DELAY,
                 fire_and_forget=False, settle_delay=FIRE_AND_FORGET_DELAY):
        super().__init__(ctrl, max_retries=max_retries, timeout=timeout)
        self.command = command
        self.argument = argument
        self.outcome = outcome
        self.label = label or command
        self._fire_and_forget = fire_and_forget
        self._settle_delay = settle_delay

    def command_line(self):
        return format_command(self.command, self.argument)

    def start(self):
        self._ctrl.write_user(self.label)
        if self._fire_and_forget:
            self._discard_input = True
            self._arm_timer(self._settle_delay, lambda: self._succeed(self.outcome))
            self._ctrl.write_meter(self.command_line())
            return
        self._send()
