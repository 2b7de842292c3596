"""
Poll the accuracy-test result resource of the reference service.

The first result seen is the baseline. Every later result whose sequence
number is higher than any seen before is a fresh result; repeats are
ignored. The operation succeeds after ``min_results`` fresh results.
"""

from __future__ import annotations

import logging

from metercal.errors import ServiceUnavailable
from metercal.operations.base import Operation

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
TIMEOUT = 10.0
POLL_DELAY = 2.0
MIN_RESULTS = 3
START_DELAY = 5.0


class PollAccuracy(Operation):
    label = "accuracy polling"

    def __init__(self, ctrl, test_id=1, min_results=MIN_RESULTS, poll_delay=POLL_DELAY,
                 timeout=TIMEOUT, max_retries=MAX_RETRIES, start_delay=START_DELAY):
        super().__init__(ctrl)
        self._test_id = test_id
        self._min_results = min_results
        self._poll_delay = poll_delay
        self._timeout = timeout
        self._max_retries = max_retries
        self._start_delay = start_delay

        self._fail_count = 0
        self._last_seqno = None
        self.results = []

    def start(self):
        if self._start_delay:
            self._arm_timer(self._start_delay, self._poll)
        else:
            self._poll()

    def _poll(self):
        self._arm_timer(self._timeout, lambda: self._count_failure("no response from reference service"))
        self._call(lambda: self._ctrl.reference.poll_result(self._test_id), self._on_result, self._on_error)

    def _on_result(self, body):
        self._cancel_timer()
        try:
            seqno = int(body["seqno"])
        except (KeyError, TypeError, ValueError):
            self._count_failure(f"malformed test result: {body!r}")
            return

        if self._last_seqno is not None and seqno > self._last_seqno:
            self.results.append(body)
            self._ctrl.write_user(f"accuracy result #{seqno}: {body}")
        if self._last_seqno is None or seqno > self._last_seqno:
            self._last_seqno = seqno

        if len(self.results) >= self._min_results:
            self._succeed("accuracy-polled", results=list(self.results))
            return
        self._arm_timer(self._poll_delay, self._poll)

    def _on_error(self, exc):
        self._cancel_timer()
        self._count_failure(str(exc))

    def _count_failure(self, reason):
        self._fail_count += 1
        logger.warning("accuracy polling: attempt %d failed: %s", self._fail_count, reason)
        if self._fail_count >= self._max_retries:
            self._fail(ServiceUnavailable(f"accuracy polling: {reason}"))
            return
        self._arm_timer(self._poll_delay, self._poll)
