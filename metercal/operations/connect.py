"""
Issue ``*IDN?`` until the meter answers with its identification.

The optical link to an open meter box is not always reliable, so the
operation keeps retrying for a long time and does not trust a single valid
answer: the same identification line has to come back ``confirm_count`` more
times in a row before the meter counts as connected.
"""

from __future__ import annotations

import logging

from metercal.errors import LinkFailure
from metercal.operations.base import Operation

logger = logging.getLogger(__name__)

IDN_COMMAND = "*IDN?"
MAX_RETRIES = 100
CONFIRM_COUNT = 2
WAIT_RESP_DELAY = 3.0
CONFIRMING_DELAY = 1.5
IDN_FIELDS_MIN = 3

WAIT_RESP = "wait-resp"
CONFIRMING = "confirming"


def parse_identification(line, vendor):
    """Return the CSV fields of a valid identification line, or None."""
    fields = [part.strip() for part in line.strip().split(",")]
    if len(fields) < IDN_FIELDS_MIN or fields[0] != vendor:
        return None
    return fields


class ConnectMeter(Operation):
    label = "connect meter"

    def __init__(self, ctrl, vendor, skip=False, max_retries=MAX_RETRIES,
                 confirm_count=CONFIRM_COUNT, wait_delay=WAIT_RESP_DELAY,
                 confirm_delay=CONFIRMING_DELAY):
        super().__init__(ctrl)
        self._vendor = vendor
        self._skip = skip
        self._max_retries = max_retries
        self._confirm_count = confirm_count
        self._wait_delay = wait_delay
        self._confirm_delay = confirm_delay

        self._state = WAIT_RESP
        self._fail_count = 0
        self._confirmed = 0
        self._identification = None
        self._link_seen = False

    @property
    def state(self):
        return self._state

    def start(self):
        if self._skip:
            self._succeed("connected", skipped=True)
            return
        self._request()

    def handle_line(self, line):
        self._cancel_timer()
        fields = parse_identification(line, self._vendor)

        if fields is None:
            logger.debug("not an identification line: %r", line)
            if self._state == CONFIRMING:
                self._reset()
            else:
                self._count_failure()
            return

        if self._state == WAIT_RESP:
            self._identification = line.strip()
            self._state = CONFIRMING
            self._confirmed = 0
            self._link_seen = True
            self._request()
            return

        if line.strip() != self._identification:
            logger.debug("identification changed while confirming: %r", line)
            self._reset()
            return

        self._confirmed += 1
        if self._confirmed >= self._confirm_count:
            product, version = fields[1], fields[2]
            build = fields[3] if len(fields) > 3 else None
            self._ctrl.write_user(f"Meter connected. Product: {product} Ver: {version} Build: {build}")
            self._succeed("connected", product=product, version=version, build=build)
            return
        self._request()

    def _request(self):
        # Once any valid answer was seen the link is live: poll faster.
        delay = self._confirm_delay if self._state == CONFIRMING or self._link_seen else self._wait_delay
        self._arm_timer(delay, self._count_failure)
        self._ctrl.write_meter(IDN_COMMAND)

    def _count_failure(self):
        self._fail_count += 1
        if self._fail_count >= self._max_retries:
            self._fail(LinkFailure("cannot connect to meter"))
            return
        self._request()

    def _reset(self):
        self._state = WAIT_RESP
        self._fail_count = 0
        self._identification = None
        self._request()
