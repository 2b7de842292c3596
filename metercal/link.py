"""
Serial link to the meter.

Commands are written as ASCII lines terminated with CR. A reader thread
collects incoming bytes, splits them on CR and hands every complete,
non-empty line to a callback.
"""

from __future__ import annotations

import logging
import threading
import time

import serial

from metercal.errors import LinkFailure

logger = logging.getLogger(__name__)

CR = "\r"
READ_TIMEOUT = 0.1
OPEN_SETTLE = 0.5


def split_lines(pending, text):
    """
    Split ``pending + text`` on CR.

    Returns the complete lines (stripped, empty ones dropped) and the
    unterminated tail to keep for the next chunk.
    """
    parts = (pending + text).split(CR)
    lines = [part.strip() for part in parts[:-1] if part.strip()]
    return lines, parts[-1]


class MeterLink:
    def __init__(self, device, baud=9600, timeout=READ_TIMEOUT):
        self.device = device
        self.baud = baud
        self.timeout = timeout
        self._serial = None
        self._pending = ""
        self._running = False
        self._reader = None

    def open(self):
        self._serial = serial.Serial(self.device, self.baud, timeout=self.timeout)
        time.sleep(OPEN_SETTLE)
        self._serial.reset_input_buffer()
        logger.info("opened %s at %d baud", self.device, self.baud)

    def close(self):
        self._running = False
        if self._reader is not None:
            self._reader.join(timeout=1.0)
            self._reader = None
        if self._serial and self._serial.is_open:
            self._serial.close()
            logger.info("closed %s", self.device)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def write(self, line):
        self._serial.write((line + CR).encode("ascii"))

    def read_lines(self):
        """Read what is waiting (at least one byte or a timeout) and return complete lines."""
        chunk = self._serial.read(self._serial.in_waiting or 1)
        if not chunk:
            return []
        lines, self._pending = split_lines(self._pending, chunk.decode("ascii", errors="ignore"))
        return lines

    def start_reader(self, on_line, on_error):
        """Deliver lines to ``on_line`` from a background thread until closed."""
        def loop():
            while self._running:
                try:
                    lines = self.read_lines()
                except serial.SerialException as exc:
                    if self._running:
                        on_error(LinkFailure(f"serial read on {self.device} failed: {exc}"))
                    return
                for line in lines:
                    on_line(line)

        self._running = True
        self._reader = threading.Thread(target=loop, name="meter-reader", daemon=True)
        self._reader.start()
