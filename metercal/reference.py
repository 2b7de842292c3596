"""
HTTP client of the reference service (load source and measuring standard).

Every call returns the decoded JSON reply. Any transport problem, error
status or undecodable body is raised as :class:`ServiceUnavailable`.
"""

from __future__ import annotations

import json
import logging
from urllib import error, request

from metercal.errors import ServiceUnavailable
from metercal.readings import InstantaneousSample

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
TIMEOUT = 5.0


class ReferenceClient:
    def __init__(self, host, port=DEFAULT_PORT, timeout=TIMEOUT):
        self.host = host
        self.port = port
        self.timeout = timeout

    @property
    def api_root(self):
        return f"http://{self.host}:{self.port}/api"

    def _request(self, method, path, payload=None):
        url = f"{self.api_root}{path}"
        data = None
        headers = {}
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = request.Request(url, data=data, headers=headers, method=method)
        logger.debug("%s %s %s", method, url, payload if payload is not None else "")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode("utf-8")
        except error.HTTPError as exc:
            raise ServiceUnavailable(f"reference service status: {exc.code}") from exc
        except OSError as exc:
            raise ServiceUnavailable(f"reference service unreachable: {exc}") from exc
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise ServiceUnavailable(f"reference service sent a malformed reply: {body[:80]!r}") from exc

    def set_load(self, definition):
        return self._request("PUT", "/loadef", definition.to_json())

    def read_instantaneous(self):
        return InstantaneousSample.from_json(self._request("GET", "/instantaneous"))

    def start_test(self, test_id=1):
        return self._request("PUT", f"/test/start/{test_id}")

    def stop_test(self, test_id=1):
        return self._request("PUT", f"/test/stop/{test_id}")

    def poll_result(self, test_id=1):
        return self._request("GET", f"/test/result/{test_id}")
