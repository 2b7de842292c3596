"""
tests/test_accuracy.py: pytest unit tests for metercal.operations.accuracy.PollAccuracy.
"""

from __future__ import annotations

from conftest import FakeReference, Recorder, SimController
from metercal.errors import ServiceUnavailable
from metercal.operations import PollAccuracy


def poll(results, **kwargs):
    reference = FakeReference(results=results)
    ctrl = SimController(reference=reference)
    harness = ctrl.run(Recorder(PollAccuracy(ctrl, **kwargs)))
    return harness, reference, ctrl


def test_first_result_is_baseline() -> None:
    harness, reference, _ = poll([{"seqno": n} for n in (5, 6, 7, 8)])
    assert harness.error is None
    assert harness.outcome.name == "accuracy-polled"
    assert [r["seqno"] for r in harness.outcome.data["results"]] == [6, 7, 8]
    assert reference.count("poll_result") == 4


def test_repeated_seqnos_are_ignored() -> None:
    results = [{"seqno": n, "error": 0.1} for n in (1, 2, 2, 3, 3, 4)]
    harness, reference, _ = poll(results)
    assert [r["seqno"] for r in harness.outcome.data["results"]] == [2, 3, 4]
    assert reference.count("poll_result") == 6


def test_lower_seqno_is_not_a_fresh_result() -> None:
    harness, _, _ = poll([{"seqno": n} for n in (3, 4, 2, 5, 6)])
    assert [r["seqno"] for r in harness.outcome.data["results"]] == [4, 5, 6]


def test_polling_starts_after_delay() -> None:
    reference = FakeReference()
    ctrl = SimController(reference=reference)
    ctrl.host(PollAccuracy(ctrl))
    ctrl.advance(4.9)
    assert reference.count("poll_result") == 0
    ctrl.advance(0.1)
    assert reference.count("poll_result") == 1


def test_test_id_is_passed_through() -> None:
    _, reference, _ = poll([{"seqno": n} for n in (1, 2, 3, 4)], test_id=9)
    assert ("poll_result", 9) in reference.calls


def test_errors_fail_after_retries() -> None:
    harness, reference, _ = poll([ServiceUnavailable("down")], max_retries=2)
    assert isinstance(harness.error, ServiceUnavailable)
    assert reference.count("poll_result") == 2


def test_malformed_result_counts_as_failure() -> None:
    harness, _, _ = poll([{"status": "running"}], max_retries=2)
    assert isinstance(harness.error, ServiceUnavailable)
    assert "malformed" in str(harness.error)
