import logging
import unittest

import pytest

from mediafeed.retry import BackoffPolicy
from mediafeed.timing import OperationTimer


class TestBackoffPolicy(unittest.TestCase):
    def test_delays_double_without_jitter(self) -> None:
        policy = BackoffPolicy(base_delay_seconds=0.5, jitter_ratio=0.0)
        self.assertEqual([policy.delay_for(n) for n in range(3)], [0.5, 1.0, 2.0])

    def test_jitter_is_bounded(self) -> None:
        policy = BackoffPolicy(base_delay_seconds=1.0, jitter_ratio=0.25)
        for _ in range(50):
            self.assertTrue(2.0 <= policy.delay_for(1) <= 2.5)

    def test_run_retries_then_succeeds(self) -> None:
        sleeps: list[float] = []
        calls = {"n": 0}

        def flaky() -> str:
            calls["n"] += 1
            if calls["n"] < 3:
                raise ConnectionError("reset")
            return "ok"

        policy = BackoffPolicy(max_attempts=3, base_delay_seconds=1.0, jitter_ratio=0.0, sleep=sleeps.append)
        self.assertEqual(policy.run(flaky, what="query"), "ok")
        self.assertEqual(sleeps, [1.0, 2.0])

    def test_run_raises_last_error_after_budget(self) -> None:
        sleeps: list[float] = []
        errors = iter([ValueError("first"), ValueError("second")])

        def always_fails() -> None:
            raise next(errors)

        policy = BackoffPolicy(max_attempts=2, base_delay_seconds=0.1, jitter_ratio=0.0, sleep=sleeps.append)
        with self.assertRaisesRegex(ValueError, "second"):
            policy.run(always_fails, what="query")
        self.assertEqual(sleeps, [0.1])


def test_timer_keeps_a_bounded_window() -> None:
    timer = OperationTimer(window=3, slow_threshold_ms=1e9)
    for ms in (100.0, 1.0, 2.0, 3.0):
        timer.record("page", ms)

    avg, count = timer.summary()["page"]
    assert count == 3
    assert avg == pytest.approx(2.0)


def test_timer_warns_on_slow_operation(caplog) -> None:  # noqa: ANN001
    timer = OperationTimer(slow_threshold_ms=10.0)
    caplog.set_level(logging.WARNING)

    timer.record("fast", 5.0)
    timer.record("initial_load", 25.0)

    assert "slow operation: name=initial_load" in caplog.text
    assert "name=fast" not in caplog.text


def test_measure_records_even_on_error() -> None:
    timer = OperationTimer()
    with pytest.raises(RuntimeError):
        with timer.measure("boom"):
            raise RuntimeError("x")
    assert timer.summary()["boom"][1] == 1
