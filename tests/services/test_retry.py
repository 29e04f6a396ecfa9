from __future__ import annotations

import pytest

from app.services.ingestion.retry import RequestBudget, exponential_backoff


def test_default_schedule_doubles_from_one_second():
    assert list(exponential_backoff()) == [(1, 1.0), (2, 2.0), (3, 4.0)]


def test_delay_is_capped():
    schedule = list(exponential_backoff(max_attempts=5, base_delay=2.0, factor=3.0, max_delay=10.0))

    assert [delay for _, delay in schedule] == [2.0, 6.0, 10.0, 10.0, 10.0]


def test_jitter_only_lengthens_delays():
    for attempt, delay in exponential_backoff(max_attempts=4, jitter=0.5):
        base = 2.0 ** (attempt - 1)
        assert base <= delay <= base * 1.5


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_attempts": 0},
        {"base_delay": 0},
        {"factor": 0.5},
        {"jitter": -0.1},
    ],
)
def test_invalid_schedule_arguments(kwargs):
    with pytest.raises(ValueError):
        list(exponential_backoff(**kwargs))


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_request_budget_spaces_request_starts():
    clock = FakeClock()
    budget = RequestBudget(0.5, clock=clock, sleep=clock.sleep)

    budget.acquire()
    budget.acquire()
    clock.now += 2.0
    budget.acquire()

    assert clock.sleeps == [0.5]


def test_zero_interval_budget_never_sleeps():
    clock = FakeClock()
    budget = RequestBudget(clock=clock, sleep=clock.sleep)

    for _ in range(5):
        budget.acquire()

    assert clock.sleeps == []


def test_negative_interval_is_rejected():
    with pytest.raises(ValueError):
        RequestBudget(-1.0)
