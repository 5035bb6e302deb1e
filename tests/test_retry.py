import pytest

from cubemail.retry import FixedRetryPolicy


def test_fixed_policy_delay_never_grows() -> None:
    policy = FixedRetryPolicy(10.0)

    assert [policy.delay_for(attempt) for attempt in (1, 2, 50, 10_000)] == [10.0] * 4


def test_fixed_policy_wait_uses_injected_sleeper() -> None:
    policy = FixedRetryPolicy(60.0)
    waits: list[float] = []

    def fake_sleep(seconds: float) -> bool:
        waits.append(seconds)
        return len(waits) == 3

    results = [policy.wait(fake_sleep, attempt) for attempt in range(1, 4)]

    assert waits == [60.0, 60.0, 60.0]
    assert results == [False, False, True]


def test_fixed_policy_rejects_negative_interval() -> None:
    with pytest.raises(ValueError):
        FixedRetryPolicy(-1)
