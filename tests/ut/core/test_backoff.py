import pytest

from pipelink.core.helpers.backoff import ExponentialBackoff


@pytest.mark.ut
def test_initial_state():
    b = ExponentialBackoff(initial=0.5, factor=2.0, maximum=10.0, jitter=0)
    assert b._current == 0.5


@pytest.mark.ut
def test_next_delay_no_jitter():
    b = ExponentialBackoff(initial=1.0, factor=2.0, maximum=10.0, jitter=0)

    assert b.next_delay() == 1.0
    assert b.next_delay() == 2.0
    assert b.next_delay() == 4.0
    assert b._current == 8.0


@pytest.mark.ut
def test_next_delay_with_jitter():
    b = ExponentialBackoff(initial=1.0, factor=2.0, maximum=10.0, jitter=1.0)

    d = b.next_delay()
    assert 1.0 <= d <= 2.0
    assert b._current == 2.0


@pytest.mark.ut
def test_maximum_cap():
    b = ExponentialBackoff(initial=0.05, factor=2.0, maximum=0.3, jitter=0)

    delays = [b.next_delay() for _ in range(5)]
    assert delays == [0.05, 0.1, 0.2, 0.3, 0.3]


@pytest.mark.ut
def test_delay_bounded_by_remaining_time():
    b = ExponentialBackoff(initial=1.0, factor=2.0, maximum=10.0, jitter=0)

    assert b.next_delay(remaining=0.25) == 0.25
    assert b.next_delay(remaining=-1.0) == 0.0


@pytest.mark.ut
def test_reset():
    b = ExponentialBackoff(initial=1.0, factor=2.0, maximum=10.0, jitter=0)

    b.next_delay()
    b.next_delay()
    assert b._current == 4.0

    b.reset()
    assert b._current == 1.0
