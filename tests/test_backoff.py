from playit.utils.backoff import exp_backoff_with_jitter, poll_delay

def test_backoff_monotonic_and_capped():
    vals = [exp_backoff_with_jitter(i, base=2.0, initial=1.0, max_delay=10.0) for i in range(1, 6)]
    # Should be non-decreasing and not exceed cap
    for i in range(1, len(vals)):
        assert vals[i] >= vals[i-1]
        assert vals[i] <= 10.0


def test_backoff_default_cap():
    assert exp_backoff_with_jitter(50) <= 30.0
    assert exp_backoff_with_jitter(0) >= 1.0


def test_poll_delay_holds_interval_while_healthy():
    assert poll_delay(2.0, 0) == 2.0


def test_poll_delay_grows_after_failures_and_is_capped():
    assert poll_delay(2.0, 1) >= 2.0
    assert poll_delay(2.0, 4) >= 2.0 * 2 ** 3
    assert poll_delay(2.0, 40) <= 30.0
    # an interval longer than the cap is never shortened
    assert poll_delay(60.0, 5) == 60.0
