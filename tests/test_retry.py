import pytest

from eai_broker.retry import next_delay_ms, poll_with_backoff


def test_next_delay_progression_and_clamp():
    delays = [100, 200, 400]
    assert [next_delay_ms(i, delays) for i in range(5)] == [100, 200, 400, 400, 400]


def test_next_delay_jitter_bounds():
    for _ in range(50):
        assert 90 <= next_delay_ms(0, [100], jitter=0.1) <= 110


def test_next_delay_defaults():
    assert next_delay_ms(0) == 500


@pytest.mark.asyncio
async def test_poll_with_backoff_settles():
    calls = []

    async def fetch():
        calls.append(1)
        return len(calls)

    result, settled = await poll_with_backoff(fetch, lambda n: n >= 3, max_wait_s=5, delays=[1])
    assert settled
    assert result == 3


@pytest.mark.asyncio
async def test_poll_with_backoff_deadline():
    async def fetch():
        return "Provisioning"

    result, settled = await poll_with_backoff(fetch, lambda s: s == "Running", max_wait_s=0.05, delays=[10])
    assert not settled
    assert result == "Provisioning"


@pytest.mark.asyncio
async def test_poll_with_zero_wait_fetches_once():
    calls = []

    async def fetch():
        calls.append(1)
        return False

    _, settled = await poll_with_backoff(fetch, bool, max_wait_s=0)
    assert not settled
    assert len(calls) == 1
