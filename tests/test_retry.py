from unittest.mock import AsyncMock

import pytest

from catalog_repricer.retry import poll_until


@pytest.mark.asyncio
async def test_stops_as_soon_as_done():
    fetch = AsyncMock(side_effect=["RUNNING"] * 5 + ["COMPLETED"])
    sleep = AsyncMock()

    outcome = await poll_until(fetch, lambda s: s == "COMPLETED", interval=6, max_attempts=300, sleep=sleep)

    assert outcome.done
    assert outcome.value == "COMPLETED"
    assert outcome.attempts == 6
    assert fetch.await_count == 6
    assert sleep.await_count == 5
    sleep.assert_awaited_with(6)


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts_without_trailing_sleep():
    fetch = AsyncMock(return_value="RUNNING")
    sleep = AsyncMock()

    outcome = await poll_until(fetch, lambda s: s == "COMPLETED", interval=6, max_attempts=300, sleep=sleep)

    assert outcome.timed_out
    assert outcome.value == "RUNNING"
    assert fetch.await_count == 300
    assert sleep.await_count == 299


@pytest.mark.asyncio
async def test_fetch_errors_propagate():
    fetch = AsyncMock(side_effect=ConnectionError("boom"))
    with pytest.raises(ConnectionError):
        await poll_until(fetch, bool, interval=1, max_attempts=3, sleep=AsyncMock())


@pytest.mark.asyncio
async def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        await poll_until(AsyncMock(), bool, interval=1, max_attempts=0)
