"""Tests for the per-key single-flight registry used around token refresh."""

import asyncio

import pytest

from calendar_engine.services.calendar.exceptions import TokenRefreshError
from calendar_engine.services.calendar.locks import SingleFlight

KEY = ("org-1", "google")


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self):
        flights = SingleFlight()
        calls = []

        async def refresh():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "access-2"

        results = await asyncio.gather(*[flights.run(KEY, refresh) for _ in range(5)])

        assert results == ["access-2"] * 5
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_failure_is_shared(self):
        flights = SingleFlight()
        calls = []

        async def refresh():
            calls.append(1)
            await asyncio.sleep(0.01)
            raise TokenRefreshError("rejected", provider="google")

        results = await asyncio.gather(*[flights.run(KEY, refresh) for _ in range(3)], return_exceptions=True)

        assert len(calls) == 1
        assert all(isinstance(r, TokenRefreshError) for r in results)

    @pytest.mark.asyncio
    async def test_finished_keys_are_dropped(self):
        flights = SingleFlight()

        async def refresh():
            return "ok"

        await flights.run(KEY, refresh)
        await asyncio.sleep(0)

        assert len(flights) == 0
        assert not flights.in_flight(KEY)

    @pytest.mark.asyncio
    async def test_later_call_runs_again(self):
        flights = SingleFlight()
        calls = []

        async def refresh():
            calls.append(1)
            return len(calls)

        assert await flights.run(KEY, refresh) == 1
        await asyncio.sleep(0)
        assert await flights.run(KEY, refresh) == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        flights = SingleFlight()
        started = []

        async def refresh(name):
            started.append(name)
            await asyncio.sleep(0.01)
            return name

        results = await asyncio.gather(
            flights.run(("org-1", "google"), lambda: refresh("a")),
            flights.run(("org-2", "google"), lambda: refresh("b")),
        )

        assert results == ["a", "b"]
        assert sorted(started) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_the_call(self):
        flights = SingleFlight()
        release = asyncio.Event()

        async def refresh():
            await release.wait()
            return "access-2"

        first = asyncio.ensure_future(flights.run(KEY, refresh))
        second = asyncio.ensure_future(flights.run(KEY, refresh))
        await asyncio.sleep(0)

        first.cancel()
        release.set()

        assert await second == "access-2"
        with pytest.raises(asyncio.CancelledError):
            await first
