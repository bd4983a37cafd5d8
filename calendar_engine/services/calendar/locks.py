# calendar_engine/services/calendar/locks.py
import asyncio
from typing import Awaitable, Callable, Dict, Hashable, TypeVar

T = TypeVar("T")


class SingleFlight:
    """At most one running call per key, e.g. (organization_id, provider).

    Callers arriving while a call is running await that call's outcome, its
    exception included. Finished calls are forgotten, so only live keys are held.
    """

    def __init__(self):
        self._flights: Dict[Hashable, asyncio.Task] = {}

    async def run(self, key: Hashable, func: Callable[[], Awaitable[T]]) -> T:
        flight = self._flights.get(key)
        if flight is None:
            flight = asyncio.ensure_future(func())
            self._flights[key] = flight
            flight.add_done_callback(lambda done: self._forget(key, done))

        # A cancelled caller must not cancel the call others are waiting on
        return await asyncio.shield(flight)

    def _forget(self, key: Hashable, flight: asyncio.Task) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]
        if not flight.cancelled():
            flight.exception()

    def in_flight(self, key: Hashable) -> bool:
        return key in self._flights

    def __len__(self) -> int:
        return len(self._flights)
