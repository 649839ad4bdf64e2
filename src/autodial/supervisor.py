import asyncio
import logging
import time
from typing import Awaitable, Callable

from autodial.errors import SessionNotFound
from autodial.store import SessionStore

logger = logging.getLogger(__name__)


class TimeoutSupervisor:
    """One expiry task per session.

    The task first wakes at ``created_at + session_timeout``. If the session
    saw activity since, it sleeps for the remainder of the inactivity window
    and checks again, until the call is idle for a full window or exceeds
    ``max_call_duration``. Then it hands the call id to ``on_expire``.

    Ownership: only whoever flips a session to terminal may remove and
    finalize it. The normal-termination path cancels the timer; the timer
    path only detaches itself before handing finalization off.
    """

    def __init__(
        self,
        store: SessionStore,
        on_expire: Callable[[str], Awaitable[object]],
        session_timeout: float = 60.0,
        max_call_duration: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.on_expire = on_expire
        self.session_timeout = session_timeout
        self.max_call_duration = max_call_duration
        self._clock = clock
        self._tasks: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def is_scheduled(self, call_id: str) -> bool:
        task = self._tasks.get(call_id)
        return task is not None and not task.done()

    def schedule(self, call_id: str, created_at: float) -> None:
        self.cancel(call_id)
        self._tasks[call_id] = asyncio.create_task(
            self._watch(call_id, created_at), name=f"expiry:{call_id}"
        )

    def cancel(self, call_id: str) -> bool:
        task = self._tasks.pop(call_id, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            # The expiry path is finishing its own work; nothing to cancel.
            return False
        task.cancel()
        logger.debug(f"[{call_id}] Expiry timer cancelled")
        return True

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _next_deadline(self, created_at: float, last_activity_at: float) -> float:
        idle_deadline = last_activity_at + self.session_timeout
        hard_deadline = created_at + self.max_call_duration
        return min(idle_deadline, hard_deadline)

    async def _watch(self, call_id: str, created_at: float) -> None:
        try:
            await asyncio.sleep(max(0.0, created_at + self.session_timeout - self._clock()))
            while True:
                try:
                    session = await self.store.get(call_id)
                except SessionNotFound:
                    return
                if session.terminal:
                    return
                remaining = self._next_deadline(session.created_at, session.last_activity_at) - self._clock()
                if remaining <= 0:
                    break
                await asyncio.sleep(remaining)

            logger.info(f"[{call_id}] Session expired")
            await self.on_expire(call_id)
        finally:
            if self._tasks.get(call_id) is asyncio.current_task():
                self._tasks.pop(call_id, None)
