"""In-process store of live call sessions.

The store is the only owner of the ``call_id -> CallSession`` map. Callers
never hold a live reference: ``get`` hands out deep copies and ``mutate``
applies changes to a working copy that replaces the stored session only if
the function returns normally.

Each call id has its own ``asyncio.Lock``; there is no lock spanning
sessions. ``mutate`` functions are synchronous so a lock is never held
across an ``await`` on a collaborator.
"""

import asyncio
import copy
import logging
import time
from typing import Callable, TypeVar

from autodial.errors import SessionAlreadyExists, SessionNotFound
from autodial.session import CallSession, Customer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._sessions: dict[str, CallSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._sessions

    def call_ids(self) -> list[str]:
        return list(self._sessions)

    async def create(self, call_id: str, customer: Customer) -> CallSession:
        if call_id in self._sessions:
            raise SessionAlreadyExists(call_id)
        now = self._clock()
        session = CallSession(
            call_id=call_id,
            customer=customer,
            created_at=now,
            last_activity_at=now,
        )
        self._sessions[call_id] = session
        self._locks[call_id] = asyncio.Lock()
        logger.info(f"[{call_id}] Session created for {customer.phone}")
        return copy.deepcopy(session)

    async def get(self, call_id: str) -> CallSession:
        session = self._sessions.get(call_id)
        if session is None:
            raise SessionNotFound(call_id)
        return copy.deepcopy(session)

    async def mutate(self, call_id: str, fn: Callable[[CallSession], T]) -> T:
        lock = self._locks.get(call_id)
        if lock is None:
            raise SessionNotFound(call_id)
        async with lock:
            # Removed while we waited for the lock.
            current = self._sessions.get(call_id)
            if current is None:
                raise SessionNotFound(call_id)
            working = copy.deepcopy(current)
            result = fn(working)
            self._sessions[call_id] = working
            return result

    async def remove(self, call_id: str) -> CallSession:
        lock = self._locks.get(call_id)
        if lock is None:
            raise SessionNotFound(call_id)
        async with lock:
            session = self._sessions.pop(call_id, None)
            self._locks.pop(call_id, None)
        if session is None:
            raise SessionNotFound(call_id)
        logger.info(f"[{call_id}] Session removed (state={session.state.value}, turns={session.turn_count})")
        return session
