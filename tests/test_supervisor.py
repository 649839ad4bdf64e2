import asyncio
import time

import pytest
from unittest.mock import AsyncMock

from autodial.store import SessionStore
from autodial.supervisor import TimeoutSupervisor


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_idle_session_expires(customer):
    store = SessionStore()
    on_expire = AsyncMock()
    sup = TimeoutSupervisor(store, on_expire, session_timeout=0.05, max_call_duration=10)
    session = await store.create("CA1", customer)
    sup.schedule("CA1", session.created_at)
    await asyncio.sleep(0.15)
    on_expire.assert_awaited_once_with("CA1")
    assert not sup.is_scheduled("CA1")
    assert len(sup) == 0


@pytest.mark.asyncio
async def test_activity_extends_the_window(customer):
    store = SessionStore()
    on_expire = AsyncMock()
    sup = TimeoutSupervisor(store, on_expire, session_timeout=0.1, max_call_duration=10)
    session = await store.create("CA1", customer)
    sup.schedule("CA1", session.created_at)

    await asyncio.sleep(0.07)

    def touch(s):
        s.last_activity_at = time.time()

    await store.mutate("CA1", touch)
    await asyncio.sleep(0.07)
    # Past created_at + timeout, but only 0.07s idle.
    on_expire.assert_not_awaited()
    await asyncio.sleep(0.1)
    on_expire.assert_awaited_once_with("CA1")


@pytest.mark.asyncio
async def test_max_duration_caps_active_call(customer):
    store = SessionStore()
    on_expire = AsyncMock()
    sup = TimeoutSupervisor(store, on_expire, session_timeout=0.05, max_call_duration=0.12)
    session = await store.create("CA1", customer)
    sup.schedule("CA1", session.created_at)

    def touch(s):
        s.last_activity_at = time.time()

    for _ in range(6):
        await asyncio.sleep(0.03)
        if on_expire.await_count:
            break
        await store.mutate("CA1", touch)
    await asyncio.sleep(0.05)
    on_expire.assert_awaited_once_with("CA1")


@pytest.mark.asyncio
async def test_cancel_is_idempotent(customer):
    store = SessionStore()
    on_expire = AsyncMock()
    sup = TimeoutSupervisor(store, on_expire, session_timeout=0.05)
    session = await store.create("CA1", customer)
    sup.schedule("CA1", session.created_at)
    assert sup.is_scheduled("CA1")
    assert sup.cancel("CA1") is True
    assert sup.cancel("CA1") is False
    assert sup.cancel("never-scheduled") is False
    await asyncio.sleep(0.1)
    on_expire.assert_not_awaited()


@pytest.mark.asyncio
async def test_removed_session_is_not_expired(customer):
    store = SessionStore()
    on_expire = AsyncMock()
    sup = TimeoutSupervisor(store, on_expire, session_timeout=0.05)
    session = await store.create("CA1", customer)
    sup.schedule("CA1", session.created_at)
    await store.remove("CA1")
    await asyncio.sleep(0.1)
    on_expire.assert_not_awaited()


@pytest.mark.asyncio
async def test_terminal_session_is_not_expired(customer):
    store = SessionStore()
    on_expire = AsyncMock()
    sup = TimeoutSupervisor(store, on_expire, session_timeout=0.05)
    session = await store.create("CA1", customer)
    sup.schedule("CA1", session.created_at)

    def finish(s):
        s.terminal = True

    await store.mutate("CA1", finish)
    await asyncio.sleep(0.1)
    on_expire.assert_not_awaited()


@pytest.mark.asyncio
async def test_shutdown_cancels_everything(customer):
    store = SessionStore()
    on_expire = AsyncMock()
    sup = TimeoutSupervisor(store, on_expire, session_timeout=5)
    for call_id in ("CA1", "CA2"):
        session = await store.create(call_id, customer)
        sup.schedule(call_id, session.created_at)
    await _settle()
    assert len(sup) == 2
    await sup.shutdown()
    assert len(sup) == 0
    on_expire.assert_not_awaited()
