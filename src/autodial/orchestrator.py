"""Session lifecycle: start, turns, expiry, hang-up.

Whoever flips ``terminal`` from false to true owns the session's ending:
it cancels the expiry timer (unless it is the timer), removes the session
from the store and runs the finalizer. Every ending path claims through
``store.mutate`` so exactly one of them wins.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from autodial.errors import SessionNotFound
from autodial.finalizer import FinalizationResult, Finalizer
from autodial.session import CallSession, Customer
from autodial.states import Outcome
from autodial.store import SessionStore
from autodial.supervisor import TimeoutSupervisor
from autodial.turn_processor import TurnProcessor, TurnResult

logger = logging.getLogger(__name__)


class CallOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        processor: TurnProcessor,
        finalizer: Finalizer,
        session_timeout: float = 60.0,
        max_call_duration: float = 300.0,
        finalize_inline: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.processor = processor
        self.finalizer = finalizer
        self.max_call_duration = max_call_duration
        self.finalize_inline = finalize_inline
        self._clock = clock
        self.supervisor = TimeoutSupervisor(
            store,
            self.on_expire,
            session_timeout=session_timeout,
            max_call_duration=max_call_duration,
            clock=clock,
        )
        self._pending: set[asyncio.Task] = set()

    @property
    def active_sessions(self) -> int:
        return len(self.store)

    async def start_session(self, call_id: str, customer: Customer) -> TurnResult:
        session = await self.store.create(call_id, customer)
        self.supervisor.schedule(call_id, session.created_at)
        result = await self.processor.greeting(call_id)
        logger.info(f"[{call_id}] Call started for {customer.name} ({customer.product or 'no product'})")
        return result

    async def process_turn(
        self,
        call_id: str,
        utterance: str,
        confidence_hint: Optional[float] = None,
    ) -> TurnResult:
        result = await self.processor.process_turn(call_id, utterance, confidence_hint)
        if not result.should_continue:
            # The processor only ends a turn after claiming the session.
            await self._complete(call_id)
        return result

    async def on_expire(self, call_id: str) -> Optional[FinalizationResult]:
        """Timer path. A no-op when the call already ended."""

        def claim(session: CallSession) -> bool:
            if session.terminal:
                return False
            elapsed = self._clock() - session.created_at
            reason = "max_duration" if elapsed >= self.max_call_duration else "timeout"
            session.abort(reason, Outcome.NO_RESPONSE)
            return True

        try:
            claimed = await self.store.mutate(call_id, claim)
        except SessionNotFound:
            return None
        if not claimed:
            return None
        logger.info(f"[{call_id}] Expired, finalizing as no_response")
        # Detach this timer first; the finalization runs as its own tracked
        # task so shutdown() waits for it instead of cancelling it.
        self.supervisor.cancel(call_id)
        task = self._track(self._finish(call_id), call_id)
        try:
            return await asyncio.shield(task)
        except Exception as e:
            logger.error(f"[{call_id}] Finalization after expiry failed: {e}", exc_info=True)
            return None

    async def end_session(
        self,
        call_id: str,
        reason: str = "hangup",
        outcome: Optional[Outcome] = None,
    ) -> Optional[FinalizationResult]:
        """Provider says the call is over.

        Without ``outcome`` the result is derived from what was captured.
        """

        def claim(session: CallSession) -> bool:
            if session.terminal:
                return False
            session.abort(reason, outcome)
            return True

        try:
            claimed = await self.store.mutate(call_id, claim)
        except SessionNotFound:
            return None
        if not claimed:
            return None
        logger.info(f"[{call_id}] Ended by provider ({reason})")
        return await self._complete(call_id)

    async def _complete(self, call_id: str) -> Optional[FinalizationResult]:
        if not self.finalize_inline:
            self.supervisor.cancel(call_id)
            self._track(self._finish(call_id), call_id)
            return None
        return await self._finish(call_id)

    def _track(self, coro, call_id: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"finalize:{call_id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _finish(self, call_id: str) -> Optional[FinalizationResult]:
        self.supervisor.cancel(call_id)
        try:
            session = await self.store.remove(call_id)
        except SessionNotFound:
            return None
        return await self.finalizer.finalize(session)

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
