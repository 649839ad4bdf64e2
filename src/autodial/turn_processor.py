"""One customer utterance in, one spoken line out.

Every turn runs fetch -> compute -> commit:

  store.get() snapshot
    -> classify (IntentClassifier)
    -> resolve (script_graph)
    -> generate the line (TextGenerator, canned fallback)
    -> store.mutate() commit, guarded by the snapshot's turn_count

The generator is awaited with no store lock held. If another turn for the
same call committed in the meantime the commit raises StaleTurn and the
whole turn is recomputed from the newer session.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from autodial.errors import GenerationFailure, SessionNotFound, StaleTurn
from autodial.finalizer import derive_outcome
from autodial.intent import IntentClassifier, IntentResult
from autodial.prompts import build_history, get_system_prompt
from autodial.script_graph import (
    ERROR_LINE,
    FALLBACK_LINES,
    GREETING_PROMPT,
    REPROMPTS,
    TURN_LIMIT_LINE,
    Transition,
    render,
    resolve,
)
from autodial.session import CallSession, Turn
from autodial.states import Outcome, State

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnResult:
    spoken_text: str
    should_continue: bool
    state: State
    outcome_hint: Optional[Outcome] = None


@dataclass
class _Plan:
    intent: IntentResult
    transition: Transition
    spoken_text: str
    fields: dict = field(default_factory=dict)


class TurnProcessor:
    def __init__(
        self,
        store,
        classifier: IntentClassifier,
        generator=None,
        max_turns: int = 10,
        agent_name: str = "Sarah",
        business_name: str = "Premier Auto",
        generation_timeout: float = 5.0,
        max_commit_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.classifier = classifier
        self.generator = generator
        self.max_turns = max_turns
        self.agent_name = agent_name
        self.business_name = business_name
        self.generation_timeout = generation_timeout
        self.max_commit_attempts = max_commit_attempts
        self._clock = clock

    def _render(self, template: str, session: CallSession) -> str:
        return render(template, session.customer, session.context, self.agent_name, self.business_name)

    async def greeting(self, call_id: str) -> TurnResult:
        """Speak the opening line. Not a customer turn: turn_count is unchanged."""

        def commit(session: CallSession) -> str:
            if session.terminal:
                raise SessionNotFound(call_id)
            text = self._render(GREETING_PROMPT, session)
            session.append_turn(Turn("agent", text, self._clock(), session.state.value))
            return text

        text = await self.store.mutate(call_id, commit)
        return TurnResult(spoken_text=text, should_continue=True, state=State.GREETING)

    async def process_turn(
        self,
        call_id: str,
        utterance: str,
        confidence_hint: Optional[float] = None,
    ) -> TurnResult:
        utterance = (utterance or "").strip()
        snapshot = None
        for attempt in range(1, self.max_commit_attempts + 1):
            snapshot = await self.store.get(call_id)
            if snapshot.terminal:
                raise SessionNotFound(call_id)

            if snapshot.turn_count >= self.max_turns:
                logger.info(f"[{call_id}] Turn limit reached ({self.max_turns})")
                return await self._abort(
                    call_id, utterance, "turn_limit", Outcome.NO_RESPONSE, TURN_LIMIT_LINE,
                )

            try:
                plan = await self._plan(snapshot, utterance, confidence_hint)
            except Exception as e:
                logger.error(f"[{call_id}] Turn failed in state {snapshot.state.value}: {e}", exc_info=True)
                return await self._abort(call_id, utterance, "error", Outcome.ERROR, ERROR_LINE)

            try:
                return await self.store.mutate(
                    call_id,
                    lambda s: self._commit(s, snapshot.turn_count, utterance, plan),
                )
            except StaleTurn:
                logger.info(f"[{call_id}] Concurrent turn committed first, recomputing (attempt {attempt})")

        # Lost every race; ask again without advancing.
        logger.warning(f"[{call_id}] Gave up committing turn after {self.max_commit_attempts} attempts")
        return TurnResult(
            spoken_text=self._render(REPROMPTS.get(snapshot.state, ERROR_LINE), snapshot),
            should_continue=True,
            state=snapshot.state,
        )

    async def _plan(self, snapshot: CallSession, utterance: str, confidence_hint: Optional[float]) -> _Plan:
        """Everything a turn decides, computed against a private snapshot."""
        state = snapshot.state
        intent = self.classifier.classify(
            utterance,
            state,
            snapshot.context.sentiment_history,
            asr_confidence=confidence_hint,
        )
        transition = resolve(state, intent.signal, state in snapshot.reprompted)
        logger.info(
            f"[{snapshot.call_id}] {state.value} --{intent.signal.value} "
            f"({intent.confidence:.2f})--> {transition.state.value}"
            f"{' [reprompt]' if transition.reprompt else ''}"
        )

        # Closing lines can mention what this very turn captured (email, time).
        snapshot.context.merge(intent.extracted_fields)
        snapshot.context.merge(transition.facts)

        if transition.terminal or transition.reprompt:
            text = self._render(transition.prompt, snapshot)
        else:
            text = await self._generate(snapshot, utterance, intent, transition)

        return _Plan(intent=intent, transition=transition, spoken_text=text, fields=dict(intent.extracted_fields))

    async def _generate(self, snapshot: CallSession, utterance: str, intent: IntentResult, transition: Transition) -> str:
        target_line = self._render(transition.prompt, snapshot)
        fallback = self._render(FALLBACK_LINES.get(transition.state, transition.prompt), snapshot)
        if self.generator is None:
            return fallback

        prompt = get_system_prompt(
            snapshot, transition.state, target_line, intent, self.agent_name, self.business_name,
        )
        try:
            return await asyncio.wait_for(
                self.generator.generate(prompt, build_history(snapshot, utterance)),
                timeout=self.generation_timeout,
            )
        except (GenerationFailure, asyncio.TimeoutError) as e:
            logger.warning(f"[{snapshot.call_id}] Generation failed, using canned line: {e}")
            return fallback

    def _commit(self, session: CallSession, base_turn_count: int, utterance: str, plan: _Plan) -> TurnResult:
        if session.terminal:
            raise SessionNotFound(session.call_id)
        if session.turn_count != base_turn_count:
            raise StaleTurn(f"turn_count moved {base_turn_count} -> {session.turn_count}")

        now = self._clock()
        source = session.state
        transition = plan.transition
        intent = plan.intent

        session.append_turn(Turn(
            "customer", utterance, now, source.value,
            confidence=intent.confidence, sentiment=intent.sentiment,
        ))
        session.context.merge(plan.fields)
        session.context.merge(transition.facts)
        session.context.sentiment_history.append(intent.sentiment_score)
        session.context.sentiment_trend = intent.sentiment_trend
        if transition.reprompt:
            session.reprompted.add(source)

        session.turn_count += 1
        session.last_activity_at = now
        session.state = transition.state
        session.append_turn(Turn("agent", plan.spoken_text, now, transition.state.value))

        outcome = None
        if transition.terminal:
            session.state = State.COMPLETED
            session.terminal = True
            session.end_reason = "completed"
            outcome = derive_outcome(session.context)

        return TurnResult(
            spoken_text=plan.spoken_text,
            should_continue=not transition.terminal,
            state=session.state,
            outcome_hint=outcome,
        )

    async def _abort(
        self,
        call_id: str,
        utterance: str,
        reason: str,
        outcome: Outcome,
        line: str,
    ) -> TurnResult:
        def commit(session: CallSession) -> TurnResult:
            if session.terminal:
                raise SessionNotFound(call_id)
            now = self._clock()
            if utterance:
                session.append_turn(Turn("customer", utterance, now, session.state.value))
            session.last_activity_at = now
            session.abort(reason, outcome)
            session.append_turn(Turn("agent", line, now, session.state.value))
            return TurnResult(
                spoken_text=line,
                should_continue=False,
                state=session.state,
                outcome_hint=outcome,
            )

        return await self.store.mutate(call_id, commit)
