"""Post-call finalization: outcome, record write-back, follow-up email.

Runs once per call, after the session has been removed from the store.
The record update and the email are independent best-effort steps: each
is always attempted and its failure is captured in the result, never
raised.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from autodial.session import CallContext, CallSession
from autodial.states import Outcome
from autodial.transcript import chunk_transcript_dump, to_plain_text, to_timestamped_dump

logger = logging.getLogger(__name__)

# Outcomes that get a follow-up email even when none was collected on the
# call; the address on file is used.
_EMAIL_ON_FILE_OUTCOMES = (Outcome.APPOINTMENT_SCHEDULED, Outcome.INTERESTED_ALTERNATIVES)

# Sheet "status" column per outcome.
_STATUS_MAP = {
    Outcome.APPOINTMENT_SCHEDULED: "appointment_scheduled",
    Outcome.INTERESTED: "interested",
    Outcome.INTERESTED_ALTERNATIVES: "interested",
    Outcome.NOT_INTERESTED: "not_interested",
    Outcome.NO_RESPONSE: "no_response",
    Outcome.ERROR: "call_failed",
}


@dataclass(frozen=True)
class FinalizationResult:
    call_id: str
    outcome: Outcome
    record_updated: bool
    record_error: Optional[str] = None
    email_sent: Optional[bool] = None  # None: no address to send to, nothing attempted
    email_error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.record_error is not None or self.email_error is not None


def derive_outcome(context: CallContext) -> Outcome:
    """Fixed precedence: appointment > original interest > alternatives > not interested."""
    if context.wants_appointment:
        return Outcome.APPOINTMENT_SCHEDULED
    if context.still_interested:
        return Outcome.INTERESTED
    if context.wants_alternatives:
        return Outcome.INTERESTED_ALTERNATIVES
    if False in (context.still_interested, context.wants_appointment, context.wants_alternatives):
        return Outcome.NOT_INTERESTED
    return Outcome.NO_RESPONSE


def session_outcome(session: CallSession) -> Outcome:
    if session.forced_outcome is not None:
        return session.forced_outcome
    return derive_outcome(session.context)


def _yes_no(value: Optional[bool]) -> str:
    if value is None:
        return ""
    return "Yes" if value else "No"


def build_notes(session: CallSession, outcome: Outcome) -> str:
    ctx = session.context
    parts = [f"Outcome: {outcome.value}", f"Ended: {session.end_reason or 'unknown'}"]
    parts.append(f"Turns: {session.turn_count}")
    if ctx.appointment_time:
        parts.append(f"Preferred time: {ctx.appointment_time}")
    if ctx.email:
        parts.append(f"Email: {ctx.email}")
    parts.append(f"Sentiment trend: {ctx.sentiment_trend}")
    transcript = to_plain_text(session.transcript)
    if transcript:
        parts.append("")
        parts.append(transcript)
    return "\n".join(parts)


def build_record_fields(session: CallSession, outcome: Outcome, end_time: float) -> dict:
    """Column values written back to the prospect's row."""
    ctx = session.context
    duration = int(end_time - session.created_at) if session.created_at > 0 else 0
    fields = {
        "status": _STATUS_MAP[outcome],
        "lastCallDate": datetime.fromtimestamp(end_time, tz=timezone.utc).date().isoformat(),
        "callResult": outcome.value,
        "stillInterested": _yes_no(ctx.still_interested),
        "wantsAppointment": _yes_no(ctx.wants_appointment),
        "interestedInSimilar": _yes_no(ctx.wants_alternatives),
        "sentiment": ctx.sentiment_trend,
        "notes": build_notes(session, outcome),
        "callDuration": duration,
    }
    if ctx.appointment_time:
        fields["appointmentDate"] = ctx.appointment_time
    if ctx.email:
        fields["email"] = ctx.email
    return fields


class Finalizer:
    def __init__(
        self,
        record_store,
        email_sender,
        agent_name: str = "Sarah",
        business_name: str = "Premier Auto",
        clock: Callable[[], float] = time.time,
    ):
        self.record_store = record_store
        self.email_sender = email_sender
        self.agent_name = agent_name
        self.business_name = business_name
        self._clock = clock

    async def finalize(self, session: CallSession) -> FinalizationResult:
        call_id = session.call_id
        end_time = self._clock()
        outcome = session_outcome(session)

        record_updated, record_error = await self._update_record(session, outcome, end_time)
        email_sent, email_error = await self._send_email(session, outcome)

        for line in chunk_transcript_dump(to_timestamped_dump(session, outcome.value)):
            logger.info(line)

        result = FinalizationResult(
            call_id=call_id,
            outcome=outcome,
            record_updated=record_updated,
            record_error=record_error,
            email_sent=email_sent,
            email_error=email_error,
        )
        if result.degraded:
            logger.warning(
                f"[{call_id}] Finalized with partial failure: outcome={outcome.value} "
                f"record_error={record_error} email_error={email_error}"
            )
        else:
            logger.info(f"[{call_id}] Finalized: outcome={outcome.value} email_sent={email_sent}")
        return result

    async def _update_record(self, session: CallSession, outcome: Outcome, end_time: float):
        fields = build_record_fields(session, outcome, end_time)
        try:
            resp = await self.record_store.update(session.customer.record_id, fields)
        except Exception as e:
            logger.error(f"[{session.call_id}] Record update raised: {e}")
            return False, str(e)
        if not resp.get("success"):
            return False, str(resp.get("error", "record update failed"))
        return True, None

    async def _send_email(self, session: CallSession, outcome: Outcome):
        email = session.context.email
        if not email and outcome in _EMAIL_ON_FILE_OUTCOMES:
            email = session.customer.email
        if not email:
            return None, None
        template = (
            "appointment_confirmation"
            if outcome == Outcome.APPOINTMENT_SCHEDULED
            else "similar_options"
        )
        data = {
            "name": session.customer.name,
            "product": session.customer.product,
            "agent": self.agent_name,
            "business": self.business_name,
            "appointment_time": session.context.appointment_time,
        }
        try:
            resp = await self.email_sender.send(email, template, data)
        except Exception as e:
            logger.error(f"[{session.call_id}] Email send raised: {e}")
            return False, str(e)
        if not resp.get("success"):
            return False, str(resp.get("error", "email send failed"))
        return True, None
