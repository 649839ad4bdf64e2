import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response

from autodial.config import Settings, validate_config
from autodial.dialer import TwilioDialer
from autodial.email_sender import EmailSender
from autodial.errors import (
    AutodialError,
    DialFailure,
    RecordNotFound,
    RecordStoreUnavailable,
    SessionAlreadyExists,
    SessionNotFound,
)
from autodial.finalizer import Finalizer
from autodial.intent import KeywordIntentClassifier
from autodial.llm import TextGenerator
from autodial.orchestrator import CallOrchestrator
from autodial.record_store import RecordStoreClient
from autodial.script_graph import ERROR_LINE, SESSION_GONE_LINE, VOICEMAIL_LINE
from autodial.session import Customer
from autodial.states import Outcome
from autodial.store import SessionStore
from autodial.turn_processor import TurnProcessor
from autodial.twiml import gather_response, hangup_response

load_dotenv()

logger = logging.getLogger(__name__)

FAILED_CALL_STATUSES = {"failed", "busy", "no-answer", "canceled"}
MACHINE_ANSWERS = {"machine_start", "machine_end_beep", "machine_end_silence", "machine_end_other"}
LOOKUP_FAILED_LINE = "Sorry, we couldn't find your details. We'll be in touch another time. Goodbye!"


def build_orchestrator(settings: Settings, record_store, email_sender, generator) -> CallOrchestrator:
    store = SessionStore()
    classifier = KeywordIntentClassifier(
        threshold=settings.confidence_threshold,
        asr_threshold=settings.asr_confidence_threshold,
        affirmative=settings.affirmative_keywords,
        negative=settings.negative_keywords,
        interest=settings.interest_keywords,
    )
    processor = TurnProcessor(
        store,
        classifier,
        generator,
        max_turns=settings.max_turns,
        agent_name=settings.agent_name,
        business_name=settings.business_name,
        generation_timeout=settings.llm_timeout_s,
    )
    finalizer = Finalizer(
        record_store,
        email_sender,
        agent_name=settings.agent_name,
        business_name=settings.business_name,
    )
    return CallOrchestrator(
        store,
        processor,
        finalizer,
        session_timeout=settings.session_timeout_s,
        max_call_duration=settings.max_call_duration_s,
        finalize_inline=False,
    )


def _xml(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


def _parse_confidence(raw) -> Optional[float]:
    try:
        return float(raw) if raw not in (None, "") else None
    except (TypeError, ValueError):
        return None


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[CallOrchestrator] = None,
    record_store=None,
    dialer=None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    owned = []
    if record_store is None:
        record_store = RecordStoreClient(settings.record_store_url, settings.record_store_api_key)
        owned.append(record_store)
    if dialer is None:
        dialer = TwilioDialer(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number,
            settings.public_base_url,
            machine_detection=settings.machine_detection,
        )
        owned.append(dialer)
    if orchestrator is None:
        generator = TextGenerator(
            settings.openai_api_key,
            model=settings.openai_model,
            timeout=settings.llm_timeout_s,
        )
        owned.append(generator)
        email_sender = EmailSender(
            settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.email_from,
            from_name=settings.business_name,
        )
        orchestrator = build_orchestrator(settings, record_store, email_sender, generator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.shutdown()
        for client in owned:
            await client.close()

    app = FastAPI(title="Autodial Follow-up Caller", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.record_store = record_store
    app.state.dialer = dialer

    gather_url = f"{settings.public_base_url}/twilio/gather"

    @app.get("/health")
    async def health():
        return {"status": "ok", "active_sessions": orchestrator.active_sessions}

    @app.post("/calls")
    async def place_call(request: Request):
        body = await request.json()
        key = body.get("record_id") or body.get("phone")
        if not key:
            raise HTTPException(status_code=400, detail="record_id or phone is required")
        try:
            record = await record_store.find_by_phone_or_id(key)
        except RecordNotFound:
            raise HTTPException(status_code=404, detail=f"no record for {key}")
        except RecordStoreUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))
        customer = Customer.from_record(record)
        if not customer.phone:
            raise HTTPException(status_code=422, detail=f"record {customer.record_id} has no phone number")
        try:
            sid = await dialer.place_call(customer.phone, customer.record_id)
        except DialFailure as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"call_sid": sid, "record_id": customer.record_id}

    async def dial_one(key: str) -> dict:
        try:
            customer = Customer.from_record(await record_store.find_by_phone_or_id(key))
            if not customer.phone:
                return {"key": key, "success": False, "error": "no phone number"}
            sid = await dialer.place_call(customer.phone, customer.record_id)
        except AutodialError as e:
            return {"key": key, "success": False, "error": str(e)}
        return {"key": key, "success": True, "call_sid": sid, "record_id": customer.record_id}

    @app.post("/calls/bulk")
    async def place_calls_bulk(request: Request):
        """Dial records one after another, pausing ``delay_s`` between them."""
        body = await request.json()
        keys = body.get("record_ids")
        if not isinstance(keys, list) or not keys:
            raise HTTPException(status_code=400, detail="record_ids must be a non-empty list")
        try:
            delay = max(0.0, float(body.get("delay_s", settings.bulk_call_delay_s)))
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="delay_s must be a number")

        logger.info(f"Bulk dial requested for {len(keys)} records (delay {delay}s)")
        results = []
        for i, key in enumerate(keys):
            if i and delay:
                await asyncio.sleep(delay)
            results.append(await dial_one(str(key)))
        placed = sum(1 for r in results if r["success"])
        logger.info(f"Bulk dial finished: {placed}/{len(results)} placed")
        return {"placed": placed, "failed": len(results) - placed, "results": results}

    @app.post("/twilio/voice")
    async def twilio_voice(request: Request):
        form = await request.form()
        call_id = form.get("CallSid", "")
        key = request.query_params.get("record_id") or form.get("To", "")
        if not call_id or not key:
            logger.warning("Voice webhook missing CallSid or customer key")
            return _xml(hangup_response(LOOKUP_FAILED_LINE))

        try:
            record = await record_store.find_by_phone_or_id(key)
        except (RecordNotFound, RecordStoreUnavailable) as e:
            logger.warning(f"[{call_id}] Lookup for {key} failed, hanging up: {e}")
            return _xml(hangup_response(LOOKUP_FAILED_LINE))

        try:
            result = await orchestrator.start_session(call_id, Customer.from_record(record))
        except SessionAlreadyExists:
            # Provider retried the webhook; repeat the last thing we said.
            try:
                session = await orchestrator.store.get(call_id)
            except SessionNotFound:
                return _xml(hangup_response(SESSION_GONE_LINE))
            last = session.transcript[-1].text if session.transcript else ""
            return _xml(gather_response(last, gather_url))
        return _xml(gather_response(result.spoken_text, gather_url))

    @app.post("/twilio/gather")
    async def twilio_gather(request: Request):
        form = await request.form()
        call_id = form.get("CallSid", "")
        utterance = form.get("SpeechResult", "")
        confidence = _parse_confidence(form.get("Confidence"))
        try:
            result = await orchestrator.process_turn(call_id, utterance, confidence)
        except SessionNotFound:
            logger.info(f"[{call_id}] Speech for a call with no live session")
            return _xml(hangup_response(SESSION_GONE_LINE))
        except AutodialError as e:
            logger.error(f"[{call_id}] Turn failed: {e}", exc_info=True)
            return _xml(hangup_response(ERROR_LINE))

        if result.should_continue:
            return _xml(gather_response(result.spoken_text, gather_url))
        return _xml(hangup_response(result.spoken_text))

    @app.post("/twilio/status")
    async def twilio_status(request: Request):
        form = await request.form()
        call_id = form.get("CallSid", "")
        status = form.get("CallStatus", "")
        record_id = request.query_params.get("record_id", "")
        logger.info(f"[{call_id}] Call status: {status}")

        if status in FAILED_CALL_STATUSES:
            if call_id in orchestrator.store:
                # The finalizer writes the record for a live call.
                await orchestrator.end_session(call_id, reason="error", outcome=Outcome.ERROR)
            elif record_id:
                await record_store.update(record_id, {
                    "status": "call_failed",
                    "lastCallDate": date.today().isoformat(),
                    "callResult": status,
                })
        elif status == "completed":
            await orchestrator.end_session(call_id, reason="hangup")
        return PlainTextResponse("")

    @app.post("/twilio/machine")
    async def twilio_machine(request: Request):
        """Async answering-machine result. A machine gets the voicemail line."""
        form = await request.form()
        call_id = form.get("CallSid", "")
        answered_by = form.get("AnsweredBy", "")
        logger.info(f"[{call_id}] Answered by: {answered_by or 'unknown'}")
        if answered_by not in MACHINE_ANSWERS:
            return PlainTextResponse("")

        await orchestrator.end_session(call_id, reason="voicemail", outcome=Outcome.NO_RESPONSE)
        message = VOICEMAIL_LINE.format(agent=settings.agent_name, business=settings.business_name)
        try:
            await dialer.replace_twiml(call_id, hangup_response(message))
        except DialFailure as e:
            logger.warning(f"[{call_id}] Could not leave voicemail: {e}")
        return PlainTextResponse("")

    return app


app = create_app()


def main():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    validate_config()
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run("autodial.bot:app", host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
