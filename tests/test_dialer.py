from urllib.parse import parse_qs

import pytest
import httpx
import respx

from autodial.dialer import TWILIO_API_BASE, TwilioDialer
from autodial.errors import DialFailure

CALLS_URL = f"{TWILIO_API_BASE}/Accounts/AC123/Calls.json"


@pytest.fixture
def dialer():
    return TwilioDialer("AC123", "token", "+15005550006", "https://dial.example.com/")


@pytest.mark.asyncio
async def test_place_call_returns_sid(dialer):
    with respx.mock:
        route = respx.post(CALLS_URL).mock(return_value=httpx.Response(201, json={"sid": "CA999"}))
        sid = await dialer.place_call("+15125551234", "R-42")
        assert sid == "CA999"

        request = route.calls[0].request
        assert request.headers["authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        assert form["To"] == ["+15125551234"]
        assert form["From"] == ["+15005550006"]
        assert form["Url"] == ["https://dial.example.com/twilio/voice?record_id=R-42"]
        assert form["StatusCallback"] == ["https://dial.example.com/twilio/status?record_id=R-42"]


@pytest.mark.asyncio
async def test_provider_error_raises_dial_failure(dialer):
    with respx.mock:
        respx.post(CALLS_URL).mock(return_value=httpx.Response(400, json={"message": "invalid To"}))
        with pytest.raises(DialFailure):
            await dialer.place_call("bogus", "R-42")


@pytest.mark.asyncio
async def test_machine_detection_requests_async_callback(dialer):
    with respx.mock:
        route = respx.post(CALLS_URL).mock(return_value=httpx.Response(201, json={"sid": "CA999"}))
        await dialer.place_call("+15125551234", "R-42")
        form = parse_qs(route.calls[0].request.content.decode())
        assert form["MachineDetection"] == ["DetectMessageEnd"]
        assert form["AsyncAmd"] == ["true"]
        assert form["AsyncAmdStatusCallback"] == ["https://dial.example.com/twilio/machine"]


@pytest.mark.asyncio
async def test_machine_detection_can_be_disabled():
    dialer = TwilioDialer("AC123", "token", "+15005550006", "https://dial.example.com", machine_detection=False)
    with respx.mock:
        route = respx.post(CALLS_URL).mock(return_value=httpx.Response(201, json={"sid": "CA999"}))
        await dialer.place_call("+15125551234", "R-42")
        form = parse_qs(route.calls[0].request.content.decode())
        assert "MachineDetection" not in form
        assert "AsyncAmd" not in form


@pytest.mark.asyncio
async def test_replace_twiml_updates_live_call(dialer):
    with respx.mock:
        route = respx.post(f"{TWILIO_API_BASE}/Accounts/AC123/Calls/CA999.json").mock(
            return_value=httpx.Response(200, json={"sid": "CA999"})
        )
        await dialer.replace_twiml("CA999", "<Response><Hangup/></Response>")
        form = parse_qs(route.calls[0].request.content.decode())
        assert form["Twiml"] == ["<Response><Hangup/></Response>"]

        route.mock(return_value=httpx.Response(404))
        with pytest.raises(DialFailure):
            await dialer.replace_twiml("CA999", "<Response/>")
