import logging
from urllib.parse import urlencode

import httpx

from autodial.errors import DialFailure

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioDialer:
    """Places outbound calls through the Twilio REST API.

    The answered call fetches ``{public_base_url}/twilio/voice?record_id=...``
    for its first TwiML document; status callbacks go to ``/twilio/status``.
    With ``machine_detection`` on, answering-machine results arrive
    asynchronously at ``/twilio/machine`` while the conversation starts.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        public_base_url: str,
        timeout: float = 10.0,
        machine_detection: bool = True,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.public_base_url = public_base_url.rstrip("/")
        self.machine_detection = machine_detection
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=TWILIO_API_BASE,
                auth=(account_sid, auth_token),
                timeout=timeout,
            )

    async def close(self):
        await self._client.aclose()

    def callback_urls(self, record_id: str) -> tuple[str, str]:
        voice = f"{self.public_base_url}/twilio/voice?{urlencode({'record_id': record_id})}"
        status = f"{self.public_base_url}/twilio/status?{urlencode({'record_id': record_id})}"
        return voice, status

    async def place_call(self, to: str, record_id: str) -> str:
        """Start a call to ``to``. Returns the call SID; raises DialFailure."""
        voice_url, status_url = self.callback_urls(record_id)
        data = {
            "To": to,
            "From": self.from_number,
            "Url": voice_url,
            "Method": "POST",
            "StatusCallback": status_url,
            "StatusCallbackMethod": "POST",
            "StatusCallbackEvent": ["completed"],
        }
        if self.machine_detection:
            data.update({
                "MachineDetection": "DetectMessageEnd",
                "MachineDetectionTimeout": "10",
                "AsyncAmd": "true",
                "AsyncAmdStatusCallback": f"{self.public_base_url}/twilio/machine",
                "AsyncAmdStatusCallbackMethod": "POST",
            })
        try:
            resp = await self._client.post(f"/Accounts/{self.account_sid}/Calls.json", data=data)
            resp.raise_for_status()
            sid = resp.json()["sid"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("Failed to place call to %s (record %s): %s", to, record_id, e)
            raise DialFailure(str(e)) from e
        logger.info("Placed call %s to %s (record %s)", sid, to, record_id)
        return sid

    async def replace_twiml(self, call_sid: str, twiml: str) -> None:
        """Swap the live call's instructions, e.g. to leave a voicemail."""
        try:
            resp = await self._client.post(
                f"/Accounts/{self.account_sid}/Calls/{call_sid}.json",
                data={"Twiml": twiml},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Failed to update call %s: %s", call_sid, e)
            raise DialFailure(str(e)) from e
