import logging

import httpx

from autodial.circuit_breaker import CircuitBreaker
from autodial.errors import GenerationFailure

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


class TextGenerator:
    """Produces the next spoken line from a prompt and the recent history.

    Every failure mode (circuit open, HTTP error, timeout, empty reply)
    surfaces as ``GenerationFailure`` so the caller has one thing to catch.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 5.0,
        max_tokens: int = 80,
        temperature: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="text generator",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def generate(self, prompt: str, history: list[dict]) -> str:
        if not self.api_key:
            raise GenerationFailure("text generator not configured")
        if not self._circuit.should_try():
            raise GenerationFailure("text generator circuit open")

        try:
            resp = await self._client.post(
                OPENAI_CHAT_URL,
                json={
                    "model": self.model,
                    "temperature": self.temperature,
                    "max_tokens": self.max_tokens,
                    "messages": [{"role": "system", "content": prompt}, *history],
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            text = resp.json()["choices"][0]["message"]["content"].strip()
        except (httpx.HTTPError, KeyError, IndexError, ValueError, AttributeError) as e:
            self._circuit.record_failure()
            logger.warning("Text generation failed: %s", e)
            raise GenerationFailure(str(e)) from e

        if not text:
            self._circuit.record_failure()
            raise GenerationFailure("empty completion")

        self._circuit.record_success()
        return text
