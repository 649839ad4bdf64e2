import asyncio
import logging
from urllib.parse import quote

import httpx

from autodial.circuit_breaker import CircuitBreaker
from autodial.errors import RecordNotFound, RecordStoreUnavailable

logger = logging.getLogger(__name__)


class RecordStoreClient:
    """HTTP client for the prospect record API (the sheet-backed lead table).

    ``GET  {base}/records/{key}``       -> record dict (key: record id or phone)
    ``PATCH {base}/records/{record_id}`` -> ``{"success": true, ...}``

    Lookups and writes retry once after a short backoff. Lookups also go
    through a circuit breaker so a dead store does not stall call setup.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        retry_delay: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="record store",
        )
        if client is not None:
            self._client = client
        else:
            headers = {"Content-Type": "application/json"}
            if api_key:
                headers["X-API-Key"] = api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    def _path(self, key: str) -> str:
        return f"/records/{quote(str(key), safe='')}"

    async def find_by_phone_or_id(self, key: str) -> dict:
        """Raises RecordNotFound on a 404, RecordStoreUnavailable when the store is down."""
        if not self._circuit.should_try():
            logger.warning("Record store circuit breaker open; lookup for %s skipped", key)
            raise RecordStoreUnavailable(key, "circuit open")
        for attempt in range(2):
            try:
                resp = await self._client.get(self._path(key))
                if resp.status_code == 404:
                    self._circuit.record_success()
                    raise RecordNotFound(key)
                resp.raise_for_status()
                record = resp.json()
                self._circuit.record_success()
                return record
            except (httpx.HTTPError, ValueError) as e:
                if attempt == 0:
                    logger.warning("Record lookup for %s failed, retrying: %s", key, e)
                    await asyncio.sleep(self.retry_delay)
                    continue
                self._circuit.record_failure()
                logger.error("Record lookup failed for %s: %s", key, e)
                raise RecordStoreUnavailable(key, str(e)) from e
        raise RecordStoreUnavailable(key)

    async def update(self, record_id: str, fields: dict) -> dict:
        """PATCH with one retry after ``retry_delay`` on failure. Never raises."""
        for attempt in range(2):
            try:
                resp = await self._client.patch(self._path(record_id), json=fields)
                resp.raise_for_status()
                self._circuit.record_success()
                body = resp.json() if resp.content else {}
                return {"success": True, **body}
            except (httpx.HTTPError, ValueError) as e:
                if attempt == 0:
                    logger.warning(
                        "Record update for %s failed (attempt 1), retrying in %.0fs: %s",
                        record_id, self.retry_delay, e,
                    )
                    await asyncio.sleep(self.retry_delay)
                else:
                    self._circuit.record_failure()
                    logger.error("Record update for %s failed after retry: %s", record_id, e)
                    return {"success": False, "error": str(e)}
        return {"success": False, "error": "unreachable"}
