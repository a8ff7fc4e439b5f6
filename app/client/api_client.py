# app/client/api_client.py
"""
HTTP client for the check-in API, used on the guest's device.

Every call carries a timeout. A timeout or a dropped connection raises
TransientFailure: the server may or may not have acted, so the caller must treat
it as "try again later", never as a definitive answer. Error bodies from the
server are turned back into the same domain exceptions the server raised.
"""

from typing import Optional

import httpx

from app.config import settings
from app.errors import ErrorKind, StorageFailure, TransientFailure, ValidationError, error_from_dict
from app.models.enums import Phase
from app.utils.logger import get_logger

logger = get_logger(__name__)

# bodiless 4xx answers worth retrying; any other bodiless 4xx is terminal
RETRYABLE_CLIENT_STATUSES = {401, 408, 429}


class CheckinApiClient:
    def __init__(self, base_url: str = None, timeout: float = None, api_key: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.SYNC_API_URL,
            timeout=settings.SYNC_TIMEOUT_SECONDS if timeout is None else timeout,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"[API] {method} {path} timed out")
            raise TransientFailure("Request timed out") from e
        except httpx.TransportError as e:
            logger.warning(f"[API] {method} {path} failed: {type(e).__name__}")
            raise TransientFailure("Server unreachable") from e

        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and "error" in body:
            raise error_from_dict(body, response.status_code)

        status_code = response.status_code
        if status_code >= 500 or status_code in RETRYABLE_CLIENT_STATUSES:
            # proxy 5xx pages, 401 from the API key middleware, throttling
            raise StorageFailure(f"Unexpected response (HTTP {status_code})")
        # e.g. 422 from request validation: resending the same request cannot succeed
        logger.warning(f"[API] {method} {path} refused with HTTP {status_code}")
        raise ValidationError(ErrorKind.MALFORMED, f"Request refused (HTTP {status_code})")

    # ── Boundaries ───────────────────────────────────────────────────────

    async def validate(self, wire: str) -> dict:
        return await self._request("POST", "/credentials/validate", json={"wire": wire})

    async def arrive(self, reservation_id: str, wire: str) -> dict:
        return await self._request("POST", "/occupancy/arrive",
                                   json={"reservation_id": reservation_id, "credential": wire})

    async def depart(self, reservation_id: str, wire: Optional[str] = None,
                     subject_id: Optional[str] = None) -> dict:
        body = {"reservation_id": reservation_id}
        if wire:
            body["credential"] = wire
        if subject_id:
            body["subject_id"] = subject_id
        return await self._request("POST", "/occupancy/depart", json=body)

    async def status(self, reservation_id: str) -> dict:
        return await self._request("GET", f"/occupancy/{reservation_id}/status")

    async def upload_evidence(self, reservation_id: str, phase: Phase, items: list) -> dict:
        return await self._request("POST", "/evidence", json={
            "reservation_id": reservation_id,
            "phase": Phase(phase).value,
            "items": items,
        })
