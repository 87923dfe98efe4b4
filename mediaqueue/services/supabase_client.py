"""HTTP adapter for the hosted storage and REST API."""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..config import SupabaseSettings
from ..errors import AuthorizationFailure, TransientNetworkFailure, ValidationFailure

TRANSIENT_STATUS_CODES = {408, 425, 429}


def raise_for_status(response: httpx.Response, action: str) -> None:
    """Translate an HTTP error status into the upload error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    try:
        detail = response.json()
        if isinstance(detail, dict):
            detail = detail.get("message") or detail.get("error") or detail
    except ValueError:
        detail = response.text

    message = f"{action} failed with {status}: {detail}"
    if status in (401, 403):
        raise AuthorizationFailure(message)
    if status in TRANSIENT_STATUS_CODES or status >= 500:
        raise TransientNetworkFailure(message)
    raise ValidationFailure(message)


class SupabaseClient:
    """
    httpx client adapter for storage and REST calls.

    Carries the service credentials and maps transport errors to
    TransientNetworkFailure and status codes through raise_for_status.
    """

    def __init__(self, settings: SupabaseSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def settings(self) -> SupabaseSettings:
        return self._settings

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=self._settings.timeout,
            headers={
                "apikey": self._settings.service_key,
                "Authorization": f"Bearer {self._settings.service_key}",
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        path: str,
        action: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        content: Any = None,
        json: Any = None,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("SupabaseClient not initialized. Use 'async with' context.")

        try:
            response = await self._client.request(method, path, headers=headers, content=content, json=json)
        except (httpx.TransportError, httpx.TimeoutException) as exc:
            raise TransientNetworkFailure(f"{action} failed: {exc}", cause=exc) from exc

        raise_for_status(response, action)
        return response
