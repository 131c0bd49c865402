"""
HTTP gateway to the external Gmail / Calendar / CRM services.

Capabilities never talk to those services directly; they post a JSON body
``{"user_id": ..., **params}`` to ``<service base url>/<operation>`` and get
a JSON result back. Token handling lives behind that boundary.
"""


import httpx

from aide.core.config import settings
from aide.core.errors import CollaboratorTimeout, RateLimited, ToolError
from aide.core.logging import get_logger

log = get_logger("tools.gateway")


class ServiceGateway:
    def __init__(
        self,
        base_urls: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_urls = base_urls or {
            "gmail": settings.GMAIL_BASE_URL,
            "calendar": settings.CALENDAR_BASE_URL,
            "crm": settings.CRM_BASE_URL,
        }
        self.timeout = timeout or settings.SERVICE_TIMEOUT_SECONDS
        self._transport = transport

    async def call(self, service: str, operation: str, user_id: str, payload: dict) -> dict:
        if service not in self.base_urls:
            raise ToolError(f"Unknown service: {service}")
        url = f"{self.base_urls[service].rstrip('/')}/{operation}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(url, json={"user_id": user_id, **payload})
        except httpx.TimeoutException as e:
            raise CollaboratorTimeout(f"{service}.{operation} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ToolError(f"{service}.{operation} transport error: {e}") from e

        if r.status_code == 429:
            raise RateLimited(f"{service}.{operation} rate limited")
        if r.status_code >= 400:
            raise ToolError(f"{service}.{operation} failed ({r.status_code}): {r.text[:300]}")
        try:
            data = r.json()
        except ValueError as e:
            raise ToolError(f"{service}.{operation} returned non-JSON body") from e
        log.info(f"{service}.{operation} ok for user {user_id}")
        return data if isinstance(data, dict) else {"result": data}


_gateway: ServiceGateway | None = None


def get_gateway() -> ServiceGateway:
    global _gateway
    if _gateway is None:
        _gateway = ServiceGateway()
    return _gateway


def set_gateway(gateway: ServiceGateway | None) -> None:
    global _gateway
    _gateway = gateway
