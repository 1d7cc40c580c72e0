"""
Outbound requests carrying a bearer token from a ticket client.
"""

from typing import Mapping, Optional, Union

import httpx

from shared.errors import InfraError
from shared.logging import get_logger
from .client import TicketClient


class AuthenticatedInvoker:
    """Sends requests with ``Authorization: Bearer <token>``.

    A 401 answer triggers exactly one renew-and-resend; the second response
    is returned whatever its status. Transport errors are never retried.
    """

    def __init__(self, ticket_client: TicketClient, http_client: httpx.AsyncClient):
        self.ticket_client = ticket_client
        self.http_client = http_client
        self.logger = get_logger("auth.invoker")

    @staticmethod
    def _authorize(request: httpx.Request, token: str) -> None:
        request.headers["Authorization"] = f"Bearer {token}"

    async def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self.http_client.send(request)
        except httpx.HTTPError as exc:
            self.logger.error("Request failed", method=request.method, url=str(request.url), error=str(exc))
            raise InfraError(f"Request to {request.url} failed: {exc}", {"url": str(request.url)}) from exc

    async def send(self, request: httpx.Request) -> httpx.Response:
        token = await self.ticket_client.ensure_token()
        self._authorize(request, token)
        response = await self._send(request)

        if response.status_code != 401:
            return response

        self.logger.info("Invalid authentication token, renewing", method=request.method, url=str(request.url))
        await response.aclose()
        token = await self.ticket_client.renew()
        self._authorize(request, token)
        return await self._send(request)


async def http_request(client: httpx.AsyncClient, method: str, url: str,
                       headers: Optional[Mapping[str, str]] = None,
                       content: Optional[Union[str, bytes]] = None,
                       ticket_client: Optional[TicketClient] = None) -> httpx.Response:
    """Build and send a request, authenticated when a ticket client is given."""
    request = client.build_request(method, url, headers=headers, content=content)
    if ticket_client is not None:
        return await AuthenticatedInvoker(ticket_client, client).send(request)

    try:
        return await client.send(request)
    except httpx.HTTPError as exc:
        raise InfraError(f"Request to {url} failed: {exc}", {"url": url}) from exc
