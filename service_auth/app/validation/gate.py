"""
Inbound validation gate.

Credential sources, in order:

1. ``X-Auth-Token: <token>`` (deprecated)
2. ``Authorization: Bearer <token>``
3. ``Authorization: Basic <base64 user:password>`` when Basic auth is enabled

A request with no credential is let through only when authorization is
enabled and the rules grant the anonymous principal access.
"""

import asyncio
import base64
import binascii
import time
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request

from service_authz.app.rules import Principal
from shared.errors import AuthLayerException, CredentialRejected, InfraError
from shared.logging import get_logger, set_username
from ..obtainer.client import TicketClient
from .validator import Validator

CLIENT_EXPIRATION = 10 * 60


def decode_basic_credentials(credentials: str) -> Tuple[str, str]:
    """Split a Basic auth value into username and password."""
    try:
        decoded = base64.b64decode(credentials, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise CredentialRejected(f"Basic auth: invalid encoding: {exc}", http_status=400) from exc

    username, separator, password = decoded.partition(":")
    if not separator:
        raise CredentialRejected("Basic auth: invalid format for credentials", http_status=400)
    return username, password


class _Slot:
    """Lock and cached client for one credential string."""

    __slots__ = ("lock", "holders", "client", "expires_at")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0
        self.client: Optional[TicketClient] = None
        self.expires_at = 0.0


class BasicAuthCache:
    """Ticket clients keyed by Basic credential string.

    Entries expire ``ttl`` seconds after creation. Each credential has its
    own lock, so one ticket client is never used by two requests at once.
    Expired entries are dropped on every access, and a lock lives only while
    a request holds it or its credential has a cached client.
    """

    def __init__(self, ttl: float = CLIENT_EXPIRATION, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._slots: Dict[str, _Slot] = {}

    @asynccontextmanager
    async def reserve(self, credentials: str):
        """Hold the credential's lock for the duration of the block."""
        self.purge()
        slot = self._slots.setdefault(credentials, _Slot())
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0 and slot.client is None and self._slots.get(credentials) is slot:
                del self._slots[credentials]

    def get(self, credentials: str) -> Optional[TicketClient]:
        self.purge()
        slot = self._slots.get(credentials)
        return slot.client if slot is not None else None

    def put(self, credentials: str, client: TicketClient) -> None:
        self.purge()
        slot = self._slots.setdefault(credentials, _Slot())
        slot.client = client
        slot.expires_at = self._clock() + self.ttl

    def purge(self) -> None:
        now = self._clock()
        for credentials, slot in list(self._slots.items()):
            if slot.client is not None and now >= slot.expires_at:
                slot.client = None
            if slot.client is None and slot.holders == 0:
                del self._slots[credentials]

    def __len__(self) -> int:
        self.purge()
        return len(self._slots)


class ValidationGate:
    """Authenticates and authorizes inbound requests.

    Usable as a FastAPI dependency; the principal is returned and also
    stored on ``request.state.principal``.
    """

    def __init__(self, validator: Validator, basic_cache: Optional[BasicAuthCache] = None):
        self.validator = validator
        self.basic_cache = basic_cache if basic_cache is not None else BasicAuthCache()
        self.logger = get_logger("auth.gate")

    async def __call__(self, request: Request) -> Principal:
        principal = await self.authenticate(request.headers, request.url.path, request.method)
        request.state.principal = principal
        return principal

    async def authenticate(self, headers, resource: str, method: str) -> Principal:
        """Return the authorized principal or raise an AuthLayerException."""
        try:
            principal = await self._authenticate(headers, resource, method)
        except AuthLayerException as exc:
            log = self.logger.error if exc.http_status >= 500 else self.logger.warning
            log("Request rejected", resource=resource, method=method,
                status_code=exc.http_status, error=exc.message)
            raise

        set_username(principal.username)
        self.logger.debug("Request allowed", resource=resource, method=method,
                          username=principal.username, anonymous=principal.is_anonymous)
        return principal

    async def _authenticate(self, headers, resource: str, method: str) -> Principal:
        token = headers.get("X-Auth-Token")
        if token:
            return await self.validator.validation_chain(token, resource, method)

        authorization = headers.get("Authorization")
        if not authorization:
            anonymous = Principal.anonymous()
            if self.validator.engine.enabled and self.validator.engine.authorized(resource, method, anonymous):
                return anonymous
            raise CredentialRejected("Unauthorized request.")

        scheme, separator, value = authorization.partition(" ")
        if not separator:
            raise CredentialRejected("Invalid format for Authorization header field.", http_status=400)

        if scheme == "Bearer":
            return await self.validator.validation_chain(value, resource, method)
        if scheme == "Basic" and self.validator.basic_enabled:
            token = await self.basic_token(value)
            return await self.validator.validation_chain(token, resource, method)

        raise CredentialRejected(f"Unsupported Authorization method: {scheme}")

    async def basic_token(self, credentials: str) -> str:
        """Obtain a valid token for Basic credentials, reusing cached ticket clients."""
        username, password = decode_basic_credentials(credentials)
        async with self.basic_cache.reserve(credentials):
            client = self.basic_cache.get(credentials)
            if client is not None:
                return await self._valid_token(client)

            client = self.validator.ticket_client(username, password)
            token = await self._valid_token(client)
            self.basic_cache.put(credentials, client)
            return token

    async def _valid_token(self, client: TicketClient) -> str:
        try:
            token = await client.ensure_token()
        except AuthLayerException as exc:
            raise CredentialRejected(f"Basic auth: unable to obtain token: {exc.message}") from exc

        try:
            result = await self.validator.validate(token)
        except InfraError as exc:
            raise InfraError(f"Basic auth: validation error: {exc.message}", exc.details) from exc

        if result.valid:
            return token
        try:
            return await client.renew()
        except AuthLayerException as exc:
            raise CredentialRejected(f"Basic auth: unable to renew token: {exc.message}") from exc
