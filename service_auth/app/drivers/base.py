"""
Driver contracts for obtaining and validating credentials.

An obtainer driver turns a username/password into a session credential,
trades the session credential for short-lived service tokens and, where
the provider allows it, revokes the session credential. A validator driver
checks a token against the provider and derives a principal from it.

Each driver family defines its own ``SessionCredential`` subclass. The
ticket client stores it opaquely and hands it back to the same driver.
"""

import abc
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from service_authz.app.rules.models import Principal
from shared.errors import InfraError, RevocationNotSupported
from shared.logging import get_logger


@dataclass(frozen=True)
class SessionCredential:
    """Long-lived credential returned by ``login``."""


@dataclass(frozen=True)
class TicketGrant:
    """Outcome of a ticket request.

    ``session`` is the session credential to keep for the next request; it
    differs from the one passed in when the provider rotated it.
    """
    token: str
    session: SessionCredential


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a token validation.

    ``valid=False`` always comes with a non-empty ``principal.status``.
    """
    valid: bool
    principal: Principal

    @classmethod
    def accepted(cls, principal: Principal) -> "ValidationResult":
        return cls(valid=True, principal=principal)

    @classmethod
    def rejected(cls, status: str) -> "ValidationResult":
        return cls(valid=False, principal=Principal.rejected(status))


class ProviderDriver:
    """Common plumbing for drivers that talk HTTP to an identity provider."""

    name: str = ""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self._http_client = http_client
        self.logger = get_logger(f"auth.{self.name}")

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request, mapping transport failures to InfraError."""
        try:
            if self._http_client is not None:
                return await self._http_client.request(method, url, **kwargs)
            async with httpx.AsyncClient() as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            self.logger.error("Authentication server unreachable", method=method, url=url, error=str(exc))
            raise InfraError(
                f"Unable to reach authentication server: {exc}",
                details={"url": url}
            ) from exc


class ObtainerDriver(ProviderDriver, abc.ABC):
    """Login, ticket exchange and logout against one provider protocol."""

    @abc.abstractmethod
    async def login(self, server_addr: str, username: str, password: str, service_id: str) -> SessionCredential:
        """Return a session credential; raise AuthServerError when the provider refuses."""

    @abc.abstractmethod
    async def request_ticket(self, server_addr: str, session: SessionCredential, service_id: str) -> TicketGrant:
        """Trade a session credential for a token scoped to ``service_id``; raise TicketDenied when refused."""

    async def logout(self, server_addr: str, session: SessionCredential) -> None:
        """Expire the session credential.

        Drivers without revocation keep this default and fail loudly.
        """
        raise RevocationNotSupported(self.name)


class ValidatorDriver(ProviderDriver, abc.ABC):
    """Token validation against one provider protocol."""

    @abc.abstractmethod
    async def validate(self, server_addr: str, audience: str, token: str) -> ValidationResult:
        """Validate ``token``.

        Invalid or expired tokens yield ``ValidationResult(valid=False)``;
        only infrastructure failures raise (InfraError).
        """
