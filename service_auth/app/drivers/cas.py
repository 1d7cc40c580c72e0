"""
CAS driver: ticket-granting tickets over the CAS REST protocol.

- login:          POST {server}/v1/tickets/ (form username, password) -> 201,
                  TGT id is the last path segment of the Location header.
- request_ticket: POST {server}/v1/tickets/{tgt} (form service) -> 200,
                  the body is the service ticket.
- logout:         DELETE {server}/v1/tickets/{tgt} -> 200.
- validate:       GET {server}/p3/serviceValidate?service=..&ticket=.. -> 200 XML.
"""

import posixpath
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse
from xml.etree import ElementTree

from service_authz.app.rules.models import Principal
from shared.errors import AuthServerError, InfraError, TicketDenied
from shared.logging import fingerprint
from .base import ObtainerDriver, SessionCredential, TicketGrant, ValidationResult, ValidatorDriver

TICKET_PATH = "/v1/tickets/"
VALIDATE_PATH = "/p3/serviceValidate"
DRIVER_NAME = "cas"


@dataclass(frozen=True)
class TicketGrantingTicket(SessionCredential):
    """CAS session credential."""
    tgt: str


def _local_name(tag: str) -> str:
    # "{http://www.yale.edu/tp/cas}user" -> "user"
    return tag.rsplit("}", 1)[-1]


def _find(element: ElementTree.Element, name: str) -> Optional[ElementTree.Element]:
    for child in element.iter():
        if _local_name(child.tag) == name:
            return child
    return None


def split_cas_user(user: str) -> Principal:
    """Parse the CAS ``user`` value into a principal.

    Provider quirk: some CAS/LDAP deployments report "<user>-<group>" in the
    user field. One dash splits into user and group; more than one dash is
    not a format we understand and is treated as a hard failure.
    """
    parts = user.split("-")
    if len(parts) == 1:
        return Principal(username=parts[0])
    if len(parts) == 2:
        return Principal(username=parts[0], groups=frozenset([parts[1]]))
    raise InfraError("Unexpected format for `user` in validation response.", {"user": user})


class CASObtainer(ObtainerDriver):
    """Obtains CAS service tickets."""

    name = DRIVER_NAME

    async def login(self, server_addr: str, username: str, password: str, service_id: str) -> TicketGrantingTicket:
        """Request a Ticket Granting Ticket (TGT)."""
        response = await self._send(
            "POST",
            server_addr + TICKET_PATH,
            data={"username": username, "password": password},
        )
        self.logger.info("Login()", status_code=response.status_code)

        if response.status_code != 201:
            raise AuthServerError(
                response.status_code,
                f"Unable to obtain ticket (TGT) for user `{username}`."
            )

        location = response.headers.get("Location")
        if not location:
            raise InfraError("Login response is missing the Location header.")

        tgt = posixpath.basename(urlparse(location).path.rstrip("/"))
        if not tgt:
            raise InfraError("Unable to read the TGT from the Location header.", {"location": location})
        return TicketGrantingTicket(tgt=tgt)

    async def request_ticket(self, server_addr: str, session: SessionCredential, service_id: str) -> TicketGrant:
        """Request a Service Ticket for ``service_id``."""
        if not isinstance(session, TicketGrantingTicket):
            raise TypeError(f"cas driver cannot use {type(session).__name__}")

        response = await self._send(
            "POST",
            server_addr + TICKET_PATH + session.tgt,
            data={"service": service_id},
        )
        self.logger.info("RequestTicket()", status_code=response.status_code)

        if response.status_code != 200:
            raise TicketDenied(response.status_code, response.text or "Service ticket request denied")

        ticket = response.text
        self.logger.debug("Service ticket issued", ticket=fingerprint(ticket))
        return TicketGrant(token=ticket, session=session)

    async def logout(self, server_addr: str, session: SessionCredential) -> None:
        """Expire the Ticket Granting Ticket."""
        if not isinstance(session, TicketGrantingTicket):
            raise TypeError(f"cas driver cannot use {type(session).__name__}")

        response = await self._send("DELETE", server_addr + TICKET_PATH + session.tgt)
        self.logger.info("Logout()", status_code=response.status_code)

        if response.status_code != 200:
            raise AuthServerError(response.status_code, f"Unable to expire TGT: {response.status_code}")


class CASValidator(ValidatorDriver):
    """Validates CAS service tickets (CAS protocol v3)."""

    name = DRIVER_NAME

    async def validate(self, server_addr: str, audience: str, token: str) -> ValidationResult:
        response = await self._send(
            "GET",
            server_addr + VALIDATE_PATH,
            params={"service": audience, "ticket": token},
        )

        if response.status_code != 200:
            raise AuthServerError(response.status_code, f"Validation request failed: {response.status_code}")

        try:
            root = ElementTree.fromstring(response.content)
        except ElementTree.ParseError as exc:
            raise InfraError("Unexpected error while validating service token.") from exc

        # The status code is 200 for valid, expired and unknown tickets alike
        success = _find(root, "authenticationSuccess")
        if success is None:
            failure = _find(root, "authenticationFailure")
            if failure is None:
                raise InfraError("Unexpected error while validating service token.")
            status = (failure.text or "").strip() or failure.get("code", "")
            if not status:
                raise InfraError("Unexpected error. No error message.")
            self.logger.info("Validate()", valid=False, status=status)
            return ValidationResult.rejected(status)

        user_tag = _find(success, "user")
        if user_tag is None:
            raise InfraError("Could not find `user` from validation response.")
        user = (user_tag.text or "").strip()
        if not user:
            raise InfraError("Could not get value of `user` from validation response.")

        principal = split_cas_user(user)
        self.logger.info("Validate()", valid=True, username=principal.username)
        return ValidationResult.accepted(principal)
