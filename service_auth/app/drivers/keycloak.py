"""
Keycloak driver: OpenID Connect tokens from a Keycloak realm.

``server_addr`` is the realm URL, e.g. https://kc.example.com/realms/demo.
Login only packages the credentials; the first ticket request performs a
password grant and later ones a refresh grant. Validation verifies the
RS256 signature with the realm public key and then checks token type,
audience and issuer.
"""

import base64
import binascii
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Optional

import httpx
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from service_authz.app.rules.models import Principal
from shared.errors import AuthServerError, InfraError, TicketDenied
from shared.logging import fingerprint, get_logger
from .base import ObtainerDriver, SessionCredential, TicketGrant, ValidationResult, ValidatorDriver

TOKEN_PATH = "/protocol/openid-connect/token"
LOGOUT_PATH = "/protocol/openid-connect/logout"
DRIVER_NAME = "keycloak"
SIGNING_ALGORITHM = "RS256"


@dataclass(frozen=True)
class TokenBundle:
    """Tokens returned by the Keycloak token endpoint."""
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    id_token: str = field(repr=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenBundle":
        id_token = payload.get("id_token")
        if not isinstance(id_token, str) or len(id_token.split(".")) != 3:
            raise InfraError("invalid format for id_token")
        refresh_token = payload.get("refresh_token") or ""
        if not isinstance(refresh_token, str):
            raise InfraError("invalid format for refresh_token")
        return cls(
            access_token=payload.get("access_token") or "",
            refresh_token=refresh_token,
            id_token=id_token,
        )


@dataclass(frozen=True)
class KeycloakSession(SessionCredential):
    """Keycloak session credential: the login credentials plus the latest bundle."""
    username: str
    password: str = field(repr=False)
    client_id: str = ""
    bundle: Optional[TokenBundle] = None


class KeycloakObtainer(ObtainerDriver):
    """Obtains OpenID Connect id tokens from Keycloak."""

    name = DRIVER_NAME

    async def login(self, server_addr: str, username: str, password: str, service_id: str) -> KeycloakSession:
        """Package the credentials; no request is made until a ticket is needed."""
        return KeycloakSession(username=username, password=password, client_id=service_id)

    async def request_ticket(self, server_addr: str, session: SessionCredential, service_id: str) -> TicketGrant:
        """Password grant on a fresh session, refresh grant when a bundle is held."""
        if not isinstance(session, KeycloakSession):
            raise TypeError(f"keycloak driver cannot use {type(session).__name__}")

        if session.bundle is not None and session.bundle.refresh_token:
            form = {
                "grant_type": "refresh_token",
                "client_id": service_id,
                "refresh_token": session.bundle.refresh_token,
            }
            failure = "error getting a new token"
        else:
            form = {
                "grant_type": "password",
                "client_id": service_id,
                "username": session.username,
                "password": session.password,
                "scope": "openid",
            }
            failure = f"unable to login with username `{session.username}`"

        response = await self._send("POST", server_addr + TOKEN_PATH, data=form)
        self.logger.info("RequestTicket()", grant_type=form["grant_type"], status_code=response.status_code)

        if response.status_code != 200:
            raise TicketDenied(response.status_code, f"{failure}: {response.text}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise InfraError(f"error parsing the token response: {exc}") from exc
        if not isinstance(payload, dict):
            raise InfraError("error parsing the token response: not a JSON object")

        bundle = TokenBundle.from_payload(payload)
        self.logger.debug("Token issued", token=fingerprint(bundle.id_token))
        return TicketGrant(
            token=bundle.id_token,
            session=replace(session, client_id=service_id, bundle=bundle),
        )

    async def logout(self, server_addr: str, session: SessionCredential) -> None:
        """End the Keycloak session bound to the refresh token."""
        if not isinstance(session, KeycloakSession):
            raise TypeError(f"keycloak driver cannot use {type(session).__name__}")
        if session.bundle is None or not session.bundle.refresh_token:
            # Nothing was issued yet, so there is no provider session to end
            self.logger.debug("Logout() without a provider session")
            return

        response = await self._send(
            "POST",
            server_addr + LOGOUT_PATH,
            data={"client_id": session.client_id, "refresh_token": session.bundle.refresh_token},
        )
        self.logger.info("Logout()", status_code=response.status_code)

        if response.status_code not in (200, 204):
            raise AuthServerError(response.status_code, f"Unable to end session: {response.text}")


class PublicKeyCache:
    """Realm public keys, keyed by realm URL.

    Keys live as long as the cache. Nothing invalidates them automatically;
    ``invalidate`` is there for operators reacting to a key rotation.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: Dict[str, str] = {}
        self.logger = get_logger("auth.keycloak.keys")

    def get(self, server_addr: str) -> Optional[str]:
        with self._lock:
            return self._keys.get(server_addr)

    def put(self, server_addr: str, pem: str) -> None:
        with self._lock:
            self._keys[server_addr] = pem

    def invalidate(self, server_addr: Optional[str] = None) -> None:
        with self._lock:
            if server_addr is None:
                self._keys.clear()
            else:
                self._keys.pop(server_addr, None)
        self.logger.info("Public key cache invalidated", server=server_addr or "*")


def decode_public_key(encoded: str) -> str:
    """Turn Keycloak's base64 DER ``public_key`` into an RSA PEM string."""
    try:
        der = base64.b64decode(encoded, validate=True)
        key = serialization.load_der_public_key(der)
    except (binascii.Error, ValueError, UnsupportedAlgorithm) as exc:
        raise InfraError(f"error decoding the authentication server public key: {exc}") from exc
    if not isinstance(key, RSAPublicKey):
        raise InfraError("the authentication server's public key type is not RSA")
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def _string_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str)]


def extract_roles(claims: Dict[str, Any]) -> FrozenSet[str]:
    """Extract roles from common Keycloak token structures."""
    roles = set()

    realm_access = claims.get("realm_access", {})
    if isinstance(realm_access, dict):
        roles.update(_string_list(realm_access.get("roles")) or [])

    resource_access = claims.get("resource_access", {})
    if isinstance(resource_access, dict):
        for resource in resource_access.values():
            if isinstance(resource, dict):
                roles.update(_string_list(resource.get("roles")) or [])

    return frozenset(roles)


class KeycloakValidator(ValidatorDriver):
    """Validates Keycloak-issued JWTs."""

    name = DRIVER_NAME

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, expected_type: str = "ID",
                 key_cache: Optional[PublicKeyCache] = None):
        super().__init__(http_client)
        self.expected_type = expected_type
        self.key_cache = key_cache if key_cache is not None else PublicKeyCache()

    async def public_key(self, server_addr: str) -> str:
        """Realm public key as PEM, fetched once per realm."""
        cached = self.key_cache.get(server_addr)
        if cached is not None:
            return cached

        response = await self._send("GET", server_addr)
        if response.status_code != 200:
            raise AuthServerError(
                response.status_code,
                "error getting the public key from the authentication server"
            )
        try:
            encoded = response.json().get("public_key")
        except (ValueError, AttributeError) as exc:
            raise InfraError(
                f"error getting the public key from the authentication server response: {exc}"
            ) from exc
        if not isinstance(encoded, str) or not encoded:
            raise InfraError("the authentication server response has no public_key")

        pem = decode_public_key(encoded)
        self.key_cache.put(server_addr, pem)
        self.logger.info("Public key fetched", server=server_addr)
        return pem

    async def validate(self, server_addr: str, audience: str, token: str) -> ValidationResult:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            return ValidationResult.rejected(f"Invalid token: {exc}")

        algorithm = header.get("alg")
        if algorithm != SIGNING_ALGORITHM:
            return ValidationResult.rejected(
                f"Invalid token: unexpected signing method: {algorithm}"
            )

        key = await self.public_key(server_addr)

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[SIGNING_ALGORITHM],
                options={"verify_aud": False, "verify_iss": False, "verify_at_hash": False},
            )
        except ExpiredSignatureError:
            return ValidationResult.rejected("Token is either expired or not active yet")
        except JWTClaimsError as exc:
            return ValidationResult.rejected(f"Error validating the token: {exc}")
        except JWTError as exc:
            return ValidationResult.rejected(f"Invalid token: {exc}")

        token_type = claims.get("typ")
        if token_type != self.expected_type:
            return ValidationResult.rejected(
                f"Wrong token type `{token_type}` for accessing resource. "
                f"Expecting type `{self.expected_type}`."
            )

        token_audience = claims.get("aud")
        audiences = token_audience if isinstance(token_audience, list) else [token_audience]
        if audience not in audiences:
            return ValidationResult.rejected(
                f"The token is issued for client `{token_audience}` rather than `{audience}`."
            )

        issuer = claims.get("iss")
        if not isinstance(issuer, str) or issuer.rstrip("/") != server_addr.rstrip("/"):
            return ValidationResult.rejected(
                f"The token is issued by `{issuer}` rather than `{server_addr}`."
            )

        groups = _string_list(claims.get("groups"))
        if groups is None:
            raise InfraError("unable to get the user's group membership")
        username = claims.get("preferred_username")
        if not isinstance(username, str):
            raise InfraError("unable to get the user's username")

        client_id = claims.get("clientId")
        principal = Principal(
            username=username,
            groups=frozenset(groups),
            client_id=client_id if isinstance(client_id, str) else "",
            roles=extract_roles(claims),
        )
        self.logger.info("Validate()", valid=True, username=username)
        return ValidationResult.accepted(principal)
