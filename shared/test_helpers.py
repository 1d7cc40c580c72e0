"""
Test helper functions and factory methods for the auth middleware.
"""

import base64
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt


@dataclass
class TestUser:
    """Test user data."""
    username: str
    groups: List[str] = field(default_factory=list)
    roles: List[str] = field(default_factory=list)
    password: str = "password123"


class MockTokenGenerator:
    """Mint Keycloak-style id tokens signed with a throwaway RSA key."""

    def __init__(self, issuer: str = "http://keycloak.test/realms/demo", client_id: str = "demo-service"):
        self.issuer = issuer
        self.client_id = client_id
        self._private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_pem = self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")

    @property
    def public_key_b64(self) -> str:
        """Public key as Keycloak publishes it in the realm document."""
        der = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return base64.b64encode(der).decode("ascii")

    def realm_document(self) -> Dict[str, Any]:
        """Body of GET {realm}."""
        return {"realm": self.issuer.rsplit("/", 1)[-1], "public_key": self.public_key_b64}

    def claims(self, user: TestUser, expires_in: int = 3600, **overrides: Any) -> Dict[str, Any]:
        now = int(time.time())
        payload = {
            "iss": self.issuer,
            "sub": f"{user.username}-id",
            "aud": self.client_id,
            "typ": "ID",
            "iat": now,
            "exp": now + expires_in,
            "azp": self.client_id,
            "preferred_username": user.username,
            "groups": list(user.groups),
            "realm_access": {"roles": list(user.roles)},
        }
        payload.update(overrides)
        return payload

    def generate_id_token(self, user: TestUser, expires_in: int = 3600, **overrides: Any) -> str:
        """RS256 id token for ``user``; ``overrides`` replace individual claims."""
        return jwt.encode(self.claims(user, expires_in, **overrides), self.private_pem, algorithm="RS256")

    def generate_hmac_token(self, user: TestUser, secret: str = "mock-secret") -> str:
        """Same claims, signed with HS256."""
        return jwt.encode(self.claims(user), secret, algorithm="HS256")

    def token_response(self, user: TestUser, refresh_token: str = "refresh-1",
                       id_token: Optional[str] = None) -> Dict[str, Any]:
        """Body of a successful token endpoint call."""
        return {
            "access_token": "access-" + refresh_token,
            "refresh_token": refresh_token,
            "id_token": id_token or self.generate_id_token(user),
            "token_type": "Bearer",
            "expires_in": 300,
        }


def cas_success(user: str) -> str:
    """CAS v3 serviceValidate success document."""
    return (
        "<cas:serviceResponse xmlns:cas='http://www.yale.edu/tp/cas'>"
        "<cas:authenticationSuccess>"
        f"<cas:user>{user}</cas:user>"
        "</cas:authenticationSuccess>"
        "</cas:serviceResponse>"
    )


def cas_failure(code: str, message: str) -> str:
    """CAS v3 serviceValidate failure document."""
    return (
        "<cas:serviceResponse xmlns:cas='http://www.yale.edu/tp/cas'>"
        f"<cas:authenticationFailure code='{code}'>{message}</cas:authenticationFailure>"
        "</cas:serviceResponse>"
    )


class TestEnvironment:
    """Test environment configuration."""

    @staticmethod
    def get_mock_config() -> Dict[str, str]:
        """Environment for a Keycloak-backed validator."""
        return {
            "AUTH_ENV": "test",
            "AUTH_LOG_LEVEL": "debug",
            "AUTH_VALIDATOR__ENABLED": "true",
            "AUTH_VALIDATOR__PROVIDER": "keycloak",
            "AUTH_VALIDATOR__PROVIDER_URL": "http://keycloak.test/realms/demo",
            "AUTH_VALIDATOR__CLIENT_ID": "demo-service",
        }


# Global instances for easy access
test_environment = TestEnvironment()
