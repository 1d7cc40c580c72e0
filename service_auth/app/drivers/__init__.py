"""
Identity provider drivers.

- base: Obtainer/validator contracts, session credential and result types.
- registry: Name -> driver table, plus a registry preloaded with the
  bundled drivers.
- cas: CAS REST protocol (ticket-granting tickets, XML validation).
- keycloak: OpenID Connect against a Keycloak realm (JWT validation).
"""

from .base import (
    ObtainerDriver,
    SessionCredential,
    TicketGrant,
    ValidationResult,
    ValidatorDriver,
)
from .registry import DriverRegistry, default_registry

__all__ = [
    "DriverRegistry",
    "ObtainerDriver",
    "SessionCredential",
    "TicketGrant",
    "ValidationResult",
    "ValidatorDriver",
    "default_registry",
]
