"""
Name -> driver lookup table.

Registries are plain objects so that several independent configurations
can coexist in one process. Registration happens at startup, before any
traffic; lookups afterwards are read-only.
"""

import threading
from typing import Dict, List, Optional

import httpx

from shared.errors import ConfigError
from shared.logging import get_logger
from .base import ObtainerDriver, ValidatorDriver
from .cas import CASObtainer, CASValidator
from .keycloak import KeycloakObtainer, KeycloakValidator


class DriverRegistry:
    """Registration table for obtainer and validator drivers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._obtainers: Dict[str, ObtainerDriver] = {}
        self._validators: Dict[str, ValidatorDriver] = {}
        self.logger = get_logger("auth.registry")

    def register_obtainer(self, name: str, driver: Optional[ObtainerDriver]) -> None:
        """Register (or replace) an obtainer driver."""
        if driver is None:
            raise ConfigError("auth obtainer driver is nil", {"driver": name})
        with self._lock:
            self._obtainers[name] = driver
        self.logger.debug("Obtainer driver registered", driver=name)

    def register_validator(self, name: str, driver: Optional[ValidatorDriver]) -> None:
        """Register (or replace) a validator driver."""
        if driver is None:
            raise ConfigError("auth validator driver is nil", {"driver": name})
        with self._lock:
            self._validators[name] = driver
        self.logger.debug("Validator driver registered", driver=name)

    def obtainer(self, name: str) -> ObtainerDriver:
        with self._lock:
            driver = self._obtainers.get(name)
        if driver is None:
            raise ConfigError(f"unknown obtainer {name} (driver not registered)", {"driver": name})
        return driver

    def validator(self, name: str) -> ValidatorDriver:
        with self._lock:
            driver = self._validators.get(name)
        if driver is None:
            raise ConfigError(f"unknown validator {name} (driver not registered)", {"driver": name})
        return driver

    def obtainer_names(self) -> List[str]:
        with self._lock:
            return sorted(self._obtainers)

    def validator_names(self) -> List[str]:
        with self._lock:
            return sorted(self._validators)


def default_registry(http_client: Optional[httpx.AsyncClient] = None) -> DriverRegistry:
    """Registry preloaded with the CAS and Keycloak drivers."""
    registry = DriverRegistry()
    registry.register_obtainer(CASObtainer.name, CASObtainer(http_client))
    registry.register_validator(CASValidator.name, CASValidator(http_client))
    registry.register_obtainer(KeycloakObtainer.name, KeycloakObtainer(http_client))
    registry.register_validator(KeycloakValidator.name, KeycloakValidator(http_client))
    return registry
