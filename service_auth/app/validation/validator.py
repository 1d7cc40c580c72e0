"""
Validator facade: one configured validator driver plus the optional rule engine.
"""

from typing import Optional

from service_authz.app.rules import AuthzConf, Principal, RuleEngine
from shared.errors import AccessDenied, CredentialRejected, InfraError
from shared.logging import fingerprint, get_logger
from shared.metrics import MetricsCollector
from ..drivers.base import ValidationResult, ValidatorDriver
from ..drivers.registry import DriverRegistry, default_registry
from ..obtainer.client import TicketClient


class Validator:
    """Validates tokens against one provider and authorizes the resulting principal."""

    def __init__(self, driver: ValidatorDriver, driver_name: str, server_addr: str, client_id: str,
                 basic_enabled: bool = False, authz: Optional[AuthzConf] = None,
                 registry: Optional[DriverRegistry] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.driver = driver
        self.driver_name = driver_name
        self.server_addr = server_addr
        self.client_id = client_id
        self.basic_enabled = basic_enabled
        self.registry = registry
        self.metrics = metrics
        self.engine = RuleEngine(authz if authz is not None else AuthzConf(), metrics)
        self.logger = get_logger("auth.validator")

    @classmethod
    def setup(cls, name: str, server_addr: str, client_id: str, basic_enabled: bool = False,
              authz: Optional[AuthzConf] = None, registry: Optional[DriverRegistry] = None,
              metrics: Optional[MetricsCollector] = None) -> "Validator":
        """Resolve the named driver and build a validator.

        Raises ConfigError when no validator is registered under ``name``
        or when an enabled ``authz`` holds an invalid rule.
        """
        registry = registry if registry is not None else default_registry()
        return cls(
            driver=registry.validator(name),
            driver_name=name,
            server_addr=server_addr,
            client_id=client_id,
            basic_enabled=basic_enabled,
            authz=authz,
            registry=registry,
            metrics=metrics,
        )

    @classmethod
    def from_conf(cls, conf, registry: Optional[DriverRegistry] = None,
                  metrics: Optional[MetricsCollector] = None) -> "Validator":
        """Build a validator from a ValidatorConf."""
        conf.check()
        return cls.setup(
            conf.provider,
            conf.provider_url,
            conf.client_id,
            basic_enabled=conf.basic_enabled,
            authz=conf.authz,
            registry=registry,
            metrics=metrics,
        )

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_validation(self.driver_name, outcome)

    async def validate(self, token: str) -> ValidationResult:
        """Validate a token with the configured driver.

        Invalid tokens come back as ``valid=False``; InfraError propagates.
        """
        try:
            result = await self.driver.validate(self.server_addr, self.client_id, token)
        except InfraError as exc:
            self._record("error")
            self.logger.error("Token validation failed", token=fingerprint(token), error=exc.message)
            raise

        self._record("valid" if result.valid else "invalid")
        self.logger.debug(
            "Token validated",
            token=fingerprint(token),
            valid=result.valid,
            username=result.principal.username,
            status=result.principal.status,
        )
        return result

    def authorize(self, principal: Principal, resource: str, method: str) -> None:
        """Raise AccessDenied when the rule engine refuses the request."""
        if not self.engine.authorized(resource, method, principal):
            raise AccessDenied(resource, method, principal.username, principal.groups)

    async def validation_chain(self, token: str, resource: str, method: str) -> Principal:
        """Validate ``token`` and authorize the principal for ``method`` on ``resource``."""
        try:
            result = await self.validate(token)
        except InfraError as exc:
            raise InfraError(f"Authentication server error: {exc.message}", exc.details) from exc

        if not result.valid:
            if result.principal.status:
                raise CredentialRejected(f"Unauthorized request: {result.principal.status}")
            raise CredentialRejected("Unauthorized request")

        self.authorize(result.principal, resource, method)
        return result.principal

    def ticket_client(self, username: str, password: str) -> TicketClient:
        """A ticket client for the same provider, used for Basic credentials."""
        registry = self.registry if self.registry is not None else default_registry()
        return TicketClient(
            driver=registry.obtainer(self.driver_name),
            server_addr=self.server_addr,
            username=username,
            password=password,
            service_id=self.client_id,
            metrics=self.metrics,
        )
