"""
Auth service: token verification over HTTP.
"""

from typing import Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, Request
from pydantic import BaseModel

from service_authz.app.rules import Principal
from shared.base_service import BaseService
from shared.errors import AuthLayerException, ConfigError
from shared.logging import fingerprint
from shared.metrics import MetricsCollector
from .config import AuthSettings, get_settings
from .drivers.registry import DriverRegistry, default_registry
from .obtainer.client import TicketClient, TicketState
from .validation.gate import ValidationGate
from .validation.validator import Validator


class TokenVerificationRequest(BaseModel):
    """Request model for token verification."""
    token: str


class PrincipalInfo(BaseModel):
    """Principal as returned by the API."""
    username: str
    groups: List[str]
    client_id: str
    roles: List[str]

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalInfo":
        return cls(
            username=principal.username,
            groups=sorted(principal.groups),
            client_id=principal.client_id,
            roles=sorted(principal.roles),
        )


class TokenVerificationResponse(BaseModel):
    """Response model for token verification."""
    valid: bool
    status: str = ""
    principal: Optional[PrincipalInfo] = None


class AuthService(BaseService):
    """Auth service implementation."""

    def __init__(self, settings: Optional[AuthSettings] = None, registry: Optional[DriverRegistry] = None,
                 http_client: Optional[httpx.AsyncClient] = None, metrics: Optional[MetricsCollector] = None):
        settings = settings if settings is not None else get_settings()
        super().__init__(settings.service_name, settings, metrics)
        self.registry = registry if registry is not None else default_registry(http_client)

        self.validator: Optional[Validator] = None
        self.gate: Optional[ValidationGate] = None
        if settings.validator.enabled:
            self.validator = Validator.from_conf(settings.validator, self.registry, self.metrics)
            self.gate = ValidationGate(self.validator)

        self.ticket_client: Optional[TicketClient] = None
        if settings.obtainer.enabled:
            self.ticket_client = TicketClient.from_conf(settings.obtainer, self.registry, self.metrics)

        self._setup_auth_routes()

    def _setup_auth_routes(self):
        """Set up auth-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": self.service_name,
                "message": "Auth middleware - token validation and authorization",
                "version": "1.0.0"
            }

        @self.app.post("/auth/verify", response_model=TokenVerificationResponse)
        async def verify_token(request: TokenVerificationRequest):
            """Validate a token without authorizing it against a resource."""
            if self.validator is None:
                raise ConfigError("token validation is not enabled")

            result = await self.validator.validate(request.token)
            if not result.valid:
                self.logger.info("Token rejected", token=fingerprint(request.token),
                                 status=result.principal.status)
                return TokenVerificationResponse(valid=False, status=result.principal.status)

            return TokenVerificationResponse(
                valid=True,
                principal=PrincipalInfo.from_principal(result.principal)
            )

        if self.gate is None:
            return

        @self.app.get("/auth/whoami", response_model=PrincipalInfo, dependencies=[Depends(self.gate)])
        async def whoami(request: Request):
            """The principal the gate attached to this request."""
            return PrincipalInfo.from_principal(request.state.principal)

    def _check_dependencies(self) -> Dict[str, str]:
        """Report which drivers are configured."""
        dependencies = {}
        if self.validator is not None:
            dependencies["validator"] = self.validator.driver_name
        if self.ticket_client is not None:
            dependencies["obtainer"] = self.ticket_client.state.value
        return dependencies

    async def _shutdown(self) -> None:
        """Expire the service's own session credential at the provider."""
        if self.ticket_client is None or self.ticket_client.state is not TicketState.OBTAINED:
            return
        try:
            await self.ticket_client.delete()
        except AuthLayerException as exc:
            self.logger.warning("Unable to delete ticket on shutdown", error=exc.message)


def create_app(settings: Optional[AuthSettings] = None, registry: Optional[DriverRegistry] = None,
               http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Create FastAPI application."""
    service = AuthService(settings, registry, http_client)
    return service.app


if __name__ == "__main__":
    service = AuthService()
    service.run()
