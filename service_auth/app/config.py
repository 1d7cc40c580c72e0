"""
Configuration for the auth service.

Settings come from ``AUTH_*`` environment variables (nested fields use
``__``, e.g. ``AUTH_VALIDATOR__PROVIDER=keycloak``) or a ``.env`` file.
Authorization rules can be kept in a separate YAML/JSON file named by
``AUTH_AUTHZ_RULES_FILE``.
"""

from functools import lru_cache
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from service_authz.app.rules.models import AuthzConf
from shared.config import BaseConfig, load_structured_file
from shared.errors import ConfigError


def _check_provider(provider: str, provider_url: str, client_id: str) -> None:
    if not provider:
        raise ConfigError("auth provider name is not specified")
    if not provider_url:
        raise ConfigError("auth provider URL is not specified")
    parsed = urlparse(provider_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"auth provider URL is invalid: {provider_url}")
    if not client_id:
        raise ConfigError("auth client ID is not specified")


class ObtainerConf(BaseModel):
    """Outbound credentials: who we are when calling other services."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = False
    provider: str = ""
    provider_url: str = Field(default="", alias="providerURL")
    client_id: str = Field(default="", alias="clientID")
    username: str = ""
    password: str = Field(default="", repr=False)

    def check(self) -> None:
        _check_provider(self.provider, self.provider_url, self.client_id)
        if not self.username:
            raise ConfigError("auth username is not specified")


class ValidatorConf(BaseModel):
    """Inbound validation: which provider vouches for callers, and the rules."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = False
    provider: str = ""
    provider_url: str = Field(default="", alias="providerURL")
    client_id: str = Field(default="", alias="clientID")
    basic_enabled: bool = Field(default=False, alias="basicEnabled")
    authz: AuthzConf = Field(default_factory=AuthzConf, alias="authorization")

    def check(self) -> None:
        _check_provider(self.provider, self.provider_url, self.client_id)
        if self.authz.enabled:
            try:
                self.authz.check()
            except ConfigError as exc:
                raise ConfigError(f"authz: {exc.message}") from exc


class AuthSettings(BaseConfig):
    """Auth service settings."""

    validator: ValidatorConf = Field(default_factory=ValidatorConf)
    obtainer: ObtainerConf = Field(default_factory=ObtainerConf)
    authz_rules_file: Optional[str] = None


def load_settings(**overrides: Any) -> AuthSettings:
    """Load, merge the rules file and validate the settings."""
    settings = AuthSettings(**overrides)

    if settings.authz_rules_file:
        data = load_structured_file(settings.authz_rules_file)
        authz = AuthzConf.model_validate(data.get("authorization", data))
        settings = settings.model_copy(
            update={"validator": settings.validator.model_copy(update={"authz": authz})}
        )

    if settings.validator.enabled:
        settings.validator.check()
    if settings.obtainer.enabled:
        settings.obtainer.check()
    return settings


@lru_cache()
def get_settings() -> AuthSettings:
    """Process-wide settings, loaded once."""
    return load_settings()
