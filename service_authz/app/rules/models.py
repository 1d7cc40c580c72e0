"""
Rule data models for the authorization engine.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from shared.errors import ConfigError

ANONYMOUS_GROUP = "anonymous"


def _frozen(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        return frozenset([values])
    return frozenset(values)


@dataclass(frozen=True)
class Principal:
    """Authenticated identity derived from a validated token.

    ``status`` is only set when validation soft-fails and carries the
    human-readable reason.
    """
    username: str = ""
    groups: FrozenSet[str] = field(default_factory=frozenset)
    client_id: str = ""
    roles: FrozenSet[str] = field(default_factory=frozenset)
    status: str = ""

    def __post_init__(self):
        object.__setattr__(self, "groups", _frozen(self.groups))
        object.__setattr__(self, "roles", _frozen(self.roles))

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls(groups=frozenset([ANONYMOUS_GROUP]))

    @classmethod
    def rejected(cls, status: str) -> "Principal":
        return cls(status=status)

    @property
    def is_anonymous(self) -> bool:
        return not self.username and not self.client_id and self.groups <= {ANONYMOUS_GROUP}


class Rule(BaseModel):
    """Authorization rule.

    A rule matches when one of the request path prefixes is in ``paths``, the
    method is in ``methods`` and the principal shows up in at least one of
    ``users``, ``groups``, ``roles`` or ``clients``. Any entry of
    ``deny_path_substrings`` found in the request path vetoes the rule.
    """

    model_config = ConfigDict(frozen=True)

    paths: FrozenSet[str] = Field(
        default_factory=frozenset,
        validation_alias=AliasChoices("paths", "resources"),
    )
    methods: FrozenSet[str] = Field(default_factory=frozenset)
    users: FrozenSet[str] = Field(default_factory=frozenset)
    groups: FrozenSet[str] = Field(default_factory=frozenset)
    roles: FrozenSet[str] = Field(default_factory=frozenset)
    clients: FrozenSet[str] = Field(default_factory=frozenset)
    deny_path_substrings: Tuple[str, ...] = Field(
        default_factory=tuple,
        validation_alias=AliasChoices("deny_path_substrings", "denyPathSubstrings"),
    )

    @field_validator("methods", mode="before")
    @classmethod
    def _upper_methods(cls, value):
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(method.upper() for method in value)

    @field_validator("deny_path_substrings", mode="after")
    @classmethod
    def _drop_empty_substrings(cls, value):
        # An empty substring would veto every path
        return tuple(substring for substring in value if substring)

    def check(self, index: int = 0) -> None:
        """Raise ConfigError when the rule cannot ever match."""
        if not self.paths:
            raise ConfigError(f"no resources in authorization rule #{index}")
        if not self.methods:
            raise ConfigError(f"no methods in authorization rule #{index}")
        if not (self.users or self.groups or self.roles or self.clients):
            raise ConfigError(
                f"at least one user, group, role, or client must be set in authorization rule #{index}"
            )


class AuthzConf(BaseModel):
    """Authorization configuration.

    ``enabled=False`` bypasses the engine entirely.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    rules: Tuple[Rule, ...] = Field(default_factory=tuple)

    def check(self) -> None:
        """Validate every rule in order."""
        for index, rule in enumerate(self.rules):
            rule.check(index)


@dataclass(frozen=True)
class EvaluationResult:
    """Result of rule evaluation."""
    allowed: bool
    reason: str
    rule_index: Optional[int] = None
    matched_prefix: Optional[str] = None
