from enum import Enum
from typing import Any, Iterator, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PREFERRED_USERNAME_CLAIM = "preferred_username"


class RoleCategory(str, Enum):
    """Role categories an issuer can map into local groups."""

    GLOBAL = "global_roles"
    SCOPED = "scoped_roles"


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class RoleMappingRule(BaseModel):
    """Where to find role names in the access token, and how to prefix them.

    ``property`` is the claim path, descended key by key. A bare string is a
    one-element path. An empty path disables the category.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    claim_path: list[str] = Field(default_factory=list, alias="property")
    prefixes: list[str] = Field(default_factory=list, alias="prefix")

    @field_validator("claim_path", "prefixes", mode="before")
    @classmethod
    def coerce_to_list(cls, v: Any) -> list:
        return [str(item) for item in _as_list(v)]

    @property
    def enabled(self) -> bool:
        return bool(self.claim_path)

    @property
    def effective_prefixes(self) -> list[str]:
        return self.prefixes or [""]


class IssuerConfig(BaseModel):
    """Configuration for one identity provider.

    ``client_id`` and ``client_secret`` are optional so that an incomplete
    entry can be loaded and reported instead of failing at startup.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    client_id: Optional[str] = Field(default=None, alias="clientID")
    client_secret: Optional[str] = Field(default=None, alias="clientsecret")
    scope: list[str] = Field(default_factory=list)
    auth_params: dict[str, Any] = Field(default_factory=dict, alias="authparam")
    proxy: Optional[str] = None
    preferred_username: str = DEFAULT_PREFERRED_USERNAME_CLAIM
    display_name: Optional[str] = None
    global_roles: Optional[RoleMappingRule] = None
    scoped_roles: Optional[RoleMappingRule] = None

    @field_validator("scope", mode="before")
    @classmethod
    def coerce_scope(cls, v: Any) -> list:
        return _as_list(v)

    @field_validator("auth_params", mode="before")
    @classmethod
    def ignore_non_mapping_auth_params(cls, v: Any) -> dict:
        # Anything but a mapping is dropped, matching how extra params are merged
        return dict(v) if isinstance(v, Mapping) else {}

    @property
    def is_usable(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)

    def role_rule(self, category: RoleCategory) -> Optional[RoleMappingRule]:
        return getattr(self, category.value)


class IssuerRegistry:
    """Read-only view over the configured identity providers."""

    def __init__(self, issuers: Mapping[str, IssuerConfig]):
        self._issuers = dict(issuers)

    @classmethod
    def from_settings(cls, settings) -> "IssuerRegistry":
        return cls(settings.oidc_issuers)

    def __len__(self) -> int:
        return len(self._issuers)

    def __contains__(self, issuer: object) -> bool:
        return issuer in self._issuers

    def __iter__(self) -> Iterator[str]:
        return iter(self._issuers)

    def get(self, issuer: Optional[str]) -> Optional[IssuerConfig]:
        if issuer is None:
            return None
        return self._issuers.get(issuer)

    def only(self) -> tuple[str, IssuerConfig]:
        """The single configured issuer. Only valid when exactly one exists."""
        if len(self._issuers) != 1:
            raise ValueError(
                f"Expected exactly one configured issuer, found {len(self._issuers)}"
            )
        return next(iter(self._issuers.items()))

    def choices(self) -> list[tuple[str, str]]:
        """(issuer, label) pairs for the selection page, in configuration order."""
        return [
            (issuer, config.display_name or issuer)
            for issuer, config in self._issuers.items()
        ]
