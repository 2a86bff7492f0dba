from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional
from uuid import UUID


class FederationPhase(str, Enum):
    """Where a login attempt stands.

    ``CALLBACK_RECEIVED`` is never returned as a result; it only tags the
    request context while the provider's answer is being processed.
    """

    NO_ATTEMPT = "no_attempt"
    AWAITING_PROVIDER_SELECTION = "awaiting_provider_selection"
    REDIRECTED_TO_PROVIDER = "redirected_to_provider"
    CALLBACK_RECEIVED = "callback_received"
    RESOLVED = "resolved"
    FAILED = "failed"


class Resolution(str, Enum):
    """How a resolved login was matched to a local account."""

    EXISTING = "existing"
    MIGRATED_BY_EMAIL = "migrated_by_email"
    MIGRATED_BY_USERNAME = "migrated_by_username"
    NEW_ACCOUNT = "new_account"


@dataclass(frozen=True)
class FederationRequest:
    """The parts of an incoming HTTP request the login flow looks at."""

    uri: str = ""
    query_string: str = ""
    params: Mapping[str, str] = field(default_factory=dict)
    is_http: bool = True

    @property
    def force_login(self) -> bool:
        return "forcelogin" in self.params

    @property
    def has_protocol_response(self) -> bool:
        return "code" in self.params and "state" in self.params


@dataclass
class AuthenticationResult:
    phase: FederationPhase
    user_id: Optional[UUID] = None
    username: Optional[str] = None
    real_name: Optional[str] = None
    email: Optional[str] = None
    resolution: Optional[Resolution] = None
    redirect_url: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.phase == FederationPhase.RESOLVED

    @property
    def is_new_account(self) -> bool:
        return self.resolution == Resolution.NEW_ACCOUNT

    @classmethod
    def not_attempted(cls, reason: str) -> "AuthenticationResult":
        return cls(phase=FederationPhase.NO_ATTEMPT, error_message=reason)

    @classmethod
    def failed(cls, reason: str) -> "AuthenticationResult":
        return cls(phase=FederationPhase.FAILED, error_message=reason)

    @classmethod
    def redirect(cls, phase: FederationPhase, url: str) -> "AuthenticationResult":
        return cls(phase=phase, redirect_url=url)
