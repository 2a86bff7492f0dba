"""Two-leg federated login.

A login starts on the login entry point, may detour through the issuer
selection page, leaves for the identity provider, and comes back to the same
entry point with an authorization code. Only the browser session carries
state between those requests: the pending issuer, the provider client's
state/nonce, and after success the access token claims plus any identity
staged for an account that still has to be created.

Phases::

    NO_ATTEMPT -> AWAITING_PROVIDER_SELECTION   (several issuers, none chosen)
    NO_ATTEMPT -> REDIRECTED_TO_PROVIDER        (issuer known, browser sent away)
    REDIRECTED_TO_PROVIDER -> CALLBACK_RECEIVED -> RESOLVED | FAILED

Any failure clears the whole session so the next attempt starts from
NO_ATTEMPT.
"""

from typing import Any, Optional
from urllib.parse import urlencode
from uuid import UUID

from oidc_federation.authentication.federation_state import (
    AuthenticationResult,
    FederationPhase,
    FederationRequest,
    Resolution,
)
from oidc_federation.authentication.identity_resolver import IdentityResolver
from oidc_federation.authentication.oidc_client import ProviderClient, ProviderClientFactory
from oidc_federation.issuers.issuer import IssuerConfig, IssuerRegistry
from oidc_federation.main.exceptions import OidcProtocolError, RedirectRequired
from oidc_federation.main.logging import get_logger
from oidc_federation.main.request_context import set_request_context
from oidc_federation.roles.group_role_mapper import GroupChanges, GroupRoleMapper
from oidc_federation.sessions.session_store import SessionAttributeStore
from oidc_federation.users.user import AccountRef, FederatedIdentity
from oidc_federation.users.username_allocator import UsernameAllocator

logger = get_logger(__name__)


def _claim_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _append_query(url: str, params: dict[str, str]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


class FederationService:
    def __init__(
        self,
        *,
        issuers: IssuerRegistry,
        session_store: SessionAttributeStore,
        identity_resolver: IdentityResolver,
        username_allocator: UsernameAllocator,
        group_role_mapper: GroupRoleMapper,
        client_factory: ProviderClientFactory,
        login_url: str,
        issuer_selection_url: str,
        migrate_by_email: bool = False,
        migrate_by_username: bool = False,
        force_logout: bool = False,
    ):
        self.issuers = issuers
        self.session = session_store
        self.identity_resolver = identity_resolver
        self.username_allocator = username_allocator
        self.group_role_mapper = group_role_mapper
        self.client_factory = client_factory
        self.login_url = login_url
        self.issuer_selection_url = issuer_selection_url
        self.migrate_by_email = migrate_by_email
        self.migrate_by_username = migrate_by_username
        self.force_logout = force_logout

        # Identity of the login handled by this instance, if it got that far
        self.subject: Optional[str] = None
        self.issuer: Optional[str] = None

    async def authenticate(self, request: FederationRequest) -> AuthenticationResult:
        """Run one step of the login flow for ``request``.

        Never raises: configuration problems, stale sessions and provider
        failures all come back as a non-authenticated result, with the detail
        in the logs.
        """
        if not request.is_http:
            logger.debug("Not an HTTP request, federated login unavailable")
            return AuthenticationResult.not_attempted("not an HTTP request")

        if len(self.issuers) == 0:
            logger.debug("No identity providers configured")
            return AuthenticationResult.not_attempted("no identity providers configured")

        try:
            return await self._authenticate(request)
        except Exception as e:
            logger.error(
                "Federated login failed",
                exc_info=True,
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            await self._reset()
            return AuthenticationResult.failed(str(e) or type(e).__name__)

    async def _reset(self) -> None:
        self.subject = None
        self.issuer = None
        try:
            await self.session.clear()
        except Exception as exc:
            logger.error("Failed to clear login session", extra={"error": str(exc)})

    def _selection_redirect(self, request: FederationRequest) -> AuthenticationResult:
        url = _append_query(
            self.issuer_selection_url,
            {"uri": request.uri, "query": request.query_string},
        )
        return AuthenticationResult.redirect(
            FederationPhase.AWAITING_PROVIDER_SELECTION, url
        )

    async def _select_issuer(
        self, request: FederationRequest
    ) -> tuple[str, IssuerConfig] | AuthenticationResult:
        pending = await self.session.get_pending_issuer()

        if pending is not None:
            if request.has_protocol_response:
                await self.session.remove_pending_issuer()

            config = self.issuers.get(pending)
            if config is None:
                logger.warning(
                    "Pending issuer is not configured", extra={"issuer": pending}
                )
                await self._reset()
                return AuthenticationResult.failed(f"issuer {pending} is not configured")

            if not config.is_usable:
                logger.error(
                    "client_id or client_secret not set for issuer",
                    extra={"issuer": pending},
                )
                return self._selection_redirect(request)

            return pending, config

        if len(self.issuers) > 1:
            return self._selection_redirect(request)

        issuer, config = self.issuers.only()
        if not config.is_usable:
            logger.error(
                "client_id or client_secret not set for issuer", extra={"issuer": issuer}
            )
            await self._reset()
            return AuthenticationResult.failed(f"issuer {issuer} is missing client credentials")

        return issuer, config

    def _build_client(
        self, request: FederationRequest, issuer: str, config: IssuerConfig
    ) -> ProviderClient:
        client = self.client_factory(issuer, config.client_id, config.client_secret)
        if request.force_login:
            client.add_auth_param({"prompt": "login"})
        if config.auth_params:
            client.add_auth_param(config.auth_params)
        if config.scope:
            client.add_scope(config.scope)
        if config.proxy:
            client.set_http_proxy(config.proxy)
        return client

    async def _authenticate(self, request: FederationRequest) -> AuthenticationResult:
        selection = await self._select_issuer(request)
        if isinstance(selection, AuthenticationResult):
            return selection

        issuer, config = selection
        set_request_context(issuer=issuer)
        if request.has_protocol_response:
            set_request_context(phase=FederationPhase.CALLBACK_RECEIVED.value)
            logger.info("Callback received from identity provider", extra={"issuer": issuer})

        client = self._build_client(request, issuer, config)
        try:
            authenticated = await client.authenticate(request, self.session)
        except RedirectRequired as redirect:
            await self.session.set_pending_issuer(issuer)
            logger.info("Redirecting to identity provider", extra={"issuer": issuer})
            return AuthenticationResult.redirect(
                FederationPhase.REDIRECTED_TO_PROVIDER, redirect.url
            )

        if not authenticated:
            logger.info("Identity provider did not authenticate the user")
            await self._reset()
            return AuthenticationResult.failed("identity provider rejected the login")

        return await self._resolve(client, config)

    async def _resolve(
        self, client: ProviderClient, config: IssuerConfig
    ) -> AuthenticationResult:
        preferred_username = _claim_str(
            await client.request_user_info(config.preferred_username)
        )
        real_name = _claim_str(await client.request_user_info("name"))
        email = _claim_str(await client.request_user_info("email"))
        subject = _claim_str(await client.request_user_info("sub"))
        issuer = client.get_provider_url()

        if not subject:
            raise OidcProtocolError("Identity provider did not return a subject")

        self.subject = subject
        self.issuer = issuer

        await self.session.set_access_token(client.get_access_token_payload())

        def resolved(account: AccountRef, resolution: Resolution) -> AuthenticationResult:
            logger.info(
                "Federated login resolved",
                extra={"user_id": str(account.id), "resolution": resolution.value},
            )
            return AuthenticationResult(
                phase=FederationPhase.RESOLVED,
                user_id=account.id,
                username=account.username,
                real_name=real_name,
                email=email,
                resolution=resolution,
            )

        account = await self.identity_resolver.find_by_subject_issuer(subject, issuer)
        if account is not None:
            return resolved(account, Resolution.EXISTING)

        # Email migration shadows username migration when both are switched on
        if self.migrate_by_email:
            account = await self.identity_resolver.find_unmigrated_by_email(email)
            if account is not None:
                await self.identity_resolver.attach(account.id, subject, issuer)
                return resolved(account, Resolution.MIGRATED_BY_EMAIL)
        elif self.migrate_by_username:
            account = await self.identity_resolver.find_unmigrated_by_username(
                preferred_username
            )
            if account is not None:
                await self.identity_resolver.attach(account.id, subject, issuer)
                return resolved(account, Resolution.MIGRATED_BY_USERNAME)

        if not self.username_allocator.can_allocate(preferred_username, real_name, email):
            logger.error(
                "Cannot derive a username: no preferred username and no fallback enabled",
                extra={"issuer": issuer},
            )
            await self._reset()
            return AuthenticationResult.failed("no username could be derived")

        username = await self.username_allocator.allocate(
            preferred_username, real_name, email, subject
        )
        await self.session.stage_identity(subject, issuer)

        logger.info("Federated login needs a new account", extra={"username": username})
        return AuthenticationResult(
            phase=FederationPhase.RESOLVED,
            username=username,
            real_name=real_name,
            email=email,
            resolution=Resolution.NEW_ACCOUNT,
        )

    async def save_extra_attributes(
        self, user_id: UUID, identity: Optional[FederatedIdentity] = None
    ) -> bool:
        """Bind the identity of this login to a freshly created account.

        Uses ``identity`` if given, else the identity resolved in this
        instance, else the one staged in the session. Staged values are
        consumed either way.
        """
        staged_subject, staged_issuer = await self.session.pop_staged_identity()

        if identity is not None:
            subject, issuer = identity.subject, identity.issuer
        else:
            subject = self.subject or staged_subject
            issuer = self.issuer or staged_issuer

        if not subject or not issuer:
            logger.error(
                "No federated identity available to attach", extra={"user_id": str(user_id)}
            )
            return False

        await self.identity_resolver.attach(user_id, subject, issuer)
        return True

    async def populate_groups(self, user_id: UUID) -> GroupChanges:
        """Sync ``oidc_`` groups of ``user_id`` from the session's access token.

        Claims that belong to another account, or to an issuer that is no
        longer configured, are ignored.
        """
        claims = await self.session.get_access_token()
        if claims is None:
            logger.debug("No access token found for user", extra={"user_id": str(user_id)})
            return GroupChanges()

        owner = await self.identity_resolver.find_by_subject_issuer(
            _claim_str(claims.get("sub")), _claim_str(claims.get("iss"))
        )
        if owner is None or owner.id != user_id:
            logger.debug(
                "Access token in session belongs to another account",
                extra={"user_id": str(user_id)},
            )
            return GroupChanges()

        config = self.issuers.get(_claim_str(claims.get("iss")))
        if config is None:
            logger.debug(
                "No config found for access token issuer",
                extra={"issuer": claims.get("iss")},
            )
            return GroupChanges()

        return await self.group_role_mapper.compute_and_apply_groups(
            user_id, claims, config
        )

    async def deauthenticate(self, user_id: Optional[UUID] = None) -> Optional[str]:
        """End the browser session; returns where to send the browser, if anywhere."""
        logger.info(
            "Logging out", extra={"user_id": str(user_id) if user_id else None}
        )
        await self.session.clear()

        if self.force_logout:
            return _append_query(self.login_url, {"forcelogin": "true"})
        return None
