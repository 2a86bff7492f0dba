"""Browser-facing endpoints for federated login."""

from typing import Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from oidc_federation.authentication.federation_state import (
    FederationPhase,
    FederationRequest,
)
from oidc_federation.main.config import ISSUER_SELECTION_PATH, LOGIN_PATH, get_settings
from oidc_federation.main.container.container import Container
from oidc_federation.main.exceptions import (
    AuthenticationException,
    ConfigurationException,
    NotFoundException,
)
from oidc_federation.main.logging import get_logger
from oidc_federation.main.request_context import session_fingerprint, set_request_context
from oidc_federation.server.dependencies.container import get_container
from oidc_federation.users.user import UserAdd

logger = get_logger(__name__)

router = APIRouter(tags=["authentication"])


class IssuerInfo(BaseModel):
    issuer: str
    label: str


class IssuerListResponse(BaseModel):
    """Issuers offered on the selection page, plus where to resume afterwards."""

    issuers: list[IssuerInfo]
    uri: Optional[str] = None
    query: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "issuers": [
                    {"issuer": "https://idp.example.org", "label": "Example IdP"},
                    {"issuer": "https://login.partner.org", "label": "Partner"},
                ],
                "uri": "/api/v1/auth/oidc/login",
                "query": "forcelogin=true",
            }
        }
    }


class IssuerSelection(BaseModel):
    issuer: str
    uri: Optional[str] = None
    query: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "issuer": "https://idp.example.org",
                "uri": "/api/v1/auth/oidc/login",
                "query": "",
            }
        }
    }


class LogoutResponse(BaseModel):
    redirect_url: Optional[str] = None


def _with_session_cookie(response, request: Request):
    settings = get_settings()
    secure = bool(settings.public_origin and settings.public_origin.startswith("https"))
    response.set_cookie(
        key=settings.session_cookie_name,
        value=request.state.session_id,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=secure,
        # The provider callback is a cross-site top-level GET
        samesite="lax",
    )
    return response


def _return_to(uri: Optional[str], query: Optional[str]) -> str:
    """Local URL to resume the login at; anything off-site falls back to the login entry."""
    default = f"{get_settings().api_prefix}{LOGIN_PATH}"
    if not uri:
        return default

    parts = urlsplit(uri)
    if parts.scheme or parts.netloc or not uri.startswith("/") or uri.startswith("//"):
        logger.warning("Ignoring non-local return location", extra={"uri": uri})
        return default

    return f"{uri}?{query}" if query else uri


@router.get(
    LOGIN_PATH,
    summary="Federated login entry point",
    description=(
        "Starts a federated login, or completes it when called back by the identity "
        "provider with an authorization code. Responds with a redirect."
    ),
    status_code=302,
)
async def login(
    request: Request,
    container: Container = Depends(get_container()),
):
    settings = get_settings()
    service = container.federation_service()

    result = await service.authenticate(
        FederationRequest(
            uri=request.url.path,
            query_string=request.url.query,
            params=dict(request.query_params),
        )
    )
    set_request_context(phase=result.phase.value)

    if result.phase in (
        FederationPhase.AWAITING_PROVIDER_SELECTION,
        FederationPhase.REDIRECTED_TO_PROVIDER,
    ):
        return _with_session_cookie(
            RedirectResponse(result.redirect_url, status_code=302), request
        )

    if result.phase == FederationPhase.NO_ATTEMPT:
        raise ConfigurationException(result.error_message)

    if not result.authenticated:
        raise AuthenticationException(result.error_message)

    user_id = result.user_id
    if result.is_new_account:
        user_repo = container.user_repo()
        user = await user_repo.add(
            UserAdd(
                username=result.username,
                email=result.email,
                real_name=result.real_name,
            )
        )
        user_id = user.id
        logger.info(
            "Created account for federated login",
            extra={"user_id": str(user_id), "username": user.username},
        )
        if not await service.save_extra_attributes(user_id):
            raise AuthenticationException("Federated identity was lost before account creation")

    changes = await service.populate_groups(user_id)
    if changes.changed:
        logger.info(
            "Synchronized federated groups",
            extra={
                "user_id": str(user_id),
                "added": changes.added,
                "removed": changes.removed,
            },
        )

    # The pre-login session id never carries a logged-in user
    session_store = service.session
    request.state.session_id = await session_store.regenerate()
    set_request_context(
        session=session_fingerprint(request.state.session_id), user_id=str(user_id)
    )
    await session_store.set_logged_in_user(user_id)

    return _with_session_cookie(
        RedirectResponse(settings.post_login_path, status_code=302), request
    )


@router.get(
    ISSUER_SELECTION_PATH,
    response_model=IssuerListResponse,
    summary="List identity providers for the selection page",
)
async def list_issuers(
    uri: Optional[str] = Query(None),
    query: Optional[str] = Query(None),
    container: Container = Depends(get_container()),
) -> IssuerListResponse:
    registry = container.issuer_registry()
    return IssuerListResponse(
        issuers=[IssuerInfo(issuer=issuer, label=label) for issuer, label in registry.choices()],
        uri=uri,
        query=query,
    )


@router.post(
    "/auth/oidc/select-issuer",
    summary="Choose the identity provider for the pending login",
    status_code=303,
)
async def select_issuer(
    selection: IssuerSelection,
    request: Request,
    container: Container = Depends(get_container()),
):
    registry = container.issuer_registry()
    if selection.issuer not in registry:
        raise NotFoundException(f"Unknown issuer {selection.issuer}")

    session_store = container.session_store()
    await session_store.set_pending_issuer(selection.issuer)
    set_request_context(issuer=selection.issuer)
    logger.info("Issuer selected", extra={"issuer": selection.issuer})

    return _with_session_cookie(
        RedirectResponse(_return_to(selection.uri, selection.query), status_code=303),
        request,
    )


@router.post(
    "/auth/oidc/logout",
    response_model=LogoutResponse,
    summary="End the browser session",
)
async def logout(
    container: Container = Depends(get_container()),
):
    session_store = container.session_store()
    service = container.federation_service()

    user_id = await session_store.get_logged_in_user()
    redirect_url = await service.deauthenticate(user_id)

    response = JSONResponse(LogoutResponse(redirect_url=redirect_url).model_dump())
    response.delete_cookie(get_settings().session_cookie_name)
    return response
