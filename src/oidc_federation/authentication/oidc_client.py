"""Authorization-code client for a single identity provider.

One instance is built per login attempt. The first call to ``authenticate``
sends the browser to the provider by raising ``RedirectRequired``; the call
made from the provider's callback exchanges the code and validates the ID
token.
"""

import secrets
from typing import Any, Iterable, Mapping, NoReturn, Optional, Protocol
from urllib.parse import urlencode

import jwt

from oidc_federation.authentication.federation_state import FederationRequest
from oidc_federation.main.aiohttp_client import aiohttp_client
from oidc_federation.main.exceptions import OidcProtocolError, RedirectRequired
from oidc_federation.main.logging import get_logger
from oidc_federation.sessions.session_store import SessionAttributeStore

logger = get_logger(__name__)

STATE_SESSION_KEY = "openid_connect_state"
NONCE_SESSION_KEY = "openid_connect_nonce"

DEFAULT_SIGNING_ALGORITHMS = ["RS256"]


class ProviderClient(Protocol):
    def add_auth_param(self, params: Mapping[str, Any]) -> None: ...

    def add_scope(self, scope: str | Iterable[str]) -> None: ...

    def set_http_proxy(self, proxy: str) -> None: ...

    async def authenticate(
        self, request: FederationRequest, session: SessionAttributeStore
    ) -> bool: ...

    async def request_user_info(self, attribute: str) -> Any: ...

    def get_provider_url(self) -> str: ...

    def get_access_token_payload(self) -> Optional[dict[str, Any]]: ...


class ProviderClientFactory(Protocol):
    def __call__(
        self, provider_url: str, client_id: str, client_secret: str
    ) -> ProviderClient: ...


class OpenIDConnectClient:
    def __init__(
        self,
        provider_url: str,
        client_id: str,
        client_secret: str,
        *,
        redirect_uri: str,
        clock_leeway_seconds: int = 0,
        http_client=aiohttp_client,
    ):
        self.provider_url = provider_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.clock_leeway_seconds = clock_leeway_seconds
        self.http_client = http_client

        self.auth_params: dict[str, Any] = {}
        self.scopes: list[str] = []
        self.http_proxy: Optional[str] = None

        self._discovery: Optional[dict[str, Any]] = None
        self._id_token_claims: dict[str, Any] = {}
        self._access_token: Optional[str] = None
        self._user_info: Optional[dict[str, Any]] = None

    def add_auth_param(self, params: Mapping[str, Any]) -> None:
        self.auth_params.update(params)

    def add_scope(self, scope: str | Iterable[str]) -> None:
        scopes = [scope] if isinstance(scope, str) else list(scope)
        for item in scopes:
            if item and item not in self.scopes:
                self.scopes.append(item)

    def set_http_proxy(self, proxy: str) -> None:
        self.http_proxy = proxy

    def get_provider_url(self) -> str:
        return self.provider_url

    async def _request_json(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        async with self.http_client().request(
            method, url, proxy=self.http_proxy, **kwargs
        ) as resp:
            if resp.status != 200:
                try:
                    error_body = await resp.json()
                except Exception:
                    error_body = await resp.text()
                logger.error(
                    f"Identity provider request failed: HTTP {resp.status}",
                    extra={"url": url, "http_status": resp.status, "error_response": error_body},
                )
                raise OidcProtocolError(f"{method} {url} returned HTTP {resp.status}")
            return await resp.json()

    async def _discover(self) -> dict[str, Any]:
        if self._discovery is None:
            discovery_url = (
                self.provider_url.rstrip("/") + "/.well-known/openid-configuration"
            )
            self._discovery = await self._request_json("GET", discovery_url)
        return self._discovery

    async def _endpoint(self, name: str) -> str:
        endpoint = (await self._discover()).get(name)
        if not endpoint:
            raise OidcProtocolError(f"Provider discovery document has no {name}")
        return endpoint

    async def authenticate(
        self, request: FederationRequest, session: SessionAttributeStore
    ) -> bool:
        params = request.params

        if "error" in params:
            logger.warning(
                "Identity provider returned an error",
                extra={
                    "provider_error": params.get("error"),
                    "provider_error_description": params.get("error_description"),
                },
            )
            await session.remove(STATE_SESSION_KEY)
            await session.remove(NONCE_SESSION_KEY)
            return False

        if "code" in params:
            return await self._complete_authorization(params, session)

        await self._begin_authorization(session)

    async def _begin_authorization(self, session: SessionAttributeStore) -> NoReturn:
        authorization_endpoint = await self._endpoint("authorization_endpoint")

        state = secrets.token_hex(16)
        nonce = secrets.token_hex(16)
        await session.set(STATE_SESSION_KEY, state)
        await session.set(NONCE_SESSION_KEY, nonce)

        scopes = ["openid"] + [scope for scope in self.scopes if scope != "openid"]
        query = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
            "nonce": nonce,
        }
        query.update(self.auth_params)

        raise RedirectRequired(f"{authorization_endpoint}?{urlencode(query)}")

    async def _complete_authorization(
        self, params: Mapping[str, str], session: SessionAttributeStore
    ) -> bool:
        expected_state = await session.get(STATE_SESSION_KEY)
        expected_nonce = await session.get(NONCE_SESSION_KEY)
        await session.remove(STATE_SESSION_KEY)
        await session.remove(NONCE_SESSION_KEY)

        if not expected_state or params.get("state") != expected_state:
            raise OidcProtocolError("Authorization state mismatch")

        token_response = await self._request_json(
            "POST",
            await self._endpoint("token_endpoint"),
            data={
                "grant_type": "authorization_code",
                "code": params["code"],
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )

        id_token = token_response.get("id_token")
        self._access_token = token_response.get("access_token")
        if not id_token or not self._access_token:
            raise OidcProtocolError("Token response lacks id_token or access_token")

        self._id_token_claims = await self._validate_id_token(id_token)

        if expected_nonce and self._id_token_claims.get("nonce") != expected_nonce:
            raise OidcProtocolError("ID token nonce mismatch")

        return True

    async def _signing_key(self, id_token: str, algorithm: str):
        if algorithm.startswith("HS"):
            return self.client_secret

        jwks = await self._request_json("GET", await self._endpoint("jwks_uri"))
        kid = jwt.get_unverified_header(id_token).get("kid")

        keys = [
            key
            for key in jwt.PyJWKSet.from_dict(jwks).keys
            if kid is None or key.key_id == kid
        ]
        if not keys:
            raise OidcProtocolError("No signing key in provider JWKS matches the ID token")
        return keys[0].key

    async def _validate_id_token(self, id_token: str) -> dict[str, Any]:
        discovery = await self._discover()
        algorithms = (
            discovery.get("id_token_signing_alg_values_supported")
            or DEFAULT_SIGNING_ALGORITHMS
        )
        header_alg = jwt.get_unverified_header(id_token).get("alg", "")
        if header_alg not in algorithms:
            raise OidcProtocolError(f"Unexpected ID token algorithm {header_alg!r}")

        try:
            return jwt.decode(
                id_token,
                key=await self._signing_key(id_token, header_alg),
                algorithms=algorithms,
                audience=self.client_id,
                issuer=discovery.get("issuer") or self.provider_url,
                leeway=self.clock_leeway_seconds,
            )
        except jwt.PyJWTError as e:
            logger.error(
                "ID token validation failed",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise OidcProtocolError("ID token validation failed") from e

    async def request_user_info(self, attribute: str) -> Any:
        if attribute == "sub" and "sub" in self._id_token_claims:
            return self._id_token_claims["sub"]

        if self._user_info is None:
            self._user_info = {}
            userinfo_endpoint = (await self._discover()).get("userinfo_endpoint")
            if userinfo_endpoint and self._access_token:
                self._user_info = await self._request_json(
                    "GET",
                    userinfo_endpoint,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                )

        if attribute in self._user_info:
            return self._user_info[attribute]
        return self._id_token_claims.get(attribute)

    def get_access_token_payload(self) -> Optional[dict[str, Any]]:
        if not self._access_token:
            return None
        try:
            return jwt.decode(self._access_token, options={"verify_signature": False})
        except jwt.DecodeError:
            # Opaque (non-JWT) access tokens carry no readable claims
            return None


def build_client_factory(
    *, redirect_uri: str, clock_leeway_seconds: int = 0
) -> ProviderClientFactory:
    def factory(provider_url: str, client_id: str, client_secret: str) -> OpenIDConnectClient:
        return OpenIDConnectClient(
            provider_url,
            client_id,
            client_secret,
            redirect_uri=redirect_uri,
            clock_leeway_seconds=clock_leeway_seconds,
        )

    return factory
