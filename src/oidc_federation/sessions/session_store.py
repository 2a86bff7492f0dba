"""Per-browser-session attributes that bridge the two legs of a login.

Everything lives in one Redis hash per browser session so that clearing a
failed login is a single ``DELETE``.
"""

import json
import secrets
from typing import Any, Optional
from uuid import UUID

from oidc_federation.main.logging import get_logger
from oidc_federation.main.request_context import session_fingerprint

logger = get_logger(__name__)

SESSION_KEY_PREFIX = "oidc:session:"

PENDING_ISSUER_KEY = "iss"
STAGED_SUBJECT_KEY = "OpenIDConnectSubject"
STAGED_ISSUER_KEY = "OpenIDConnectIssuer"
ACCESS_TOKEN_KEY = "OpenIDConnectAccessToken"
LOGGED_IN_USER_KEY = "user_id"


class SessionAttributeStore:
    def __init__(self, redis_client, session_id: str, ttl_seconds: int):
        self.redis_client = redis_client
        self.session_id = session_id
        self.ttl_seconds = ttl_seconds

    @property
    def key(self) -> str:
        return f"{SESSION_KEY_PREFIX}{self.session_id}"

    async def get(self, name: str) -> Any:
        raw = await self.redis_client.hget(self.key, name)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(
                "Discarding undecodable session attribute",
                extra={"attribute": name, "session": session_fingerprint(self.session_id)},
            )
            await self.remove(name)
            return None

    async def set(self, name: str, value: Any) -> None:
        await self.redis_client.hset(
            self.key, name, json.dumps(value, separators=(",", ":"), default=str)
        )
        await self.redis_client.expire(self.key, self.ttl_seconds)

    async def remove(self, name: str) -> None:
        await self.redis_client.hdel(self.key, name)

    async def clear(self) -> None:
        await self.redis_client.delete(self.key)

    async def regenerate(self) -> str:
        """Move all attributes to a fresh session id and return the new id.

        The old id stops resolving to anything.
        """
        values = await self.redis_client.hgetall(self.key)
        await self.clear()

        self.session_id = secrets.token_urlsafe(32)
        if values:
            await self.redis_client.hset(self.key, mapping=values)
            await self.redis_client.expire(self.key, self.ttl_seconds)
        return self.session_id

    # Pending issuer: set by the selection page, consumed by the callback
    async def get_pending_issuer(self) -> Optional[str]:
        return await self.get(PENDING_ISSUER_KEY)

    async def set_pending_issuer(self, issuer: str) -> None:
        await self.set(PENDING_ISSUER_KEY, issuer)

    async def remove_pending_issuer(self) -> None:
        await self.remove(PENDING_ISSUER_KEY)

    # Identity staged for an account that has not been created yet
    async def stage_identity(self, subject: str, issuer: str) -> None:
        await self.set(STAGED_SUBJECT_KEY, subject)
        await self.set(STAGED_ISSUER_KEY, issuer)

    async def pop_staged_identity(self) -> tuple[Optional[str], Optional[str]]:
        subject = await self.get(STAGED_SUBJECT_KEY)
        issuer = await self.get(STAGED_ISSUER_KEY)
        await self.remove(STAGED_SUBJECT_KEY)
        await self.remove(STAGED_ISSUER_KEY)
        return subject, issuer

    # Access token claims, replaced on every login
    async def get_access_token(self) -> Optional[dict[str, Any]]:
        claims = await self.get(ACCESS_TOKEN_KEY)
        return claims if isinstance(claims, dict) else None

    async def set_access_token(self, claims: Optional[dict[str, Any]]) -> None:
        if claims is None:
            await self.remove(ACCESS_TOKEN_KEY)
            return
        await self.set(ACCESS_TOKEN_KEY, claims)

    async def get_logged_in_user(self) -> Optional[UUID]:
        value = await self.get(LOGGED_IN_USER_KEY)
        if value is None:
            return None
        try:
            return UUID(value)
        except (TypeError, ValueError):
            return None

    async def set_logged_in_user(self, user_id: UUID) -> None:
        await self.set(LOGGED_IN_USER_KEY, str(user_id))
