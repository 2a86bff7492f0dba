import secrets

from dependency_injector import providers
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from oidc_federation.database.database import get_session_with_transaction
from oidc_federation.main.config import get_settings
from oidc_federation.main.container.container import Container
from oidc_federation.main.request_context import session_fingerprint, set_request_context


def get_session_id(request: Request) -> str:
    """Browser session id from the session cookie, or a fresh one."""
    session_id = request.cookies.get(get_settings().session_cookie_name)
    if not session_id:
        session_id = secrets.token_urlsafe(32)

    request.state.session_id = session_id
    set_request_context(session=session_fingerprint(session_id))
    return session_id


def get_container():
    async def _get_container(
        request: Request,
        session: AsyncSession = Depends(get_session_with_transaction),
        session_id: str = Depends(get_session_id),
    ) -> Container:
        return Container(
            settings=providers.Object(get_settings()),
            session=providers.Object(session),
            redis_client=providers.Object(request.app.state.redis),
            session_id=providers.Object(session_id),
        )

    return _get_container
