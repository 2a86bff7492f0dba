from typing import Optional
from uuid import UUID

from oidc_federation.main.logging import get_logger
from oidc_federation.users.user import AccountRef
from oidc_federation.users.user_repo import UsersRepository
from oidc_federation.users.username import normalize_username

logger = get_logger(__name__)


class IdentityResolver:
    """Maps a remote identity onto a local account.

    Lookups are read-only. ``attach`` is the one write: it binds a subject and
    issuer to an account, which is what turns a legacy account into a
    federated one.
    """

    def __init__(self, user_repo: UsersRepository):
        self.user_repo = user_repo

    async def find_by_subject_issuer(
        self, subject: Optional[str], issuer: Optional[str]
    ) -> Optional[AccountRef]:
        if subject is None or issuer is None:
            return None

        user = await self.user_repo.find_by_subject_issuer(subject, issuer)
        return user.as_ref() if user else None

    async def find_unmigrated_by_username(
        self, username: Optional[str]
    ) -> Optional[AccountRef]:
        normalized = normalize_username(username)
        if normalized is None:
            return None

        user = await self.user_repo.find_unmigrated_by_username(normalized)
        return user.as_ref() if user else None

    async def find_unmigrated_by_email(
        self, email: Optional[str]
    ) -> Optional[AccountRef]:
        if not email:
            return None

        logger.debug("Matching legacy account by email")
        user = await self.user_repo.find_unmigrated_by_email(email)
        return user.as_ref() if user else None

    async def attach(self, user_id: UUID, subject: str, issuer: str) -> None:
        """Persist the federated identity on ``user_id``, overwriting any previous one."""
        await self.user_repo.update_federation_identity(user_id, subject, issuer)
        logger.info(
            "Bound federated identity to account",
            extra={"user_id": str(user_id), "issuer": issuer},
        )
