from typing import Optional, Protocol
from uuid import UUID

from oidc_federation.main.exceptions import UsernameAllocationError
from oidc_federation.main.logging import get_logger
from oidc_federation.users.username import normalize_username

logger = get_logger(__name__)

FALLBACK_USERNAME = "User"


class UsernameLookup(Protocol):
    async def get_id_by_username(self, username: str) -> Optional[UUID]: ...


def email_local_part(email: Optional[str]) -> Optional[str]:
    """The part before the first ``@``, or ``None`` if there is no usable one."""
    if not email:
        return None
    pos = email.find("@")
    if pos <= 0:
        return None
    return email[:pos]


class UsernameAllocator:
    """Picks a free local username for a newly federated identity.

    Candidates are tried in order: preferred username, display name (when
    ``use_real_name`` is on) and the local part of the email address (when
    ``use_email_name`` is on). The first non-empty candidate is normalized and,
    if taken, suffixed with 1, 2, 3, ... until a free name is found.
    """

    def __init__(
        self,
        user_repo: UsernameLookup,
        *,
        use_real_name: bool = False,
        use_email_name: bool = False,
    ):
        self.user_repo = user_repo
        self.use_real_name = use_real_name
        self.use_email_name = use_email_name

    def candidate(
        self,
        preferred_username: Optional[str],
        real_name: Optional[str],
        email: Optional[str],
    ) -> Optional[str]:
        if preferred_username:
            return preferred_username
        if real_name and self.use_real_name:
            return real_name
        if self.use_email_name:
            local_part = email_local_part(email)
            if local_part:
                return local_part
        return None

    def can_allocate(
        self,
        preferred_username: Optional[str],
        real_name: Optional[str],
        email: Optional[str],
    ) -> bool:
        return self.candidate(preferred_username, real_name, email) is not None

    async def _is_taken(self, username: str) -> bool:
        return await self.user_repo.get_id_by_username(username) is not None

    async def allocate(
        self,
        preferred_username: Optional[str],
        real_name: Optional[str],
        email: Optional[str],
        subject: Optional[str] = None,
    ) -> str:
        name = self.candidate(preferred_username, real_name, email)
        if name is None:
            raise UsernameAllocationError(
                "No username candidate: the provider sent no preferred username "
                "and no fallback is enabled"
            )

        base = normalize_username(name)
        if base is None:
            logger.info(
                "Username candidate is not a valid account name, using fallback",
                extra={"subject": subject, "fallback": FALLBACK_USERNAME},
            )
            base = FALLBACK_USERNAME
        elif not await self._is_taken(base):
            return base

        count = 1
        while await self._is_taken(f"{base}{count}"):
            count += 1

        return f"{base}{count}"
