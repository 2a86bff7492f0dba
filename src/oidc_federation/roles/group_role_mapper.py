from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol
from uuid import UUID

from oidc_federation.issuers.issuer import IssuerConfig, RoleCategory
from oidc_federation.main.logging import get_logger
from oidc_federation.roles.claim_path import resolve_claim_path

logger = get_logger(__name__)

# Groups carrying this prefix are owned by federation and may be added or
# removed here. Every other group belongs to local administrators.
OIDC_GROUP_PREFIX = "oidc_"


class GroupStore(Protocol):
    async def get_groups(self, user_id: UUID) -> set[str]: ...

    async def add_group(self, user_id: UUID, group: str) -> None: ...

    async def remove_group(self, user_id: UUID, group: str) -> None: ...


@dataclass
class GroupChanges:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def is_federated_group(group: str) -> bool:
    return group.startswith(OIDC_GROUP_PREFIX)


class GroupRoleMapper:
    """Keeps a user's federation-managed groups in line with token claims."""

    def __init__(self, group_store: GroupStore):
        self.group_store = group_store

    @staticmethod
    def desired_groups(
        claims: Mapping[str, Any] | Any, issuer_config: IssuerConfig
    ) -> set[str]:
        desired: set[str] = set()

        for category in RoleCategory:
            rule = issuer_config.role_rule(category)
            if rule is None or not rule.enabled:
                continue

            for role in resolve_claim_path(claims, rule.claim_path):
                for prefix in rule.effective_prefixes:
                    desired.add(f"{OIDC_GROUP_PREFIX}{prefix}{role}")

        return desired

    async def compute_and_apply_groups(
        self,
        user_id: UUID,
        claims: Optional[Mapping[str, Any]],
        issuer_config: Optional[IssuerConfig],
    ) -> GroupChanges:
        """Add and remove ``oidc_`` groups so they match the claims.

        Without claims or issuer config nothing is touched: missing data must
        never strip groups from a user.
        """
        if claims is None or issuer_config is None:
            logger.debug(
                "No access token claims or issuer config; leaving groups untouched",
                extra={"user_id": str(user_id)},
            )
            return GroupChanges()

        current = {
            group
            for group in await self.group_store.get_groups(user_id)
            if is_federated_group(group)
        }
        desired = self.desired_groups(claims, issuer_config)

        changes = GroupChanges(
            added=sorted(desired - current),
            removed=sorted(current - desired),
        )

        for group in changes.removed:
            logger.info(
                "Removing federated group", extra={"user_id": str(user_id), "group": group}
            )
            await self.group_store.remove_group(user_id, group)

        for group in changes.added:
            logger.info(
                "Adding federated group", extra={"user_id": str(user_id), "group": group}
            )
            await self.group_store.add_group(user_id, group)

        return changes
