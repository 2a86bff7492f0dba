from typing import Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from oidc_federation.database.tables.users_table import UserGroups, Users
from oidc_federation.main.exceptions import BadRequestException
from oidc_federation.main.logging import get_logger
from oidc_federation.users.user import UserAdd, UserInDB

logger = get_logger(__name__)


class UsersRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_model_from_query(self, query) -> Optional[UserInDB]:
        record = await self.session.scalar(
            query.limit(1).execution_options(populate_existing=True)
        )
        if record is None:
            return None

        return UserInDB.model_validate(record)

    @staticmethod
    def _unmigrated(query):
        return query.where(Users.subject.is_(None)).where(Users.issuer.is_(None))

    async def get_id_by_username(self, username: str) -> Optional[UUID]:
        query = sa.select(Users.id).where(Users.username == username)

        return await self.session.scalar(query)

    async def find_by_subject_issuer(
        self, subject: str, issuer: str
    ) -> Optional[UserInDB]:
        query = (
            sa.select(Users)
            .where(Users.subject == subject)
            .where(Users.issuer == issuer)
        )

        return await self._get_model_from_query(query)

    async def find_unmigrated_by_username(self, username: str) -> Optional[UserInDB]:
        query = self._unmigrated(sa.select(Users).where(Users.username == username))

        return await self._get_model_from_query(query)

    async def find_unmigrated_by_email(self, email: str) -> Optional[UserInDB]:
        # If several legacy accounts share the address, the oldest one wins
        query = self._unmigrated(
            sa.select(Users).where(Users.email == email)
        ).order_by(Users.registered_at.asc(), Users.created_at.asc())

        return await self._get_model_from_query(query)

    async def update_federation_identity(
        self, user_id: UUID, subject: Optional[str], issuer: Optional[str]
    ) -> None:
        stmt = (
            sa.update(Users)
            .where(Users.id == user_id)
            .values(subject=subject, issuer=issuer)
        )

        try:
            await self.session.execute(stmt)
        except IntegrityError as e:
            logger.error(
                "Federated identity is already bound to another account",
                extra={"user_id": str(user_id), "issuer": issuer},
            )
            raise BadRequestException(
                "This identity is already linked to another account"
            ) from e

    async def add(self, user: UserAdd) -> UserInDB:
        stmt = (
            sa.insert(Users)
            .values(**user.model_dump(exclude_none=True))
            .returning(Users)
        )

        try:
            record = await self.session.scalar(stmt)
        except IntegrityError as e:
            raise BadRequestException(
                f"Username {user.username} is already taken"
            ) from e

        return UserInDB.model_validate(record)

    async def get_groups(self, user_id: UUID) -> set[str]:
        query = sa.select(UserGroups.group_name).where(UserGroups.user_id == user_id)
        groups = await self.session.scalars(query)

        return set(groups.all())

    async def add_group(self, user_id: UUID, group: str) -> None:
        stmt = sa.insert(UserGroups).values(user_id=user_id, group_name=group)
        await self.session.execute(stmt)

    async def remove_group(self, user_id: UUID, group: str) -> None:
        stmt = (
            sa.delete(UserGroups)
            .where(UserGroups.user_id == user_id)
            .where(UserGroups.group_name == group)
        )
        await self.session.execute(stmt)
