from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from oidc_federation.database.tables.base_class import Base, BasePublic


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Users(BasePublic):
    __table_args__ = (
        # Legacy accounts keep both columns NULL; NULLs never collide.
        sa.UniqueConstraint("subject", "issuer", name="uq_users_subject_issuer"),
    )

    username: Mapped[str] = mapped_column(unique=True)
    email: Mapped[Optional[str]] = mapped_column(index=True)
    real_name: Mapped[Optional[str]] = mapped_column()
    registered_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    subject: Mapped[Optional[str]] = mapped_column()
    issuer: Mapped[Optional[str]] = mapped_column()

    groups: Mapped[list["UserGroups"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class UserGroups(Base):
    __tablename__ = "user_groups"

    user_id: Mapped[UUID] = mapped_column(
        sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    group_name: Mapped[str] = mapped_column(primary_key=True)

    user: Mapped[Users] = relationship(back_populates="groups")
