from datetime import datetime
from typing import Optional
from uuid import UUID

from oidc_federation.main.models import BaseModel, InDB


class FederatedIdentity(BaseModel):
    """The remote key of an account: provider subject plus issuer."""

    subject: str
    issuer: str


class AccountRef(BaseModel):
    """Minimal account handle returned by identity lookups."""

    id: UUID
    username: str


class UserBase(BaseModel):
    username: str
    email: Optional[str] = None
    real_name: Optional[str] = None


class UserAdd(UserBase):
    subject: Optional[str] = None
    issuer: Optional[str] = None
    registered_at: Optional[datetime] = None


class UserInDB(InDB, UserBase):
    registered_at: Optional[datetime] = None
    subject: Optional[str] = None
    issuer: Optional[str] = None

    def as_ref(self) -> AccountRef:
        return AccountRef(id=self.id, username=self.username)
