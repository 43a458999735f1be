# backend/helpdesk/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, String

from helpdesk.database import Base
from helpdesk.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    """Roles issued by the auth service.

    The training engine only distinguishes employees from administrators.
    """

    EMPLOYEE = "EMPLOYEE"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class User(Base):
    """
    Identity row owned by the auth service.

    The training engine reads it to check that an assignee exists and is
    active, and references it from assignments and events.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("users_email_unique_idx", "email", unique=True),
        Index("users_role_idx", "role"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(
        Enum(UserRole, name="user_role", native_enum=False),
        nullable=False,
        default=UserRole.EMPLOYEE,
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SUPER_ADMIN)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"
