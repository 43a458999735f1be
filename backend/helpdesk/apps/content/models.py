# backend/helpdesk/apps/content/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Index, String

from helpdesk.database import Base
from helpdesk.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentKind(str, enum.Enum):
    ARTICLE = "ARTICLE"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"
    TRAINING = "TRAINING"


class ContentStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class ContentItem(Base):
    """
    Library item owned by the content service.

    Trainings are content items of kind TRAINING; their steps point at other
    content items (articles, videos, documents) that the desktop client renders.
    Only existence and the title are used here.
    """

    __tablename__ = "content_items"
    __table_args__ = (
        Index("content_items_kind_status_idx", "kind", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    kind = Column(
        Enum(ContentKind, name="content_kind", native_enum=False),
        nullable=False,
        default=ContentKind.ARTICLE,
    )
    status = Column(
        Enum(ContentStatus, name="content_status", native_enum=False),
        nullable=False,
        default=ContentStatus.DRAFT,
    )
    title = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<ContentItem id={self.id} kind={self.kind} title={self.title!r}>"
