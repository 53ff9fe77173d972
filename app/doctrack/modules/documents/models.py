from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.doctrack.models import Base

if TYPE_CHECKING:
    from app.doctrack.models import User


class RevisionState(str, enum.Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    completion_estimate: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Core templates are protected baselines: never deleted as a whole.
    core_template: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Append-only history; list position == revision index.
    revisions: Mapped[list["DocumentRevision"]] = relationship(
        "DocumentRevision",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentRevision.position",
    )


class DocumentRevision(Base):
    __tablename__ = "document_revisions"
    __table_args__ = (
        UniqueConstraint("document_id", "position", name="uq_document_revision_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # 0-based revision index

    message: Mapped[str] = mapped_column(Text, nullable=False)

    # Only this user may attach the revision's file. Set once, never reassigned.
    uploader_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    # Storage handle + lower-cased extension, set together exactly once.
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_extension: Mapped[str | None] = mapped_column(String(32), nullable=True)

    state: Mapped[str] = mapped_column(String(16), nullable=False, default=RevisionState.ACTIVE.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped[Document] = relationship(
        "Document",
        back_populates="revisions",
        lazy="selectin",
    )

    uploader: Mapped["User"] = relationship(
        "User",
        foreign_keys=[uploader_user_id],
        lazy="selectin",
    )

    @property
    def deleted(self) -> bool:
        return self.state == RevisionState.DELETED.value

    @property
    def has_file(self) -> bool:
        return self.filename is not None

    @property
    def label(self) -> int:
        """Human-facing revision number (1-based)."""
        return self.position + 1
