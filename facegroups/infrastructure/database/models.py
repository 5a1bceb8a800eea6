"""SQLAlchemy models for the known people registry."""
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, LargeBinary, String, Text, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class KnownPersonRecord(Base):
    """A named person shared across photo folders."""

    __tablename__ = "known_people"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Display name, also written to photo metadata"
    )
    role: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow
    )

    # Relationships
    embeddings: Mapped[List["PersonEmbeddingRecord"]] = relationship(
        back_populates="person",
        cascade="all, delete-orphan",
        order_by="PersonEmbeddingRecord.added_at"
    )


class PersonEmbeddingRecord(Base):
    """Face-only reference embedding of a known person."""

    __tablename__ = "person_embeddings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    person_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("known_people.id", ondelete="CASCADE"),
        index=True
    )
    vector: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        comment="float32 embedding bytes"
    )
    dimension: Mapped[int] = mapped_column(Integer, nullable=False)
    source_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recognition_mode: Mapped[str] = mapped_column(String(32), default="vision")
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow
    )

    # Relationships
    person: Mapped[KnownPersonRecord] = relationship(
        back_populates="embeddings"
    )
