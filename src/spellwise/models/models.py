"""Database models for the progress store."""
from datetime import datetime, UTC
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from spellwise.models.base import Base, TimestampMixin


class Learner(Base, TimestampMixin):
    """A learner identity, anonymous (device) or authenticated (account)."""

    __tablename__ = "learners"

    id = Column(Integer, primary_key=True, index=True)
    identity = Column(String, unique=True, nullable=False)
    is_anonymous = Column(Boolean, default=False, nullable=False)

    # Relationships
    progress = relationship(
        "ProgressRow", back_populates="learner", uselist=False, cascade="all, delete-orphan"
    )
    folded_sessions = relationship(
        "FoldedSession", back_populates="learner", cascade="all, delete-orphan"
    )


class ProgressRow(Base, TimestampMixin):
    """Scalar part of a learner's progress record, versioned for compare-and-set."""

    __tablename__ = "progress_records"

    id = Column(Integer, primary_key=True)
    learner_id = Column(Integer, ForeignKey("learners.id"), unique=True, nullable=False)
    version = Column(Integer, default=0, nullable=False)
    total_words = Column(Integer, default=0, nullable=False)
    total_sessions = Column(Integer, default=0, nullable=False)
    unclassified_words = Column(Integer, default=0, nullable=False)
    current_level = Column(Integer, default=0, nullable=False)
    # Hesitation calibration, all null until the placement test
    threshold_base_ms = Column(Float, nullable=True)
    threshold_per_char_ms = Column(Float, nullable=True)
    threshold_safety_multiplier = Column(Float, nullable=True)
    threshold_word_count = Column(Integer, nullable=True)

    # Relationships
    learner = relationship("Learner", back_populates="progress")
    group_mastery = relationship(
        "GroupMasteryRow", back_populates="progress", cascade="all, delete-orphan"
    )
    struggle_words = relationship(
        "StruggleWordRow", back_populates="progress", cascade="all, delete-orphan"
    )


class GroupMasteryRow(Base):
    """Per phonics group counts of a progress record."""

    __tablename__ = "group_mastery_rows"
    __table_args__ = (UniqueConstraint("progress_id", "phonics_group"),)

    id = Column(Integer, primary_key=True)
    progress_id = Column(Integer, ForeignKey("progress_records.id"), nullable=False)
    phonics_group = Column(String, nullable=False)
    correct_count = Column(Integer, default=0, nullable=False)
    total_count = Column(Integer, default=0, nullable=False)

    # Relationships
    progress = relationship("ProgressRow", back_populates="group_mastery")


class StruggleWordRow(Base):
    """A member of a learner's struggle set."""

    __tablename__ = "struggle_word_rows"
    __table_args__ = (UniqueConstraint("progress_id", "word"),)

    id = Column(Integer, primary_key=True)
    progress_id = Column(Integer, ForeignKey("progress_records.id"), nullable=False)
    word = Column(String, nullable=False)
    added_at_ordinal = Column(Integer, nullable=False)
    consecutive_correct = Column(Integer, default=0, nullable=False)

    # Relationships
    progress = relationship("ProgressRow", back_populates="struggle_words")


class FoldedSession(Base):
    """Ledger of session ids already folded; backs at-most-once folding."""

    __tablename__ = "folded_sessions"

    id = Column(Integer, primary_key=True)
    session_id = Column(String, unique=True, nullable=False)
    learner_id = Column(Integer, ForeignKey("learners.id"), nullable=False)
    folded_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    # Relationships
    learner = relationship("Learner", back_populates="folded_sessions")


class IdentityMerge(Base):
    """Ledger of anonymous-to-account transitions already merged."""

    __tablename__ = "identity_merges"

    id = Column(Integer, primary_key=True)
    anonymous_identity = Column(String, unique=True, nullable=False)
    account_identity = Column(String, nullable=False)
    merged_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class LibraryWord(Base, TimestampMixin):
    """A word of the phonics catalog."""

    __tablename__ = "library_words"

    id = Column(Integer, primary_key=True)
    word = Column(String, unique=True, nullable=False)
    phonics_group = Column(String, nullable=False, index=True)
    difficulty_level = Column(Integer, nullable=False, index=True)
