"""
SQLAlchemy models for the welfare research backend.

Timestamps are assigned by the stores, not by server defaults.
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, Text, DateTime, Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Conversation(Base):
    """A persisted chat session, replaced wholesale on every save"""
    __tablename__ = "conversations"

    # Identity
    conversation_id = Column(String(255), primary_key=True)
    user_id = Column(Text, nullable=False)

    # Content
    chat_data = Column(Text, nullable=False)  # JSON-encoded message list
    message_count = Column(Integer, nullable=False, default=0)
    context_enabled = Column(Boolean, nullable=False, default=False)

    # Lifecycle
    deleted = Column(Boolean, nullable=False, default=False)  # Soft delete
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("message_count >= 0", name="valid_message_count"),
        Index("idx_conversations_user_created", "user_id", "created_at"),
    )


class WelfareAnalysis(Base):
    """Structured welfare judgment attached to a single conversation"""
    __tablename__ = "welfare_analyses"

    # Identity
    analysis_id = Column(String(255), primary_key=True)
    conversation_id = Column(String(255), nullable=False, unique=True)

    # Attribution
    user_id = Column(Text, nullable=False)
    analyst_name = Column(Text, nullable=False)

    # Scores (1-10)
    preference_alignment = Column(Integer, nullable=False)
    autonomy_level = Column(Integer, nullable=False)
    authenticity = Column(Integer, nullable=False)
    constraint_conflicts = Column(Text, nullable=False)  # 'Yes', 'No', 'Unclear'

    # Free-form
    tags = Column(Text, nullable=False, default="")  # Comma-joined, deduplicated
    notes = Column(Text, nullable=False, default="")

    # Lifecycle
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "preference_alignment BETWEEN 1 AND 10",
            name="valid_preference_alignment"
        ),
        CheckConstraint(
            "autonomy_level BETWEEN 1 AND 10",
            name="valid_autonomy_level"
        ),
        CheckConstraint(
            "authenticity BETWEEN 1 AND 10",
            name="valid_authenticity"
        ),
        CheckConstraint(
            "constraint_conflicts IN ('Yes', 'No', 'Unclear')",
            name="valid_constraint_conflicts"
        ),
        Index("idx_welfare_analyses_created", "created_at"),
    )
