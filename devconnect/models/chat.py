import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from devconnect.core.db import Base


class ConversationKind(str, enum.Enum):
    DIRECT = "direct"
    GROUP = "group"


class MessageStatus(str, enum.Enum):
    SENT = "sent"
    SEEN = "seen"


class Conversation(Base):
    """
    Ordered message log for either a pair of users or a group.

    Direct conversations store their participants sorted so the unordered
    pair maps to exactly one row.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("participant_low", "participant_high", name="uq_direct_pair"),
        UniqueConstraint("group_id", name="uq_group_conversation"),
        CheckConstraint(
            "participant_low IS NULL OR participant_low < participant_high",
            name="ck_distinct_sorted_pair",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(Enum(ConversationKind), nullable=False)

    participant_low = Column(String(64), nullable=True)
    participant_high = Column(String(64), nullable=True)
    group_id = Column(String(64), ForeignKey("groups.id", ondelete="CASCADE"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def participants(self) -> list:
        if self.kind == ConversationKind.DIRECT:
            return [self.participant_low, self.participant_high]
        return []


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id = Column(String(64), nullable=False)

    text = Column(Text, nullable=False)
    status = Column(Enum(MessageStatus), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


Index("idx_messages_conversation_created_at", Message.conversation_id, Message.created_at)
