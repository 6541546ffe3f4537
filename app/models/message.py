from sqlalchemy import Column, String, Text, Boolean, DateTime, Enum, Uuid, Index
import uuid
import enum
from datetime import datetime
from app.database import Base


class MediaType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


class MessageRow(Base):
    """Marketplace message between two users, optionally about a product."""
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Participants are opaque user ids owned by the auth provider
    sender_id = Column(String(64), nullable=False)
    recipient_id = Column(String(64), nullable=False)

    product_id = Column(String(64), nullable=True)  # None = general conversation
    subject = Column(String(255), nullable=True)

    content = Column(Text, nullable=False)
    media_url = Column(String(1024), nullable=True)
    media_type = Column(Enum(MediaType, values_callable=lambda e: [m.value for m in e]), nullable=True)
    media_name = Column(String(255), nullable=True)

    is_read = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_messages_pair", "sender_id", "recipient_id"),
        Index("ix_messages_recipient_unread", "recipient_id", "is_read"),
    )
