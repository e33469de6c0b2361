# app/models/conversation.py
"""CRM conversation model - one contact talking to one WhatsApp instance"""
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, Text, Boolean, JSON, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship

from app.models.base import BaseModel


class ConversationStatus(str, Enum):
    """Inbox columns of the CRM"""
    INBOX = "inbox"
    PENDING = "pending"
    CLOSED = "closed"


class Conversation(BaseModel):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint('instance_id', 'contact_id', name='uq_instance_contact'),
    )

    instance_id = Column(String(100), index=True, nullable=False)
    contact_id = Column(String(100), index=True, nullable=False)  # WhatsApp id of the contact
    contact_name = Column(String(255), nullable=True)

    status = Column(String(20), nullable=False, default=ConversationStatus.INBOX.value)
    # Agent identifiers are opaque strings (no FK enforced)
    assigned_to_id = Column(String(100), nullable=True)

    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime, nullable=True)
    unread_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    meta_data = Column(JSON, nullable=True)

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )

    def register_message(self, text, direction: str) -> None:
        """Refresh the inbox preview after a message was stored"""
        self.last_message = text
        self.last_message_at = datetime.utcnow()
        if direction == "incoming":
            self.unread_count = (self.unread_count or 0) + 1

    def change_status(self, status: str) -> None:
        # Raises ValueError for anything outside inbox/pending/closed
        self.status = ConversationStatus(status).value

    def __repr__(self):
        return f"<Conversation {self.contact_name or self.contact_id} [{self.status}]>"
