# app/models/message.py
"""
Message model for conversation history (incoming and outgoing).
"""
from datetime import datetime

from sqlalchemy import Column, String, Text, JSON, Integer, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.models.base import BaseModel


class Message(BaseModel):
    """Store all WhatsApp messages of a conversation"""
    __tablename__ = "messages"

    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), index=True, nullable=False)
    message_id = Column(String(255), unique=True, index=True, nullable=True)  # WhatsApp message id
    text = Column(Text, nullable=True)
    message_type = Column(String(50), nullable=False, default="text")
    direction = Column(String(20), nullable=False)  # 'incoming' or 'outgoing'
    status = Column(String(20), nullable=True, default='sent')  # 'sent', 'delivered', 'read', 'failed'
    is_read = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    meta_data = Column(JSON, nullable=True)

    conversation = relationship("Conversation", back_populates="messages")

    def __repr__(self):
        return f"<Message {self.direction} #{self.id} in conversation {self.conversation_id}>"
