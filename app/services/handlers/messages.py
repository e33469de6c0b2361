# app/services/handlers/messages.py
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.db.session import get_db_session
from app.core.config import DEFAULT_TENANT_ID
from app.models.conversation import Conversation
from app.models.flow_execution import ExecutionStatus
from app.models.message import Message
from app.services.flow_executor import FlowExecutor
from app.services.flow_service import FlowService

log = logging.getLogger("whatsaflow.handlers.messages")


def _type_name(value) -> str:
    # pywa hands over enum members; plain strings pass through
    value = getattr(value, "value", value)
    return str(value) if value else "text"


def extract_text(message) -> Optional[str]:
    """
    Pull a text body out of a pywa message. Media messages fall back to
    their caption/filename or a "(type)" placeholder.
    """
    msg_type = _type_name(getattr(message, 'type', None))
    if msg_type == "text":
        raw_text = getattr(message, "text", None)
        if isinstance(raw_text, str):
            return raw_text
        if hasattr(raw_text, "body"):
            return getattr(raw_text, "body", None)
        if isinstance(raw_text, dict):
            return raw_text.get("body") or raw_text.get("text")
        return str(raw_text) if raw_text else None
    if msg_type in ("image", "video"):
        caption = getattr(getattr(message, msg_type, None), "caption", None)
        return caption if caption else f"({msg_type})"
    if msg_type == "document":
        filename = getattr(getattr(message, "document", None), "filename", None)
        return filename if filename else "(document)"
    return f"({msg_type})"


def get_or_create_conversation(
    db: Session,
    tenant_id: str,
    instance_id: str,
    contact_id: str,
    contact_name: Optional[str] = None,
) -> Conversation:
    conversation = db.query(Conversation).filter(
        Conversation.instance_id == str(instance_id),
        Conversation.contact_id == contact_id
    ).first()

    if not conversation:
        conversation = Conversation(
            tenant_id=tenant_id,
            instance_id=str(instance_id),
            contact_id=contact_id,
            contact_name=contact_name,
        )
        db.add(conversation)
        db.commit()
        db.refresh(conversation)
        log.info(f"🆕 Conversation {conversation.id} opened with {contact_id}")
    elif contact_name and conversation.contact_name != contact_name:
        conversation.contact_name = contact_name
        db.commit()

    return conversation


def process_incoming_message(
    db: Session,
    executor: Optional[FlowExecutor],
    *,
    tenant_id: str,
    instance_id: str,
    contact_id: str,
    text: Optional[str],
    contact_name: Optional[str] = None,
    message_id: Optional[str] = None,
    message_type: str = "text",
) -> Optional[Message]:
    """
    Store an inbound message and hand it to the flow engine.

    A paused execution is resumed with the text; otherwise the text is
    checked against flow triggers. Returns None for duplicate deliveries.
    """
    if message_id:
        existing = db.query(Message).filter(Message.message_id == message_id).first()
        if existing:
            log.info(f"↩️ Duplicate delivery of {message_id}, ignoring")
            return None

    conversation = get_or_create_conversation(db, tenant_id, instance_id, contact_id, contact_name)

    message = Message(
        tenant_id=tenant_id,
        conversation_id=conversation.id,
        message_id=message_id,
        direction="incoming",
        message_type=message_type,
        text=text,
        sent_at=datetime.utcnow(),
    )
    db.add(message)
    conversation.register_message(text, "incoming")
    db.commit()
    db.refresh(message)

    if executor is None:
        log.warning("⚠️ Flow executor not configured - skipping flows")
        return message

    if message_type != "text" or not text:
        return message

    active = FlowService.find_active_execution(db, conversation.id)
    if active and active.status == ExecutionStatus.PAUSED.value:
        log.info(f"💬 Resuming execution {active.id} for conversation {conversation.id}")
        executor.continue_execution(db, conversation.id, text)
    else:
        executor.check_triggers(db, text, conversation.id, instance_id)

    return message


def handle_message(client, message, executor: Optional[FlowExecutor], instance_id: str):
    """
    Handle incoming messages from WhatsApp
    """
    try:
        tenant_id = DEFAULT_TENANT_ID
        phone = getattr(message.from_user, 'wa_id', None) if message.from_user else None
        name = getattr(message.from_user, 'name', None) if message.from_user else None
        msg_id = getattr(message, 'id', None)
        msg_type = _type_name(getattr(message, 'type', None))

        if not phone:
            log.warning("⚠️ No sender in webhook message")
            return

        log.info(f"📨 Incoming {msg_type} from {phone} ({name}) on instance {instance_id}")

        try:
            text = extract_text(message)
        except Exception as e:
            log.error(f"❌ Failed to extract message text: {e}")
            text = f"({msg_type})"

        with get_db_session() as db:
            process_incoming_message(
                db,
                executor,
                tenant_id=tenant_id,
                instance_id=instance_id,
                contact_id=phone,
                contact_name=name,
                text=text,
                message_id=msg_id,
                message_type=msg_type,
            )

    except Exception as e:
        log.error(f"❌ CRITICAL: Message handler error: {e}", exc_info=True)


def update_message_status(db: Session, message_id: Optional[str], status: Optional[str]) -> bool:
    """Record a delivery status ('sent', 'delivered', 'read', 'failed') on a stored message"""
    if not message_id or not status:
        return False
    message = db.query(Message).filter(Message.message_id == message_id).first()
    if not message:
        return False
    message.status = status
    db.commit()
    return True


def handle_status(client, status):
    """Handle message status updates"""
    try:
        msg_id = getattr(status, 'id', None)
        status_value = getattr(status, 'status', None)
        status_type = getattr(status_value, 'value', status_value)
        log.info(f"📊 Message status update: {msg_id} -> {status_type}")

        with get_db_session() as db:
            if not update_message_status(db, msg_id, str(status_type).lower() if status_type else None):
                log.debug(f"Status for unknown message {msg_id}")

    except Exception as e:
        log.error(f"❌ Status handler error: {e}")
