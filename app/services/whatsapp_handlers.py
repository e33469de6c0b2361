# app/services/whatsapp_handlers.py
"""
WhatsApp webhook handlers for incoming messages

Every inbound message goes through process_incoming_message, which stores
it on its conversation and lets the flow executor resume or start a flow.
Meta webhooks carry no tenant, so DEFAULT_TENANT_ID from .env is used.
"""
import logging
from typing import Optional

from app.services.flow_executor import FlowExecutor
from app.services.handlers.messages import handle_message, handle_status

log = logging.getLogger("whatsaflow.handlers")


def register_handlers(wa_client, executor: Optional[FlowExecutor], instance_id: str):
    """
    Register WhatsApp webhook handlers on a pywa client

    Args:
        wa_client: pywa.WhatsApp bound to one phone number
        executor: flow executor receiving the inbound text
        instance_id: instance the phone number belongs to
    """

    @wa_client.on_message()
    def on_message(client, message):
        handle_message(client, message, executor, instance_id)

    @wa_client.on_message_status()
    def on_message_status(client, status):
        handle_status(client, status)

    log.info(f"✅ WhatsApp message handlers registered for instance {instance_id}")
