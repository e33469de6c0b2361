# app/services/transport.py
"""
Messaging transport used by the flow executor to talk to contacts.

The executor only needs "send this text to this contact through this
instance"; the pywa client does the actual WhatsApp Cloud API work.
"""
import logging
from typing import Any, Dict, Optional

log = logging.getLogger("whatsaflow.transport")


class MessagingTransport:
    """Interface: send a text message from an instance to a contact"""

    def send_message(self, instance_id: str, contact_id: str, text: str) -> Optional[str]:
        """Send text and return the provider message id when known"""
        raise NotImplementedError


class PywaTransport(MessagingTransport):
    """Transport backed by one pywa WhatsApp client per instance"""

    def __init__(self, clients: Optional[Dict[str, Any]] = None, default_client=None):
        """
        Args:
            clients: instance_id -> pywa.WhatsApp
            default_client: used for instances without their own client
        """
        self.clients: Dict[str, Any] = dict(clients or {})
        self.default_client = default_client

    def register(self, instance_id: str, client) -> None:
        self.clients[str(instance_id)] = client

    def client_for(self, instance_id: str):
        client = self.clients.get(str(instance_id), self.default_client)
        if client is None:
            raise LookupError(f"No WhatsApp client configured for instance {instance_id}")
        return client

    def send_message(self, instance_id: str, contact_id: str, text: str) -> Optional[str]:
        client = self.client_for(instance_id)
        response = client.send_text(to=contact_id, text=text)
        if hasattr(response, 'id'):
            message_id = response.id
        elif isinstance(response, str):
            message_id = response
        else:
            message_id = str(response) if response else None
        log.info(f"✅ Flow message sent to {contact_id} via {instance_id}: {message_id}")
        return message_id
