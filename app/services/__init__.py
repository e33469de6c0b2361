# app/services/__init__.py
"""
Service layer initialization.
"""
from app.services.flow_executor import FlowExecutor
from app.services.flow_service import FlowService
from app.services.transport import MessagingTransport, PywaTransport

__all__ = [
    'FlowExecutor',
    'FlowService',
    'MessagingTransport',
    'PywaTransport',
]
