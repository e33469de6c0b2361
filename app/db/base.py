# app/db/base.py
"""Import all models so metadata.create_all sees every table"""
from app.models.base import Base

from app.models.conversation import Conversation
from app.models.message import Message
from app.models.flow import Flow, FlowNode, FlowEdge
from app.models.flow_execution import FlowExecution

__all__ = ["Base", "Conversation", "Message", "Flow", "FlowNode", "FlowEdge", "FlowExecution"]
