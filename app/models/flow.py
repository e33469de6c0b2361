# app/models/flow.py
"""Bot flow definition models: a Flow is a graph of FlowNodes joined by FlowEdges"""
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, String, Text, Boolean, JSON, Integer, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.models.base import BaseModel


class TriggerType(str, Enum):
    """How a flow gets started"""
    KEYWORD = "keyword"
    WELCOME = "welcome"
    MANUAL = "manual"
    CONDITION = "condition"


class NodeType(str, Enum):
    """Closed set of node behaviours understood by the flow executor"""
    START = "start"
    MESSAGE = "message"
    QUESTION = "question"
    CONDITION = "condition"
    DELAY = "delay"
    ACTION = "action"
    WEBHOOK = "webhook"
    HUMAN_HANDOFF = "human_handoff"
    END = "end"


class Flow(BaseModel):
    """
    Automation definition bound to one WhatsApp instance.

    Flows are never versioned: editing a node changes behaviour for every
    future run that reaches it.
    """
    __tablename__ = "flows"

    instance_id = Column(String(100), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Activation
    trigger = Column(String(20), index=True, nullable=False, default=TriggerType.KEYWORD.value)
    trigger_value = Column(String(255), nullable=True)  # e.g. the keyword
    priority = Column(Integer, index=True, nullable=False, default=1)  # 1 = highest
    is_active = Column(Boolean, index=True, nullable=False, default=True)

    # Usage
    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime, nullable=True)

    created_by_id = Column(String(100), nullable=True)
    meta_data = Column(JSON, nullable=True)

    nodes = relationship("FlowNode", back_populates="flow", cascade="all, delete-orphan")
    edges = relationship("FlowEdge", back_populates="flow", cascade="all, delete-orphan")
    executions = relationship("FlowExecution", back_populates="flow", cascade="all, delete-orphan")

    def increment_usage(self) -> None:
        self.usage_count = (self.usage_count or 0) + 1
        self.last_used_at = datetime.utcnow()

    def activate(self) -> None:
        self.is_active = True

    def deactivate(self) -> None:
        self.is_active = False

    def __repr__(self):
        return f"<Flow {self.name} ({self.trigger}:{self.trigger_value})>"


class FlowNode(BaseModel):
    """One step of a flow. Edges and executions refer to it by node_id, not by id"""
    __tablename__ = "flow_nodes"
    __table_args__ = (
        UniqueConstraint('flow_id', 'node_id', name='uq_flow_node_id'),
    )

    flow_id = Column(Integer, ForeignKey("flows.id", ondelete="CASCADE"), index=True, nullable=False)
    node_id = Column(String(100), index=True, nullable=False)
    type = Column(String(30), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    position = Column(JSON, nullable=True)  # canvas {x, y}, presentation only
    config = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    flow = relationship("Flow", back_populates="nodes")

    def update_config(self, new_config: dict) -> None:
        """Merge keys into the stored config"""
        self.config = {**(self.config or {}), **(new_config or {})}

    def __repr__(self):
        return f"<FlowNode {self.node_id} ({self.type})>"


class FlowEdge(BaseModel):
    """Directed, optionally conditioned transition between two nodes"""
    __tablename__ = "flow_edges"

    flow_id = Column(Integer, ForeignKey("flows.id", ondelete="CASCADE"), index=True, nullable=False)
    edge_id = Column(String(100), index=True, nullable=False)
    source_node_id = Column(String(100), index=True, nullable=False)
    target_node_id = Column(String(100), index=True, nullable=False)
    condition = Column(JSON, nullable=True)  # {variable, operator, compareValue}
    label = Column(String(255), nullable=True)
    order = Column("order", Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    flow = relationship("Flow", back_populates="edges")

    @property
    def is_default(self) -> bool:
        return not self.condition or self.label == "default"

    def __repr__(self):
        return f"<FlowEdge {self.source_node_id} -> {self.target_node_id}>"
