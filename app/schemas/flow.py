# app/schemas/flow.py
"""
Pydantic schemas for bot flows.

Node configs are stored as free-form JSON; the executor reads them through
the typed models below, one per node type. Keys written by the flow editor
are camelCase (saveAs, variableName, ...) and are accepted through aliases.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.flow import NodeType, TriggerType


class NodeConfig(BaseModel):
    """Base for node configs - unknown keys are kept"""

    class Config:
        extra = "allow"
        populate_by_name = True


class StartNodeConfig(NodeConfig):
    pass


class MessageNodeConfig(NodeConfig):
    message: Optional[str] = None


class QuestionNodeConfig(NodeConfig):
    question: Optional[str] = None
    save_as: Optional[str] = Field(None, alias="saveAs")


class ConditionNodeConfig(NodeConfig):
    variable: str = "lastUserResponse"


_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class DelayNodeConfig(NodeConfig):
    delay: Any = None  # milliseconds, as typed in the editor

    def delay_ms(self, default: int = 1000) -> int:
        """Integer prefix of `delay`; zero or unparseable falls back to default"""
        value = self.delay
        parsed = None
        if isinstance(value, bool):
            parsed = None
        elif isinstance(value, (int, float)):
            parsed = int(value)
        elif isinstance(value, str):
            match = _LEADING_INT.match(value)
            if match:
                parsed = int(match.group(1))
        if not parsed:
            return default
        return max(0, parsed)


class ActionNodeConfig(NodeConfig):
    action: Optional[str] = None
    variable_name: Optional[str] = Field(None, alias="variableName")
    variable_value: Any = Field(None, alias="variableValue")
    status: Optional[str] = None
    tag: Optional[str] = None


class WebhookNodeConfig(NodeConfig):
    url: Optional[str] = None
    method: str = "POST"
    headers: Dict[str, Any] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("method", mode="before")
    @classmethod
    def default_method(cls, v):
        return v or "POST"

    @field_validator("headers", "payload", mode="before")
    @classmethod
    def default_mapping(cls, v):
        return {} if v is None else v


class HumanHandoffNodeConfig(NodeConfig):
    message: Optional[str] = None
    agent_id: Optional[Any] = Field(None, alias="agentId")


class EndNodeConfig(NodeConfig):
    message: Optional[str] = None


NODE_CONFIG_TYPES: Dict[NodeType, Type[NodeConfig]] = {
    NodeType.START: StartNodeConfig,
    NodeType.MESSAGE: MessageNodeConfig,
    NodeType.QUESTION: QuestionNodeConfig,
    NodeType.CONDITION: ConditionNodeConfig,
    NodeType.DELAY: DelayNodeConfig,
    NodeType.ACTION: ActionNodeConfig,
    NodeType.WEBHOOK: WebhookNodeConfig,
    NodeType.HUMAN_HANDOFF: HumanHandoffNodeConfig,
    NodeType.END: EndNodeConfig,
}


def parse_node_config(node_type: NodeType, raw: Optional[Dict[str, Any]]) -> NodeConfig:
    """Validate a node's stored config against the model for its type"""
    model = NODE_CONFIG_TYPES.get(node_type, NodeConfig)
    return model.model_validate(raw or {})


class EdgeCondition(BaseModel):
    """Condition attached to an edge leaving a condition node"""
    variable: Optional[str] = None
    operator: Optional[str] = None
    compare_value: Any = Field(None, alias="compareValue")

    class Config:
        populate_by_name = True


# ────────────────────────────────────────────
# Flow definition (import / export)
# ────────────────────────────────────────────

class NodeDefinition(BaseModel):
    node_id: str = Field(..., min_length=1, max_length=100, alias="nodeId")
    type: NodeType
    name: Optional[str] = None
    position: Optional[Dict[str, Any]] = None
    config: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_config(self):
        parse_node_config(self.type, self.config)
        return self


class EdgeDefinition(BaseModel):
    edge_id: Optional[str] = Field(None, alias="edgeId")
    source_node_id: str = Field(..., alias="sourceNodeId")
    target_node_id: str = Field(..., alias="targetNodeId")
    condition: Optional[EdgeCondition] = None
    label: Optional[str] = None
    order: int = 0

    class Config:
        populate_by_name = True


class FlowDefinition(BaseModel):
    """A complete flow as exported by the editor"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    instance_id: Optional[str] = Field(None, alias="instanceId")
    trigger: TriggerType = TriggerType.KEYWORD
    trigger_value: Optional[str] = Field(None, alias="triggerValue")
    priority: int = Field(1, ge=1)
    is_active: bool = Field(True, alias="isActive")
    nodes: List[NodeDefinition] = Field(default_factory=list)
    edges: List[EdgeDefinition] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "name": "Greeting",
                "trigger": "keyword",
                "triggerValue": "hello",
                "nodes": [
                    {"nodeId": "start", "type": "start"},
                    {"nodeId": "ask", "type": "question", "config": {"question": "What's your name?", "saveAs": "name"}},
                    {"nodeId": "bye", "type": "end", "config": {"message": "Nice to meet you {{name}}"}}
                ],
                "edges": [
                    {"sourceNodeId": "start", "targetNodeId": "ask"},
                    {"sourceNodeId": "ask", "targetNodeId": "bye"}
                ]
            }
        }

    @model_validator(mode="after")
    def check_graph(self):
        node_ids = [node.node_id for node in self.nodes]
        duplicates = sorted({node_id for node_id in node_ids if node_ids.count(node_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate node ids: {', '.join(duplicates)}")
        known = set(node_ids)
        for edge in self.edges:
            for end in (edge.source_node_id, edge.target_node_id):
                if end not in known:
                    raise ValueError(f"Edge references unknown node '{end}'")
        return self


class FlowExecutionResponse(BaseModel):
    """Execution record as shown to operators"""
    id: int
    flow_id: int
    conversation_id: int
    current_node_id: Optional[str]
    status: str
    variables: Optional[Dict[str, Any]]
    started_at: datetime
    completed_at: Optional[datetime]
    error_message: Optional[str]

    class Config:
        from_attributes = True
