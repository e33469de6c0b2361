# app/services/flow_service.py
"""
Flow service - persistence of flow definitions and execution records.

Definition side: create/import flows, edit nodes and edges, activate,
delete. Engine side: the lookups the flow executor performs while walking
a graph. Operator side: listing executions to find failed runs.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.flow import Flow, FlowNode, FlowEdge, NodeType, TriggerType
from app.models.flow_execution import FlowExecution, ACTIVE_STATUSES
from app.models.message import Message
from app.schemas.flow import FlowDefinition, EdgeCondition, parse_node_config

log = logging.getLogger("whatsaflow.flow_service")


class FlowDefinitionError(ValueError):
    """Raised when a flow definition change would leave the graph inconsistent"""


class FlowService:
    """Service for flow definition and execution records"""

    # ────────────────────────────────────────────
    # Flows
    # ────────────────────────────────────────────

    @staticmethod
    def create_flow(
        db: Session,
        tenant_id: str,
        instance_id: str,
        name: str,
        trigger: str = TriggerType.KEYWORD.value,
        trigger_value: Optional[str] = None,
        priority: int = 1,
        description: Optional[str] = None,
        is_active: bool = True,
        created_by_id: Optional[str] = None,
    ) -> Flow:
        flow = Flow(
            tenant_id=tenant_id,
            instance_id=str(instance_id),
            name=name,
            description=description,
            trigger=TriggerType(trigger).value,
            trigger_value=trigger_value,
            priority=priority,
            is_active=is_active,
            created_by_id=created_by_id,
        )
        db.add(flow)
        db.commit()
        db.refresh(flow)
        log.info(f"✅ Flow created: {flow.name} (id={flow.id}, trigger={flow.trigger})")
        return flow

    @staticmethod
    def import_definition(
        db: Session,
        tenant_id: str,
        definition: FlowDefinition,
        instance_id: Optional[str] = None,
        created_by_id: Optional[str] = None,
    ) -> Flow:
        """
        Store a whole flow (nodes and edges) in one transaction.

        Args:
            definition: validated flow definition
            instance_id: overrides the instance named in the definition
        """
        target_instance = instance_id or definition.instance_id
        if not target_instance:
            raise FlowDefinitionError("Flow definition has no instance_id")

        start_nodes = [node for node in definition.nodes if node.type == NodeType.START]
        if len(start_nodes) != 1:
            log.warning(
                f"⚠️ Flow '{definition.name}' has {len(start_nodes)} start nodes; expected exactly one"
            )

        flow = Flow(
            tenant_id=tenant_id,
            instance_id=str(target_instance),
            name=definition.name,
            description=definition.description,
            trigger=definition.trigger.value,
            trigger_value=definition.trigger_value,
            priority=definition.priority,
            is_active=definition.is_active,
            created_by_id=created_by_id,
        )
        for node in definition.nodes:
            flow.nodes.append(FlowNode(
                tenant_id=tenant_id,
                node_id=node.node_id,
                type=node.type.value,
                name=node.name or node.node_id,
                position=node.position or {"x": 0, "y": 0},
                config=dict(node.config),
            ))
        for edge in definition.edges:
            flow.edges.append(FlowEdge(
                tenant_id=tenant_id,
                edge_id=edge.edge_id or str(uuid.uuid4()),
                source_node_id=edge.source_node_id,
                target_node_id=edge.target_node_id,
                condition=edge.condition.model_dump(by_alias=True) if edge.condition else None,
                label=edge.label,
                order=edge.order,
            ))

        db.add(flow)
        db.commit()
        db.refresh(flow)
        log.info(
            f"✅ Flow imported: {flow.name} (id={flow.id}, "
            f"{len(definition.nodes)} nodes, {len(definition.edges)} edges)"
        )
        return flow

    @staticmethod
    def get_flow(db: Session, flow_id: int, tenant_id: Optional[str] = None) -> Optional[Flow]:
        query = db.query(Flow).filter(Flow.id == flow_id)
        if tenant_id:
            query = query.filter(Flow.tenant_id == tenant_id)
        return query.first()

    @staticmethod
    def activate_flow(db: Session, flow: Flow) -> Flow:
        flow.activate()
        db.commit()
        return flow

    @staticmethod
    def deactivate_flow(db: Session, flow: Flow) -> Flow:
        flow.deactivate()
        db.commit()
        return flow

    @staticmethod
    def delete_flow(db: Session, flow: Flow) -> None:
        """Delete a flow together with its nodes, edges and executions"""
        name = flow.name
        db.delete(flow)
        db.commit()
        log.info(f"🗑️ Flow deleted: {name}")

    # ────────────────────────────────────────────
    # Nodes and edges
    # ────────────────────────────────────────────

    @staticmethod
    def add_node(
        db: Session,
        flow: Flow,
        node_id: str,
        node_type: str,
        name: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        position: Optional[Dict[str, Any]] = None,
    ) -> FlowNode:
        kind = NodeType(node_type)
        parse_node_config(kind, config)
        if FlowService.find_node(db, flow.id, node_id):
            raise FlowDefinitionError(f"Node '{node_id}' already exists in flow {flow.id}")

        node = FlowNode(
            tenant_id=flow.tenant_id,
            flow_id=flow.id,
            node_id=node_id,
            type=kind.value,
            name=name or node_id,
            config=config or {},
            position=position or {"x": 0, "y": 0},
        )
        db.add(node)
        db.commit()
        db.refresh(node)
        return node

    @staticmethod
    def update_node(
        db: Session,
        node: FlowNode,
        name: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        position: Optional[Dict[str, Any]] = None,
    ) -> FlowNode:
        """Rename/move a node or merge keys into its config"""
        if config:
            merged = {**(node.config or {}), **config}
            parse_node_config(NodeType(node.type), merged)
            node.update_config(config)
        if name:
            node.name = name
        if position:
            node.position = position
        db.commit()
        return node

    @staticmethod
    def remove_node(db: Session, flow: Flow, node_id: str) -> bool:
        """Remove a node and every edge touching it"""
        node = FlowService.find_node(db, flow.id, node_id)
        if not node:
            return False
        db.query(FlowEdge).filter(
            FlowEdge.flow_id == flow.id,
            or_(FlowEdge.source_node_id == node_id, FlowEdge.target_node_id == node_id)
        ).delete(synchronize_session=False)
        db.delete(node)
        db.commit()
        db.expire(flow, ["edges", "nodes"])
        return True

    @staticmethod
    def add_edge(
        db: Session,
        flow: Flow,
        source_node_id: str,
        target_node_id: str,
        condition: Optional[Dict[str, Any]] = None,
        label: Optional[str] = None,
        order: int = 0,
        edge_id: Optional[str] = None,
    ) -> FlowEdge:
        for end in (source_node_id, target_node_id):
            if not FlowService.find_node(db, flow.id, end):
                raise FlowDefinitionError(f"Edge references unknown node '{end}'")

        edge = FlowEdge(
            tenant_id=flow.tenant_id,
            flow_id=flow.id,
            edge_id=edge_id or str(uuid.uuid4()),
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            condition=EdgeCondition.model_validate(condition).model_dump(by_alias=True) if condition else None,
            label=label,
            order=order or 0,
        )
        db.add(edge)
        db.commit()
        db.refresh(edge)
        return edge

    @staticmethod
    def remove_edge(db: Session, flow: Flow, edge_id: str) -> bool:
        deleted = db.query(FlowEdge).filter(
            FlowEdge.flow_id == flow.id,
            FlowEdge.edge_id == edge_id
        ).delete(synchronize_session=False)
        db.commit()
        return bool(deleted)

    # ────────────────────────────────────────────
    # Engine lookups
    # ────────────────────────────────────────────

    @staticmethod
    def find_by_trigger(
        db: Session,
        instance_id: str,
        trigger: str,
        trigger_value: Optional[str] = None,
    ) -> List[Flow]:
        """Active flows of an instance for a trigger kind, by priority then age"""
        query = db.query(Flow).filter(
            Flow.instance_id == str(instance_id),
            Flow.trigger == trigger,
            Flow.is_active == True
        )
        if trigger_value:
            query = query.filter(Flow.trigger_value == trigger_value)
        return query.order_by(Flow.priority.asc(), Flow.created_at.asc(), Flow.id.asc()).all()

    @staticmethod
    def find_active_by_instance(db: Session, instance_id: str) -> List[Flow]:
        return db.query(Flow).filter(
            Flow.instance_id == str(instance_id),
            Flow.is_active == True
        ).order_by(Flow.priority.asc(), Flow.name.asc()).all()

    @staticmethod
    def find_start_node(db: Session, flow_id: int) -> Optional[FlowNode]:
        return db.query(FlowNode).filter(
            FlowNode.flow_id == flow_id,
            FlowNode.type == NodeType.START.value
        ).order_by(FlowNode.id.asc()).first()

    @staticmethod
    def find_node(db: Session, flow_id: int, node_id: Optional[str]) -> Optional[FlowNode]:
        if not node_id:
            return None
        return db.query(FlowNode).filter(
            FlowNode.flow_id == flow_id,
            FlowNode.node_id == node_id
        ).first()

    @staticmethod
    def find_edges_by_source(db: Session, flow_id: int, source_node_id: str) -> List[FlowEdge]:
        """Active outgoing edges in storage order (callers sort by `order` if they care)"""
        return db.query(FlowEdge).filter(
            FlowEdge.flow_id == flow_id,
            FlowEdge.source_node_id == source_node_id,
            FlowEdge.is_active == True
        ).order_by(FlowEdge.id.asc()).all()

    @staticmethod
    def find_active_execution(db: Session, conversation_id: int) -> Optional[FlowExecution]:
        """Newest running or paused execution of a conversation"""
        return db.query(FlowExecution).filter(
            FlowExecution.conversation_id == conversation_id,
            FlowExecution.status.in_(ACTIVE_STATUSES)
        ).order_by(FlowExecution.started_at.desc(), FlowExecution.id.desc()).first()

    @staticmethod
    def count_messages(db: Session, conversation_id: int) -> int:
        return db.query(Message).filter(Message.conversation_id == conversation_id).count()

    # ────────────────────────────────────────────
    # Executions (operator view)
    # ────────────────────────────────────────────

    @staticmethod
    def list_executions(
        db: Session,
        flow_id: int,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[FlowExecution]:
        """Executions of a flow, newest first"""
        query = db.query(FlowExecution).filter(FlowExecution.flow_id == flow_id)
        if status:
            query = query.filter(FlowExecution.status == status)
        return query.order_by(
            FlowExecution.started_at.desc(), FlowExecution.id.desc()
        ).limit(max(1, int(limit))).all()

    @staticmethod
    def count_executions(db: Session, flow_id: int, status: Optional[str] = None) -> int:
        query = db.query(FlowExecution).filter(FlowExecution.flow_id == flow_id)
        if status:
            query = query.filter(FlowExecution.status == status)
        return query.count()
