"""Flow definition store and execution listing"""
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from app.models.flow import Flow, FlowNode, FlowEdge
from app.models.flow_execution import FlowExecution, ExecutionStatus
from app.schemas.flow import FlowDefinition
from app.services.flow_service import FlowService, FlowDefinitionError

from tests.conftest import TENANT_ID, INSTANCE_ID


@pytest.fixture
def flow(db_session):
    return FlowService.create_flow(db_session, TENANT_ID, INSTANCE_ID, "Support", trigger_value="help")


class TestFlows:

    def test_create_flow_defaults(self, flow):
        assert flow.id is not None
        assert flow.trigger == "keyword"
        assert flow.priority == 1
        assert flow.is_active is True
        assert flow.usage_count == 0

    def test_create_flow_rejects_unknown_trigger(self, db_session):
        with pytest.raises(ValueError):
            FlowService.create_flow(db_session, TENANT_ID, INSTANCE_ID, "Bad", trigger="cron")

    def test_import_definition(self, db_session):
        definition = FlowDefinition.model_validate({
            "name": "Greeting",
            "instanceId": INSTANCE_ID,
            "trigger": "welcome",
            "nodes": [
                {"nodeId": "start", "type": "start"},
                {"nodeId": "ask", "type": "question", "config": {"question": "Name?", "saveAs": "name"}},
            ],
            "edges": [{"edgeId": "e1", "sourceNodeId": "start", "targetNodeId": "ask",
                       "condition": {"operator": "contains", "compareValue": "x"}}],
        })

        flow = FlowService.import_definition(db_session, TENANT_ID, definition)

        assert flow.trigger == "welcome"
        assert {node.node_id for node in flow.nodes} == {"start", "ask"}
        assert all(node.tenant_id == TENANT_ID for node in flow.nodes)
        ask = FlowService.find_node(db_session, flow.id, "ask")
        assert ask.config == {"question": "Name?", "saveAs": "name"}
        edge = flow.edges[0]
        assert edge.edge_id == "e1"
        assert edge.condition == {"variable": None, "operator": "contains", "compareValue": "x"}

    def test_import_requires_an_instance(self, db_session):
        definition = FlowDefinition.model_validate({"name": "Orphan"})
        with pytest.raises(FlowDefinitionError):
            FlowService.import_definition(db_session, TENANT_ID, definition)

    def test_get_flow_is_tenant_scoped(self, db_session, flow):
        assert FlowService.get_flow(db_session, flow.id, TENANT_ID) is flow
        assert FlowService.get_flow(db_session, flow.id, "someone-else") is None

    def test_activate_and_deactivate(self, db_session, flow):
        FlowService.deactivate_flow(db_session, flow)
        assert FlowService.find_active_by_instance(db_session, INSTANCE_ID) == []
        FlowService.activate_flow(db_session, flow)
        assert FlowService.find_active_by_instance(db_session, INSTANCE_ID) == [flow]

    def test_delete_flow_cascades(self, db_session, flow, conversation):
        FlowService.add_node(db_session, flow, "start", "start")
        FlowService.add_node(db_session, flow, "end", "end")
        FlowService.add_edge(db_session, flow, "start", "end")
        db_session.add(FlowExecution(tenant_id=TENANT_ID, flow_id=flow.id, conversation_id=conversation.id))
        db_session.commit()
        db_session.refresh(flow)

        FlowService.delete_flow(db_session, flow)

        assert db_session.query(Flow).count() == 0
        assert db_session.query(FlowNode).count() == 0
        assert db_session.query(FlowEdge).count() == 0
        assert db_session.query(FlowExecution).count() == 0


class TestNodesAndEdges:

    def test_add_node_validates_config(self, db_session, flow):
        with pytest.raises(ValidationError):
            FlowService.add_node(db_session, flow, "hook", "webhook", config={"payload": "not-a-dict"})

    def test_add_node_rejects_duplicates(self, db_session, flow):
        FlowService.add_node(db_session, flow, "start", "start")
        with pytest.raises(FlowDefinitionError):
            FlowService.add_node(db_session, flow, "start", "start")

    def test_same_node_id_in_two_flows(self, db_session, flow):
        other = FlowService.create_flow(db_session, TENANT_ID, INSTANCE_ID, "Other")
        FlowService.add_node(db_session, flow, "start", "start")
        FlowService.add_node(db_session, other, "start", "start")

        assert FlowService.find_node(db_session, flow.id, "start").flow_id == flow.id
        assert FlowService.find_node(db_session, other.id, "start").flow_id == other.id

    def test_update_node_merges_config(self, db_session, flow):
        node = FlowService.add_node(db_session, flow, "ask", "question", config={"question": "Age?"})

        FlowService.update_node(db_session, node, name="Ask age", config={"saveAs": "age"})

        assert node.name == "Ask age"
        assert node.config == {"question": "Age?", "saveAs": "age"}

    def test_add_edge_requires_known_nodes(self, db_session, flow):
        FlowService.add_node(db_session, flow, "start", "start")
        with pytest.raises(FlowDefinitionError, match="ghost"):
            FlowService.add_edge(db_session, flow, "start", "ghost")

    def test_remove_node_drops_touching_edges(self, db_session, flow):
        for node_id, kind in (("start", "start"), ("mid", "message"), ("end", "end")):
            FlowService.add_node(db_session, flow, node_id, kind)
        FlowService.add_edge(db_session, flow, "start", "mid")
        FlowService.add_edge(db_session, flow, "mid", "end")
        kept = FlowService.add_edge(db_session, flow, "start", "end")

        assert FlowService.remove_node(db_session, flow, "mid") is True
        assert FlowService.remove_node(db_session, flow, "mid") is False

        remaining = db_session.query(FlowEdge).filter(FlowEdge.flow_id == flow.id).all()
        assert [edge.edge_id for edge in remaining] == [kept.edge_id]

    def test_remove_edge(self, db_session, flow):
        FlowService.add_node(db_session, flow, "start", "start")
        FlowService.add_node(db_session, flow, "end", "end")
        FlowService.add_edge(db_session, flow, "start", "end", edge_id="e1")

        assert FlowService.remove_edge(db_session, flow, "e1") is True
        assert FlowService.remove_edge(db_session, flow, "e1") is False

    def test_edges_by_source_keep_storage_order(self, db_session, flow):
        for node_id in ("start", "a", "b"):
            FlowService.add_node(db_session, flow, node_id, "start" if node_id == "start" else "end")
        FlowService.add_edge(db_session, flow, "start", "a", order=9, edge_id="first")
        FlowService.add_edge(db_session, flow, "start", "b", order=1, edge_id="second")
        inactive = FlowService.add_edge(db_session, flow, "start", "b", edge_id="off")
        inactive.is_active = False
        db_session.commit()

        edges = FlowService.find_edges_by_source(db_session, flow.id, "start")

        assert [edge.edge_id for edge in edges] == ["first", "second"]


class TestLookups:

    def test_find_by_trigger_orders_by_priority_then_age(self, db_session):
        later = FlowService.create_flow(db_session, TENANT_ID, INSTANCE_ID, "B", trigger_value="x", priority=2)
        first = FlowService.create_flow(db_session, TENANT_ID, INSTANCE_ID, "A", trigger_value="x", priority=2)
        top = FlowService.create_flow(db_session, TENANT_ID, INSTANCE_ID, "C", trigger_value="x", priority=1)
        first.created_at = later.created_at - timedelta(minutes=5)
        db_session.commit()

        flows = FlowService.find_by_trigger(db_session, INSTANCE_ID, "keyword")

        assert flows == [top, first, later]

    def test_find_by_trigger_with_value(self, db_session, flow):
        FlowService.create_flow(db_session, TENANT_ID, INSTANCE_ID, "Other", trigger_value="sales")

        assert FlowService.find_by_trigger(db_session, INSTANCE_ID, "keyword", "help") == [flow]

    def test_find_start_node(self, db_session, flow):
        assert FlowService.find_start_node(db_session, flow.id) is None
        FlowService.add_node(db_session, flow, "begin", "start")
        assert FlowService.find_start_node(db_session, flow.id).node_id == "begin"

    def test_find_active_execution_prefers_newest(self, db_session, flow, conversation):
        now = datetime.utcnow()
        old = FlowExecution(tenant_id=TENANT_ID, flow_id=flow.id, conversation_id=conversation.id,
                            status="paused", started_at=now - timedelta(hours=1))
        new = FlowExecution(tenant_id=TENANT_ID, flow_id=flow.id, conversation_id=conversation.id,
                            status="running", started_at=now)
        done = FlowExecution(tenant_id=TENANT_ID, flow_id=flow.id, conversation_id=conversation.id,
                             status="completed", started_at=now + timedelta(hours=1))
        db_session.add_all([old, new, done])
        db_session.commit()

        assert FlowService.find_active_execution(db_session, conversation.id) is new


class TestExecutionListing:

    def _seed(self, db_session, flow, conversation):
        now = datetime.utcnow()
        statuses = ["completed", "failed", "completed", "failed", "paused"]
        for minutes, status in enumerate(statuses):
            db_session.add(FlowExecution(
                tenant_id=TENANT_ID, flow_id=flow.id, conversation_id=conversation.id,
                status=status, started_at=now + timedelta(minutes=minutes),
                error_message="boom" if status == "failed" else None,
            ))
        db_session.commit()

    def test_newest_first_with_limit(self, db_session, flow, conversation):
        self._seed(db_session, flow, conversation)

        executions = FlowService.list_executions(db_session, flow.id, limit=2)

        assert [e.status for e in executions] == ["paused", "failed"]

    def test_filter_by_status(self, db_session, flow, conversation):
        self._seed(db_session, flow, conversation)

        failed = FlowService.list_executions(db_session, flow.id, status=ExecutionStatus.FAILED.value)

        assert len(failed) == 2
        assert all(e.error_message == "boom" for e in failed)
        assert FlowService.count_executions(db_session, flow.id) == 5
        assert FlowService.count_executions(db_session, flow.id, "completed") == 2
