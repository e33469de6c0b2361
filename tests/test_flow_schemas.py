import pytest
from pydantic import ValidationError

from app.models.flow import NodeType
from app.schemas.flow import (
    DelayNodeConfig,
    FlowDefinition,
    QuestionNodeConfig,
    WebhookNodeConfig,
    parse_node_config,
)


class TestNodeConfigs:

    def test_configs_are_typed_per_node(self):
        config = parse_node_config(NodeType.QUESTION, {"question": "Age?", "saveAs": "age"})
        assert isinstance(config, QuestionNodeConfig)
        assert config.save_as == "age"

    def test_unknown_keys_are_kept(self):
        config = parse_node_config(NodeType.MESSAGE, {"message": "hi", "buttons": ["a"]})
        assert config.model_extra == {"buttons": ["a"]}

    def test_webhook_defaults(self):
        config = parse_node_config(NodeType.WEBHOOK, None)
        assert isinstance(config, WebhookNodeConfig)
        assert config.method == "POST"
        assert config.headers == {}
        assert config.payload == {}

    @pytest.mark.parametrize("delay,expected", [
        (2000, 2000),
        ("1500", 1500),
        ("300ms", 300),
        (12.9, 12),
        (0, 1000),
        ("", 1000),
        ("later", 1000),
        (None, 1000),
        (True, 1000),
        (-50, 0),
    ])
    def test_delay_ms(self, delay, expected):
        assert DelayNodeConfig(delay=delay).delay_ms(1000) == expected


class TestFlowDefinition:

    def _raw(self, **extra):
        raw = {
            "name": "Support",
            "triggerValue": "help",
            "nodes": [
                {"nodeId": "start", "type": "start"},
                {"nodeId": "bye", "type": "end"},
            ],
            "edges": [{"sourceNodeId": "start", "targetNodeId": "bye"}],
        }
        raw.update(extra)
        return raw

    def test_valid_definition(self):
        definition = FlowDefinition.model_validate(self._raw())
        assert definition.trigger.value == "keyword"
        assert definition.trigger_value == "help"
        assert definition.priority == 1
        assert definition.is_active is True

    def test_unknown_node_type_is_rejected(self):
        raw = self._raw(nodes=[{"nodeId": "start", "type": "carousel"}], edges=[])
        with pytest.raises(ValidationError):
            FlowDefinition.model_validate(raw)

    def test_duplicate_node_ids_are_rejected(self):
        raw = self._raw(nodes=[{"nodeId": "start", "type": "start"}, {"nodeId": "start", "type": "end"}], edges=[])
        with pytest.raises(ValidationError, match="Duplicate node ids"):
            FlowDefinition.model_validate(raw)

    def test_edge_to_unknown_node_is_rejected(self):
        raw = self._raw(edges=[{"sourceNodeId": "start", "targetNodeId": "nowhere"}])
        with pytest.raises(ValidationError, match="nowhere"):
            FlowDefinition.model_validate(raw)

    def test_priority_must_be_positive(self):
        with pytest.raises(ValidationError):
            FlowDefinition.model_validate(self._raw(priority=0))

    def test_bad_node_config_is_rejected(self):
        raw = self._raw(nodes=[{"nodeId": "start", "type": "webhook", "config": {"headers": "nope"}}], edges=[])
        with pytest.raises(ValidationError):
            FlowDefinition.model_validate(raw)


class TestWebhookConfigNulls:

    def test_nulls_fall_back_to_defaults(self):
        config = parse_node_config(NodeType.WEBHOOK, {
            "url": "https://crm.example/hook",
            "method": None,
            "headers": None,
            "payload": None,
        })

        assert config.method == "POST"
        assert config.headers == {}
        assert config.payload == {}

    def test_definition_with_null_headers_imports(self):
        definition = FlowDefinition.model_validate({
            "name": "Notify",
            "nodes": [{"nodeId": "hook", "type": "webhook", "config": {"url": "https://x", "headers": None}}],
        })

        assert definition.nodes[0].config["headers"] is None
