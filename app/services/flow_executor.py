# app/services/flow_executor.py
"""
Flow executor - runs bot flows against conversations.

An execution walks the flow graph node by node:
- message/action/webhook/start nodes run and advance immediately
- a question node sends its prompt and pauses the execution; the next
  inbound message resumes it through continue_execution()
- a delay node hands the rest of the walk to the DelayScheduler
- end/human_handoff nodes (or a node without outgoing edges) complete it

Every transition is committed so the run can be picked up from the
database by a later message or timer.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests
from sqlalchemy.orm import Session

from app.core.config import FLOW_WEBHOOK_TIMEOUT, FLOW_DEFAULT_DELAY_MS, FLOW_HANDOFF_MESSAGE
from app.core.logging_config import get_flow_logger
from app.models.conversation import Conversation, ConversationStatus
from app.models.flow import Flow, FlowNode, NodeType, TriggerType
from app.models.flow_execution import FlowExecution, ExecutionStatus
from app.models.message import Message
from app.schemas.flow import (
    NodeConfig,
    MessageNodeConfig,
    QuestionNodeConfig,
    ConditionNodeConfig,
    DelayNodeConfig,
    ActionNodeConfig,
    WebhookNodeConfig,
    HumanHandoffNodeConfig,
    EndNodeConfig,
    parse_node_config,
)
from app.services.flow_conditions import evaluate_condition, replace_variables
from app.services.flow_runtime import ConversationLocks, DelayScheduler
from app.services.flow_service import FlowService
from app.services.transport import MessagingTransport

log = get_flow_logger("executor")

DEFAULT_MESSAGE_TEXT = "Message not configured"
DEFAULT_QUESTION_TEXT = "Question?"


def _wants_traceback(error: BaseException) -> bool:
    # A cyclic flow's traceback is a thousand identical frames
    return not isinstance(error, RecursionError)


class FlowExecutor:
    """Interpreter for flow graphs stored in the database"""

    def __init__(
        self,
        transport: MessagingTransport,
        scheduler: Optional[DelayScheduler] = None,
        session_factory: Optional[Callable[[], Any]] = None,
        locks: Optional[ConversationLocks] = None,
        webhook_timeout: Optional[float] = FLOW_WEBHOOK_TIMEOUT,
        default_delay_ms: int = FLOW_DEFAULT_DELAY_MS,
        handoff_message: str = FLOW_HANDOFF_MESSAGE,
    ):
        """
        Args:
            transport: sends outgoing messages to contacts
            scheduler: runs delay-node continuations
            session_factory: context manager yielding a Session, used by
                continuations that run outside the inbound message handler
            locks: per-conversation lock registry
        """
        if session_factory is None:
            from app.db.session import get_db_session
            session_factory = get_db_session

        self.transport = transport
        self.scheduler = scheduler or DelayScheduler()
        self.session_factory = session_factory
        self.locks = locks or ConversationLocks()
        self.webhook_timeout = webhook_timeout
        self.default_delay_ms = default_delay_ms
        self.handoff_message = handoff_message

        self._handlers: Dict[NodeType, Callable[[Session, FlowExecution, FlowNode, Any], None]] = {
            NodeType.START: self._execute_start_node,
            NodeType.MESSAGE: self._execute_message_node,
            NodeType.QUESTION: self._execute_question_node,
            NodeType.CONDITION: self._execute_condition_node,
            NodeType.DELAY: self._execute_delay_node,
            NodeType.ACTION: self._execute_action_node,
            NodeType.WEBHOOK: self._execute_webhook_node,
            NodeType.HUMAN_HANDOFF: self._execute_human_handoff_node,
            NodeType.END: self._execute_end_node,
        }

    # ────────────────────────────────────────────
    # Triggers
    # ────────────────────────────────────────────

    def check_triggers(self, db: Session, message_text: Optional[str], conversation_id: int, instance_id: str) -> None:
        """
        Start a flow if an inbound message matches a trigger.

        Keyword flows: first active flow (by priority) whose keyword appears
        in the text. Welcome flows: first active one, when this is the
        conversation's first message. Errors are logged, never raised.
        """
        try:
            text = (message_text or "").lower().strip()
            if not text:
                return

            with self.locks.get(conversation_id):
                keyword_flows = FlowService.find_by_trigger(db, instance_id, TriggerType.KEYWORD.value)
                for flow in keyword_flows:
                    if flow.trigger_value and flow.trigger_value.lower() in text:
                        log.info(f"🔑 Keyword '{flow.trigger_value}' matched flow {flow.name}")
                        self.execute_flow(db, flow, conversation_id, {"triggerMessage": text})
                        break

                conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
                if conversation and self.is_first_message(db, conversation_id):
                    welcome_flows = FlowService.find_by_trigger(db, instance_id, TriggerType.WELCOME.value)
                    if welcome_flows:
                        log.info(f"👋 First message in conversation {conversation_id}, starting welcome flow")
                        self.execute_flow(db, welcome_flows[0], conversation_id, {"isWelcome": True})

        except Exception as e:
            db.rollback()
            log.error(f"❌ Error checking flow triggers for conversation {conversation_id}: {e}", exc_info=True)

    def is_first_message(self, db: Session, conversation_id: int) -> bool:
        return FlowService.count_messages(db, conversation_id) <= 1

    # ────────────────────────────────────────────
    # Execution lifecycle
    # ────────────────────────────────────────────

    def execute_flow(
        self,
        db: Session,
        flow: Flow,
        conversation_id: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[FlowExecution]:
        """
        Start a new execution of `flow` for a conversation.

        Returns None when the conversation already has a running or paused
        execution, or when the execution record could not be stored. A run
        that breaks part way is returned marked failed.
        """
        execution = None
        try:
            with self.locks.get(conversation_id):
                log.info(f"▶️ Executing flow {flow.name} for conversation {conversation_id}")

                active = FlowService.find_active_execution(db, conversation_id)
                if active:
                    log.warning(
                        f"⚠️ Conversation {conversation_id} already has active execution {active.id}"
                    )
                    return None

                execution = FlowExecution(
                    tenant_id=flow.tenant_id,
                    flow_id=flow.id,
                    conversation_id=conversation_id,
                    status=ExecutionStatus.RUNNING.value,
                    variables=dict(context or {}),
                    started_at=datetime.utcnow(),
                )
                db.add(execution)
                db.commit()

                start_node = FlowService.find_start_node(db, flow.id)
                if not start_node:
                    execution.fail("Start node not found")
                    db.commit()
                    log.error(f"❌ Flow {flow.name} has no start node")
                    return execution

                flow.increment_usage()
                db.commit()

                self.execute_node(db, execution, start_node)
                return execution

        except Exception as e:
            log.error(f"❌ Error executing flow {flow.name}: {e}", exc_info=_wants_traceback(e))
            if execution is None or execution.id is None:
                db.rollback()
                return None
            self._fail_execution(db, execution, e)
            return execution

    def execute_node(self, db: Session, execution: FlowExecution, node: FlowNode) -> None:
        """Run one node; any error fails the execution"""
        try:
            log.info(f"Executing node {node.type}: {node.name} (execution {execution.id})")
            execution.move_to_node(node.node_id)
            db.commit()

            try:
                node_type = NodeType(node.type)
            except ValueError:
                node_type = None

            handler = self._handlers.get(node_type)
            if handler is None:
                log.warning(f"⚠️ Unrecognised node type '{node.type}' on node {node.node_id}, skipping")
                self.move_to_next_node(db, execution, node)
                return

            handler(db, execution, node, parse_node_config(node_type, node.config))

        except RecursionError:
            # Unwound to the entry point, which fails the execution with a shallow stack
            raise
        except Exception as e:
            log.error(f"❌ Error executing node {node.node_id}: {e}", exc_info=True)
            self._fail_execution(db, execution, e)

    def continue_execution(self, db: Session, conversation_id: int, user_response: Any) -> Optional[FlowExecution]:
        """
        Resume the conversation's paused execution with the user's answer.

        The answer is stored as `lastUserResponse` and, when the execution
        is waiting on a question node, also under the question's `saveAs`
        name (default `userResponse`).
        """
        execution = None
        try:
            with self.locks.get(conversation_id):
                execution = FlowService.find_active_execution(db, conversation_id)
                if not execution or execution.status != ExecutionStatus.PAUSED.value:
                    return None

                execution.set_variable("lastUserResponse", user_response)
                execution.resume()
                db.commit()

                current_node = FlowService.find_node(db, execution.flow_id, execution.current_node_id)
                if not current_node:
                    execution.fail("Current node not found")
                    db.commit()
                    return execution

                if current_node.type == NodeType.QUESTION.value:
                    config = parse_node_config(NodeType.QUESTION, current_node.config)
                    execution.set_variable(config.save_as or "userResponse", user_response)
                    db.commit()
                    self.move_to_next_node(db, execution, current_node)

                return execution

        except Exception as e:
            log.error(
                f"❌ Error continuing execution for conversation {conversation_id}: {e}",
                exc_info=_wants_traceback(e),
            )
            if execution is None:
                db.rollback()
                return None
            self._fail_execution(db, execution, e)
            return execution

    def resume_after_delay(self, execution_id: int, node_id: str) -> None:
        """Timer callback: continue an execution that was parked on a delay node"""
        with self.session_factory() as db:
            execution = db.query(FlowExecution).filter(FlowExecution.id == execution_id).first()
            if not execution:
                log.warning(f"⚠️ Delayed execution {execution_id} no longer exists")
                return

            with self.locks.get(execution.conversation_id):
                db.refresh(execution)
                if execution.status != ExecutionStatus.RUNNING.value or execution.current_node_id != node_id:
                    log.info(
                        f"Execution {execution_id} moved on ({execution.status} at "
                        f"{execution.current_node_id}), dropping delay continuation"
                    )
                    return

                node = FlowService.find_node(db, execution.flow_id, node_id)
                if not node:
                    execution.complete()
                    db.commit()
                    return

                log.info(f"⏰ Delay elapsed on node {node_id}, resuming execution {execution_id}")
                try:
                    self.move_to_next_node(db, execution, node)
                except Exception as e:
                    log.error(f"❌ Error resuming execution {execution_id}: {e}", exc_info=_wants_traceback(e))
                    self._fail_execution(db, execution, e)

    def _fail_execution(self, db: Session, execution: FlowExecution, error: BaseException) -> None:
        """Roll back the broken transaction and mark the execution failed"""
        try:
            db.rollback()
            db.refresh(execution)
            if not execution.is_finished:
                execution.fail(str(error) or type(error).__name__)
                db.commit()
        except Exception as e:
            db.rollback()
            log.error(f"❌ Could not mark execution as failed: {e}")

    # ────────────────────────────────────────────
    # Graph walking
    # ────────────────────────────────────────────

    def move_to_next_node(self, db: Session, execution: FlowExecution, current_node: FlowNode) -> None:
        """Follow the first outgoing edge; complete when there is nowhere to go"""
        edges = FlowService.find_edges_by_source(db, execution.flow_id, current_node.node_id)
        if not edges:
            execution.complete()
            db.commit()
            return

        next_node = FlowService.find_node(db, execution.flow_id, edges[0].target_node_id)
        if next_node:
            self.execute_node(db, execution, next_node)
        else:
            log.warning(f"⚠️ Edge from {current_node.node_id} points to missing node {edges[0].target_node_id}")
            execution.complete()
            db.commit()

    # ────────────────────────────────────────────
    # Node handlers
    # ────────────────────────────────────────────

    def _execute_start_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: NodeConfig) -> None:
        self.move_to_next_node(db, execution, node)

    def _execute_message_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: MessageNodeConfig) -> None:
        text = replace_variables(config.message or DEFAULT_MESSAGE_TEXT, execution.variables)
        self.send_message(db, execution.conversation_id, text)
        self.move_to_next_node(db, execution, node)

    def _execute_question_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: QuestionNodeConfig) -> None:
        question = replace_variables(config.question or DEFAULT_QUESTION_TEXT, execution.variables)
        self.send_message(db, execution.conversation_id, question)

        # Walk stops here until the contact answers
        execution.pause()
        db.commit()

    def _execute_condition_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: ConditionNodeConfig) -> None:
        value = execution.get_variable(config.variable)
        variables = execution.variables or {}
        edges = sorted(
            FlowService.find_edges_by_source(db, execution.flow_id, node.node_id),
            key=lambda edge: edge.order or 0,
        )

        for edge in edges:
            if edge.is_default:
                continue
            if evaluate_condition(edge.condition, value, variables):
                target = FlowService.find_node(db, execution.flow_id, edge.target_node_id)
                if target:
                    self.execute_node(db, execution, target)
                    return

        default_edge = next((edge for edge in edges if edge.is_default), None)
        if default_edge:
            target = FlowService.find_node(db, execution.flow_id, default_edge.target_node_id)
            if target:
                self.execute_node(db, execution, target)
                return

        execution.complete()
        db.commit()

    def _execute_delay_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: DelayNodeConfig) -> None:
        delay_ms = config.delay_ms(self.default_delay_ms)
        db.commit()
        log.info(f"⏸️ Execution {execution.id} waiting {delay_ms} ms on node {node.node_id}")
        self.scheduler.schedule(delay_ms, self.resume_after_delay, execution.id, node.node_id)

    def _execute_action_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: ActionNodeConfig) -> None:
        if config.action == "set_variable":
            if config.variable_name:
                execution.set_variable(config.variable_name, config.variable_value)
            else:
                log.warning(f"⚠️ set_variable on node {node.node_id} has no variableName")
        elif config.action == "add_tag":
            log.info(f"add_tag action on node {node.node_id} is not supported, ignoring")
        elif config.action == "change_status":
            conversation = self._get_conversation(db, execution.conversation_id)
            if conversation and config.status:
                conversation.change_status(config.status)
        else:
            log.warning(f"⚠️ Unknown action '{config.action}' on node {node.node_id}")

        db.commit()
        self.move_to_next_node(db, execution, node)

    def _execute_webhook_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: WebhookNodeConfig) -> None:
        body = {
            "conversationId": execution.conversation_id,
            "variables": execution.variables or {},
            **config.payload,
        }
        headers = {"Content-Type": "application/json"}
        headers.update({key: str(value) for key, value in config.headers.items()})

        try:
            log.debug(f"🌐 Webhook {config.method.upper()} {config.url}")
            response = requests.request(
                config.method.upper(),
                config.url,
                json=body,
                headers=headers,
                timeout=self.webhook_timeout,
            )
            execution.set_variable("webhookResponse", response.json())
        except (requests.RequestException, ValueError) as e:
            # Webhook failures are recorded, the flow keeps going
            log.error(f"❌ Webhook on node {node.node_id} failed: {e}")
            execution.set_variable("webhookError", str(e) or type(e).__name__)

        db.commit()
        self.move_to_next_node(db, execution, node)

    def _execute_human_handoff_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: HumanHandoffNodeConfig) -> None:
        conversation = self._get_conversation(db, execution.conversation_id)
        if conversation:
            conversation.change_status(ConversationStatus.PENDING.value)
            conversation.assigned_to_id = str(config.agent_id) if config.agent_id is not None else None
            db.commit()
            log.info(f"🙋 Conversation {conversation.id} handed off (agent={conversation.assigned_to_id})")

        self.send_message(db, execution.conversation_id, config.message or self.handoff_message)

        execution.complete()
        db.commit()

    def _execute_end_node(self, db: Session, execution: FlowExecution, node: FlowNode, config: EndNodeConfig) -> None:
        if config.message:
            self.send_message(db, execution.conversation_id, replace_variables(config.message, execution.variables))

        execution.complete()
        db.commit()
        log.info(f"🏁 Execution {execution.id} completed at node {node.node_id}")

    # ────────────────────────────────────────────
    # Outgoing messages
    # ────────────────────────────────────────────

    @staticmethod
    def _get_conversation(db: Session, conversation_id: int) -> Optional[Conversation]:
        return db.query(Conversation).filter(Conversation.id == conversation_id).first()

    def send_message(self, db: Session, conversation_id: int, text: str) -> Optional[Message]:
        """Send text to the conversation's contact and store it as outgoing"""
        try:
            conversation = self._get_conversation(db, conversation_id)
            if not conversation:
                return None

            provider_id = self.transport.send_message(conversation.instance_id, conversation.contact_id, text)

            message = Message(
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                message_id=provider_id,
                direction="outgoing",
                message_type="text",
                text=text,
                sent_at=datetime.utcnow(),
                is_read=True,
                meta_data={"source": "flow"},
            )
            db.add(message)
            conversation.register_message(text, "outgoing")
            db.commit()
            return message

        except RecursionError:
            raise
        except Exception as e:
            db.rollback()
            log.error(f"❌ Error sending flow message to conversation {conversation_id}: {e}")
            return None
