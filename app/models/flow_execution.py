# app/models/flow_execution.py
"""
Flow execution model - the run state of one flow against one conversation.

Status machine:
    running -> paused | completed | failed | cancelled
    paused  -> running | failed | cancelled
Terminal states: completed, failed, cancelled.
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, Text, JSON, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.models.base import BaseModel


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (ExecutionStatus.RUNNING.value, ExecutionStatus.PAUSED.value)
TERMINAL_STATUSES = (
    ExecutionStatus.COMPLETED.value,
    ExecutionStatus.FAILED.value,
    ExecutionStatus.CANCELLED.value,
)

_TRANSITIONS = {
    ExecutionStatus.RUNNING.value: {
        ExecutionStatus.PAUSED.value,
        ExecutionStatus.COMPLETED.value,
        ExecutionStatus.FAILED.value,
        ExecutionStatus.CANCELLED.value,
    },
    ExecutionStatus.PAUSED.value: {
        ExecutionStatus.RUNNING.value,
        ExecutionStatus.FAILED.value,
        ExecutionStatus.CANCELLED.value,
    },
}


class InvalidTransitionError(ValueError):
    """Raised when an execution is asked to move to a status it cannot reach"""


class FlowExecution(BaseModel):
    __tablename__ = "flow_executions"

    flow_id = Column(Integer, ForeignKey("flows.id", ondelete="CASCADE"), index=True, nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), index=True, nullable=False)
    current_node_id = Column(String(100), nullable=True)
    status = Column(String(20), index=True, nullable=False, default=ExecutionStatus.RUNNING.value)
    variables = Column(JSON, nullable=True)

    started_at = Column(DateTime, index=True, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    meta_data = Column(JSON, nullable=True)

    flow = relationship("Flow", back_populates="executions")

    # ────────────────────────────────────────────
    # Status helpers
    # ────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _set_status(self, new_status: ExecutionStatus) -> None:
        target = new_status.value
        if self.status == target and target in TERMINAL_STATUSES:
            return
        if target not in _TRANSITIONS.get(self.status, set()):
            raise InvalidTransitionError(
                f"Execution {self.id} cannot move from '{self.status}' to '{target}'"
            )
        self.status = target

    def pause(self) -> None:
        self._set_status(ExecutionStatus.PAUSED)

    def resume(self) -> None:
        self._set_status(ExecutionStatus.RUNNING)

    def complete(self) -> None:
        already_done = self.status == ExecutionStatus.COMPLETED.value
        self._set_status(ExecutionStatus.COMPLETED)
        if not already_done:
            self.completed_at = datetime.utcnow()

    def fail(self, error_message: str) -> None:
        self._set_status(ExecutionStatus.FAILED)
        self.error_message = error_message
        self.completed_at = datetime.utcnow()

    # ────────────────────────────────────────────
    # Cursor and variable bag
    # ────────────────────────────────────────────

    def move_to_node(self, node_id: str) -> None:
        self.current_node_id = node_id

    def set_variable(self, key: str, value) -> None:
        # Reassign so the JSON column is flagged dirty
        self.variables = {**(self.variables or {}), key: value}

    def get_variable(self, key: str, default=None):
        return (self.variables or {}).get(key, default)

    def __repr__(self):
        return f"<FlowExecution {self.id} flow={self.flow_id} conv={self.conversation_id} [{self.status}]>"
