"""Execution recorders.

A recorder is the durable log of workflow runs. The engine writes a RUNNING
record before the first action, optionally appends each outcome as it is
produced, and makes a single terminal write at the end. Terminal records are
immutable.
"""

from __future__ import annotations

import copy
import json
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, relationship

from ..core.exceptions import PersistenceError, RecordImmutableError
from ..core.logger import get_logger
from .models import ActionOutcome, ExecutionRecord, ExecutionStatus

logger = get_logger("automation.recorder")


def new_execution_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now(UTC).isoformat()


class ExecutionRecorder(ABC):
    """Durable log of workflow executions."""

    @abstractmethod
    def create_running(
        self,
        workflow_id: str,
        trigger_data: Any = None,
        *,
        scope_id: str | None = None,
        triggered_by: str | None = None,
    ) -> str:
        """Create a RUNNING record and return its execution id."""

    @abstractmethod
    def append_outcome(self, execution_id: str, outcome: ActionOutcome) -> None:
        """Append one action outcome to a running record."""

    @abstractmethod
    def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        outcomes: Sequence[ActionOutcome],
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> None:
        """Write the terminal state of a run.

        ``outcomes`` is the complete ordered outcome list and replaces any
        outcomes appended earlier.

        Raises:
            RecordImmutableError: If the record is already terminal
            PersistenceError: If the record is missing or cannot be written
        """

    @abstractmethod
    def get(self, execution_id: str) -> ExecutionRecord | None:
        """Load a record by id."""

    @abstractmethod
    def list_executions(
        self,
        workflow_id: str | None = None,
        scope_id: str | None = None,
        status: ExecutionStatus | str | None = None,
        limit: int = 20,
    ) -> list[ExecutionRecord]:
        """List records, newest first."""

    @staticmethod
    def _check_terminal_status(status: ExecutionStatus | str) -> ExecutionStatus:
        status = ExecutionStatus(status)
        if not status.is_terminal:
            raise ValueError(f"finalize requires a terminal status, got {status.value}")
        return status


class InMemoryExecutionRecorder(ExecutionRecorder):
    """Thread-safe recorder that keeps records in process memory."""

    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        self._lock = threading.Lock()

    def create_running(
        self,
        workflow_id: str,
        trigger_data: Any = None,
        *,
        scope_id: str | None = None,
        triggered_by: str | None = None,
    ) -> str:
        record = ExecutionRecord(
            id=new_execution_id(),
            workflow_id=workflow_id,
            trigger_data=copy.deepcopy(trigger_data),
            scope_id=scope_id,
            triggered_by=triggered_by,
            started_at=_now(),
        )
        with self._lock:
            self._records[record.id] = record
        logger.debug("Created execution %s for workflow %s", record.id, workflow_id)
        return record.id

    def _running(self, execution_id: str) -> ExecutionRecord:
        record = self._records.get(execution_id)
        if record is None:
            raise PersistenceError(f"Execution record not found: {execution_id}", execution_id)
        if record.is_terminal:
            raise RecordImmutableError(execution_id)
        return record

    def append_outcome(self, execution_id: str, outcome: ActionOutcome) -> None:
        with self._lock:
            self._running(execution_id).outcomes.append(copy.deepcopy(outcome))

    def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        outcomes: Sequence[ActionOutcome],
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> None:
        status = self._check_terminal_status(status)
        with self._lock:
            record = self._running(execution_id)
            record.outcomes = [copy.deepcopy(outcome) for outcome in outcomes]
            record.status = status
            record.completed_at = _now()
            record.execution_time_ms = execution_time_ms
            record.error_message = error_message
        logger.debug("Finalized execution %s as %s", execution_id, status.value)

    def get(self, execution_id: str) -> ExecutionRecord | None:
        with self._lock:
            record = self._records.get(execution_id)
            return copy.deepcopy(record) if record is not None else None

    def list_executions(
        self,
        workflow_id: str | None = None,
        scope_id: str | None = None,
        status: ExecutionStatus | str | None = None,
        limit: int = 20,
    ) -> list[ExecutionRecord]:
        wanted = ExecutionStatus(status) if status is not None else None
        with self._lock:
            records = list(reversed(self._records.values()))
        matches = [
            record
            for record in records
            if (workflow_id is None or record.workflow_id == workflow_id)
            and (scope_id is None or record.scope_id == scope_id)
            and (wanted is None or record.status is wanted)
        ]
        return [copy.deepcopy(record) for record in matches[:limit]]

    def __len__(self) -> int:
        return len(self._records)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for execution tables."""

    pass


class ExecutionRow(Base):
    """Persistent execution record.

    Attributes:
        pk: Surrogate key, gives insertion order
        execution_id: Public execution id
        workflow_id: Workflow that ran
        scope_id: Tenant scope of the run
        triggered_by: Actor that triggered the run
        trigger_data_json: JSON trigger payload
        status: running, succeeded or failed
        started_at: ISO timestamp when the run started
        completed_at: ISO timestamp of the terminal write
        execution_time_ms: Wall time of the run
        error_message: Last error of a failed run
        outcomes: Ordered action outcome rows
    """

    __tablename__ = "workflow_executions"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String(64), unique=True, index=True, nullable=False)
    workflow_id = Column(String(255), index=True, nullable=False)
    scope_id = Column(String(255), index=True, nullable=True)
    triggered_by = Column(String(255), nullable=True)
    trigger_data_json = Column(Text, nullable=True)
    status = Column(String(20), index=True, nullable=False)
    started_at = Column(String(40), nullable=False)
    completed_at = Column(String(40), nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    outcomes = relationship(
        "OutcomeRow",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="OutcomeRow.position",
        lazy="selectin",
    )

    def to_record(self) -> ExecutionRecord:
        return ExecutionRecord(
            id=self.execution_id,
            workflow_id=self.workflow_id,
            trigger_data=_loads(self.trigger_data_json),
            scope_id=self.scope_id,
            triggered_by=self.triggered_by,
            status=ExecutionStatus(self.status),
            started_at=self.started_at,
            completed_at=self.completed_at,
            execution_time_ms=self.execution_time_ms,
            error_message=self.error_message,
            outcomes=[row.to_outcome() for row in self.outcomes],
        )


class OutcomeRow(Base):
    """One action outcome of an execution."""

    __tablename__ = "workflow_action_outcomes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_pk = Column(
        Integer, ForeignKey("workflow_executions.pk", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False)
    action_type = Column(String(100), nullable=False)
    success = Column(Boolean, nullable=False)
    result_json = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    duration_ms = Column(Integer, default=0)

    execution = relationship("ExecutionRow", back_populates="outcomes")

    @classmethod
    def from_outcome(cls, outcome: ActionOutcome) -> OutcomeRow:
        return cls(
            position=outcome.index,
            action_type=outcome.action_type,
            success=outcome.success,
            result_json=_dumps(outcome.result),
            error=outcome.error,
            duration_ms=outcome.duration_ms,
        )

    def to_outcome(self) -> ActionOutcome:
        return ActionOutcome(
            index=self.position,
            action_type=self.action_type,
            success=bool(self.success),
            result=_loads(self.result_json),
            error=self.error,
            duration_ms=self.duration_ms or 0,
        )


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str, ensure_ascii=False)


def _loads(value: str | None) -> Any:
    if value is None:
        return None
    return json.loads(value)


class SQLExecutionRecorder(ExecutionRecorder):
    """Recorder backed by a SQLAlchemy database.

    Trigger data and action results are stored as JSON text. Values JSON has no
    type for come back converted: tuples as lists, anything else (datetime,
    Decimal, ...) as its ``str()``. Handlers that need exact round trips must
    return JSON-safe results.

    Example:
        ```python
        recorder = SQLExecutionRecorder("sqlite:///executions.db")
        execution_id = recorder.create_running("wf-1", {"order_id": 7})
        ```
    """

    def __init__(self, db_url: str, echo: bool = False) -> None:
        """Initialize the recorder and create tables.

        Args:
            db_url: SQLAlchemy database URL
            echo: Enable SQL logging

        Raises:
            PersistenceError: If the database cannot be initialized
        """
        connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
        try:
            self.engine = create_engine(db_url, echo=echo, connect_args=connect_args)
            Base.metadata.create_all(self.engine)
            logger.info("Initialized execution recorder with database: %s", db_url)
        except SQLAlchemyError as exc:
            logger.error("Failed to initialize execution recorder: %s", exc, exc_info=True)
            raise PersistenceError(f"Failed to initialize execution database: {exc}") from exc

    def get_session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    @contextmanager
    def _session(self, action: str, execution_id: str | None = None) -> Iterator[Session]:
        session: Session | None = None
        try:
            session = self.get_session()
            yield session
            session.commit()
        except PersistenceError:
            if session is not None:
                session.rollback()
            raise
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            if session is not None:
                session.rollback()
            logger.error("Failed to %s: %s", action, exc, exc_info=True)
            raise PersistenceError(f"Failed to {action}: {exc}", execution_id) from exc
        finally:
            if session is not None:
                session.close()

    @staticmethod
    def _load_running(session: Session, execution_id: str) -> ExecutionRow:
        row = session.scalars(
            select(ExecutionRow).where(ExecutionRow.execution_id == execution_id)
        ).first()
        if row is None:
            raise PersistenceError(f"Execution record not found: {execution_id}", execution_id)
        if ExecutionStatus(row.status).is_terminal:
            raise RecordImmutableError(execution_id)
        return row

    def create_running(
        self,
        workflow_id: str,
        trigger_data: Any = None,
        *,
        scope_id: str | None = None,
        triggered_by: str | None = None,
    ) -> str:
        execution_id = new_execution_id()
        with self._session("create execution record", execution_id) as session:
            session.add(
                ExecutionRow(
                    execution_id=execution_id,
                    workflow_id=workflow_id,
                    scope_id=scope_id,
                    triggered_by=triggered_by,
                    trigger_data_json=_dumps(trigger_data),
                    status=ExecutionStatus.RUNNING.value,
                    started_at=_now(),
                )
            )
        logger.debug("Created execution %s for workflow %s", execution_id, workflow_id)
        return execution_id

    def append_outcome(self, execution_id: str, outcome: ActionOutcome) -> None:
        with self._session("append action outcome", execution_id) as session:
            row = self._load_running(session, execution_id)
            row.outcomes.append(OutcomeRow.from_outcome(outcome))

    def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        outcomes: Sequence[ActionOutcome],
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> None:
        status = self._check_terminal_status(status)
        with self._session("finalize execution record", execution_id) as session:
            row = self._load_running(session, execution_id)
            row.outcomes.clear()
            session.flush()
            row.outcomes.extend(OutcomeRow.from_outcome(outcome) for outcome in outcomes)
            row.status = status.value
            row.completed_at = _now()
            row.execution_time_ms = execution_time_ms
            row.error_message = error_message
        logger.debug("Finalized execution %s as %s", execution_id, status.value)

    def get(self, execution_id: str) -> ExecutionRecord | None:
        with self._session("load execution record", execution_id) as session:
            row = session.scalars(
                select(ExecutionRow).where(ExecutionRow.execution_id == execution_id)
            ).first()
            return row.to_record() if row is not None else None

    def list_executions(
        self,
        workflow_id: str | None = None,
        scope_id: str | None = None,
        status: ExecutionStatus | str | None = None,
        limit: int = 20,
    ) -> list[ExecutionRecord]:
        query = select(ExecutionRow)
        if workflow_id is not None:
            query = query.where(ExecutionRow.workflow_id == workflow_id)
        if scope_id is not None:
            query = query.where(ExecutionRow.scope_id == scope_id)
        if status is not None:
            query = query.where(ExecutionRow.status == ExecutionStatus(status).value)
        query = query.order_by(ExecutionRow.pk.desc()).limit(limit)

        with self._session("list execution records") as session:
            return [row.to_record() for row in session.scalars(query)]

    def close(self) -> None:
        """Dispose of the database engine."""
        self.engine.dispose()


__all__ = [
    "ExecutionRecorder",
    "InMemoryExecutionRecorder",
    "SQLExecutionRecorder",
    "ExecutionRow",
    "OutcomeRow",
    "new_execution_id",
]
