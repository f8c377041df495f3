"""
Execution tracking for one end-to-end run of an automation

State machine: running -> completed | failed. Both are terminal; a re-run always
creates a fresh execution.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...exceptions import ExecutionStateError
from ...models_automation import AutomationExecution, AutomationExecutionLog
from ...shared.dates import utcnow
from .dispatcher import DeliveryOutcome
from .filters import Recipient
from .repository import AutomationRepository
from .schemas import ExecutionStatus, ExecutionType, LogStatus

logger = logging.getLogger(__name__)


class ExecutionTracker:
    """Creates the execution row, appends per-recipient logs and closes the run"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AutomationRepository()
        self.execution: Optional[AutomationExecution] = None
        self.success_count = 0
        self.failure_count = 0

    @property
    def recorded_count(self) -> int:
        return self.success_count + self.failure_count

    def start(
        self,
        automation_id: int,
        executed_by: Optional[int] = None,
        execution_type: ExecutionType = ExecutionType.MANUAL,
        trigger_key: Optional[str] = None,
    ) -> AutomationExecution:
        """Insert the running execution; a duplicate trigger_key raises IntegrityError"""
        if self.execution is not None:
            raise ExecutionStateError("Execution already started")

        self.execution = self.repo.create_execution(
            self.db,
            automation_id=automation_id,
            executed_by=executed_by,
            execution_type=execution_type.value,
            status=ExecutionStatus.RUNNING.value,
            target_count=0,
            success_count=0,
            failure_count=0,
            trigger_key=trigger_key,
        )
        logger.info(
            f"🚀 Execution {self.execution.id} started for automation {automation_id} "
            f"({execution_type.value})"
        )
        return self.execution

    def _require_running(self) -> AutomationExecution:
        if self.execution is None:
            raise ExecutionStateError("Execution not started")
        if ExecutionStatus(self.execution.status).is_terminal:
            raise ExecutionStateError(
                f"Execution {self.execution.id} is already {self.execution.status}"
            )
        return self.execution

    def record(self, recipient: Recipient, outcome: DeliveryOutcome) -> AutomationExecutionLog:
        """Append one log row for a recipient outcome"""
        execution = self._require_running()
        log = self.repo.add_log(
            self.db,
            execution_id=execution.id,
            target_phone=recipient.phone,
            target_name=recipient.name,
            status=LogStatus.SENT.value if outcome.success else LogStatus.FAILED.value,
            message_id=outcome.message_id,
            error_message=None if outcome.success else outcome.error,
        )
        if outcome.success:
            self.success_count += 1
        else:
            self.failure_count += 1
        return log

    def complete(self, target_count: Optional[int] = None) -> AutomationExecution:
        """Terminal transition running -> completed (also for partial failures)"""
        execution = self._require_running()
        # Counts come from the stored rows, not the in-memory tallies
        success_count = self.repo.count_logs(self.db, execution.id, LogStatus.SENT.value)
        failure_count = self.repo.count_logs(self.db, execution.id, LogStatus.FAILED.value)
        execution = self.repo.update_execution(
            self.db,
            execution,
            status=ExecutionStatus.COMPLETED.value,
            target_count=success_count + failure_count if target_count is None else target_count,
            success_count=success_count,
            failure_count=failure_count,
            completed_at=utcnow(),
        )
        logger.info(
            f"📊 Execution {execution.id} completed: {execution.success_count} sent, "
            f"{execution.failure_count} failed"
        )
        return execution

    def fail(self, error_message: str) -> AutomationExecution:
        """Terminal transition running -> failed; counts keep what was recorded"""
        # The triggering error may have left the session unusable
        self.db.rollback()
        execution = self._require_running()
        execution = self.repo.update_execution(
            self.db,
            execution,
            status=ExecutionStatus.FAILED.value,
            target_count=self.recorded_count,
            success_count=self.success_count,
            failure_count=self.failure_count,
            error_message=error_message,
            completed_at=utcnow(),
        )
        logger.error(f"❌ Execution {execution.id} failed: {error_message}")
        return execution
