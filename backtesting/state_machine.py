"""
Backtesting - Task State Machine.

============================================================
PURPOSE
============================================================
Guards backtest task status changes.

STATE MACHINE:

    PENDING ──► RUNNING ──► COMPLETED
       ▲           │
       │           ├──────► STOPPED ──┐
       │           │                  │
       │           └──────► FAILED ───┤
       │                              │
       └──────── retry ◄──────────────┘

INVARIANTS:
- A task is always in exactly one status
- Retry keeps the checkpoint so the next run resumes
- COMPLETED is final

============================================================
"""

import logging
from typing import Dict, Optional, Set

from core.exceptions import TaskStateError

from .types import BacktestTask, TaskStatus


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[TaskStatus, Set[TaskStatus]] = {
    TaskStatus.PENDING: {
        TaskStatus.RUNNING,
    },
    TaskStatus.RUNNING: {
        TaskStatus.COMPLETED,
        TaskStatus.STOPPED,
        TaskStatus.FAILED,
    },
    TaskStatus.STOPPED: {
        TaskStatus.PENDING,
    },
    TaskStatus.FAILED: {
        TaskStatus.PENDING,
    },
    # Final
    TaskStatus.COMPLETED: set(),
}


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """Checks transitions and gives a reason when one is denied."""

    @staticmethod
    def can_transition(
        from_status: TaskStatus,
        to_status: TaskStatus,
    ) -> tuple[bool, str]:
        """
        Check if transition is allowed.

        Returns:
            Tuple of (allowed, reason)
        """
        if to_status in VALID_TRANSITIONS.get(from_status, set()):
            return True, "Valid transition"
        if from_status == TaskStatus.COMPLETED:
            return False, "Task is already completed"
        return False, f"Invalid transition: {from_status.value} -> {to_status.value}"


def transition(
    task: BacktestTask,
    to_status: TaskStatus,
    reason: str = "",
    error_message: Optional[str] = None,
) -> None:
    """
    Move a task to a new status.

    Raises:
        TaskStateError: if the transition is not allowed
    """
    allowed, why = TransitionGuard.can_transition(task.status, to_status)
    if not allowed:
        raise TaskStateError(
            f"Cannot move task {task.id} to {to_status.value}: {why}",
            task_id=task.id,
            status=task.status.value,
        )

    logger.info(
        f"Task {task.id}: {task.status.value} -> {to_status.value}"
        + (f" ({reason})" if reason else "")
    )
    task.status = to_status
    if to_status == TaskStatus.FAILED:
        task.error_message = error_message
    elif to_status == TaskStatus.PENDING:
        task.error_message = None
