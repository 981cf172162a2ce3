"""
Core package

- BotOrchestrator: startup, event dispatch, message handling and shutdown
- TaskSupervisor: supervised task-per-message concurrency
- DropPolicy / RetryPolicy: what happens when a generation request fails
"""

from .dispatch import TaskSupervisor
from .failure_policy import DropPolicy, RetryPolicy, create_failure_policy
from .orchestrator import BotOrchestrator

__all__ = [
    "BotOrchestrator",
    "TaskSupervisor",
    "DropPolicy",
    "RetryPolicy",
    "create_failure_policy",
]
