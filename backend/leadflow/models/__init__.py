"""Database models for the Leadflow automation backend."""

from .automation import Automation, AutomationFolder, RoundRobinCursor
from .runs import ExecutionRun, RunStatus

__all__ = ["Automation", "AutomationFolder", "RoundRobinCursor", "ExecutionRun", "RunStatus"]
