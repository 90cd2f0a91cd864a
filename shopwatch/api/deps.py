"""FastAPI dependencies."""

from shopwatch.db.store import MonitorStore
from shopwatch.worker.tasks import TaskRunner, task_runner


def get_task_runner() -> TaskRunner:
    """Dependency for the process-wide task runner."""
    return task_runner


def get_store() -> MonitorStore:
    """Dependency for the monitor store the runner scans."""
    return task_runner.engine.store
