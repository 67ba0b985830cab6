from enum import Enum

class TaskStatus(Enum):
    """Status of a workflow step."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    WARNING = "warning"

    @property
    def finished(self):
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.WARNING)
