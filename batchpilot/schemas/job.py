"""
Job and task schemas.

A JobSpec describes one submission. A job owns its tasks; deleting the job
deletes them. ResourceFile objects are shared by every task of a batch.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

STDOUT_FILE = "stdout.txt"
STDERR_FILE = "stderr.txt"


class TaskState(str, Enum):
    """Task states. Tasks move ACTIVE -> (PREPARING) -> RUNNING -> COMPLETED."""
    ACTIVE = "active"
    PREPARING = "preparing"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ResourceFile:
    """A remote-fetchable input placed at file_path on the node."""
    source_url: str
    file_path: str


@dataclass(frozen=True)
class JobSpec:
    """One submission: a job bound to a pool with a fixed-size batch."""
    job_id: str
    pool_id: str
    task_count: int

    def __post_init__(self):
        if not self.job_id:
            raise ValueError("job_id is required")
        if self.task_count < 0:
            raise ValueError(f"task_count must not be negative, got {self.task_count}")


@dataclass(frozen=True)
class TaskSpec:
    """A task to add to a job."""
    id: str
    command_line: str
    resource_files: tuple[ResourceFile, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TaskInfo:
    """
    A task as reported by the service.

    A listing with select="id,state" only fills id and state.

    Attributes:
        id: Task identifier
        state: Current task state
        exit_code: Process exit code once completed
        failure_message: Set when the service could not run the task
    """
    id: str
    state: TaskState
    exit_code: Optional[int] = None
    failure_message: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.state == TaskState.COMPLETED


@dataclass(frozen=True)
class TaskResult:
    """
    The collected outcome of one task.

    Either failure_message is set, or output_file/content hold the stdout
    (exit code 0) or stderr (any other exit code) of the task.
    """
    task_id: str
    exit_code: Optional[int] = None
    output_file: Optional[str] = None
    content: Optional[str] = None
    failure_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failure_message is None and self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {"task_id": self.task_id, "exit_code": self.exit_code}
        if self.failure_message is not None:
            result["failure_message"] = self.failure_message
        else:
            result["output_file"] = self.output_file
            result["content"] = self.content
        return result


def task_id_for(index: int) -> str:
    """Deterministic task id for the index-th task of a batch."""
    return f"task-{index}"


def output_file_for(exit_code: Optional[int]) -> str:
    """Pick the output stream to fetch for a finished task."""
    return STDOUT_FILE if exit_code == 0 else STDERR_FILE
