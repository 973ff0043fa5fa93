"""
batchpilot.schemas - Data structures shared by the lifecycle stages.

PoolSpec -> PoolDescriptor -> JobSpec -> TaskSpec -> TaskInfo -> TaskResult

Lifecycle:
1. PoolSpec: The pool a run needs (pool_id is the idempotency key)
2. PoolDescriptor: The service's snapshot of the pool, PoolPhase derived from it
3. JobSpec: One submission bound to a pool by reference
4. TaskSpec: A task to add, sharing ResourceFile objects with its batch
5. TaskInfo: A task as reported back while polling
6. TaskResult: The collected output or failure of a finished task
"""

from .pool import (
    AllocationState,
    ImageInfo,
    ImageReference,
    NodeState,
    NodeSummary,
    PoolDescriptor,
    PoolLifecycleState,
    PoolPhase,
    PoolSpec,
    VirtualMachineConfiguration,
    pool_phase,
)
from .job import (
    STDERR_FILE,
    STDOUT_FILE,
    JobSpec,
    ResourceFile,
    TaskInfo,
    TaskResult,
    TaskSpec,
    TaskState,
    output_file_for,
    task_id_for,
)

__all__ = [
    # Pool
    "AllocationState",
    "ImageInfo",
    "ImageReference",
    "NodeState",
    "NodeSummary",
    "PoolDescriptor",
    "PoolLifecycleState",
    "PoolPhase",
    "PoolSpec",
    "VirtualMachineConfiguration",
    "pool_phase",
    # Job and tasks
    "STDERR_FILE",
    "STDOUT_FILE",
    "JobSpec",
    "ResourceFile",
    "TaskInfo",
    "TaskResult",
    "TaskSpec",
    "TaskState",
    "output_file_for",
    "task_id_for",
]
