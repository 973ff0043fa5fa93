"""
Client protocols consumed by the lifecycle stages.

These interfaces abstract the remote services so that:
1. The provisioner, submitter, watcher and orchestrator have no SDK imports
2. The backend can be swapped (Azure Batch, an in-memory fake for tests)
3. Authentication and transport stay inside the implementation

Implementations raise RemoteServiceError when the service rejects a call.
"""

from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from batchpilot.schemas import (
    ImageInfo,
    NodeSummary,
    PoolDescriptor,
    TaskInfo,
    TaskSpec,
    VirtualMachineConfiguration,
)

IDLE_NODE_FILTER = "state eq 'idle'"
ID_STATE_SELECT = "id,state"


@runtime_checkable
class RemoteClient(Protocol):
    """Pool, node, job and task operations against a compute service."""

    def pool_exists(self, pool_id: str) -> bool:
        ...

    def get_pool(self, pool_id: str) -> PoolDescriptor:
        ...

    def create_pool(
        self,
        pool_id: str,
        vm_size: str,
        vm_configuration: VirtualMachineConfiguration,
        vm_count: int,
    ) -> None:
        ...

    def resize_pool(self, pool_id: str, dedicated_nodes: int, low_priority_nodes: int) -> None:
        ...

    def delete_pool(self, pool_id: str) -> None:
        ...

    def list_supported_images(self) -> list[ImageInfo]:
        ...

    def list_nodes(
        self,
        pool_id: str,
        filter: Optional[str] = None,
        select: Optional[str] = None,
    ) -> list[NodeSummary]:
        ...

    def create_job(self, job_id: str, pool_id: str) -> None:
        """Create a job bound to pool_id by reference."""
        ...

    def delete_job(self, job_id: str) -> None:
        ...

    def create_tasks(self, job_id: str, tasks: Sequence[TaskSpec]) -> None:
        """
        Add a batch of tasks to a job in one call.

        Raises:
            RemoteServiceError: If any task of the batch was rejected
        """
        ...

    def list_tasks(self, job_id: str, select: Optional[str] = None) -> list[TaskInfo]:
        ...

    def get_task_output(self, job_id: str, task_id: str, file_name: str) -> bytes:
        """Read a file written by a task, e.g. stdout.txt."""
        ...


@runtime_checkable
class StorageService(Protocol):
    """Blob container and upload operations used to stage resource files."""

    def create_container_if_not_exists(self, account: str, key: str, name: str) -> Any:
        """Return a container handle, creating the container when missing."""
        ...

    def upload_file(self, container: Any, local_path: Path) -> str:
        """Upload a file and return a signed, read-only URL to it."""
        ...

    def delete_container(self, container: Any) -> None:
        ...
