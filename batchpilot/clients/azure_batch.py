"""
Azure Batch implementation of RemoteClient.

Wraps azure.batch.BatchServiceClient and translates between SDK models and
batchpilot schemas. Every BatchErrorException is re-raised as a
RemoteServiceError carrying the service code, message and detail pairs;
requests that never reach the service (ClientRequestError) are re-raised
the same way.

The service accepts at most 100 tasks per add_collection call, so a batch
is sent in chunks and all rejections are reported together.
"""

import logging
from contextlib import closing, contextmanager
from enum import Enum
from typing import Any, Iterator, Optional, Sequence

import azure.batch.models as batchmodels
from azure.batch import BatchServiceClient
from azure.batch.batch_auth import SharedKeyCredentials
from msrest.exceptions import ClientRequestError

from batchpilot.errors import RemoteServiceError
from batchpilot.schemas import (
    AllocationState,
    ImageInfo,
    ImageReference,
    NodeState,
    NodeSummary,
    PoolDescriptor,
    PoolLifecycleState,
    TaskInfo,
    TaskSpec,
    TaskState,
    VirtualMachineConfiguration,
)

logger = logging.getLogger(__name__)

MAX_TASKS_PER_REQUEST = 100


def _value(member: Any) -> Optional[str]:
    """Plain string value of an SDK enum member (or of a raw string)."""
    if member is None:
        return None
    if isinstance(member, Enum):
        return str(member.value)
    return str(member)


def _to_enum(enum_cls: type, member: Any, default: Any = None) -> Any:
    raw = _value(member)
    if raw is None:
        return default
    try:
        return enum_cls(raw.lower())
    except ValueError:
        return default


def remote_error_from_batch_error(error: Any, fallback: str = "") -> RemoteServiceError:
    """
    Build a RemoteServiceError from an SDK BatchError body.

    Args:
        error: A BatchError (code, message.value, values[key/value]) or None
        fallback: Message to use when the body carries none

    Returns:
        The translated RemoteServiceError
    """
    if error is None:
        return RemoteServiceError("Unknown", fallback or "request rejected")
    code = getattr(error, "code", None) or "Unknown"
    message_obj = getattr(error, "message", None)
    message = getattr(message_obj, "value", None) or fallback or str(message_obj or "")
    details = [
        (str(detail.key), str(detail.value))
        for detail in (getattr(error, "values", None) or [])
    ]
    return RemoteServiceError(code, message, details)


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except batchmodels.BatchErrorException as exc:
        raise remote_error_from_batch_error(exc.error, fallback=str(exc)) from exc
    except ClientRequestError as exc:
        # The request never reached the service (connection, DNS, TLS).
        raise RemoteServiceError("ClientRequestError", str(exc)) from exc


class AzureBatchClient:
    """RemoteClient backed by the Azure Batch service."""

    def __init__(self, service_client: BatchServiceClient):
        self._client = service_client

    @classmethod
    def from_credentials(cls, account_name: str, account_key: str, account_url: str) -> "AzureBatchClient":
        """Open a client with shared-key credentials."""
        credentials = SharedKeyCredentials(account_name, account_key)
        return cls(BatchServiceClient(credentials, batch_url=account_url))

    # -------------------------------------------------------------------------
    # Pools
    # -------------------------------------------------------------------------

    def pool_exists(self, pool_id: str) -> bool:
        with _translate_errors():
            return bool(self._client.pool.exists(pool_id))

    def get_pool(self, pool_id: str) -> PoolDescriptor:
        with _translate_errors():
            pool = self._client.pool.get(pool_id)
        return PoolDescriptor(
            id=pool.id,
            state=_to_enum(PoolLifecycleState, pool.state),
            allocation_state=_to_enum(AllocationState, pool.allocation_state),
            vm_size=pool.vm_size,
            target_dedicated_nodes=pool.target_dedicated_nodes,
            current_dedicated_nodes=pool.current_dedicated_nodes,
        )

    def create_pool(
        self,
        pool_id: str,
        vm_size: str,
        vm_configuration: VirtualMachineConfiguration,
        vm_count: int,
    ) -> None:
        image = vm_configuration.image
        parameter = batchmodels.PoolAddParameter(
            id=pool_id,
            vm_size=vm_size,
            virtual_machine_configuration=batchmodels.VirtualMachineConfiguration(
                image_reference=batchmodels.ImageReference(
                    publisher=image.publisher,
                    offer=image.offer,
                    sku=image.sku,
                    version=image.version,
                ),
                node_agent_sku_id=vm_configuration.node_agent_sku_id,
            ),
            target_dedicated_nodes=vm_count,
        )
        with _translate_errors():
            self._client.pool.add(parameter)

    def resize_pool(self, pool_id: str, dedicated_nodes: int, low_priority_nodes: int) -> None:
        parameter = batchmodels.PoolResizeParameter(
            target_dedicated_nodes=dedicated_nodes,
            target_low_priority_nodes=low_priority_nodes,
        )
        with _translate_errors():
            self._client.pool.resize(pool_id, parameter)

    def delete_pool(self, pool_id: str) -> None:
        with _translate_errors():
            self._client.pool.delete(pool_id)

    def list_supported_images(self) -> list[ImageInfo]:
        with _translate_errors():
            images = list(self._client.account.list_supported_images())
        result = []
        for info in images:
            ref = info.image_reference
            result.append(ImageInfo(
                image=ImageReference(
                    publisher=ref.publisher or "",
                    offer=ref.offer or "",
                    sku=ref.sku or "",
                    version=ref.version or "latest",
                ),
                node_agent_sku_id=info.node_agent_sku_id,
                os_type=_value(info.os_type) or "",
                verification=_value(info.verification_type) or "",
            ))
        return result

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def list_nodes(
        self,
        pool_id: str,
        filter: Optional[str] = None,
        select: Optional[str] = None,
    ) -> list[NodeSummary]:
        options = batchmodels.ComputeNodeListOptions(filter=filter, select=select)
        with _translate_errors():
            nodes = list(self._client.compute_node.list(pool_id, compute_node_list_options=options))
        return [
            NodeSummary(id=node.id, state=_to_enum(NodeState, node.state, NodeState.OTHER))
            for node in nodes
        ]

    # -------------------------------------------------------------------------
    # Jobs and tasks
    # -------------------------------------------------------------------------

    def create_job(self, job_id: str, pool_id: str) -> None:
        parameter = batchmodels.JobAddParameter(
            id=job_id,
            pool_info=batchmodels.PoolInformation(pool_id=pool_id),
        )
        with _translate_errors():
            self._client.job.add(parameter)

    def delete_job(self, job_id: str) -> None:
        with _translate_errors():
            self._client.job.delete(job_id)

    def create_tasks(self, job_id: str, tasks: Sequence[TaskSpec]) -> None:
        parameters = [
            batchmodels.TaskAddParameter(
                id=task.id,
                command_line=task.command_line,
                resource_files=[
                    batchmodels.ResourceFile(http_url=rf.source_url, file_path=rf.file_path)
                    for rf in task.resource_files
                ] or None,
            )
            for task in tasks
        ]

        rejected: list[tuple[str, Any]] = []
        for start in range(0, len(parameters), MAX_TASKS_PER_REQUEST):
            chunk = parameters[start:start + MAX_TASKS_PER_REQUEST]
            with _translate_errors():
                outcome = self._client.task.add_collection(job_id, chunk)
            for added in outcome.value or []:
                if _value(added.status) != "success":
                    rejected.append((added.task_id, added.error))

        if rejected:
            first = remote_error_from_batch_error(rejected[0][1])
            details = []
            for task_id, error in rejected:
                translated = remote_error_from_batch_error(error)
                details.append((task_id, f"{translated.code}: {translated.message}"))
            raise RemoteServiceError(
                first.code,
                f"{len(rejected)} of {len(parameters)} tasks rejected for job {job_id}",
                details,
            )

    def list_tasks(self, job_id: str, select: Optional[str] = None) -> list[TaskInfo]:
        options = batchmodels.TaskListOptions(select=select)
        with _translate_errors():
            tasks = list(self._client.task.list(job_id, task_list_options=options))
        result = []
        for task in tasks:
            execution = task.execution_info
            failure = execution.failure_info if execution is not None else None
            result.append(TaskInfo(
                id=task.id,
                state=_to_enum(TaskState, task.state, TaskState.ACTIVE),
                exit_code=execution.exit_code if execution is not None else None,
                failure_message=failure.message if failure is not None else None,
            ))
        return result

    def get_task_output(self, job_id: str, task_id: str, file_name: str) -> bytes:
        with _translate_errors():
            with closing(self._client.file.get_from_task(job_id, task_id, file_name)) as stream:
                return b"".join(stream)
