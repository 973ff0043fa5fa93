"""Tests for the Azure Batch RemoteClient.

The SDK service client is a MagicMock; these tests check the translation
between batchpilot schemas and SDK models, and of SDK errors.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import azure.batch.models as batchmodels
import pytest
from msrest.exceptions import ClientRequestError

from batchpilot.clients.azure_batch import AzureBatchClient, remote_error_from_batch_error
from batchpilot.clients.base import RemoteClient
from batchpilot.errors import RemoteServiceError
from batchpilot.schemas import (
    AllocationState,
    ImageReference,
    NodeState,
    PoolLifecycleState,
    ResourceFile,
    TaskSpec,
    TaskState,
    VirtualMachineConfiguration,
)


def batch_error(code, message, values=()):
    """A BatchErrorException carrying the given error body."""
    exc = batchmodels.BatchErrorException.__new__(batchmodels.BatchErrorException)
    exc.error = SimpleNamespace(
        code=code,
        message=SimpleNamespace(value=message),
        values=[SimpleNamespace(key=k, value=v) for k, v in values],
    )
    return exc


def added(task_id, status="success", error=None):
    return SimpleNamespace(task_id=task_id, status=status, error=error)


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def client(service):
    return AzureBatchClient(service)


def test_satisfies_protocol(client):
    assert isinstance(client, RemoteClient)


class TestErrorTranslation:
    """Tests for SDK error translation."""

    def test_error_body_is_translated(self, client, service):
        service.pool.exists.side_effect = batch_error(
            "AuthenticationFailed", "Server failed to authenticate the request.",
            [("AuthenticationErrorDetail", "signature mismatch")],
        )

        with pytest.raises(RemoteServiceError) as exc_info:
            client.pool_exists("p")

        error = exc_info.value
        assert error.code == "AuthenticationFailed"
        assert error.message == "Server failed to authenticate the request."
        assert error.details == [("AuthenticationErrorDetail", "signature mismatch")]
        assert isinstance(error.__cause__, batchmodels.BatchErrorException)

    def test_connection_failure_is_translated(self, client, service):
        """A request that never reaches the service still ends as a RemoteServiceError."""
        service.pool.exists.side_effect = ClientRequestError("connection refused")

        with pytest.raises(RemoteServiceError) as exc_info:
            client.pool_exists("p")

        assert exc_info.value.code == "ClientRequestError"
        assert "connection refused" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, ClientRequestError)

    def test_missing_body(self):
        error = remote_error_from_batch_error(None, fallback="Operation returned an invalid status code")

        assert error.code == "Unknown"
        assert error.message == "Operation returned an invalid status code"


class TestPools:
    """Tests for pool operations."""

    def test_get_pool(self, client, service):
        service.pool.get.return_value = SimpleNamespace(
            id="p",
            state=batchmodels.PoolState.active,
            allocation_state="resizing",
            vm_size="standard_a1_v2",
            target_dedicated_nodes=2,
            current_dedicated_nodes=0,
        )

        pool = client.get_pool("p")

        assert pool.state == PoolLifecycleState.ACTIVE
        assert pool.allocation_state == AllocationState.RESIZING
        assert pool.target_dedicated_nodes == 2

    def test_create_pool(self, client, service):
        config = VirtualMachineConfiguration(
            image=ImageReference("OpenLogic", "CentOS", "7_9"),
            node_agent_sku_id="batch.node.centos 7",
        )

        client.create_pool("p", "Standard_A1_v2", config, 3)

        parameter = service.pool.add.call_args[0][0]
        assert isinstance(parameter, batchmodels.PoolAddParameter)
        assert parameter.id == "p"
        assert parameter.vm_size == "Standard_A1_v2"
        assert parameter.target_dedicated_nodes == 3
        vm_config = parameter.virtual_machine_configuration
        assert vm_config.node_agent_sku_id == "batch.node.centos 7"
        assert vm_config.image_reference.publisher == "OpenLogic"
        assert vm_config.image_reference.sku == "7_9"
        assert vm_config.image_reference.version == "latest"

    def test_resize_pool(self, client, service):
        client.resize_pool("p", 2, 0)

        pool_id, parameter = service.pool.resize.call_args[0]
        assert pool_id == "p"
        assert parameter.target_dedicated_nodes == 2
        assert parameter.target_low_priority_nodes == 0

    def test_list_supported_images(self, client, service):
        service.account.list_supported_images.return_value = iter([
            SimpleNamespace(
                image_reference=SimpleNamespace(publisher="openlogic", offer="centos", sku="7_9", version=None),
                node_agent_sku_id="batch.node.centos 7",
                os_type="linux",
                verification_type="verified",
            ),
        ])

        (image,) = client.list_supported_images()

        assert image.image == ImageReference("openlogic", "centos", "7_9", "latest")
        assert image.is_verified_linux

    def test_list_nodes_passes_filter_and_select(self, client, service):
        service.compute_node.list.return_value = [
            SimpleNamespace(id="tvm-1", state="idle"),
            SimpleNamespace(id="tvm-2", state="leavingPool"),
        ]

        nodes = client.list_nodes("p", filter="state eq 'idle'", select="id,state")

        options = service.compute_node.list.call_args[1]["compute_node_list_options"]
        assert options.filter == "state eq 'idle'"
        assert options.select == "id,state"
        assert [n.state for n in nodes] == [NodeState.IDLE, NodeState.OTHER]


class TestTasks:
    """Tests for job and task operations."""

    def test_create_job(self, client, service):
        client.create_job("job-1", "p")

        parameter = service.job.add.call_args[0][0]
        assert parameter.id == "job-1"
        assert parameter.pool_info.pool_id == "p"

    def test_create_tasks_sends_chunks_of_100(self, client, service):
        service.task.add_collection.side_effect = lambda job_id, chunk: SimpleNamespace(
            value=[added(p.id) for p in chunk]
        )
        tasks = [TaskSpec(id=f"task-{i}", command_line="true") for i in range(250)]

        client.create_tasks("job-1", tasks)

        sizes = [len(call[0][1]) for call in service.task.add_collection.call_args_list]
        assert sizes == [100, 100, 50]

    def test_create_tasks_maps_resource_files(self, client, service):
        service.task.add_collection.return_value = SimpleNamespace(value=[added("task-0")])
        resource = ResourceFile(source_url="https://s/c/test.txt?sig", file_path="resources/test.txt")

        client.create_tasks("job-1", [TaskSpec(id="task-0", command_line="cat resources/test.txt",
                                               resource_files=(resource,))])

        (parameter,) = service.task.add_collection.call_args[0][1]
        assert parameter.command_line == "cat resources/test.txt"
        assert parameter.resource_files[0].http_url == "https://s/c/test.txt?sig"
        assert parameter.resource_files[0].file_path == "resources/test.txt"

    def test_rejected_tasks_are_aggregated(self, client, service):
        """Per-task rejections become one RemoteServiceError listing each task."""
        rejection = SimpleNamespace(
            code="InvalidPropertyValue",
            message=SimpleNamespace(value="The value provided for one of the properties is invalid."),
            values=None,
        )
        service.task.add_collection.return_value = SimpleNamespace(value=[
            added("task-0"),
            added("task-1", status="clientError", error=rejection),
            added("task-2"),
        ])
        tasks = [TaskSpec(id=f"task-{i}", command_line="true") for i in range(3)]

        with pytest.raises(RemoteServiceError) as exc_info:
            client.create_tasks("job-1", tasks)

        error = exc_info.value
        assert error.code == "InvalidPropertyValue"
        assert error.message == "1 of 3 tasks rejected for job job-1"
        assert error.details == [
            ("task-1", "InvalidPropertyValue: The value provided for one of the properties is invalid.")
        ]

    def test_list_tasks(self, client, service):
        service.task.list.return_value = [
            SimpleNamespace(id="task-0", state="running", execution_info=None),
            SimpleNamespace(
                id="task-1",
                state="completed",
                execution_info=SimpleNamespace(exit_code=0, failure_info=None),
            ),
            SimpleNamespace(
                id="task-2",
                state="completed",
                execution_info=SimpleNamespace(
                    exit_code=None, failure_info=SimpleNamespace(message="Resource file download failed"),
                ),
            ),
        ]

        tasks = client.list_tasks("job-1", select="id,state")

        options = service.task.list.call_args[1]["task_list_options"]
        assert options.select == "id,state"
        assert [t.state for t in tasks] == [TaskState.RUNNING, TaskState.COMPLETED, TaskState.COMPLETED]
        assert tasks[0].exit_code is None
        assert tasks[1].exit_code == 0
        assert tasks[2].failure_message == "Resource file download failed"

    def test_get_task_output(self, client, service):
        def chunks():
            yield b"hello "
            yield b"world\n"

        service.file.get_from_task.return_value = chunks()

        data = client.get_task_output("job-1", "task-0", "stdout.txt")

        assert data == b"hello world\n"
        service.file.get_from_task.assert_called_once_with("job-1", "task-0", "stdout.txt")
