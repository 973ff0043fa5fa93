"""Shared fixtures: an in-memory RemoteClient, a storage fake and a fake clock."""

from typing import Optional, Sequence

import pytest

from batchpilot.config import BatchpilotConfig
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


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def default_images() -> list[ImageInfo]:
    return [
        ImageInfo(
            image=ImageReference("MicrosoftWindowsServer", "WindowsServer", "2019-datacenter"),
            node_agent_sku_id="batch.node.windows amd64",
            os_type="windows",
            verification="verified",
        ),
        ImageInfo(
            image=ImageReference("openlogic", "centos", "7.9-unverified"),
            node_agent_sku_id="batch.node.centos 7",
            os_type="linux",
            verification="unverified",
        ),
        ImageInfo(
            image=ImageReference("openlogic", "centos", "7_9"),
            node_agent_sku_id="batch.node.centos 7",
            os_type="linux",
            verification="verified",
        ),
        ImageInfo(
            image=ImageReference("canonical", "0001-com-ubuntu-server-focal", "20_04-lts"),
            node_agent_sku_id="batch.node.ubuntu 20.04",
            os_type="linux",
            verification="verified",
        ),
    ]


class FakeRemoteClient:
    """
    In-memory RemoteClient that records every call.

    Knobs:
        steady_after: get_pool polls that report resizing after a create/resize
            (None: never steady)
        idle_after: list_nodes polls without an idle node (None: never)
        complete_after: list_tasks projections reporting tasks running
            (None: never complete)
        failures: method name -> exception raised by that method
        exit_codes / task_failures: per task id outcome
    """

    def __init__(self):
        self.pools: dict[str, PoolDescriptor] = {}
        self.images = default_images()
        self.jobs: dict[str, str] = {}
        self.tasks: dict[str, list[TaskSpec]] = {}
        self.calls: list[tuple] = []
        self.steady_after: Optional[int] = 0
        self.idle_after: Optional[int] = 0
        self.complete_after: Optional[int] = 0
        self.failures: dict[str, Exception] = {}
        self.exit_codes: dict[str, int] = {}
        self.task_failures: dict[str, str] = {}
        self.outputs: dict[tuple[str, str], bytes] = {}
        self._resizing_left: dict[str, Optional[int]] = {}
        self._idle_polls = 0
        self._task_polls = 0

    # helpers -----------------------------------------------------------------

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def calls_to(self, name: str) -> list[tuple]:
        return [call[1:] for call in self.calls if call[0] == name]

    def add_pool(self, pool_id: str, state=PoolLifecycleState.ACTIVE, vm_count: int = 1) -> None:
        self.pools[pool_id] = PoolDescriptor(
            id=pool_id,
            state=state,
            allocation_state=AllocationState.STEADY,
            vm_size="Standard_A1_v2",
            target_dedicated_nodes=vm_count,
            current_dedicated_nodes=vm_count,
        )

    def _start_resizing(self, pool_id: str) -> None:
        self._resizing_left[pool_id] = self.steady_after

    # pools -------------------------------------------------------------------

    def pool_exists(self, pool_id: str) -> bool:
        self._record("pool_exists", pool_id)
        return pool_id in self.pools

    def get_pool(self, pool_id: str) -> PoolDescriptor:
        self._record("get_pool", pool_id)
        if pool_id not in self.pools:
            raise RemoteServiceError("PoolNotFound", f"The specified pool {pool_id} does not exist.")
        pool = self.pools[pool_id]
        left = self._resizing_left.get(pool_id, 0)
        if left is None or left > 0:
            if left is not None:
                self._resizing_left[pool_id] = left - 1
            return PoolDescriptor(
                id=pool.id, state=pool.state, allocation_state=AllocationState.RESIZING,
                vm_size=pool.vm_size, target_dedicated_nodes=pool.target_dedicated_nodes,
                current_dedicated_nodes=0,
            )
        return pool

    def create_pool(self, pool_id: str, vm_size: str, vm_configuration: VirtualMachineConfiguration, vm_count: int) -> None:
        self._record("create_pool", pool_id, vm_size, vm_configuration, vm_count)
        self.pools[pool_id] = PoolDescriptor(
            id=pool_id,
            state=PoolLifecycleState.ACTIVE,
            allocation_state=AllocationState.STEADY,
            vm_size=vm_size,
            target_dedicated_nodes=vm_count,
            current_dedicated_nodes=vm_count,
        )
        self._start_resizing(pool_id)

    def resize_pool(self, pool_id: str, dedicated_nodes: int, low_priority_nodes: int) -> None:
        self._record("resize_pool", pool_id, dedicated_nodes, low_priority_nodes)
        pool = self.pools[pool_id]
        self.pools[pool_id] = PoolDescriptor(
            id=pool.id, state=pool.state, allocation_state=AllocationState.STEADY,
            vm_size=pool.vm_size, target_dedicated_nodes=dedicated_nodes,
            current_dedicated_nodes=dedicated_nodes,
        )
        self._start_resizing(pool_id)

    def delete_pool(self, pool_id: str) -> None:
        self._record("delete_pool", pool_id)
        self.pools.pop(pool_id, None)

    def list_supported_images(self) -> list[ImageInfo]:
        self._record("list_supported_images")
        return list(self.images)

    # nodes -------------------------------------------------------------------

    def list_nodes(self, pool_id: str, filter: Optional[str] = None, select: Optional[str] = None) -> list[NodeSummary]:
        self._record("list_nodes", pool_id, filter, select)
        self._idle_polls += 1
        if self.idle_after is None or self._idle_polls <= self.idle_after:
            return []
        return [NodeSummary(id="tvm-0", state=NodeState.IDLE)]

    # jobs and tasks ----------------------------------------------------------

    def create_job(self, job_id: str, pool_id: str) -> None:
        self._record("create_job", job_id, pool_id)
        self.jobs[job_id] = pool_id
        self.tasks[job_id] = []

    def delete_job(self, job_id: str) -> None:
        self._record("delete_job", job_id)
        self.jobs.pop(job_id, None)
        self.tasks.pop(job_id, None)

    def create_tasks(self, job_id: str, tasks: Sequence[TaskSpec]) -> None:
        self._record("create_tasks", job_id, list(tasks))
        self.tasks[job_id].extend(tasks)

    def list_tasks(self, job_id: str, select: Optional[str] = None) -> list[TaskInfo]:
        self._record("list_tasks", job_id, select)
        if select is not None:
            self._task_polls += 1
        done = self.complete_after is not None and self._task_polls > self.complete_after
        result = []
        for task in self.tasks.get(job_id, []):
            state = TaskState.COMPLETED if done or select is None else TaskState.RUNNING
            if select is not None:
                result.append(TaskInfo(id=task.id, state=state))
            else:
                result.append(TaskInfo(
                    id=task.id,
                    state=state,
                    exit_code=self.exit_codes.get(task.id, 0),
                    failure_message=self.task_failures.get(task.id),
                ))
        return result

    def get_task_output(self, job_id: str, task_id: str, file_name: str) -> bytes:
        self._record("get_task_output", job_id, task_id, file_name)
        if (task_id, file_name) in self.outputs:
            return self.outputs[(task_id, file_name)]
        return f"{file_name} of {task_id}".encode("utf-8")


class FakeStorage:
    """StorageService fake that records calls."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def create_container_if_not_exists(self, account: str, key: str, name: str) -> str:
        self._record("create_container_if_not_exists", account, key, name)
        return f"container:{name}"

    def upload_file(self, container: str, local_path) -> str:
        self._record("upload_file", container, local_path)
        if not local_path.exists():
            raise FileNotFoundError(f"No such file: '{local_path}'")
        return f"https://storage.example/{container.split(':', 1)[1]}/{local_path.name}?sig=abc"

    def delete_container(self, container: str) -> None:
        self._record("delete_container", container)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.config/batchpilot."""
    home = tmp_path / "batchpilot_home"
    monkeypatch.setenv("BATCHPILOT_HOME", str(home))
    monkeypatch.delenv("BATCHPILOT_BATCH_ACCOUNT_KEY", raising=False)
    monkeypatch.delenv("BATCHPILOT_STORAGE_ACCOUNT_KEY", raising=False)
    return home


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_client():
    return FakeRemoteClient()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def resource_file(tmp_path):
    path = tmp_path / "test.txt"
    path.write_text("hello from a resource file\n")
    return path


@pytest.fixture
def test_config(resource_file):
    return BatchpilotConfig(
        batch_account_name="testaccount",
        batch_account_url="https://testaccount.uksouth.batch.azure.com",
        batch_account_key="a2V5",
        storage_account_name="teststorage",
        storage_account_key="c2VjcmV0",
        storage_container="test-container",
        pool_id="test-pool",
        pool_vm_count=1,
        os_publisher="OpenLogic",
        os_offer="CentOS",
        task_count=5,
        resource_file=str(resource_file),
        poll_interval=10,
    )
