"""
LifecycleOrchestrator - one complete batch run.

Run flow:
1. Stage the resource file in blob storage (when configured)
2. Provision the pool (PoolProvisioner)
3. Submit the job and its tasks (JobSubmitter)
4. Wait for the tasks to complete (CompletionWatcher)
5. Collect one TaskResult per task
6. Tear down job, pool and storage container, as configured

Teardown is registered on an ExitStack as each resource comes into play, so
it runs on every exit path. Each teardown step is independent: a failure is
logged and recorded on the report, and the next step still runs.

Lifecycle errors (BatchpilotError) end the run and are returned on the
RunReport once teardown has finished. Other exceptions propagate after
teardown.
"""

import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from batchpilot.clients.base import RemoteClient, StorageService
from batchpilot.config import BatchpilotConfig
from batchpilot.errors import (
    BatchpilotError,
    RemoteServiceError,
    SubmissionError,
    format_remote_error,
)
from batchpilot.provisioner import PoolProvisioner
from batchpilot.schemas import ResourceFile, TaskResult, output_file_for
from batchpilot.submitter import JobSubmitter
from batchpilot.utils import generate_job_id
from batchpilot.waiting import Clock, Sleep
from batchpilot.watcher import CompletionWatcher

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """
    Outcome of one run.

    Attributes:
        job_id: The job submitted by this run
        pool_id: The pool the job ran on
        results: One TaskResult per task, empty if the run failed before collection
        error: The error that ended the run, if any
        teardown_failures: Descriptions of teardown steps that failed
    """
    job_id: str
    pool_id: str
    results: list[TaskResult] = field(default_factory=list)
    error: Optional[BatchpilotError] = None
    teardown_failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "pool_id": self.pool_id,
            "ok": self.ok,
            "error": str(self.error) if self.error else None,
            "results": [r.to_dict() for r in self.results],
            "teardown_failures": list(self.teardown_failures),
        }


class LifecycleOrchestrator:
    """Sequences provisioning, submission, waiting, collection and teardown."""

    def __init__(
        self,
        config: BatchpilotConfig,
        client: RemoteClient,
        storage: Optional[StorageService] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Settings for the run
            client: RemoteClient for pool, job and task operations
            storage: StorageService used to stage the resource file (optional)
            clock: Time source for every waiting phase
            sleep: Sleep function for every waiting phase
        """
        self.config = config
        self._client = client
        self._storage = storage
        self.provisioner = PoolProvisioner(
            client,
            pool_steady_timeout=config.pool_steady_timeout,
            vm_ready_timeout=config.vm_ready_timeout,
            poll_interval=config.poll_interval,
            wait_for_idle_node=config.wait_for_idle_node,
            clock=clock,
            sleep=sleep,
        )
        self.submitter = JobSubmitter(client, command_template=config.task_command)
        self.watcher = CompletionWatcher(
            client, poll_interval=config.poll_interval, clock=clock, sleep=sleep
        )

    def run(self, job_id: Optional[str] = None) -> RunReport:
        """
        Execute one complete run.

        Args:
            job_id: Job id to use. Defaults to a timestamp-derived id.

        Returns:
            RunReport with per-task results, or with the error that ended the run
        """
        config = self.config
        job_id = job_id or generate_job_id(config.job_id_prefix)
        report = RunReport(job_id=job_id, pool_id=config.pool_id)

        # ExitStack callbacks run last-in first-out: job, then pool, then container.
        with ExitStack() as teardown:
            try:
                # A template that cannot be rendered fails before anything is provisioned.
                staged_path = config.resolved_resource_remote_path() if self._storage is not None else None
                self.submitter.check_command(staged_path)

                container = self._open_container()
                if container is not None and config.cleanup_storage_container:
                    teardown.callback(
                        self._best_effort, report,
                        f"delete storage container {config.storage_container}",
                        self._storage.delete_container, container,
                    )
                if config.cleanup_pool:
                    teardown.callback(
                        self._best_effort, report,
                        f"delete pool {config.pool_id}",
                        self._client.delete_pool, config.pool_id,
                    )

                pool = self.provisioner.ensure_pool(config.pool_spec())
                resources = self._stage_resources(container)

                if config.cleanup_job:
                    teardown.callback(
                        self._best_effort, report,
                        f"delete job {job_id}",
                        self._client.delete_job, job_id,
                    )
                self.submitter.submit(pool.id, job_id, config.task_count, resources)
                self.watcher.wait_for_completion(job_id, config.completion_timeout)
                report.results = self.collect_results(job_id)
            except BatchpilotError as e:
                for line in format_remote_error(e):
                    logger.error(line)
                report.error = e

        return report

    def collect_results(self, job_id: str) -> list[TaskResult]:
        """
        Read the outcome of every task of a finished job.

        A task with failure information yields its failure message. Otherwise
        stdout.txt (exit code 0) or stderr.txt (any other exit code) is fetched.
        """
        results = []
        for task in self._client.list_tasks(job_id):
            if task.failure_message is not None:
                logger.warning(f"Task {task.id} failed: {task.failure_message}")
                results.append(TaskResult(
                    task_id=task.id,
                    exit_code=task.exit_code,
                    failure_message=task.failure_message,
                ))
                continue

            output_file = output_file_for(task.exit_code)
            data = self._client.get_task_output(job_id, task.id, output_file)
            results.append(TaskResult(
                task_id=task.id,
                exit_code=task.exit_code,
                output_file=output_file,
                content=data.decode("utf-8", errors="replace"),
            ))
        logger.info(f"Collected results for {len(results)} task(s) of job {job_id}")
        return results

    def _open_container(self) -> Any:
        if self._storage is None or not self.config.resource_file:
            return None
        config = self.config
        return self._storage.create_container_if_not_exists(
            config.storage_account_name, config.storage_account_key, config.storage_container
        )

    def _stage_resources(self, container: Any) -> list[ResourceFile]:
        if container is None:
            return []
        local_path = Path(self.config.resource_file)
        try:
            signed_url = self._storage.upload_file(container, local_path)
        except OSError as e:
            raise SubmissionError(f"Cannot read resource file {local_path}: {e}") from e
        return [ResourceFile(
            source_url=signed_url,
            file_path=self.config.resolved_resource_remote_path(),
        )]

    @staticmethod
    def _best_effort(
        report: RunReport, description: str, step: Callable[..., Any], *args: Any
    ) -> None:
        logger.info(f"Teardown: {description}")
        try:
            step(*args)
        except Exception as e:  # pylint: disable=broad-except
            # Service rejections are expected here; only unexpected errors get a traceback.
            logger.warning(
                f"Teardown step failed ({description}): {e}",
                exc_info=not isinstance(e, RemoteServiceError),
            )
            report.teardown_failures.append(description)
