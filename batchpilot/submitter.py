"""
JobSubmitter - create a job on a pool and enqueue a fixed-size task batch.

Task ids are deterministic (task-0 .. task-N-1). Every task of a batch
shares the same ResourceFile objects, and command lines are rendered from
a template that can reference the first resource's node path.
"""

import logging
from string import Formatter
from typing import Optional, Sequence

from batchpilot.clients.base import RemoteClient
from batchpilot.errors import RemoteServiceError, SubmissionError
from batchpilot.schemas import JobSpec, ResourceFile, TaskSpec, task_id_for

logger = logging.getLogger(__name__)

DEFAULT_TASK_COMMAND = "cat {resource_path}"


def _template_fields(template: str) -> set[str]:
    return {name for _, name, _, _ in Formatter().parse(template) if name}


def render_command(template: str, index: int, resources: Sequence[ResourceFile]) -> str:
    """
    Render a task command line.

    Supported placeholders: {resource_path} (node path of the first resource
    file) and {task_index}.

    Raises:
        SubmissionError: If the template needs a resource that is not attached,
            or uses an unknown placeholder
    """
    fields = _template_fields(template)
    if "resource_path" in fields and not resources:
        raise SubmissionError(
            f"Task command {template!r} references a resource file but none is attached"
        )
    values = {"task_index": index}
    if resources:
        values["resource_path"] = resources[0].file_path
    try:
        return template.format(**values)
    except (KeyError, IndexError) as e:
        raise SubmissionError(f"Invalid task command template {template!r}: {e}") from e


class JobSubmitter:
    """Creates a job bound to a pool and submits its task batch in one call."""

    def __init__(self, client: RemoteClient, command_template: str = DEFAULT_TASK_COMMAND):
        self._client = client
        self.command_template = command_template

    def check_command(self, resource_path: Optional[str] = None) -> None:
        """
        Render the command template once without touching the service.

        Args:
            resource_path: Node path the resource file will have, or None if
                no resource file will be attached

        Raises:
            SubmissionError: If the template cannot be rendered
        """
        resources = (ResourceFile(source_url="", file_path=resource_path),) if resource_path else ()
        render_command(self.command_template, 0, resources)

    def build_tasks(self, task_count: int, resources: Sequence[ResourceFile] = ()) -> list[TaskSpec]:
        """Build task_count tasks sharing the given resource files."""
        shared = tuple(resources)
        return [
            TaskSpec(
                id=task_id_for(i),
                command_line=render_command(self.command_template, i, shared),
                resource_files=shared,
            )
            for i in range(task_count)
        ]

    def submit(
        self,
        pool_id: str,
        job_id: str,
        task_count: int,
        resources: Sequence[ResourceFile] = (),
    ) -> list[TaskSpec]:
        """
        Create the job and add its tasks.

        Args:
            pool_id: Pool the job runs on (referenced, not copied)
            job_id: Unique job id for this run
            task_count: Number of tasks in the batch
            resources: Resource files attached to every task

        Returns:
            The submitted task specs

        Raises:
            SubmissionError: If the job or any task of the batch was rejected
        """
        try:
            spec = JobSpec(job_id=job_id, pool_id=pool_id, task_count=task_count)
        except ValueError as e:
            raise SubmissionError(str(e)) from e

        # Render commands before touching the service so a bad template creates nothing.
        tasks = self.build_tasks(spec.task_count, resources)

        logger.info(f"Submitting job {spec.job_id} with {spec.task_count} task(s) on pool {spec.pool_id}")
        try:
            self._client.create_job(spec.job_id, spec.pool_id)
        except RemoteServiceError as e:
            raise SubmissionError(f"Creating job {spec.job_id} failed: {e}") from e

        if not tasks:
            return tasks

        try:
            self._client.create_tasks(spec.job_id, tasks)
        except RemoteServiceError as e:
            raise SubmissionError(
                f"Adding {len(tasks)} task(s) to job {spec.job_id} failed: {e}"
            ) from e
        return tasks
