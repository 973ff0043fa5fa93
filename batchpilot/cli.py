"""
CLI interface for batchpilot.

Provides commands to initialize configuration, run a batch end to end,
manage the shared pool, and inspect the images the service supports.

Configuration is read from $BATCHPILOT_HOME/config.yaml (see
`batchpilot init`). Account keys may come from the environment instead.
"""

import json
from pathlib import Path
from typing import Optional

import click

from batchpilot import __version__


def _build_clients(config, with_storage: bool = True):
    """Create the Azure-backed RemoteClient and (optionally) StorageService."""
    from batchpilot.clients.azure_batch import AzureBatchClient
    from batchpilot.clients.blob_storage import BlobStorageService

    config.require_batch_account()
    client = AzureBatchClient.from_credentials(
        config.batch_account_name, config.batch_account_key, config.batch_account_url
    )
    storage = BlobStorageService() if with_storage and config.resource_file else None
    return client, storage


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'batchpilot init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _fail(exc: Exception) -> None:
    from batchpilot.errors import format_remote_error

    for line in format_remote_error(exc):
        click.echo(f"✗ {line}", err=True)
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="batchpilot")
@click.option(
    "--config", "config_path", type=click.Path(path_type=Path),
    help="Config file (default: $BATCHPILOT_HOME/config.yaml)",
)
@click.pass_context
def main(ctx, config_path: Optional[Path]):
    """
    batchpilot - Provision a batch pool, run a task batch, and clean up.
    """
    from batchpilot.config import load_config
    from batchpilot.utils import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except Exception as e:
        # init works without a config; other commands check ctx.obj["config"]
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=Path(config.log_file).expanduser() if config.log_file else None,
    )


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize batchpilot configuration."""
    import yaml

    from batchpilot.config import BatchpilotConfig, get_batchpilot_home

    home = get_batchpilot_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = BatchpilotConfig().to_dict()
    # Keys are better kept in the environment than on disk.
    default_cfg["batch_account_key"] = None
    default_cfg["storage_account_key"] = None
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    click.echo(f"Initialized batchpilot config at {cfg_path}")
    click.echo("Set BATCHPILOT_BATCH_ACCOUNT_KEY and BATCHPILOT_STORAGE_ACCOUNT_KEY in your environment.")


@main.command("run")
@click.option("--job-id", help="Job id to use (default: timestamp-derived)")
@click.option("--task-count", type=int, help="Number of tasks to submit")
@click.option("--keep-pool", is_flag=True, help="Do not delete the pool afterwards")
@click.option("--keep-job", is_flag=True, help="Do not delete the job afterwards")
@click.option("--no-wait-idle", is_flag=True, help="Do not wait for an idle node before submitting")
@click.option("--json", "as_json", is_flag=True, help="Print the run report as JSON")
@click.pass_context
def run(
    ctx,
    job_id: Optional[str],
    task_count: Optional[int],
    keep_pool: bool,
    keep_job: bool,
    no_wait_idle: bool,
    as_json: bool,
):
    """
    Provision the pool, run the task batch, and print each task's output.

    Examples:

        batchpilot run

        batchpilot run --task-count 10 --keep-pool

        batchpilot run --json
    """
    from batchpilot.orchestrator import LifecycleOrchestrator

    config = _require_config(ctx).with_overrides(
        task_count=task_count,
        cleanup_pool=False if keep_pool else None,
        cleanup_job=False if keep_job else None,
        wait_for_idle_node=False if no_wait_idle else None,
    )
    try:
        config.validate()
        client, storage = _build_clients(config)
    except Exception as e:
        _fail(e)

    report = LifecycleOrchestrator(config, client, storage).run(job_id=job_id)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo("\nTask Results")
        click.echo("-" * 54)
        for result in report.results:
            if result.failure_message is not None:
                click.echo(f"Task {result.task_id} failed: {result.failure_message}")
                continue
            click.echo(f"\nTask {result.task_id} output ({result.output_file}):")
            click.echo(result.content)
        click.echo("-" * 54)
        for failure in report.teardown_failures:
            click.echo(f"! teardown step failed: {failure}", err=True)

    if not report.ok:
        _fail(report.error)
    click.echo(f"✓ {report.job_id} completed")


@main.group("pool")
def pool_group():
    """Manage the shared pool."""
    pass


@pool_group.command("ensure")
@click.option("--no-wait-idle", is_flag=True, help="Return once the pool is steady")
@click.pass_context
def pool_ensure(ctx, no_wait_idle: bool):
    """Create or resize the configured pool and wait until it is usable."""
    from batchpilot.provisioner import PoolProvisioner

    config = _require_config(ctx)
    try:
        client, _ = _build_clients(config, with_storage=False)
        provisioner = PoolProvisioner(
            client,
            pool_steady_timeout=config.pool_steady_timeout,
            vm_ready_timeout=config.vm_ready_timeout,
            poll_interval=config.poll_interval,
            wait_for_idle_node=config.wait_for_idle_node and not no_wait_idle,
        )
        pool = provisioner.ensure_pool(config.pool_spec())
    except Exception as e:
        _fail(e)
    click.echo(json.dumps(pool.to_dict(), indent=2))


@pool_group.command("delete")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def pool_delete(ctx, yes: bool):
    """Delete the configured pool."""
    config = _require_config(ctx)
    if not yes:
        click.confirm(f"Delete pool {config.pool_id}?", abort=True)
    try:
        client, _ = _build_clients(config, with_storage=False)
        client.delete_pool(config.pool_id)
    except Exception as e:
        _fail(e)
    click.echo(f"✓ Deleting pool {config.pool_id}")


@main.command("images")
@click.option("--publisher", help="Only show images from this publisher")
@click.option("--all", "show_all", is_flag=True, help="Include unverified and non-Linux images")
@click.pass_context
def images(ctx, publisher: Optional[str], show_all: bool):
    """List the images the batch service supports (verified Linux by default)."""
    config = _require_config(ctx)
    try:
        client, _ = _build_clients(config, with_storage=False)
        supported = client.list_supported_images()
    except Exception as e:
        _fail(e)

    shown = 0
    for info in supported:
        if not show_all and not info.is_verified_linux:
            continue
        if publisher and info.image.publisher.lower() != publisher.lower():
            continue
        ref = info.image
        click.echo(f"{ref.publisher}/{ref.offer}/{ref.sku}  agent={info.node_agent_sku_id}")
        shown += 1
    if shown == 0:
        click.echo("No matching images.")
