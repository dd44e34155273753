"""
Command Line Interface for cage.

Exit codes: 0 when every requested operation succeeded, 1 when a service
failed, 2 when the pod files or settings are invalid (nothing was run).
"""
import logging
import os
import threading
from contextlib import contextmanager
from typing import Optional, Tuple

import click

from ..BUILDERS.config_merger import ConfigMerger
from ..CONVERTERS.to_compose import ComposeConverter
from ..CONVERTERS.to_report import ReportConverter
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MANAGERS.service_orchestrator import Command, OrchestrationEngine
from ..MODELS.cage_settings import CageSettings
from ..MODELS.errors import CageError, ConfigurationError
from ..MODELS.pod_config import PodConfig
from ..PARSERS.default_tags_parser import DefaultTags
from ..PARSERS.label_extractor import LabelExtractor
from ..PARSERS.pod_file_loader import PodFileLoader
from ..RUNNERS.dependency_resolver import DependencyGraphBuilder
from ..RUNNERS.process_runner import ComposeRuntimeAdapter
from ..RUNNERS.runtime_adapter import RetryingAdapter, RuntimeAdapter

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2

# Extra time the orchestrator gives the adapter to report its own timeout
ADAPTER_GRACE = 15.0


@click.group()
@click.option('--file', '-f', 'files', multiple=True, default=('docker-compose.yml',),
              show_default=True, help='Pod file; repeat to layer overrides, later files win')
@click.option('--project-name', '-p', default=None, help='Project name (defaults to the current directory name)')
@click.option('--env-file', 'env_files', multiple=True, default=('.env',), show_default=True,
              help='.env file to read CAGE_* settings from; repeatable')
@click.option('--default-tags', type=click.Path(exists=True, dir_okay=False), default=None,
              help='File of image:tag lines applied to untagged images')
@click.option('--max-workers', type=int, default=None, help='Maximum concurrent runtime calls')
@click.option('--timeout', 'call_timeout', type=float, default=None, help='Per-call timeout in seconds')
@click.option('--retries', type=int, default=None, help='Retry failed runtime calls this many times')
@click.option('--dry-run', is_flag=True, help='Print runtime commands instead of running them')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, files, project_name, env_files, default_tags, max_workers, call_timeout, retries, dry_run, verbose):
    """
    cage - layered pod orchestration on top of docker compose.

    Merges the given pod files, then runs commands against the services in
    dependency order.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['files'] = list(files)
    ctx.obj['env_files'] = list(env_files)
    ctx.obj['default_tags'] = default_tags
    ctx.obj['dry_run'] = dry_run
    ctx.obj['verbose'] = verbose
    ctx.obj['overrides'] = {
        'project_name': project_name,
        'max_workers': max_workers,
        'call_timeout': call_timeout,
        'retries': retries,
    }


@cli.command()
@click.pass_context
def start(ctx):
    """Start all services, dependencies first."""
    _run(ctx, Command.START)


@cli.command()
@click.pass_context
def stop(ctx):
    """Stop all services, dependents first."""
    _run(ctx, Command.STOP)


@cli.command()
@click.pass_context
def build(ctx):
    """Build images for all services."""
    _run(ctx, Command.BUILD)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the status of all services."""
    _run(ctx, Command.STATUS)


@cli.command()
@click.argument('service')
@click.pass_context
def shell(ctx, service):
    """Start what SERVICE links to, then run its shell."""
    _run(ctx, Command.SHELL, service)


@cli.command()
@click.argument('service', required=False)
@click.pass_context
def test(ctx, service):
    """Run the test hook of SERVICE, or of every service that has one."""
    _run(ctx, Command.TEST, service)


@cli.command()
@click.option('--output', '-o', type=click.Path(dir_okay=False), default=None,
              help='Write the merged pod to a new file instead of stdout')
@click.pass_context
def config(ctx, output):
    """Validate the pod files and print the merged result."""
    with _configuration_errors(ctx):
        _, pod = _load(ctx)
        DependencyGraphBuilder().build(pod)

    converter = ComposeConverter(pod)
    if output is None:
        click.echo(converter.render(), nl=False)
        return

    if not ctx.obj['default_tags']:
        logger.warning("Exporting project without --default-tags")
    try:
        converter.export(output)
    except FileExistsError as e:
        raise click.ClickException(str(e))
    click.echo(f"Wrote {output}")


def _load(ctx) -> Tuple[CageSettings, PodConfig]:
    """
    Reads settings and merges the pod files.

    :raises ConfigurationError: If anything is invalid.
    """
    settings = EnvironmentManager().get_settings(ctx.obj['env_files'], ctx.obj['overrides'])
    tags = DefaultTags.parse(ctx.obj['default_tags']) if ctx.obj['default_tags'] else None
    files = ctx.obj['files']
    documents = PodFileLoader().load_all(files)
    pod = ConfigMerger(default_tags=tags).merge(documents, sources=files)
    return settings, pod


def _engine(ctx) -> OrchestrationEngine:
    settings, pod = _load(ctx)
    project_name = settings.project_name or os.path.basename(os.path.abspath(os.getcwd()))

    compose = ComposeRuntimeAdapter(
        pod,
        project_name=project_name,
        output_dir=settings.output_dir,
        compose_command=settings.compose_command,
        timeout=settings.call_timeout,
        dry_run=ctx.obj['dry_run'],
    )
    adapter: RuntimeAdapter = compose
    if settings.retries > 0:
        adapter = RetryingAdapter(compose, attempts=settings.retries + 1)

    engine = OrchestrationEngine(
        pod,
        adapter,
        extractor=LabelExtractor.from_settings(settings),
        max_workers=settings.max_workers,
        call_timeout=_engine_timeout(settings),
    )
    compose.prepare()
    return engine


def _engine_timeout(settings: CageSettings) -> Optional[float]:
    if settings.call_timeout is None:
        return None
    return settings.call_timeout * (settings.retries + 1) + ADAPTER_GRACE


def _run(ctx, command: Command, target: Optional[str] = None):
    """
    Runs a command on a scheduler thread, so Ctrl+C can abort the run
    while services already in flight finish.
    """
    with _configuration_errors(ctx):
        engine = _engine(ctx)
        outcome = {}

        def schedule():
            try:
                outcome['result'] = engine.run(command, target)
            except CageError as e:
                outcome['error'] = e

        scheduler = threading.Thread(target=schedule, name="cage-scheduler")
        scheduler.start()
        while scheduler.is_alive():
            try:
                scheduler.join(0.2)
            except KeyboardInterrupt:
                click.echo("\nAborting, waiting for running services to finish...", err=True)
                engine.abort()
        if 'error' in outcome:
            raise outcome['error']

    result = outcome['result']
    show_all = ctx.obj['dry_run'] or ctx.obj['verbose'] or command in (Command.SHELL, Command.TEST, Command.STATUS)
    click.echo(ReportConverter(result, show_all_output=show_all).render(), nl=False)
    ctx.exit(result.exit_code)


@contextmanager
def _configuration_errors(ctx):
    try:
        yield
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_CONFIG_ERROR)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
