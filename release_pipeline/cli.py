"""Thin CLI wrapper for release_pipeline.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from release_pipeline import __version__
from release_pipeline.config import get_settings, print_settings_json

app = typer.Typer(
    name="relpipe",
    help="Release Pipeline - build and publish release artifacts from tag pushes",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = RichHandler(
        console=err_console,
        rich_tracebacks=True,
        markup=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"release-pipeline version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Release Pipeline - build and publish release artifacts from tag pushes."""
    configure_logging(get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print_json(print_settings_json(settings))
    else:
        tmp_dir_display = (
            str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Cache directory:     {settings.cache_dir}")
        console.print(f"  Artifacts directory: {settings.artifacts_dir}")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print(f"  Temp directory:      {tmp_dir_display}")
        console.print(f"  Pipeline file:       {settings.pipeline_file}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Hot cache entries:   {settings.hot_cache_entries}")
        console.print(f"  Output tail lines:   {settings.output_tail_lines}")
        console.print()
        console.print("[bold]Concurrency:[/bold]")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Build timeout:       {settings.build_timeout}")
        console.print(f"  Provision timeout:   {settings.provision_timeout}")
        console.print()
        console.print("[bold]Provisioning retries:[/bold]")
        console.print(f"  Max attempts:        {settings.provision_max_attempts}")
        console.print(f"  Backoff base:        {settings.provision_backoff_base}")
        console.print(f"  Backoff cap:         {settings.provision_backoff_cap}")


PipelineOption = Annotated[
    Path | None,
    typer.Option(
        "--pipeline",
        "-p",
        help="Pipeline definition file (default: settings.pipeline_file)",
    ),
]


@app.command()
def submit(
    ref: Annotated[str, typer.Argument(help="Release tag, e.g. v1.2.3")],
    commit: Annotated[str, typer.Argument(help="Commit hash to build")],
    pipeline: PipelineOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build and publish the artifact for a release tag."""
    import yaml
    from pydantic import ValidationError

    from release_pipeline.errors import InvalidTriggerError
    from release_pipeline.pipeline.engine import create_pipeline_engine
    from release_pipeline.types import TriggerEvent

    settings = get_settings()
    try:
        engine = create_pipeline_engine(settings, pipeline)
    except FileNotFoundError as e:
        console.print(f"[red]Pipeline definition not found: {e.filename}[/red]")
        raise typer.Exit(code=1) from None
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid pipeline definition: {e}[/red]")
        raise typer.Exit(code=1) from None

    event = TriggerEvent(ref=ref.removeprefix("refs/tags/"), commit_hash=commit)
    try:
        result = engine.submit(event)
    except InvalidTriggerError as e:
        if json_output:
            console.print_json(
                data={"status": "rejected", "code": e.code, "message": str(e)}
            )
        else:
            console.print(f"[red]Trigger rejected: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print_json(data=result.to_dict())
    elif result.succeeded and result.artifact_ref is not None:
        ref_info = result.artifact_ref
        console.print(f"[green]Build run {result.run_id} succeeded[/green]")
        console.print(f"  Release:   {ref_info.release}")
        console.print(f"  Artifact:  {ref_info.name} ({ref_info.size_bytes} bytes)")
        console.print(f"  SHA-256:   {ref_info.sha256}")
        console.print(f"  URL:       {ref_info.url}")
        console.print(f"  Cache:     {result.cache_status.value}")
    else:
        console.print(
            f"[red]Build run {result.run_id} failed ({result.error_code})[/red]"
        )
        console.print(result.diagnostic or "", markup=False)

    if not result.succeeded:
        raise typer.Exit(code=1)


@app.command("cache-key")
def cache_key(
    pipeline: PipelineOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Compute the build-environment cache key of a pipeline definition."""
    import yaml
    from pydantic import ValidationError

    from release_pipeline.cache.cache_key import compute_cache_key_from_definition
    from release_pipeline.errors import BuildDefinitionError
    from release_pipeline.pipeline.definition import load_pipeline_definition

    pipeline_file = pipeline or get_settings().pipeline_file
    try:
        definition = load_pipeline_definition(pipeline_file)
        key, inputs = compute_cache_key_from_definition(
            definition, pipeline_file.resolve().parent
        )
    except FileNotFoundError as e:
        console.print(f"[red]Pipeline definition not found: {e.filename}[/red]")
        raise typer.Exit(code=1) from None
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid pipeline definition: {e}[/red]")
        raise typer.Exit(code=1) from None
    except BuildDefinitionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print_json(data={"cache_key": key, "inputs": inputs.to_dict()})
    else:
        console.print(key)


@app.command()
def artifacts(
    release: Annotated[
        str | None,
        typer.Option("--release", "-r", help="Filter by release tag"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List published artifacts."""
    from release_pipeline.artifacts.sink import list_published
    from release_pipeline.db import open_session_factory

    factory = open_session_factory()
    with factory() as session:
        published = list_published(session, release=release, limit=limit)

        if json_output:
            console.print_json(data=[a.to_dict() for a in published])
            return

        if not published:
            console.print("[yellow]No published artifacts found[/yellow]")
            return

        for a in published:
            console.print(
                f"  [green]{a.release}[/green] {a.name} {a.source_commit[:12]} "
                f"({a.size_bytes} bytes)"
            )
            console.print(f"    {a.url}", markup=False)


runs_app = typer.Typer(help="Inspect build runs")
app.add_typer(runs_app, name="runs")


@runs_app.command("list")
def runs_list(
    status: Annotated[
        str | None,
        typer.Option(
            "--status", "-s", help="Filter by status (pending/running/succeeded/failed)"
        ),
    ] = None,
    ref: Annotated[
        str | None,
        typer.Option("--ref", "-r", help="Filter by release tag"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List build runs."""
    from release_pipeline.db import open_session_factory
    from release_pipeline.pipeline.service import list_runs
    from release_pipeline.types import BuildStatus

    status_filter: BuildStatus | None = None
    if status:
        try:
            status_filter = BuildStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: pending, running, succeeded, failed")
            raise typer.Exit(code=1) from None

    factory = open_session_factory()

    with factory() as session:
        runs = list_runs(session, status=status_filter, ref=ref, limit=limit)

        if json_output:
            console.print_json(data=[r.to_dict() for r in runs])
            return

        if not runs:
            console.print("[yellow]No build runs found[/yellow]")
            return

        console.print(f"[bold]Found {len(runs)} run(s):[/bold]")
        console.print()
        for r in runs:
            color = {"succeeded": "green", "failed": "red"}.get(r.status, "yellow")
            console.print(
                f"  [{color}]#{r.id}[/{color}] {r.ref} {r.commit_hash[:12]} "
                f"{r.status}"
            )
            if r.error_type:
                console.print(f"    Error: {r.error_type}")


@runs_app.command("show")
def runs_show(
    run_id: Annotated[int, typer.Argument(help="Build run ID")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show details of a build run."""
    from release_pipeline.db import open_session_factory
    from release_pipeline.errors import RunNotFoundError
    from release_pipeline.pipeline.service import get_run

    factory = open_session_factory()

    with factory() as session:
        try:
            run = get_run(session, run_id)
        except RunNotFoundError:
            console.print(f"[red]Build run not found: {run_id}[/red]")
            raise typer.Exit(code=1) from None

        if json_output:
            console.print_json(data=run.to_dict())
            return

        console.print(f"[bold]Build run #{run.id}[/bold]")
        console.print(f"  Ref:          {run.ref}")
        console.print(f"  Commit:       {run.commit_hash}")
        console.print(f"  Status:       {run.status}")
        console.print(f"  Cache key:    {run.cache_key or '-'}")
        console.print(f"  Cache status: {run.cache_status or '-'}")
        console.print(f"  Attempts:     {run.provision_attempts}")
        if run.artifact_url:
            console.print(f"  Artifact:     {run.artifact_name}")
            console.print(f"  URL:          {run.artifact_url}")
            console.print(f"  SHA-256:      {run.artifact_sha256}")
        if run.error_type:
            console.print(f"  Error:        {run.error_type}")
            console.print(run.error_message or "", markup=False)


@runs_app.command("stats")
def runs_stats(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show build run counts by status and error code."""
    from release_pipeline.db import open_session_factory
    from release_pipeline.pipeline.service import run_stats

    factory = open_session_factory()

    with factory() as session:
        stats = run_stats(session)

    if json_output:
        console.print_json(data=stats.to_dict())
        return

    console.print(f"[bold]Total runs: {stats.total}[/bold]")
    for status, count in sorted(stats.by_status.items()):
        console.print(f"  {status}: {count}")
    if stats.by_error:
        console.print("[bold]Failures by error:[/bold]")
        for code, count in sorted(stats.by_error.items()):
            console.print(f"  {code}: {count}")


if __name__ == "__main__":
    app()
