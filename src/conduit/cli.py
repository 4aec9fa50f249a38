"""CLI interface for the conduit workflow engine."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
import yaml

from conduit import __version__
from conduit.config import ConduitConfig
from conduit.exceptions import ConduitError, ConfigError, PipelineNotFoundError
from conduit.logconfig import configure_logging
from conduit.tools.fake import FakeToolExecutor
from conduit.workflow.context import PipelineContext, RunStatus
from conduit.workflow import expressions
from conduit.workflow.definition import ConditionNodeConfig, PipelineDefinition, TransformNodeConfig
from conduit.workflow.engine import WorkflowEngine
from conduit.workflow.events import EventType, PipelineEvent

logger = structlog.get_logger()

app = typer.Typer(
    name="conduit",
    help="DAG workflow engine for tool pipelines",
    no_args_is_help=True,
)

pipelines_app = typer.Typer(
    name="pipelines",
    help="Inspect and validate pipeline definitions",
    no_args_is_help=True,
)
app.add_typer(pipelines_app)

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to conduit.yaml config file",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"conduit version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """conduit - DAG workflow engine."""
    pass


def _load_config(path: Path | None) -> ConduitConfig:
    try:
        config = ConduitConfig.load(path) if path else ConduitConfig.default()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    configure_logging(config.logging.level, config.logging.format)
    return config


def _build_engine(config: ConduitConfig, *, dry_run: bool = False) -> WorkflowEngine:
    try:
        return WorkflowEngine.from_config(config, FakeToolExecutor() if dry_run else None)
    except ConduitError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def parse_inputs(pairs: list[str], input_file: Path | None = None) -> dict[str, Any]:
    """Build run input from an optional JSON/YAML file and ``key=value`` pairs.

    Values are parsed as YAML scalars, so ``count=3`` yields an int and
    ``flag=true`` a bool. Pairs override keys from the file.

    Raises:
        typer.BadParameter: If a pair has no ``=`` or the file is not a mapping.
    """
    data: dict[str, Any] = {}
    if input_file is not None:
        loaded = yaml.safe_load(input_file.read_text(encoding="utf-8"))
        if not isinstance(loaded, dict):
            msg = f"Input file must contain a mapping: {input_file}"
            raise typer.BadParameter(msg)
        data.update(loaded)

    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            msg = f"Expected key=value, got '{pair}'"
            raise typer.BadParameter(msg)
        data[key] = yaml.safe_load(raw) if raw else ""
    return data


def format_event(event: PipelineEvent) -> str | None:
    """One-line rendering of an event for terminal output."""
    if event.type == EventType.NODE_STARTED:
        return f"  > {event.node_id}"
    if event.type == EventType.NODE_COMPLETED:
        return typer.style(f"  ✓ {event.node_id}", fg=typer.colors.GREEN)
    if event.type == EventType.NODE_FAILED:
        return typer.style(f"  ✗ {event.node_id}: {event.error}", fg=typer.colors.RED)
    if event.type == EventType.NODE_SKIPPED:
        return typer.style(f"  - {event.node_id} ({event.reason})", fg=typer.colors.YELLOW)
    if event.type == EventType.APPROVAL_REQUIRED:
        return typer.style(f"  ? {event.node_id}: {event.prompt}", fg=typer.colors.CYAN)
    return None


@app.command()
def run(
    pipeline_id: Annotated[
        str,
        typer.Argument(help="Pipeline ID to run"),
    ],
    inputs: Annotated[
        list[str] | None,
        typer.Option(
            "--input",
            "-i",
            help="Input value as key=value (repeatable)",
        ),
    ] = None,
    input_file: Annotated[
        Path | None,
        typer.Option(
            "--input-file",
            help="JSON or YAML file with input data",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ] = None,
    config: ConfigOption = None,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Use a fake tool executor that echoes params instead of running tools",
        ),
    ] = False,
    auto_approve: Annotated[
        bool | None,
        typer.Option(
            "--auto-approve/--auto-reject",
            help="Answer approval nodes immediately (default: wait for their timeout)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Print the final run context as JSON",
        ),
    ] = False,
) -> None:
    """Run a pipeline and stream its node events."""
    cfg = _load_config(config)
    engine = _build_engine(cfg, dry_run=dry_run)
    input_data = parse_inputs(inputs or [], input_file)

    def on_event(event: PipelineEvent) -> None:
        if event.type == EventType.APPROVAL_REQUIRED and auto_approve is not None and event.node_id:
            engine.handle_approval(event.run_id, event.node_id, auto_approve)
        if json_output:
            return
        line = format_event(event)
        if line is not None:
            typer.echo(line)

    engine.subscribe(on_event)
    try:
        ctx: PipelineContext = asyncio.run(engine.run(pipeline_id, input_data))
    except PipelineNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    finally:
        engine.unsubscribe(on_event)

    logger.debug("Run finished", run_id=ctx.run_id, status=ctx.status.value)

    if json_output:
        typer.echo(json.dumps(ctx.to_dict(), indent=2, default=str))
    elif ctx.status == RunStatus.COMPLETED:
        typer.echo("")
        typer.echo(typer.style(f"Run {ctx.run_id} completed.", fg=typer.colors.GREEN))
    else:
        typer.echo("")
        typer.echo(typer.style(f"Run {ctx.run_id} failed: {ctx.error}", fg=typer.colors.RED))

    if ctx.status != RunStatus.COMPLETED:
        raise typer.Exit(1)


@app.command()
def serve(
    host: Annotated[
        str | None,
        typer.Option("--host", help="Host to bind (default: CONDUIT_HOST or 127.0.0.1)"),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--port", "-p", help="Port to bind (default: CONDUIT_PORT or 8400)"),
    ] = None,
    config: ConfigOption = None,
) -> None:
    """Start the HTTP control API."""
    import uvicorn

    from conduit.server.app import create_app
    from conduit.server.config import ServerSettings

    settings = ServerSettings()
    if host:
        settings.host = host
    if port:
        settings.port = port
    if config:
        settings.config_path = config

    cfg = _load_config(settings.config_path)
    engine = _build_engine(cfg)

    typer.echo(f"Serving {len(engine.list_pipelines())} pipelines on http://{settings.host}:{settings.port}")
    uvicorn.run(create_app(engine, settings), host=settings.host, port=settings.port, log_level=cfg.logging.level)


@pipelines_app.command("list")
def pipelines_list(
    config: ConfigOption = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON",
        ),
    ] = False,
) -> None:
    """List available pipelines."""
    engine = _build_engine(_load_config(config))
    pipelines = engine.list_pipelines()

    if json_output:
        output = [
            {
                "id": p.id,
                "name": p.name,
                "description": p.description,
                "node_count": len(p.nodes),
            }
            for p in pipelines
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    if not pipelines:
        typer.echo("No pipelines registered.")
        return

    typer.echo("Available pipelines:")
    typer.echo("")
    for p in pipelines:
        typer.echo(f"  {p.id:20} {p.name}")
        if p.description:
            typer.echo(f"    {p.description}")
        typer.echo(f"    Nodes: {len(p.nodes)}")
        typer.echo("")


@pipelines_app.command("show")
def pipelines_show(
    pipeline_id: Annotated[
        str,
        typer.Argument(help="Pipeline ID to show"),
    ],
    config: ConfigOption = None,
    output_format: Annotated[
        str,
        typer.Option(
            "--format",
            "-f",
            help="Output format: yaml or json",
        ),
    ] = "yaml",
) -> None:
    """Show the definition of a pipeline."""
    engine = _build_engine(_load_config(config))
    pipeline = engine.get_pipeline(pipeline_id)
    if pipeline is None:
        typer.echo(f"Pipeline not found: {pipeline_id}", err=True)
        raise typer.Exit(1)

    if output_format == "json":
        typer.echo(json.dumps(pipeline.to_dict(), indent=2, ensure_ascii=False))
    elif output_format == "yaml":
        typer.echo(pipeline.to_yaml())
    else:
        typer.echo(f"Unknown format: {output_format}", err=True)
        raise typer.Exit(1)


@pipelines_app.command("validate")
def pipelines_validate(
    path: Annotated[
        Path,
        typer.Argument(
            help="Pipeline definition file (.yaml, .yml or .json)",
            exists=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
) -> None:
    """Validate a pipeline definition file."""
    try:
        pipeline = PipelineDefinition.from_file(path)
    except ValueError as e:
        typer.echo(typer.style(f"Invalid: {e}", fg=typer.colors.RED), err=True)
        raise typer.Exit(1) from e

    problems = pipeline.find_problems()
    if problems:
        typer.echo(typer.style(f"Pipeline '{pipeline.id}' is invalid:", fg=typer.colors.RED), err=True)
        for problem in problems:
            typer.echo(f"  - {problem}", err=True)
        raise typer.Exit(1)

    # Bad expressions evaluate as errors at run time rather than failing registration
    for node in pipeline.nodes:
        if isinstance(node.config, ConditionNodeConfig | TransformNodeConfig):
            error = expressions.validate(node.config.expression)
            if error:
                typer.echo(typer.style(f"  warning: {node.id}: {error}", fg=typer.colors.YELLOW))

    typer.echo(typer.style(f"Pipeline '{pipeline.id}' is valid ({len(pipeline.nodes)} nodes).", fg=typer.colors.GREEN))


if __name__ == "__main__":
    app()
