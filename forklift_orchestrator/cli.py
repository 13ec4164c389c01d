"""
CLI entry point for forklift-orchestrator.
"""

import logging
import threading
from functools import wraps
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.table import Table

from forklift_orchestrator.builder import build_all, build_secret
from forklift_orchestrator.config import CONFIG_FILENAME, Config, resolve_config_path
from forklift_orchestrator.exceptions import (
    ConfigurationError,
    OrchestratorError,
    RequestNotFoundError,
    format_error_for_cli,
)
from forklift_orchestrator.models.request import MigrationRequest
from forklift_orchestrator.models.workflow import StageStatus, WorkflowState
from forklift_orchestrator.orchestrator import Orchestrator
from forklift_orchestrator.report import write_report
from forklift_orchestrator.util.logging import configure_logging
from forklift_orchestrator.util.redact import redact_manifest

app = typer.Typer(
    name="forklift-orchestrator",
    help="Drive Forklift VM migrations: Providers, maps, Plan and Migration",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    StageStatus.PENDING: "dim",
    StageStatus.OBSERVING: "cyan",
    StageStatus.SUCCEEDED: "green",
    StageStatus.FAILED: "red",
    StageStatus.CANCELLED: "yellow",
}


def handle_errors(func):
    """Decorator to handle exceptions in CLI commands with nice formatting."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except OrchestratorError as e:
            console.print(format_error_for_cli(e))
            raise typer.Exit(1)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {str(e)}")
            console.print("\n[yellow]This may be a bug. Please report it with the command you ran.")
            raise typer.Exit(1)

    return wrapper


def _load_config(config_path: str | None) -> dict:
    return Config(resolve_config_path(config_path)).load()


def _load_request(request_file: Path, config: dict) -> MigrationRequest:
    if not request_file.is_file():
        raise RequestNotFoundError(str(request_file))
    return MigrationRequest.from_file(
        request_file, default_namespace=config["forklift"]["namespace"]
    )


@app.command()
@handle_errors
def init(
    directory: str = typer.Argument(".", help="Directory to write the configuration into"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration"),
):
    """Write a default forklift-orchestrator.yaml."""
    config = Config(Path(directory) / CONFIG_FILENAME)
    if config.path.exists() and not force:
        raise ConfigurationError(
            f"Configuration already exists: {config.path}",
            "Use --force to overwrite it, or edit the file directly.",
        )

    config.write_default()
    console.print(f"[green]✓ Wrote configuration to {config.path}[/green]")
    console.print("\n[dim]Next steps:[/dim]")
    console.print("  forklift-orchestrator render <request.yaml>")
    console.print("  forklift-orchestrator run <request.yaml>")


@app.command()
@handle_errors
def render(
    request_file: Path = typer.Argument(..., help="Migration request YAML"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write manifests to a file"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Configuration file"),
):
    """Print the manifests a run would create, without touching the cluster."""
    config = _load_config(config_path)
    api_version = config["forklift"]["api_version"]
    request = _load_request(request_file, config)

    documents = []
    if request.source.credentials is not None:
        secret = build_secret(
            name=request.secret_name,
            namespace=request.namespace,
            credentials=request.source.credentials,
            provider_type=request.source.type,
            request_name=request.name,
        )
        documents.append(redact_manifest(secret))
    documents.extend(obj.to_manifest() for _, obj in build_all(request, api_version))

    text = yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text)
        console.print(f"[green]✓ Wrote {len(documents)} manifest(s) to {output}[/green]")
    else:
        typer.echo(text, nl=False)


def _stage_table(state: WorkflowState) -> Table:
    table = Table(title=f"Workflow {state.request_name}")
    table.add_column("#", justify="right")
    table.add_column("Stage")
    table.add_column("Object")
    table.add_column("Status")
    table.add_column("Phase")
    table.add_column("Created")
    table.add_column("Retries", justify="right")

    for index, record in enumerate(state.records, start=1):
        style = STATUS_STYLES[record.status]
        table.add_row(
            str(index),
            str(record.stage),
            f"{record.obj.kind} {record.obj.namespace}/{record.obj.name}",
            f"[{style}]{record.status}[/{style}]",
            str(record.phase),
            "yes" if record.created else "no",
            str(record.attempts),
        )
    return table


def _run_in_worker(orchestrator: Orchestrator, request: MigrationRequest) -> WorkflowState:
    """Run the workflow on a worker thread so Ctrl-C can cancel it."""
    cancel = threading.Event()
    outcome: dict = {}

    def worker():
        try:
            outcome["state"] = orchestrator.run(request, cancel=cancel)
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=worker, name=f"workflow-{request.name}", daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(0.2)
    except KeyboardInterrupt:
        console.print("[yellow]Cancelling; objects already created are left in place...[/yellow]")
        cancel.set()
        thread.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["state"]


@app.command()
@handle_errors
def run(
    request_file: Path = typer.Argument(..., help="Migration request YAML"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Configuration file"),
    report: Path | None = typer.Option(None, "--report", help="Write a Markdown run report"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Create the Forklift resource chain and wait for the migration to finish."""
    config = _load_config(config_path)
    configure_logging("DEBUG" if verbose else config["logging"]["level"])

    request = _load_request(request_file, config)
    orchestrator = Orchestrator.from_config(config)

    console.print(f"[bold blue]Running migration workflow:[/bold blue] {request.name}")
    state = _run_in_worker(orchestrator, request)
    console.print(_stage_table(state))

    if report:
        write_report(state, report)
        console.print(f"[green]✓ Report saved to {report}[/green]")

    if not state.succeeded:
        console.print(f"\n[bold red]Workflow {state.outcome}[/bold red]")
        if state.error is not None:
            console.print(format_error_for_cli(state.error))
        raise typer.Exit(1)

    console.print(f"\n[bold green]✓ Migration {request.migration_name} succeeded[/bold green]")


def main():
    app()


if __name__ == "__main__":
    main()
