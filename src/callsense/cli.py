"""Command-line interface for the call analysis pipeline."""

import asyncio
import json
import logging
import sys

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from callsense.config import get_settings
from callsense.models import PipelineMode, PipelineResult
from callsense.pipeline import PipelineError, load_guardrails, load_pipeline_stages, run_pipeline
from callsense.storage import PipelineStore

# Configure structlog for CLI
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="callsense",
    help="Call analysis pipeline - score, aggregate and adapt after every call",
    add_completion=False,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=getattr(logging, get_settings().log_level.upper(), logging.WARNING))


@app.command()
def run(
    call_id: str = typer.Argument(..., help="Id of the finished call to analyse"),
    caller: str = typer.Option(None, "--caller", "-c", help="Caller id (default: the call's caller)"),
    mode: PipelineMode = typer.Option(
        PipelineMode.PREP,
        "--mode",
        "-m",
        help="prep: analysis only; prompt: also compose the next prompt",
    ),
    engine: str = typer.Option(None, "--engine", "-e", help="Inference engine: mock or ollama"),
    force: bool = typer.Option(False, "--force", "-f", help="Re-run stages whose output already exists"),
    database_url: str = typer.Option(None, "--db", help="Database URL (default: from settings)"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Run the pipeline for one call."""
    _configure_logging(verbose)
    settings = get_settings()
    store = PipelineStore.from_url(database_url or settings.database_url)

    try:
        result = asyncio.run(
            run_pipeline(
                call_id,
                caller_id=caller,
                mode=mode,
                engine=engine,
                force=force,
                store=store,
                settings=settings,
            )
        )
    except PipelineError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if as_json:
        console.print_json(json.dumps(result.model_dump(mode="json"), default=str))
        return

    _display_summary(result)


@app.command("init-db")
def init_db(
    database_url: str = typer.Option(None, "--db", help="Database URL (default: from settings)"),
) -> None:
    """Create the pipeline tables."""
    url = database_url or get_settings().database_url
    try:
        PipelineStore.from_url(url, create_tables=True)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]Tables ready:[/green] {url}")


@app.command("show-config")
def show_config(
    database_url: str = typer.Option(None, "--db", help="Database URL (default: from settings)"),
) -> None:
    """Display the guardrails and stage list a run would use."""
    settings = get_settings()
    store = PipelineStore.from_url(database_url or settings.database_url)
    guardrails = load_guardrails(store, settings)
    stages = load_pipeline_stages(store)

    console.print(Panel.fit(f"[bold blue]Guardrails[/bold blue] ({guardrails.source})", border_style="blue"))

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")
    table.add_row("Target clamp", f"{guardrails.target_clamp.min:g} - {guardrails.target_clamp.max:g}")
    bounds = guardrails.confidence_bounds
    table.add_row("Confidence", f"{bounds.min:g} - {bounds.max:g} (default {bounds.default:g})")
    mock = guardrails.mock_behavior
    table.add_row("Mock range", f"{mock.range_min:g} - {mock.range_max:g} (nudge {mock.nudge_factor:g})")
    table.add_row("Temperature", str(guardrails.ai_settings.temperature))
    table.add_row("Max retries", str(guardrails.ai_settings.max_retries))
    table.add_row("Decay half-life", f"{guardrails.aggregation.decay_half_life_days:g} days")
    console.print(table)

    console.print("\n[bold]Stages[/bold]")
    stage_table = Table()
    stage_table.add_column("Order", justify="right")
    stage_table.add_column("Stage")
    stage_table.add_column("Outputs")
    stage_table.add_column("Mode")
    for stage in stages:
        stage_table.add_row(
            str(stage.order),
            stage.name.value,
            ", ".join(t.value for t in stage.output_categories),
            stage.requires_mode.value if stage.requires_mode else "any",
        )
    console.print(stage_table)


def _display_summary(result: PipelineResult) -> None:
    """Display a summary of a pipeline run."""
    console.print(
        Panel.fit(
            f"[bold blue]{result.message}[/bold blue]\n"
            f"call {result.call_id} / caller {result.caller_id} ({result.engine})",
            border_style="green" if not result.errors else "yellow",
        )
    )

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", justify="right")
    for key, value in result.summary.items():
        if key in ("prompt", "stage_errors"):
            continue
        table.add_row(key, str(value))
    console.print(table)

    if result.errors:
        console.print(f"\n[yellow]Stage errors:[/yellow] {len(result.errors)}")
        for error in result.errors:
            console.print(f"  - {error}")

    if result.prompt:
        console.print(f"\n[bold]Composed prompt[/bold] ({len(result.prompt)} chars)")
        console.print(result.prompt)

    console.print(f"\n[dim]Processed in {result.duration_seconds:.1f}s[/dim]")


if __name__ == "__main__":
    app()
