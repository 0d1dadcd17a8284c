"""PromptStudio CLI - typer application entry point."""

from __future__ import annotations

import atexit
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from promptstudio.models import OutputMode
from promptstudio.observability import close_file_logging, configure_logging, get_logger

if TYPE_CHECKING:
    from promptstudio.learning import PreferenceLearner
    from promptstudio.models import Dimension

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="promptstudio",
    help="PromptStudio: dimension-driven creative prompt generation.",
    no_args_is_help=True,
)
console = Console()

log = get_logger(__name__)

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to {workspace}/logs/debug.jsonl.",
        ),
    ] = False,
) -> None:
    """PromptStudio: dimension-driven creative prompt generation."""
    global _verbose, _log_enabled
    _verbose = verbose
    _log_enabled = log_

    # File logging is configured once a workspace is known
    configure_logging(verbosity=verbose)


def _configure_workspace_logging(workspace: Path) -> None:
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, workspace=workspace)
        atexit.register(close_file_logging)


def _parse_dimensions(specs: list[str] | None) -> list[Dimension]:
    """Parse ``type=reference`` or ``type=reference@weight`` options.

    Raises:
        typer.BadParameter: If a value is not in that form or names an
            unknown dimension type.
    """
    from promptstudio.models import Dimension, DimensionType

    dimensions = []
    for spec in specs or []:
        dim_type, sep, rest = spec.partition("=")
        if not sep or not rest.strip():
            raise typer.BadParameter(f"Expected TYPE=REFERENCE, got '{spec}'")
        reference, at, weight_text = rest.rpartition("@")
        if not at:
            reference, weight_text = rest, ""
        try:
            dimension = Dimension(
                type=DimensionType(dim_type.strip().lower()),
                reference=reference.strip(),
                weight=float(weight_text) if weight_text else 1.0,
            )
        except ValueError as e:
            raise typer.BadParameter(f"Invalid dimension '{spec}': {e}") from e
        dimensions.append(dimension)
    return dimensions


def _load_learner(state_file: Path) -> PreferenceLearner:
    from promptstudio.learning import PreferenceLearner, PreferenceSnapshot

    if not state_file.exists():
        console.print(f"[red]Error:[/red] State file '{state_file}' not found")
        raise typer.Exit(1)
    try:
        snapshot = PreferenceSnapshot.model_validate_json(state_file.read_text(encoding="utf-8"))
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid learner state in '{state_file}'")
        console.print(f"  {e.error_count()} validation error(s)")
        raise typer.Exit(1) from e

    learner = PreferenceLearner()
    learner.import_state(snapshot)
    return learner


@app.command()
def version() -> None:
    """Show version information."""
    from promptstudio import __version__

    console.print(f"PromptStudio v{__version__}")


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Workspace name")],
    path: Annotated[
        Path | None,
        typer.Option("--path", "-p", help="Parent directory for the workspace (default: .)."),
    ] = None,
    mode: Annotated[
        OutputMode | None,
        typer.Option("--mode", "-m", help="Default output mode."),
    ] = None,
) -> None:
    """Initialize a new studio workspace with a studio.yaml."""
    from promptstudio.config import create_default_config, write_studio_config

    parent_dir = path if path is not None else Path()
    workspace = parent_dir / name
    if workspace.exists():
        console.print(f"[red]Error:[/red] Directory '{workspace}' already exists")
        raise typer.Exit(1)

    workspace.mkdir(parents=True)
    config_path = write_studio_config(create_default_config(name, mode), workspace)
    _configure_workspace_logging(workspace)
    log.info("workspace_created", workspace=str(workspace))

    console.print(f"[green]✓[/green] Created workspace: [bold]{name}[/bold]")
    console.print(f"  Config: {config_path.absolute()}")


@app.command()
def prompt(
    base: Annotated[str, typer.Argument(help="Base image description")],
    dimension: Annotated[
        list[str] | None,
        typer.Option(
            "--dimension",
            "-d",
            help="Dimension as TYPE=REFERENCE[@WEIGHT]; repeatable.",
        ),
    ] = None,
    mode: Annotated[
        OutputMode,
        typer.Option("--mode", "-m", help="Output mode."),
    ] = OutputMode.GAMEPLAY,
) -> None:
    """Build prompts locally without calling a generator."""
    from promptstudio.builder import build_fallback_prompts

    if not base.strip():
        console.print("[red]Error:[/red] Base image description must not be empty.")
        raise typer.Exit(1)

    prompts = build_fallback_prompts(base, _parse_dimensions(dimension), output_mode=mode)

    table = Table(title=f"Prompts ({mode.value})")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Scene", style="bold")
    table.add_column("Prompt")
    for p in prompts:
        table.add_row(str(p.scene_number), p.scene_type.value, p.prompt)

    console.print()
    console.print(table)
    if prompts and prompts[0].negative_prompt:
        console.print(f"  Negative: [dim]{prompts[0].negative_prompt}[/dim]")
    console.print()


@app.command()
def suggest(
    state_file: Annotated[Path, typer.Argument(help="Exported learner state (JSON)")],
    dimension: Annotated[
        list[str] | None,
        typer.Option(
            "--dimension",
            "-d",
            help="Current dimension as TYPE=REFERENCE[@WEIGHT]; repeatable.",
        ),
    ] = None,
    mode: Annotated[
        OutputMode | None,
        typer.Option("--mode", "-m", help="Current output mode."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum suggestions.")] = 5,
) -> None:
    """Show suggestions learned from an exported learner state."""
    learner = _load_learner(state_file)
    suggestions = learner.get_suggestions(
        _parse_dimensions(dimension), output_mode=mode, limit=limit
    )

    if not suggestions:
        status = learner.learning_status()
        console.print(
            f"[yellow]No suggestions yet.[/yellow] "
            f"{status.feedback_count}/{status.required_count} ratings collected."
        )
        return

    table = Table(title="Suggestions")
    table.add_column("Kind", style="cyan")
    table.add_column("Target")
    table.add_column("Value")
    table.add_column("Confidence", justify="right")
    table.add_column("Reason", style="dim")
    for s in suggestions:
        target = s.dimension_type.value if s.dimension_type else "-"
        if s.weight is not None:
            value = f"{s.weight:.2f}"
        elif s.output_mode is not None:
            value = s.output_mode.value
        else:
            value = s.value or "-"
        table.add_row(s.kind, target, value, f"{s.confidence:.0%}", s.reason)

    console.print()
    console.print(table)
    console.print()


@app.command()
def status(
    state_file: Annotated[Path, typer.Argument(help="Exported learner state (JSON)")],
) -> None:
    """Show how far preference learning has progressed."""
    learner = _load_learner(state_file)
    info = learner.learning_status()

    table = Table(title="Learning Status")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="bold")
    ready = "[green]✓[/green] ready" if info.ready else f"[dim]○[/dim] {info.progress:.0%}"
    table.add_row("Status", ready)
    table.add_row("Ratings", f"{info.feedback_count}/{info.required_count}")
    table.add_row("Sessions", str(info.session_count))
    table.add_row("Positive rate", f"{info.positive_rate:.0%}")
    table.add_row("Style preferences", str(info.style_preferences))
    table.add_row("Combinations", str(info.combinations))

    console.print()
    console.print(table)
    console.print()


if __name__ == "__main__":
    app()
