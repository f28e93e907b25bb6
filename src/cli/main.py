"""intent-engine CLI entry point."""

import logging
from typing import Any, Dict, Optional

import typer

from intent_engine.config import ConfigurationError, load_config
from intent_engine.debug import collect_debug_snapshot, is_debug_enabled
from intent_engine.edit_guard import evaluate_edit_guard
from intent_engine.edit_intent import NormalizerContext, normalize_edit_intent
from intent_engine.editorial import EditorialOpType, make_editorial_op
from intent_engine.engine import create_engine
from intent_engine.governance import GovernanceContext, Role
from intent_engine.local_apply import local_apply
from intent_engine.stability import compute_stability, get_confirmation_gating, get_trust_copy

from . import __version__
from .console import (
    console,
    create_table,
    key_value_table,
    print_error,
    print_panel,
    print_success,
    print_table,
    print_warning,
)

app = typer.Typer(
    name="intent-engine",
    help="Intent routing and trust engine - inspect decisions from the command line",
    no_args_is_help=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"intent-engine version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML config file (default: INTENT_ENGINE_CONFIG_PATH)",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (default: server.log_level from config)",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Intent routing and trust engine."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(1)
    configure_logging(log_level or config["server"]["log_level"])
    ctx.obj = config


def _config(ctx: typer.Context) -> Dict[str, Any]:
    return ctx.obj or load_config()


@app.command()
def apply(
    content: str = typer.Argument(..., help="Draft text"),
    instruction: str = typer.Argument(..., help="Instruction, e.g. 'thêm bullet'"),
) -> None:
    """Apply a mechanical edit locally, without generation."""
    result = local_apply(content, instruction)
    if not result.ok:
        print_warning(result.reason)
        raise typer.Exit(1)
    print_success(result.reason)
    console.print(result.next_content, markup=False, highlight=False)


@app.command()
def normalize(
    instruction: str = typer.Argument(..., help="Instruction to classify"),
    lang: str = typer.Option("vi", "--lang", "-l", help="Instruction language: vi or en"),
    no_draft: bool = typer.Option(False, "--no-draft", help="Pretend no draft is active"),
) -> None:
    """Show the edit intent inferred from an instruction."""
    result = normalize_edit_intent(
        instruction, NormalizerContext(has_active_draft=not no_draft, lang=lang)
    )
    if result is None:
        console.print("[dim]No edit intent detected.[/dim]")
        return

    data = result.to_dict()
    data["matched_patterns"] = ", ".join(result.matched_patterns)
    print_table(key_value_table("Edit Intent", data))


@app.command()
def guard(
    ctx: typer.Context,
    original: str = typer.Argument(..., help="Text before the edit"),
    output: str = typer.Argument(..., help="Generated text"),
    op: EditorialOpType = typer.Option(
        EditorialOpType.MICRO_POLISH, "--op", help="Requested editorial operation"
    ),
) -> None:
    """Check whether a generated output stayed within the requested scope."""
    result = evaluate_edit_guard(original, output, make_editorial_op(op), _config(ctx))

    table = create_table("Edit Guard", ["Metric", "Value"])
    for name, value in result.metrics.to_dict().items():
        table.add_row(name, f"{value:.3f}")
    print_table(table)

    detected = result.detected_op.value if result.detected_op else "-"
    if result.violated:
        print_panel(
            f"Violation ({result.severity.value})",
            f"{result.reason}\nDetected: {detected}",
            style="red",
        )
    else:
        print_success(f"{result.reason} (detected: {detected})")


@app.command()
def stability(
    ctx: typer.Context,
    pattern_hash: str = typer.Argument(..., help="Pattern hash to score"),
    lang: str = typer.Option("en", "--lang", "-l", help="Language for the trust badge"),
) -> None:
    """Show stability metrics for a pattern from the persisted store."""
    config = _config(ctx)
    engine = create_engine(config)
    metrics = compute_stability(pattern_hash, engine.outcomes, engine.learning, config)

    data = metrics.to_dict()
    data["gate"] = get_confirmation_gating(metrics).value
    data["badge"] = get_trust_copy(metrics, lang)
    print_table(key_value_table("Stability", data))


@app.command()
def prefs(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User id for scoped preferences"),
) -> None:
    """List active preferences."""
    governance = GovernanceContext(role=Role.EDITOR, user_id=user) if user else None
    engine = create_engine(_config(ctx), governance=governance)
    active = engine.preferences.get_active_preferences()

    if not active:
        console.print("[dim]No active preferences.[/dim]")
        return

    table = create_table("Active Preferences", ["Key", "Strength", "Reason"])
    for pref in active:
        table.add_row(pref.key.value, f"{pref.strength:.0%}", pref.reason)
    print_table(table)


@app.command()
def debug(
    ctx: typer.Context,
    pattern_hash: Optional[str] = typer.Argument(None, help="Pattern hash to include"),
    query: Optional[str] = typer.Option(
        None, "--query", "-q", help="Query string carrying the debug flag, e.g. '?debugIntent=1'"
    ),
) -> None:
    """Print read-only summaries of every subsystem."""
    if not is_debug_enabled(query):
        print_error("Debug surface disabled. Pass --query '?debugIntent=1' or set INTENT_ENGINE_DEBUG=1.")
        raise typer.Exit(1)

    engine = create_engine(_config(ctx))
    snapshot = collect_debug_snapshot(engine, pattern_hash=pattern_hash)
    print_table(key_value_table("Intent Debug", snapshot))


if __name__ == "__main__":
    app()
