"""CLI entry point for runweave."""

import asyncio
import signal
import sys
from pathlib import Path

import typer
from loguru import logger

APP_HELP = """
Reconstruct streamed agent runs as block trees.

\b
Configuration is read from RUNWEAVE_* environment variables, for example:
  RUNWEAVE_BASE_URL=https://agents.example.com
  RUNWEAVE_API_KEY=...
  RUNWEAVE_LOG_LEVEL=INFO
"""

app = typer.Typer(add_completion=False, help=APP_HELP)


def configure_logging(level: str) -> None:
    """Send log records at ``level`` and above to stderr."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<level>{level: <8}</level> {name}: {message}",
    )


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="Override RUNWEAVE_LOG_LEVEL"),
) -> None:
    from .config import get_settings

    configure_logging(log_level or get_settings().log_level)


REPLAY_HELP = """
Replay a recorded JSONL event stream and print the resulting tree.

Each line is one stream event. An optional final
{"type": "run_state", ...} line supplies the run's outcome.

\b
Examples:
  # Full JSON tree with metadata
  runweave replay events.jsonl | jq '.metadata'

  # Indented outline of agents, tools and text
  runweave replay events.jsonl --outline

  # List tool names
  runweave replay events.jsonl | jq '[.. | objects | select(.type == "tool") | .tool_name]'
"""


@app.command(help=REPLAY_HELP)
def replay(
    events_path: Path = typer.Argument(..., help="Path to JSONL event file"),
    output: Path | None = typer.Option(None, "-o", "--output", help="Output file path"),
    compact: bool = typer.Option(False, "--compact", help="No indentation (for piping)"),
    outline: bool = typer.Option(False, "--outline", help="Print an indented outline instead of JSON"),
) -> None:
    from pydantic import ValidationError

    from .config import get_settings
    from .events import ErrorOutput, RunState, load_events
    from .models import Run, RunOutcome
    from .reconciler import EventReconciler
    from .renderer import render_json, render_outline
    from .scheduler import UpdateScheduler

    if not events_path.exists():
        typer.echo(f"Error: File not found: {events_path}", err=True)
        raise typer.Exit(1)

    settings = get_settings()
    reconciler = EventReconciler(extract_plan=settings.extract_plan)
    scheduler = UpdateScheduler(delay_ms=settings.flush_delay_ms)
    state: RunState | None = None

    for record in load_events(events_path):
        if isinstance(record, dict) and record.get("type") == "run_state":
            try:
                state = RunState.model_validate(record)
            except ValidationError as e:
                typer.echo(
                    f"Warning: Ignoring malformed run_state: {e.error_count()} error(s)", err=True
                )
            continue
        for mutation in reconciler.mutations_for(record):
            scheduler.enqueue(mutation)
    blocks = scheduler.flush_now()

    run = Run(id=events_path.stem, cost=reconciler.total_cost)
    if state is not None and isinstance(state.output, ErrorOutput):
        run.outcome = RunOutcome.ERROR
        run.error_message = state.output.message
        run.error_code = state.output.error_code
    else:
        run.outcome = RunOutcome.SUCCESS

    text = render_outline(blocks) if outline else render_json(run, blocks, compact=compact)
    if output is None:
        typer.echo(text, nl=not outline)
    else:
        output.write_text(text)
        typer.echo(f"Written to {output}", err=True)

    for message in reconciler.diagnostics:
        typer.echo(f"Warning: {message}", err=True)


RUN_HELP = """
Start a live run and print the final tree.

Press Ctrl-C to cancel; partial output is kept and marked as interrupted.
With --conversation the continuation token and tree are saved, and the next
run with the same id resumes the conversation.
"""


@app.command(name="run", help=RUN_HELP)
def run_command(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    conversation: str | None = typer.Option(None, "--conversation", "-c", help="Conversation id to resume and save"),
    agent: str | None = typer.Option(None, "--agent", help="Agent to run (default: RUNWEAVE_AGENT)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of an outline"),
) -> None:
    from .models import RunOutcome
    from .renderer import render_json, render_outline

    controller = _build_controller(conversation)
    run = asyncio.run(_submit(controller, prompt, agent))

    if as_json:
        typer.echo(render_json(run, controller.snapshot))
    else:
        typer.echo(render_outline(controller.snapshot), nl=False)
        outcome = run.outcome.value if run.outcome else "unknown"
        cost = f", cost {run.cost}" if run.cost is not None else ""
        typer.echo(f"[{outcome} in {run.completion_time}{cost}]", err=True)

    if run.payment_required:
        typer.echo("Payment required: add credits or check RUNWEAVE_API_KEY.", err=True)
    if run.outcome is RunOutcome.ERROR:
        raise typer.Exit(1)
    if run.outcome is RunOutcome.ABORTED:
        raise typer.Exit(130)


def _build_controller(conversation: str | None):
    from .client import RunClient
    from .config import get_settings
    from .controller import RunController
    from .retry import RetryAttempt
    from .store import ConversationStore

    settings = get_settings()

    def on_retry(attempt: RetryAttempt) -> None:
        typer.echo(f"Retrying in {attempt.delay_ms / 1000:.1f}s ({attempt.message})", err=True)

    return RunController(
        RunClient.from_settings(settings),
        settings=settings,
        store=ConversationStore(settings.state_dir),
        conversation_id=conversation,
        on_retry=on_retry,
    )


async def _submit(controller, prompt: str, agent: str | None):
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.cancel)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable, Ctrl-C will not cancel cleanly")
    try:
        return await controller.submit(prompt, agent=agent)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


@app.command(help="Print the saved tree of a conversation.")
def show(
    conversation_id: str = typer.Argument(..., help="Conversation id"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of an outline"),
) -> None:
    import json

    from .config import get_settings
    from .renderer import render_outline, tree_to_dict
    from .store import ConversationStore

    saved = ConversationStore(get_settings().state_dir).load(conversation_id)
    if saved is None:
        typer.echo(f"Error: No saved conversation: {conversation_id}", err=True)
        raise typer.Exit(1)

    if as_json:
        data = {
            "continuation_token": saved.continuation_token,
            "blocks": tree_to_dict(saved.blocks),
        }
        typer.echo(json.dumps(data, indent=2))
    else:
        typer.echo(render_outline(saved.blocks), nl=False)


if __name__ == "__main__":
    app()
