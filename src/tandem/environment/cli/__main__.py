"""Command line for running agent sessions.

Usage:
    uv run tandem run "your task here"
    uv run tandem run --session-id my-session "task"
    uv run tandem run --session-id my-session --resume "follow-up task"
    uv run tandem sessions
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer

from tandem.agent.config import settings
from tandem.agent.core import run_agent
from tandem.agent.models import SessionResult
from tandem.lib.history import list_sessions

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="tandem",
    help="Tool-using agents with sub-agent pools",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback(invoke_without_command=True)
def callback(ctx: typer.Context) -> None:
    """Tool-using agents with sub-agent pools."""
    if ctx.invoked_subcommand is None:
        raise typer.Exit()


def _print_result(result: SessionResult) -> None:
    typer.echo(f"\n{result.response}\n")
    typer.echo(f"Session: {result.session_id}")
    status = "completed" if result.completed else "interrupted (step limit)"
    typer.echo(f"Status: {status} after {result.steps} step(s)")
    if result.duration_seconds:
        typer.echo(f"Duration: {result.duration_seconds:.1f}s")


@app.command()
def run(
    task: Annotated[str, typer.Argument(help="The task for the agent to perform")],
    session_id: Annotated[
        str | None,
        typer.Option("--session-id", "-s", help="Optional session identifier"),
    ] = None,
    max_steps: Annotated[
        int | None,
        typer.Option("--max-steps", "-n", min=1, help="Step limit per call"),
    ] = None,
    resume: Annotated[
        bool,
        typer.Option("--resume", "-r", help="Continue the session's latest conversation"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging"),
    ] = False,
    trace: Annotated[
        bool,
        typer.Option("--trace/--no-trace", help="Print messages as they arrive"),
    ] = True,
) -> None:
    """Run a single agent session."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)
    if resume and session_id is None:
        raise typer.BadParameter("--resume requires --session-id")

    logger.info("Running with model: %s", settings.model)
    result = asyncio.run(
        run_agent(
            task,
            session_id=session_id,
            max_steps=max_steps,
            resume=resume,
            trace=trace,
        )
    )
    _print_result(result)


@app.command()
def sessions() -> None:
    """List saved sessions."""
    found = list_sessions(Path(settings.sessions_path))
    if not found:
        typer.echo("No saved sessions.")
        return
    for session_id in found:
        typer.echo(session_id)


if __name__ == "__main__":
    app()
