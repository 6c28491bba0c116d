"""Command line entry point for the SEO pages agent."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from seopages_agent.config import Config, set_config
from seopages_agent.exceptions import ConfigurationError, TaskConflictError
from seopages_agent.llm import StreamEvent, TextDelta, ToolCallStarted, create_provider
from seopages_agent.logging import configure_logging, get_logger
from seopages_agent.session import SessionStore
from seopages_agent.session_orchestrator import GenerationOutcome, GenerationRequest, SessionOrchestrator
from seopages_agent.skills import SkillRegistry

log = get_logger(__name__)

T = TypeVar("T")

app = typer.Typer(help="SEO pages agent - plan, generate and audit SEO pages")
console = Console()


def _load_config(config_path: str, verbose: bool) -> Config:
    config = Config.from_yaml(config_path or None)
    if verbose:
        config.logging.level = "DEBUG"
    set_config(config)
    configure_logging(config)
    return config


def _build_orchestrator(config: Config) -> SessionOrchestrator:
    """Wire store, provider and skills from configuration.

    Raises:
        ConfigurationError: the completion endpoint is not configured
    """
    provider = create_provider(config.model, timeout=config.generation.timeout_seconds)
    return SessionOrchestrator(
        store=SessionStore(config.store.path),
        provider=provider,
        registry=SkillRegistry.from_config(config.skills),
        config=config,
    )


def _print_event(event: StreamEvent) -> None:
    if isinstance(event, TextDelta):
        console.print(event.text, end="", markup=False, highlight=False)
    elif isinstance(event, ToolCallStarted):
        console.print(f"\n[dim]tool: {event.tool_name}[/dim]")


def _report(outcome: GenerationOutcome) -> None:
    console.print()
    task = outcome.task
    style = "green" if outcome.succeeded else "red"
    console.print(f"[{style}]Task {task.id} ({task.kind.id}): {task.status}[/{style}]")
    if task.error:
        console.print(f"[red]{task.error}[/red]")
    if outcome.resolution and outcome.resolution.skill:
        console.print(f"[dim]skill: {outcome.resolution.skill.id} ({outcome.resolution.reason})[/dim]")
    for warning in outcome.warnings + task.persistence_warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


def _run(config: Config, work: Callable[[SessionOrchestrator], Awaitable[T]]) -> T:
    async def runner() -> T:
        try:
            orchestrator = _build_orchestrator(config)
        except ConfigurationError as e:
            console.print(f"[red]Configuration error:[/red] {e}")
            raise typer.Exit(code=2)
        try:
            return await work(orchestrator)
        except TaskConflictError as e:
            console.print(f"[yellow]{e}[/yellow]")
            raise typer.Exit(code=1)
        finally:
            await orchestrator.shutdown()
            store = orchestrator.store
            if isinstance(store, SessionStore):
                await store.close()

    return asyncio.run(runner())


async def _ensure_session(orchestrator: SessionOrchestrator, session_id: str, name: str) -> str:
    store = orchestrator.store
    if not isinstance(store, SessionStore):
        return session_id
    if session_id and await store.load_session(session_id) is not None:
        return session_id
    session = await store.create_session(name=name)
    console.print(f"[dim]session: {session.id}[/dim]")
    return session.id


@app.command()
def skills(
    show_all: bool = typer.Option(False, "--all", help="Include disabled skills"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """List the bundled skills."""
    cfg = _load_config(config, verbose=False)
    registry = SkillRegistry.from_config(cfg.skills)
    table = Table(title="Skills")
    table.add_column("ID")
    table.add_column("Category")
    table.add_column("Enabled")
    table.add_column("Routes")
    table.add_column("Tools", justify="right")
    for skill in registry.skills.values():
        if not skill.enabled and not show_all:
            continue
        table.add_row(
            skill.id,
            skill.category,
            "yes" if skill.enabled else "no",
            ", ".join(skill.classifications),
            str(len(skill.tools)),
        )
    console.print(table)


@app.command()
def chat(
    session_id: str = typer.Option("", "-s", "--session", help="Session id to continue"),
    skill: str = typer.Option("", "--skill", help="Explicit skill id"),
    user_id: str = typer.Option("", "--user", help="User id"),
    project_id: str = typer.Option("", "--project", help="Project id"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Interactive chat with the agent."""
    cfg = _load_config(config, verbose)

    async def work(orchestrator: SessionOrchestrator) -> None:
        active_session = await _ensure_session(orchestrator, session_id, "chat")
        console.print(Panel("Type a message, or 'exit' to quit.", title="SEO pages agent"))
        while True:
            message = await asyncio.to_thread(Prompt.ask, "[bold]you[/bold]")
            if message.strip().lower() in {"exit", "quit"}:
                return
            if not message.strip():
                continue
            outcome = await orchestrator.run(
                GenerationRequest(
                    session_id=active_session,
                    message=message,
                    user_id=user_id,
                    project_id=project_id,
                    skill_id=skill or None,
                ),
                on_event=_print_event,
            )
            _report(outcome)

    _run(cfg, work)


@app.command("init-context")
def init_context(
    domain: str = typer.Argument(..., help="Site domain, e.g. example.com"),
    session_id: str = typer.Option("", "-s", "--session", help="Session id"),
    user_id: str = typer.Option("", "--user", help="User id"),
    project_id: str = typer.Option("", "--project", help="Project id"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Acquire site context, research competitors and plan pages."""
    cfg = _load_config(config, verbose)

    async def work(orchestrator: SessionOrchestrator) -> None:
        active_session = await _ensure_session(orchestrator, session_id, f"context {domain}")
        outcome = await orchestrator.start_context_acquisition(
            active_session,
            domain,
            user_id=user_id,
            project_id=project_id,
            on_event=_print_event,
        )
        _report(outcome)

    _run(cfg, work)


@app.command("generate-page")
def generate_page(
    item_id: str = typer.Argument(..., help="Content item id"),
    session_id: str = typer.Option("", "-s", "--session", help="Session id"),
    regenerate: bool = typer.Option(False, "--regenerate", help="Rebuild the page from scratch"),
    user_id: str = typer.Option("", "--user", help="User id"),
    project_id: str = typer.Option("", "--project", help="Project id"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Generate the page for a planned content item."""
    cfg = _load_config(config, verbose)

    async def work(orchestrator: SessionOrchestrator) -> None:
        item = await orchestrator.store.load_artifact(item_id)
        if item is None:
            console.print(f"[red]Content item not found: {item_id}[/red]")
            raise typer.Exit(code=1)
        active_session = await _ensure_session(orchestrator, session_id, f"page {item.get('title') or item_id}")
        outcome = await orchestrator.start_page_generation(
            active_session,
            item,
            regenerate=regenerate,
            user_id=user_id,
            project_id=project_id,
            on_event=_print_event,
        )
        _report(outcome)

    _run(cfg, work)


@app.command()
def version() -> None:
    """Show version information."""
    from seopages_agent import __version__

    console.print(f"seopages-agent v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
