"""
HomeChat CLI

Command-line interface for asking questions about home data.

Usage:
    homechat chat                              # Interactive REPL mode
    homechat ask "How much did I spend on HVAC?"   # Single question mode
    homechat models                            # List local and well-known models
    homechat pull qwen3:8b                     # Switch to a model, pulling if needed
"""

import asyncio
import logging
import signal
import sys
from collections.abc import Callable, Iterable

import click
from rich.console import Console, Group, RenderableType
from rich.markdown import Markdown
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.progress_bar import ProgressBar
from rich.spinner import Spinner
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from homechat import __version__, settings_store
from homechat.config import get_settings
from homechat.connectors.base import ConnectorError
from homechat.connectors.postgres import PostgresQueryStore
from homechat.conversations.store import ChatHistoryStore
from homechat.llm.base import LLMError
from homechat.llm.models import UNKNOWN_PERCENT
from homechat.llm.ollama import OllamaClient
from homechat.pipeline.orchestrator import ChatPipeline
from homechat.pipeline.persistence import SessionPersistence
from homechat.pipeline.provisioning import ModelProvisioner, merge_model_lists
from homechat.pipeline.runtime import EventLoop
from homechat.pipeline.session import ChatMessage, ChatRole, ChatSession, ModelPullState, Stage
from homechat.settings_store import apply_config_defaults

console = Console()

STAGE_LABELS = {
    Stage.GENERATING_SQL: "generating query",
    Stage.EXECUTING_QUERY: "running query",
    Stage.STREAMING_SUMMARY: "summarizing",
    Stage.FALLBACK_STREAMING: "answering from data",
}

EXIT_WORDS = {"exit", "quit", "q", "bye", ":q"}


def configure_cli_logging(verbose: bool = False) -> None:
    if verbose:
        get_settings().logging.configure()
        return
    logging.disable(logging.CRITICAL)
    logging.basicConfig(level=logging.CRITICAL)
    for logger_name in ("homechat", "httpx", "httpcore", "asyncio", "asyncpg"):
        logging.getLogger(logger_name).setLevel(logging.CRITICAL)


# ============================================================================
# Construction
# ============================================================================


def create_client() -> OllamaClient:
    """Create the model client, restoring the last used model if one was saved."""
    settings = get_settings()
    client = OllamaClient(
        base_url=settings.llm.base_url,
        model=settings.llm.model,
        timeout=settings.llm.timeout,
        temperature=settings.llm.temperature,
    )
    last_model = settings_store.get_last_model()
    if last_model:
        client.set_model(last_model)
    return client


async def create_pipeline_from_config() -> ChatPipeline:
    """Create a connected pipeline from configuration."""
    apply_config_defaults()
    settings = get_settings()

    if not settings.database.url:
        console.print("[red]No target database configured.[/red]")
        console.print("[yellow]Hint: Set DATABASE_URL in .env or the environment.[/yellow]")
        raise click.ClickException("Missing target database")

    store = PostgresQueryStore(
        url=str(settings.database.url),
        pool_size=settings.database.pool_size,
        timeout=settings.database.query_timeout,
        max_rows=settings.database.max_rows,
        dump_max_rows=settings.chat.data_dump_max_rows,
    )
    try:
        await store.connect()
    except ConnectorError as e:
        console.print(f"[red]Failed to connect to database: {e}[/red]")
        raise click.ClickException("Database unavailable") from e

    history_store = None
    if settings.system_database.url:
        history_store = ChatHistoryStore(history_max=settings.chat.history_max)
        try:
            await history_store.initialize()
        except Exception as e:
            console.print(f"[yellow]Prompt history unavailable: {e}[/yellow]")
            history_store = None

    return ChatPipeline(
        client=create_client(),
        store=store,
        persistence=SessionPersistence(history_store=history_store),
        chat_settings=settings.chat,
        extra_context=settings.llm.extra_context,
    )


async def close_pipeline(pipeline: ChatPipeline) -> None:
    await pipeline.shutdown()
    await pipeline.store.close()
    await pipeline.client.close()
    history_store = pipeline.persistence.history_store
    if history_store is not None:
        await history_store.close()


# ============================================================================
# Rendering
# ============================================================================


def render_message(message: ChatMessage, show_sql: bool = False) -> RenderableType | None:
    """Render one message, or None when there is nothing to show yet."""
    if message.role is ChatRole.USER:
        return Text.assemble(("You: ", "bold cyan"), message.content)
    if message.role is ChatRole.ERROR:
        return Text(f"Error: {message.content}", style="red")
    if message.role is ChatRole.NOTICE:
        return Text(message.content, style="yellow")

    parts: list[RenderableType] = []
    if show_sql and message.sql:
        parts.append(Panel(Syntax(message.sql, "sql"), title="SQL", border_style="cyan"))
    if message.content:
        parts.append(Panel(Markdown(message.content), title="[bold green]Answer[/bold green]"))
    if not parts:
        return None
    return Group(*parts)


def render_pull(pull: ModelPullState) -> RenderableType:
    label = Text(pull.display or f"pulling {pull.model_name}", style="cyan")
    if pull.display_percent == UNKNOWN_PERCENT:
        return Group(label, ProgressBar(total=None, width=40))
    return Group(
        label,
        ProgressBar(total=100, completed=pull.display_percent * 100, width=40),
    )


def render_activity(
    session: ChatSession,
    messages: Iterable[ChatMessage],
) -> RenderableType:
    """Messages followed by the stage spinner and pull progress."""
    parts = [
        rendered
        for rendered in (render_message(m, session.show_sql) for m in messages)
        if rendered is not None
    ]
    if session.active:
        parts.append(Spinner("dots", text=Text(STAGE_LABELS[session.active_stage], style="cyan")))
    if session.pull is not None:
        parts.append(render_pull(session.pull))
    return Group(*parts)


def _new_messages(session: ChatSession, before: list[ChatMessage]) -> list[ChatMessage]:
    seen = {id(message) for message in before}
    return [message for message in session.messages if id(message) not in seen]


# ============================================================================
# Driving the pipeline
# ============================================================================


def _install_interrupt(on_interrupt: Callable[[], object]) -> bool:
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _remove_interrupt() -> None:
    asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


def _interrupt(pipeline: ChatPipeline) -> None:
    if not pipeline.cancel():
        pipeline.cancel_pull()


async def drive(pipeline: ChatPipeline, before: list[ChatMessage]) -> None:
    """Run the pipeline until idle, rendering new messages live. Ctrl-C cancels."""
    session = pipeline.session
    installed = _install_interrupt(lambda: _interrupt(pipeline))
    try:
        with Live(
            get_renderable=lambda: render_activity(session, _new_messages(session, before)),
            console=console,
            refresh_per_second=12,
            transient=False,
        ):
            await pipeline.run_until_idle()
    finally:
        if installed:
            _remove_interrupt()


# ============================================================================
# CLI Commands
# ============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="HomeChat")
@click.option("--verbose", "-v", is_flag=True, help="Show application logs.")
def cli(verbose: bool):
    """HomeChat - Ask questions about your home data with a local LLM."""
    configure_cli_logging(verbose)


@cli.command()
@click.option("--show-sql", is_flag=True, help="Show generated SQL with each answer.")
def chat(show_sql: bool):
    """Interactive REPL mode for conversations."""
    console.print(
        Panel.fit(
            "[bold green]HomeChat Interactive Mode[/bold green]\n"
            "Ask questions in plain English. Type /help for commands, 'exit' to leave.\n"
            "Press Ctrl-C to interrupt an answer or a model pull.",
            border_style="green",
        )
    )

    async def start_session() -> ChatPipeline:
        pipeline = await create_pipeline_from_config()
        pipeline.session.show_sql = show_sql
        try:
            await asyncio.wait_for(pipeline.client.ping(), timeout=pipeline.client.timeout)
        except TimeoutError:
            console.print(
                f"[yellow]Model server did not answer within {pipeline.client.timeout:g}s[/yellow]"
            )
        except LLMError as e:
            console.print(f"[yellow]Warning: {e}[/yellow]")
        pipeline.open()
        await pipeline.run_until_idle()
        return pipeline

    async def start_input(pipeline: ChatPipeline, text: str) -> bool:
        return pipeline.submit_input(text)

    with asyncio.Runner() as runner:
        try:
            pipeline = runner.run(start_session())
        except click.ClickException:
            raise
        except Exception as e:
            console.print(f"[red]Failed to initialize pipeline: {e}[/red]")
            sys.exit(1)

        console.print(f"[green]✓ Using model {pipeline.client.model}[/green]\n")

        try:
            while True:
                try:
                    text = console.input("[bold cyan]You:[/bold cyan] ")
                except KeyboardInterrupt:
                    console.print("\n[yellow]Interrupted. Type 'exit' to quit.[/yellow]")
                    continue
                except EOFError:
                    break

                if text.strip().lower() in EXIT_WORDS:
                    break

                before = list(pipeline.session.messages)
                if not runner.run(start_input(pipeline, text)):
                    continue
                # The question is echoed at the prompt already.
                before.extend(
                    m for m in pipeline.session.messages if m.role is ChatRole.USER
                )
                runner.run(drive(pipeline, before))
        finally:
            console.print("\n[yellow]Goodbye![/yellow]")
            runner.run(close_pipeline(pipeline))


@cli.command()
@click.argument("question")
@click.option("--show-sql", is_flag=True, help="Print the generated SQL.")
def ask(question: str, show_sql: bool):
    """Ask a single question and exit."""

    async def run_query() -> int:
        pipeline = await create_pipeline_from_config()
        try:
            before = list(pipeline.session.messages)
            pipeline.submit(question)
            with console.status("[cyan]Processing question...[/cyan]", spinner="dots"):
                await pipeline.run_until_idle()

            failed = False
            for message in _new_messages(pipeline.session, before):
                if message.role is ChatRole.USER:
                    continue
                if message.role is ChatRole.ERROR:
                    failed = True
                rendered = render_message(message, show_sql)
                if rendered is not None:
                    console.print(rendered)
            return 1 if failed else 0
        finally:
            await close_pipeline(pipeline)

    sys.exit(asyncio.run(run_query()))


@cli.command()
def models():
    """List local models and well-known models available to pull."""

    async def run_list() -> None:
        client = create_client()
        try:
            with console.status("[cyan]Listing models...[/cyan]", spinner="dots"):
                local = await asyncio.wait_for(client.list_models(), timeout=client.timeout)
        except TimeoutError:
            console.print(f"[red]Listing models timed out after {client.timeout:g}s[/red]")
            sys.exit(1)
        except LLMError as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
        finally:
            await client.close()

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Model")
        table.add_column("Local")
        table.add_column("Active")
        for choice in merge_model_lists(local):
            table.add_row(
                choice.name,
                "✓" if choice.local else "",
                "•" if choice.name == client.model else "",
            )
        console.print(table)

    apply_config_defaults()
    asyncio.run(run_list())


@cli.command()
@click.argument("name")
def pull(name: str):
    """Switch to a model, pulling it first if it is not available locally."""

    async def run_pull() -> int:
        client = create_client()
        session = ChatSession(visible=True)
        provisioner = ModelProvisioner(client, session)
        loop = EventLoop(provisioner.handle)
        loop.dispatch(*provisioner.switch_model(name))

        installed = _install_interrupt(provisioner.cancel_pull)
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                console=console,
                transient=True,
            ) as progress:
                task_id = progress.add_task(f"checking {name}...", total=None)
                running = asyncio.create_task(loop.run_until_idle())
                while not running.done():
                    await asyncio.wait({running}, timeout=0.1)
                    state = session.pull
                    if state is None:
                        continue
                    if state.display_percent == UNKNOWN_PERCENT:
                        progress.update(task_id, description=state.display, total=None)
                    else:
                        progress.update(
                            task_id,
                            description=state.display,
                            total=100,
                            completed=state.display_percent * 100,
                        )
        finally:
            if installed:
                _remove_interrupt()
            await loop.shutdown()
            await client.close()

        failed = False
        for message in session.messages:
            if message.role is ChatRole.ERROR:
                failed = True
            rendered = render_message(message)
            if rendered is not None:
                console.print(rendered)
        return 1 if failed else 0

    apply_config_defaults()
    sys.exit(asyncio.run(run_pull()))


if __name__ == "__main__":
    cli()
