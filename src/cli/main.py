"""Azure Sidekick CLI - ask questions about Azure and your storage accounts.

This module provides the console front end:
- Interactive chat with subscription selection and session commands
- Single questions from the command line
- Configuration and version information
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table

from src.config import Settings, get_settings
from src.core.logger import OperationLogger, configure_logging
from src.core.models import ChatSession, ExchangeOutcome, Subscription
from src.infrastructure.gateway import AzureOpenAIGateway
from src.infrastructure.history import CosmosHistoryStore, InMemoryHistoryStore
from src.infrastructure.resources import ResourceGraphDirectory
from src.orchestration.general import GeneralRouter
from src.orchestration.grounding import GroundingPolicy
from src.orchestration.orchestrator import ConversationOrchestrator
from src.orchestration.registry import RouterRegistry
from src.orchestration.storage import StorageRouter

__version__ = "0.1.0"

app = typer.Typer(
    name="azure-sidekick",
    help="Azure Sidekick - Ask questions about Azure and the storage accounts in your subscriptions",
    no_args_is_help=True,
)
console = Console()

GENERIC_ERROR = "An error occurred while processing request. Please see error log for more details."

HELP_TEXT = """\
Hi, I am Azure Sidekick! I am here to answer questions about Azure resources and services in your Azure Subscriptions.

Currently, I can provide answers to:
- your general questions about Azure.
- your general questions about Azure Storage.
- your questions about storage accounts in your Azure subscriptions.
- your questions about a specific storage account in your Azure subscription.

Here are the commands that you can use:
- [bold cyan]change subscription[/bold cyan]: change the subscription.
- [bold cyan]clear chat history[/bold cyan]: clear chat history.
- [bold cyan]toggle response mode[/bold cyan]: toggle between streaming (default) and non-streaming responses.
- [bold cyan]cls[/bold cyan] or [bold cyan]clear[/bold cyan]: clear the console.
- [bold cyan]help[/bold cyan]: show this help.
- [bold cyan]exit[/bold cyan] or [bold cyan]quit[/bold cyan]: exit the application.

Your Azure credentials (Azure CLI, Azure PowerShell, Visual Studio or Visual Studio Code sign-in)
are used to fetch information about storage accounts in your subscriptions."""


@dataclass
class Application:
    """Wired collaborators for one CLI run."""

    orchestrator: ConversationOrchestrator
    resources: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for resource in self.resources:
            await resource.close()


async def build_application(settings: Settings) -> Application:
    """Wire the gateway, history store, directory and routers."""
    operation_logger = OperationLogger()

    gateway = AzureOpenAIGateway(
        azure_endpoint=settings.azure_openai_endpoint,
        deployment=settings.azure_openai_chat_deployment,
        api_key=settings.azure_openai_api_key,
        api_version=settings.azure_openai_api_version,
        model=settings.azure_openai_model,
        temperature=settings.temperature,
        operation_logger=operation_logger,
    )
    directory = ResourceGraphDirectory(operation_logger=operation_logger)
    resources: list[Any] = [gateway, directory]

    if settings.history_backend == "cosmos":
        if not settings.cosmos_db_endpoint:
            raise ValueError("COSMOS_DB_ENDPOINT is required when HISTORY_BACKEND is 'cosmos'")
        history = CosmosHistoryStore(
            cosmos_endpoint=settings.cosmos_db_endpoint,
            database_name=settings.cosmos_db_database,
            container_name=settings.cosmos_db_container,
        )
        await history.init()
        resources.append(history)
    else:
        history = InMemoryHistoryStore()

    grounding = GroundingPolicy(max_history_items=settings.max_chat_history_items)
    general = GeneralRouter(gateway, history, grounding, operation_logger)
    storage = StorageRouter(gateway, history, directory, grounding, operation_logger)

    orchestrator = ConversationOrchestrator(
        general_router=general,
        registry=RouterRegistry({storage.name: storage}),
        history_store=history,
        subscription_directory=directory,
        operation_logger=operation_logger,
    )
    return Application(orchestrator=orchestrator, resources=resources)


def _load_settings() -> Settings:
    try:
        settings = get_settings()
    except ValidationError as e:
        console.print("[red]Invalid configuration:[/red]")
        for error in e.errors():
            name = ".".join(str(part) for part in error["loc"]).upper()
            console.print(f"[red]  {name}: {error['msg']}[/red]")
        raise typer.Exit(1)
    configure_logging(settings)
    return settings


@app.command()
def chat(
    subscription: str = typer.Option(
        None,
        "--subscription",
        "-s",
        help="Subscription ID to use (prompts for one if not provided)",
    ),
    buffered: bool = typer.Option(
        False,
        "--buffered",
        "-b",
        help="Show whole answers instead of streaming them",
    ),
) -> None:
    """Start an interactive chat session.

    Examples:
        azure-sidekick chat                 # Pick a subscription, then chat
        azure-sidekick chat -s <sub-id>     # Use a specific subscription
        azure-sidekick chat --buffered      # Non-streaming answers
    """
    settings = _load_settings()
    asyncio.run(_interactive_chat(settings, subscription, not buffered))


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to ask"),
    subscription: str = typer.Option(
        None,
        "--subscription",
        "-s",
        help="Subscription ID the question is about",
    ),
    buffered: bool = typer.Option(
        False,
        "--buffered",
        "-b",
        help="Show the whole answer instead of streaming it",
    ),
) -> None:
    """Ask a single question and exit.

    Examples:
        azure-sidekick ask "What is Azure Blob Storage?"
        azure-sidekick ask -s <sub-id> "How many storage accounts are without tags?"
    """
    settings = _load_settings()
    outcome = asyncio.run(_single_question(settings, question, subscription, not buffered))
    if outcome is None or not outcome.success:
        raise typer.Exit(1)


async def _single_question(
    settings: Settings,
    question: str,
    subscription_id: str | None,
    streaming: bool,
) -> ExchangeOutcome | None:
    """Answer one question in a fresh session."""
    application = await build_application(settings)
    try:
        session = ChatSession(session_key=str(uuid.uuid4()), streaming=streaming)
        if subscription_id:
            session.subscription = Subscription(id=subscription_id, name=subscription_id)
        return await _render_answer(application.orchestrator, session, question)
    finally:
        await application.aclose()


async def _interactive_chat(
    settings: Settings,
    subscription_id: str | None,
    streaming: bool,
) -> None:
    """Run interactive chat mode."""
    console.print(
        Panel(
            HELP_TEXT,
            title="Welcome to Azure Sidekick",
            border_style="blue",
        )
    )

    application = await build_application(settings)
    orchestrator = application.orchestrator
    session = ChatSession(session_key=str(uuid.uuid4()), streaming=streaming)

    try:
        console.print("[dim]Listing subscriptions. Please wait.[/dim]")
        listed = await orchestrator.list_subscriptions()
        if not listed.is_success:
            console.print(f"[red]{GENERIC_ERROR}[/red]")
            raise typer.Exit(1)

        subscriptions: list[Subscription] = listed.item
        if not subscriptions:
            console.print(
                "[red]We are not able to find any subscriptions that you have access to.[/red]\n"
                "Please make sure that the signed-in account has access to at least one subscription."
            )
            raise typer.Exit(1)

        selected = _find_subscription(subscriptions, subscription_id) or _select_subscription(
            subscriptions
        )
        await orchestrator.select_subscription(session, selected)
        console.print(f'You have selected "{selected.name} ({selected.id})" subscription.')

        while True:
            console.print()

            try:
                query = console.input("[bold blue]You:[/bold blue] ").strip()
            except (EOFError, KeyboardInterrupt):
                break

            if not query:
                continue

            command = query.lower()

            if command in ("exit", "quit"):
                break

            if command in ("cls", "clear"):
                console.clear()
                continue

            if command == "help":
                console.print(Panel(HELP_TEXT, title="Help", border_style="blue"))
                continue

            if command == "change subscription":
                selected = _select_subscription(subscriptions)
                await orchestrator.select_subscription(session, selected)
                console.print(
                    f'Active subscription changed to "{selected.name} ({selected.id})". '
                    "Chat history cleared."
                )
                continue

            if command == "clear chat history":
                result = await orchestrator.clear_history(session)
                console.print(
                    "Chat history cleared." if result.is_success else f"[red]{GENERIC_ERROR}[/red]"
                )
                continue

            if command == "toggle response mode":
                streaming_now = orchestrator.toggle_streaming(session)
                console.print(
                    "Response will be streamed."
                    if streaming_now
                    else "Response will not be streamed."
                )
                continue

            await _render_answer(orchestrator, session, query)

        console.print("Thank you for using Azure Sidekick!")
    finally:
        await application.aclose()


def _find_subscription(
    subscriptions: list[Subscription], subscription_id: str | None
) -> Subscription | None:
    if not subscription_id:
        return None
    for subscription in subscriptions:
        if subscription.id.lower() == subscription_id.lower():
            return subscription
    console.print(f"[yellow]Subscription {subscription_id} not found; please pick one.[/yellow]")
    return None


def _select_subscription(subscriptions: list[Subscription]) -> Subscription:
    """Show the subscriptions and ask the user to pick one."""
    if len(subscriptions) == 1:
        return subscriptions[0]

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Subscription Id")
    table.add_column("Subscription Name")
    for i, subscription in enumerate(subscriptions, 1):
        table.add_row(str(i), subscription.id, subscription.name[:50])
    console.print(table)

    while True:
        choice = console.input(
            f"Select a subscription (1-{len(subscriptions)}, press enter for the first one): "
        ).strip()
        if not choice:
            return subscriptions[0]
        if choice.isdigit() and 1 <= int(choice) <= len(subscriptions):
            return subscriptions[int(choice) - 1]
        console.print(f"[yellow]Please enter a number between 1 and {len(subscriptions)}.[/yellow]")


async def _render_answer(
    orchestrator: ConversationOrchestrator,
    session: ChatSession,
    question: str,
) -> ExchangeOutcome | None:
    """Ask a question and print the answer and its token usage."""
    console.print()
    console.print("[bold purple]Sidekick:[/bold purple]")

    outcome: ExchangeOutcome | None = None

    if session.streaming:
        async for item in orchestrator.handle_question(session, question):
            if isinstance(item, str):
                console.print(item, end="", markup=False, highlight=False, soft_wrap=True)
            else:
                outcome = item
        console.print()
    else:
        answer = ""
        with Live(
            Spinner("dots", text="Thinking..."),
            refresh_per_second=10,
            console=console,
            transient=True,
        ):
            async for item in orchestrator.handle_question(session, question):
                if isinstance(item, str):
                    answer += item
                else:
                    outcome = item
        if answer:
            console.print(Markdown(answer))

    if outcome is None or not outcome.success:
        console.print(f"[red]{GENERIC_ERROR}[/red]")
        return outcome

    console.print(
        f"[dim]Token usage - Prompt tokens: {outcome.prompt_tokens}; "
        f"Completion tokens: {outcome.completion_tokens}[/dim]"
    )
    return outcome


@app.command()
def version() -> None:
    """Show version information."""
    console.print("[bold]Azure Sidekick[/bold]")
    console.print(f"Version: {__version__}")


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = _load_settings()

    console.print("[bold]Current Configuration[/bold]")
    console.print()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("Azure OpenAI endpoint", settings.azure_openai_endpoint)
    table.add_row("Chat deployment", settings.azure_openai_chat_deployment)
    table.add_row("API version", settings.azure_openai_api_version)
    table.add_row(
        "Authentication",
        "API key" if settings.azure_openai_api_key else "DefaultAzureCredential",
    )
    table.add_row("History backend", settings.history_backend)
    table.add_row("Max chat history items", str(settings.max_chat_history_items))
    table.add_row("Log level", settings.log_level)
    table.add_row("Log directory", settings.log_directory or "-")
    table.add_row(
        "Application Insights",
        "enabled" if settings.applicationinsights_connection_string else "disabled",
    )

    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
