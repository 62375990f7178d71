"""Main entry point for the connect-chat command line client."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown

from .api.backend import ContactInitiator
from .api.participant_client import ParticipantClient
from .config.models import ChatSettings
from .config.settings_manager import load_config_data, set_settings
from .core.chat_session import ChatSessionController
from .core.errors import ChatError, PaginationExhausted
from .core.negotiator import SessionNegotiator
from .core.reconciler import TranscriptReconciler
from .session.models import ChatSession
from .session.recorder import SessionRecorder, render_markdown
from .ui.console import TranscriptPrinter

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(e: Exception, debug: bool) -> None:
    if debug:
        raise e
    click.echo(click.style(f"Error: {e}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Chat with an Amazon Connect contact center from the terminal."""
    load_dotenv()
    _configure_logging(debug)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


def _resolve_settings(profile: Optional[str], overrides: dict) -> ChatSettings:
    try:
        return ChatSettings.resolve(profile, overrides)
    except KeyError as e:
        raise click.BadParameter(str(e.args[0]), param_hint="'--profile'") from e


def _settings_options(func):
    options = [
        click.option("--profile", default=None, help="Profile name from profiles.yaml"),
        click.option("--region", default=None, help="Region of the Connect instance"),
        click.option("--endpoint", default=None, help="Participant service endpoint override"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@_settings_options
@click.option("--backend-url", default=None, help="URL of the backend that starts chats")
@click.option("--display-name", default=None, help="Name shown to the agent")
@click.option(
    "--participant-token",
    default=None,
    envvar="CONNECT_CHAT_PARTICIPANT_TOKEN",
    help="Join an existing contact instead of starting one",
)
@click.option("--contact-id", default=None, help="Contact id for --participant-token")
@click.option("--history/--no-history", default=True, help="Load earlier transcript on join")
@click.option("--record/--no-record", default=False, help="Record the transcript to disk")
@click.pass_context
def chat(
    ctx: click.Context,
    profile: Optional[str],
    region: Optional[str],
    endpoint: Optional[str],
    backend_url: Optional[str],
    display_name: Optional[str],
    participant_token: Optional[str],
    contact_id: Optional[str],
    history: bool,
    record: bool,
) -> None:
    """Start or join a chat and talk to an agent.

    Type a line to send it. /typing sends a typing indicator, /history loads
    older messages and /quit leaves the chat.
    """
    debug = ctx.obj["debug"]
    try:
        settings = _resolve_settings(
            profile,
            {
                "region": region,
                "endpoint": endpoint,
                "backend_url": backend_url,
                "display_name": display_name,
            },
        )
        if participant_token is None and not settings.backend_url:
            raise click.UsageError("Either --backend-url or --participant-token is required")
        asyncio.run(_run_chat(settings, participant_token, contact_id, history, record))
    except KeyboardInterrupt:
        click.echo("\nExiting...")
        sys.exit(0)
    except (ChatError, ValueError) as e:
        _fail(e, debug)


async def _start_session(
    settings: ChatSettings, participant_token: Optional[str], contact_id: Optional[str]
) -> ChatSession:
    if participant_token is not None:
        return ChatSession.begin(participant_token, contact_id=contact_id)
    initiator = ContactInitiator(settings.backend_url, timeout=settings.request_timeout)
    try:
        started = await initiator.start_chat(settings.display_name, settings.attributes)
    finally:
        await initiator.aclose()
    return ChatSession.begin(
        started.participant_token,
        contact_id=started.contact_id,
        participant_id=started.participant_id,
    )


async def _print_loop(queue: asyncio.Queue, printer: TranscriptPrinter) -> None:
    while True:
        printer.print_item(await queue.get())


async def _input_loop(controller: ChatSessionController, printer: TranscriptPrinter) -> None:
    ended = asyncio.create_task(controller.chat_ended.wait())
    stopped = asyncio.create_task(controller.wait_stopped())
    try:
        while True:
            line_task = asyncio.create_task(asyncio.to_thread(sys.stdin.readline))
            done, _ = await asyncio.wait(
                {line_task, ended, stopped}, return_when=asyncio.FIRST_COMPLETED
            )
            if ended in done:
                printer.print_error("Chat is over. Press Enter to exit.")
                return
            if stopped in done or controller.channel.is_closed:
                printer.print_error("Connection closed. Press Enter to exit.")
                return
            line = line_task.result()
            if not line:
                return
            line = line.strip()
            if not line:
                continue
            if line == "/quit":
                return
            if line == "/typing":
                await controller.send_typing()
            elif line == "/history":
                try:
                    await controller.reconciler.fetch_older()
                except PaginationExhausted:
                    printer.print_error("No earlier messages.")
            else:
                await controller.send_message(line)
    finally:
        ended.cancel()
        stopped.cancel()


async def _run_chat(
    settings: ChatSettings,
    participant_token: Optional[str],
    contact_id: Optional[str],
    history: bool,
    record: bool,
) -> None:
    console = Console()
    async with ParticipantClient(
        region=settings.region,
        endpoint=settings.endpoint,
        timeout=settings.request_timeout,
    ) as client:
        session = await _start_session(settings, participant_token, contact_id)
        recorder = None
        if record:
            recorder = SessionRecorder(
                contact_id=session.contact_id,
                participant_id=session.participant_id,
                display_name=settings.display_name,
                region=settings.region,
            )
        printer = TranscriptPrinter(console, participant_id=session.participant_id)
        controller = ChatSessionController(
            client,
            session,
            settings,
            recorder=recorder,
            on_state_change=printer.print_state,
        )
        updates = controller.reconciler.subscribe()
        printer_task = asyncio.create_task(_print_loop(updates, printer))
        try:
            async with controller:
                if history:
                    await controller.load_history(max_pages=1)
                await _input_loop(controller, printer)
        finally:
            printer_task.cancel()
            await asyncio.gather(printer_task, return_exceptions=True)
        if controller.error is not None:
            raise controller.error
        if recorder is not None:
            console.print(f"Transcript saved to {recorder.session_file}")


@cli.command()
@_settings_options
@click.option(
    "--participant-token",
    required=True,
    envvar="CONNECT_CHAT_PARTICIPANT_TOKEN",
    help="Participant token of the contact",
)
@click.option("--contact-id", default=None, help="Contact to fetch (defaults to the token's)")
@click.option(
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Write the transcript as markdown to this file",
)
@click.pass_context
def transcript(
    ctx: click.Context,
    profile: Optional[str],
    region: Optional[str],
    endpoint: Optional[str],
    participant_token: str,
    contact_id: Optional[str],
    output: Optional[Path],
) -> None:
    """Fetch the complete transcript of a contact."""
    debug = ctx.obj["debug"]
    try:
        settings = _resolve_settings(profile, {"region": region, "endpoint": endpoint})
        items = asyncio.run(_fetch_transcript(settings, participant_token, contact_id))
    except (ChatError, ValueError) as e:
        _fail(e, debug)
        return

    markdown = render_markdown(items)
    if output:
        output.write_text(markdown, encoding="utf-8")
        click.echo(f"Wrote {len(items)} items to {output}")
    else:
        Console().print(Markdown(markdown))


async def _fetch_transcript(
    settings: ChatSettings, participant_token: str, contact_id: Optional[str]
):
    async with ParticipantClient(
        region=settings.region,
        endpoint=settings.endpoint,
        timeout=settings.request_timeout,
    ) as client:
        session = ChatSession.begin(participant_token, contact_id=contact_id)
        session.apply(await SessionNegotiator(client).negotiate(participant_token))

        async def fetch_page(next_token, start_position):
            return await client.get_transcript(
                session.connection_token,
                contact_id=contact_id,
                max_results=settings.page_size,
                next_token=next_token,
                start_position=start_position,
            )

        return await TranscriptReconciler(fetch_page=fetch_page).fetch_all()


@cli.group()
def config() -> None:
    """Show or change saved settings."""


@config.command("show")
def config_show() -> None:
    """Print the saved configuration."""
    click.echo(json.dumps(load_config_data(), indent=4))


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Save a setting to config.json."""
    set_settings({key: value})
    click.echo(f"Saved {key}")


if __name__ == "__main__":
    cli()
