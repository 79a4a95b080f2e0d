"""chatstream CLI for running the daemon and chatting from a terminal.

Provides commands to serve the daemon, send a message and watch the
streamed reply, inspect stored history, and manage configuration.
"""

import asyncio
import logging
import sys
import uuid
from pathlib import Path

import click
import httpx
import yaml

from chatstream_library.client import ConversationClient
from chatstream_library.config import ClientSettings
from chatstream_library.config import load_settings
from chatstream_library.models.transcript import Message
from chatstream_library.reconciliation.engine import ReconciliationEngine

from .config.loader import get_config_path
from .config.loader import load_config
from .config.loader import save_example_config


def _configure_logging(settings: ClientSettings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_client_settings(server: str | None) -> ClientSettings:
    settings = load_settings()
    if server:
        settings = settings.model_copy(update={"server_url": server.rstrip("/")})
    return settings


class ReplyPrinter:
    """Echoes the streamed assistant reply as the transcript changes."""

    def __init__(self: "ReplyPrinter") -> None:
        self.message_id: str | None = None
        self._printed = 0
        self._reported_tools: set[str] = set()

    def __call__(self: "ReplyPrinter", engine: ReconciliationEngine) -> None:
        if self.message_id is None:
            return
        message = engine.transcript.find(self.message_id)
        if message is None:
            return
        self._print_tools(message)
        text = message.content
        if len(text) > self._printed:
            click.echo(text[self._printed :], nl=False)
            self._printed = len(text)

    def _print_tools(self: "ReplyPrinter", message: Message) -> None:
        for invocation in message.tool_invocations:
            if invocation.tool_call_id in self._reported_tools or not invocation.state.is_terminal:
                continue
            self._reported_tools.add(invocation.tool_call_id)
            outcome = f"error: {invocation.error}" if invocation.error else "done"
            click.echo(f"\n[{invocation.tool_name} {outcome}]", err=True)


async def _ask(conversation_id: str, text: str, settings: ClientSettings, timeout: float) -> int:
    client = ConversationClient(conversation_id, settings)
    printer = ReplyPrinter()
    unsubscribe = client.engine.subscribe(printer)
    try:
        await client.open()
        if not await client.send(text):
            click.echo(f"Error: {client.engine.error or 'message was not sent'}", err=True)
            return 1
        printer.message_id = client.engine.current_message_id
        await client.wait_until_idle(timeout=timeout)
        # The final llm_complete may have replaced text already printed
        printer(client.engine)
        click.echo()
        if client.engine.error:
            click.echo(f"Error: {client.engine.error}", err=True)
            return 1
        return 0
    finally:
        unsubscribe()
        await client.close()


@click.group()
def cli():
    """chatstream - Streaming conversation daemon and client."""
    pass


@cli.command()
def serve():
    """Run the chatstreamd daemon in the foreground."""
    from .__main__ import main as run_daemon

    run_daemon()


@cli.command()
@click.argument("text")
@click.option("-c", "--conversation", "conversation_id", default=None, help="Conversation id (new when omitted)")
@click.option("--server", default=None, help="Daemon URL (overrides client settings)")
@click.option("--timeout", default=300.0, help="Seconds to wait for the reply")
def ask(text: str, conversation_id: str | None, server: str | None, timeout: float):
    """Send TEXT to a conversation and stream the reply."""
    settings = _load_client_settings(server)
    _configure_logging(settings)

    if conversation_id is None:
        conversation_id = f"conv_{uuid.uuid4().hex[:12]}"
        click.echo(f"Conversation: {conversation_id}", err=True)

    try:
        exit_code = asyncio.run(_ask(conversation_id, text, settings, timeout))
    except TimeoutError:
        click.echo(f"\nError: no reply within {timeout}s", err=True)
        exit_code = 1
    sys.exit(exit_code)


@cli.command()
@click.argument("conversation_id")
@click.option("--server", default=None, help="Daemon URL (overrides client settings)")
def history(conversation_id: str, server: str | None):
    """Show the stored history of CONVERSATION_ID."""
    settings = _load_client_settings(server)
    url = f"{settings.server_url}/api/v1/conversations/{conversation_id}/history"

    try:
        response = httpx.get(url, timeout=settings.request_timeout_seconds)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        click.echo(f"Error: {e.response.status_code} {e.response.text}", err=True)
        sys.exit(1)
    except httpx.HTTPError as e:
        click.echo(f"Error: cannot reach daemon at {settings.server_url}: {e}", err=True)
        sys.exit(1)

    body = response.json()
    if body.get("title"):
        click.echo(f"# {body['title']}\n")
    for turn in body.get("history", []):
        role = turn.get("role")
        if role == "tool":
            click.echo(f"  [{turn.get('name')} -> {turn.get('content')}]")
            continue
        content = turn.get("content") or ""
        suffix = " (aborted)" if turn.get("aborted") else ""
        if content or suffix:
            click.echo(f"{role}{suffix}: {content}")
        for call in turn.get("toolCalls") or []:
            click.echo(f"  [call {call.get('function', {}).get('name')}]")

    usage = body.get("tokenUsage") or {}
    click.echo(f"\nTokens: {usage.get('totalTokens', 0)}")


@cli.group()
def config():
    """Manage daemon configuration."""
    pass


@config.command("show")
@click.option("--path", "config_path", type=click.Path(path_type=Path), default=None, help="Config file to read")
def config_show(config_path: Path | None):
    """Print the effective daemon configuration."""
    effective = load_config(config_path)
    click.echo(f"# {config_path or get_config_path()}")
    click.echo(yaml.safe_dump(effective.model_dump(mode="json"), default_flow_style=False, sort_keys=False))


@config.command("init")
@click.option("--path", "config_path", type=click.Path(path_type=Path), default=None, help="Where to write")
def config_init(config_path: Path | None):
    """Write an example configuration file with all defaults."""
    written = save_example_config(config_path)
    click.echo(f"Wrote example configuration to {written}")


def main():
    """Entry point for chatstream CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nInterrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
