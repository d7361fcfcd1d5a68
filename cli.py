#!/usr/bin/env python3
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "click",
#     "rich",
#     "aiohttp>=3.9.0",
#     "uvicorn[standard]>=0.24.0",
# ]
# ///

import asyncio
import logging

import click
from rich.console import Console
from rich.table import Table

from client import RelayClient
from config import get_config
from conversation import ChatTransport, Conversation
from errors import RelayError
from models import Message, SupportAnalysis
from prompts import AGENT_PROFILES, AgentType, get_agent_profile

console = Console()

AGENT_CHOICES = [agent_type.value for agent_type in AgentType]


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
def cli(debug):
    """Agent Chat Relay command line tools."""
    logging.basicConfig(level=logging.DEBUG if debug else logging.WARNING)


@cli.command()
def agents():
    """List the available agents and their quick actions."""
    table = Table(title="Agents")
    table.add_column("Agent", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Quick actions")

    for profile in AGENT_PROFILES.values():
        table.add_row(profile.agent_type.value, profile.name, "\n".join(profile.quick_actions))

    console.print(table)


@cli.command()
@click.option('--agent', 'agent_type', type=click.Choice(AGENT_CHOICES), default=AgentType.SECRETARY.value,
              help='Agent to talk to')
@click.option('--url', default=None, help='Relay chat endpoint (defaults to CHAT_URL)')
@click.option('--analysis/--no-analysis', default=False, help='Request support analysis events')
def chat(agent_type, url, analysis):
    """Chat with an agent through a running relay."""
    config = get_config()
    client = RelayClient(url or config.chat_url)
    asyncio.run(run_chat(agent_type, client, analysis, config.stream_idle_timeout))


@cli.command()
@click.option('--host', default=None, help='Bind address (defaults to HOST)')
@click.option('--port', default=None, type=int, help='Port (defaults to PORT)')
def serve(host, port):
    """Run the relay service."""
    import uvicorn

    config = get_config()
    uvicorn.run("app:create_app", factory=True, host=host or config.host, port=port or config.port)


async def run_chat(agent_type: str, transport: ChatTransport, include_analysis: bool, idle_timeout: float):
    profile = get_agent_profile(agent_type)

    async def on_update(message: Message, fragment: str):
        console.print(fragment, end="", markup=False, highlight=False)

    async def on_error(error: RelayError):
        console.print(f"\n[bold red]Error:[/bold red] {error.message}")

    async def on_analysis(result: SupportAnalysis):
        style = "red" if result.should_escalate else "dim"
        console.print(f"[{style}]sentiment={result.sentiment} confidence={result.confidence}"
                      f"{' escalate: ' + result.escalation_reason if result.should_escalate else ''}[/{style}]")

    conversation = Conversation(
        transport,
        profile.agent_type,
        initial_message=profile.greeting,
        on_update=on_update,
        on_error=on_error,
        on_analysis=on_analysis,
        idle_timeout=idle_timeout,
        include_analysis=include_analysis,
    )

    console.print(f"[bold green]{profile.name}[/bold green]: {profile.greeting}")
    console.print("[dim]Type /actions to list quick actions, /1../9 to run one, /quit to leave.[/dim]")

    try:
        while True:
            text = await asyncio.to_thread(console.input, "[bold cyan]you>[/bold cyan] ")
            command = text.strip()
            if command in ("/quit", "/exit"):
                break
            if command == "/actions":
                for index, action in enumerate(profile.quick_actions, start=1):
                    console.print(f"  /{index} {action}")
                continue
            if command.startswith("/") and command[1:].isdigit():
                index = int(command[1:]) - 1
                if not 0 <= index < len(profile.quick_actions):
                    console.print("[yellow]No such quick action[/yellow]")
                    continue
                action = profile.quick_actions[index]
                console.print(f"[dim]{action}[/dim]")
                console.print(f"[bold green]{profile.name}>[/bold green] ", end="")
                sent = await conversation.add_quick_action(action)
            else:
                console.print(f"[bold green]{profile.name}>[/bold green] ", end="")
                sent = await conversation.send_message(text)

            if sent:
                console.print()
    except (EOFError, KeyboardInterrupt):
        console.print()
    finally:
        await transport.close()


if __name__ == '__main__':
    cli()
