"""Tests for the command line tools."""

import io

from click.testing import CliRunner
from rich.console import Console

import cli
from conftest import HELLO_STREAM, FakeTransport
from errors import RateLimited


def use_console(monkeypatch, lines):
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, color_system=None)
    answers = iter(lines)

    def fake_input(prompt=""):
        try:
            return next(answers)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr(console, "input", fake_input)
    monkeypatch.setattr(cli, "console", console)
    return buffer


def test_agents_lists_every_profile(monkeypatch) -> None:
    buffer = use_console(monkeypatch, [])
    result = CliRunner().invoke(cli.cli, ["agents"])

    assert result.exit_code == 0
    output = buffer.getvalue()
    for name in ("Smart Secretary", "Customer Support", "Social Media Agent", "Lecturer Assistant"):
        assert name in output


async def test_run_chat_streams_reply(monkeypatch) -> None:
    buffer = use_console(monkeypatch, ["Plan my day", "/quit"])
    transport = FakeTransport(chunks=[HELLO_STREAM])

    await cli.run_chat("secretary", transport, include_analysis=False, idle_timeout=5)

    output = buffer.getvalue()
    assert "Hello! I'm your Smart Secretary" in output
    assert "Smart Secretary> Hello" in output
    assert len(transport.calls) == 1
    assert transport.calls[0]["messages"][-1] == {"role": "user", "content": "Plan my day"}


async def test_run_chat_quick_action(monkeypatch) -> None:
    buffer = use_console(monkeypatch, ["/actions", "/1"])
    transport = FakeTransport(chunks=[HELLO_STREAM])

    await cli.run_chat("lecturer", transport, include_analysis=False, idle_timeout=5)

    action = cli.get_agent_profile("lecturer").quick_actions[0]
    assert f"/1 {action}" in buffer.getvalue()
    assert transport.calls[0]["messages"][-1] == {"role": "user", "content": action}
    assert transport.calls[0]["agent_type"] == "lecturer"


async def test_run_chat_reports_errors(monkeypatch) -> None:
    buffer = use_console(monkeypatch, ["hello?", "/quit"])
    transport = FakeTransport(error=RateLimited())

    await cli.run_chat("support", transport, include_analysis=False, idle_timeout=5)

    assert "Error: " + RateLimited.default_message in buffer.getvalue()
