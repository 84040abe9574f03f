"""Pytest configuration and fixtures for beeg tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from beeg.config import Node
from beeg.transport import CommandOutput, Transport


@dataclass
class Reply:
    """Scripted response for a command; ``raises`` wins over output."""

    exit_status: int = 0
    stdout: str = ""
    stderr: str = ""
    delay: float = 0.0
    raises: Exception | None = None


@dataclass
class ScriptedTransport(Transport):
    """Fake transport answering from a (host, command) script.

    Commands without a script entry behave like a missing tool (exit 127).
    """

    replies: dict[tuple[str, str], Reply] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    running: int = 0
    max_running: int = 0

    name = "scripted"

    def script(self, host: str, command: str, **reply) -> None:
        self.replies[(host, command)] = Reply(**reply)

    def commands_for(self, host: str) -> list[str]:
        return [command for h, command in self.calls if h == host]

    async def run(self, node: Node, command: str, timeout: float) -> CommandOutput:
        self.calls.append((node.host, command))
        reply = self.replies.get((node.host, command), Reply(exit_status=127))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if reply.delay:
                await asyncio.sleep(reply.delay)
        except asyncio.CancelledError:
            self.cancelled.append(node.host)
            raise
        finally:
            self.running -= 1
        if reply.raises is not None:
            raise reply.raises
        return CommandOutput(reply.exit_status, reply.stdout, reply.stderr)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def nodes() -> list[Node]:
    return [
        Node("node-a", "10.0.0.1"),
        Node("node-b", "10.0.0.2", ("gpu",)),
        Node("node-c", "10.0.0.3"),
    ]
