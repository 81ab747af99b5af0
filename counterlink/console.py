"""Terminal presentation for a node."""

import asyncio
import sys
from typing import Callable

from .bridge import MethodCall, MethodChannel
from .errors import InvalidArgument
from .session import SyncSession

HELP = "Commands: + (increment), - (decrement), set N, status, help, quit"


class ConsolePresenter:
    """Renders channel events and turns typed commands into counter updates."""

    def __init__(
        self,
        session: SyncSession,
        channel: MethodChannel,
        output: Callable[[str], None] = print,
    ):
        self.session = session
        self.channel = channel
        self._output = output
        channel.add_listener(self._render)

    def _render(self, call: MethodCall) -> None:
        if call.method == "counterUpdated":
            self._output(f"counter: {call.arguments['counter']}")
        elif call.method == "sessionStateChanged":
            self._output(f"status: {call.arguments['status_key']}")

    def handle_command(self, line: str) -> bool:
        """Apply one command line.

        Returns:
            False when the presenter should exit.
        """
        parts = line.strip().split()
        if not parts:
            return True

        command = parts[0].lower()
        if command in ("quit", "exit", "q"):
            return False
        if command in ("+", "inc", "increment"):
            self.session.increment()
        elif command in ("-", "dec", "decrement"):
            self.session.decrement()
        elif command == "set":
            try:
                if len(parts) != 2:
                    raise InvalidArgument("usage: set N")
                self.session.set_value(int(parts[1]))
            except (ValueError, InvalidArgument) as e:
                self._output(f"error: {e}")
        elif command == "status":
            self._output(f"counter: {self.session.value}  status: {self.session.status_key}")
        else:
            self._output(HELP)
        return True

    async def run(self) -> None:
        """Read commands from stdin until quit or end of input."""
        loop = asyncio.get_running_loop()
        self._output(HELP)

        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not self.handle_command(line):
                break
