"""Tests for the terminal presenter."""

import pytest

from counterlink.bridge import SessionBridge
from counterlink.console import HELP, ConsolePresenter
from counterlink.session import SyncSession
from counterlink.transport.loopback import LoopbackTransport


@pytest.fixture
def bridge():
    primary, _ = LoopbackTransport.pair()
    return SessionBridge(SyncSession(primary))


@pytest.fixture
def output():
    return []


@pytest.fixture
def presenter(bridge, output):
    return ConsolePresenter(bridge.session, bridge.channel, output=output.append)


class TestCommands:
    """Tests for typed commands."""

    def test_increment_and_decrement(self, presenter, bridge):
        presenter.handle_command("+")
        presenter.handle_command("inc")
        presenter.handle_command("-")

        assert bridge.session.value == 1

    def test_set(self, presenter, bridge):
        assert presenter.handle_command("set -4") is True

        assert bridge.session.value == -4

    @pytest.mark.parametrize("line", ["set", "set x", "set 1 2"])
    def test_set_invalid(self, presenter, bridge, output, line):
        presenter.handle_command(line)

        assert bridge.session.value == 0
        assert output[-1].startswith("error:")

    def test_status(self, presenter, output):
        presenter.handle_command("status")

        assert output == ["counter: 0  status: not_supported"]

    @pytest.mark.parametrize("line", ["quit", "exit", "q", "  QUIT  "])
    def test_quit(self, presenter, line):
        assert presenter.handle_command(line) is False

    def test_blank_line(self, presenter, output):
        assert presenter.handle_command("   ") is True
        assert output == []

    def test_unknown_prints_help(self, presenter, output):
        presenter.handle_command("reset")

        assert output == [HELP]


class TestRendering:
    """Tests for rendering channel events."""

    def test_renders_counter_updates(self, presenter, output):
        presenter.handle_command("set 3")

        assert output == ["counter: 3"]

    def test_renders_status_changes(self, bridge, output):
        bridge.channel.invoke_method("sessionStateChanged", {"status_key": "connected"})

        assert output == []

    def test_renders_status_with_presenter(self, presenter, bridge, output):
        bridge.channel.invoke_method("sessionStateChanged", {"status_key": "connected"})

        assert output == ["status: connected"]
