"""Session status model."""

from dataclasses import dataclass
from enum import Enum


class SessionState(Enum):
    """Status of a sync session, valued by its status key."""

    NOT_SUPPORTED = "not_supported"
    CONNECTING = "connecting"
    NOT_PAIRED = "not_paired"
    NOT_INSTALLED = "not_installed"
    NOT_REACHABLE = "not_reachable"
    CONNECTED = "connected"
    ERROR = "error"

    @property
    def status_key(self) -> str:
        return self.value


class ActivationState(Enum):
    """Activation outcome reported by a transport."""

    NOT_ACTIVATED = "not_activated"
    INACTIVE = "inactive"
    ACTIVATED = "activated"


@dataclass(frozen=True)
class LinkFacts:
    """Snapshot of what a transport reports about the link."""

    supported: bool
    paired: bool
    installed: bool
    reachable: bool
    error: Exception | str | None = None


def derive_session_state(facts: LinkFacts) -> SessionState:
    """Derive a single status from overlapping link facts.

    Precedence: error, not supported, not paired, not installed,
    not reachable, connected.
    """
    if facts.error is not None:
        return SessionState.ERROR
    if not facts.supported:
        return SessionState.NOT_SUPPORTED
    if not facts.paired:
        return SessionState.NOT_PAIRED
    if not facts.installed:
        return SessionState.NOT_INSTALLED
    if not facts.reachable:
        return SessionState.NOT_REACHABLE
    return SessionState.CONNECTED


def state_for_activation(
    activation: ActivationState,
    facts: LinkFacts,
) -> SessionState:
    """Map an activation outcome to a session status."""
    if facts.error is not None:
        return SessionState.ERROR
    if activation is ActivationState.ACTIVATED:
        return derive_session_state(facts)
    if activation is ActivationState.INACTIVE:
        return SessionState.NOT_REACHABLE
    return SessionState.CONNECTING
