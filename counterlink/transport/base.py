"""Base transport interface for peer links."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol

from ..messages import Ack, Message
from ..state import ActivationState

ReplyCallback = Callable[[Message], None]
ErrorCallback = Callable[[Exception], None]
ReplyHandler = Callable[[Ack], None]


class TransportDelegate(Protocol):
    """Receiver of transport callbacks.

    Callbacks may be invoked from any thread.
    """

    def on_activation_complete(
        self, state: ActivationState, error: Exception | None
    ) -> None: ...

    def on_reachability_changed(self, reachable: bool) -> None: ...

    def on_message(self, message: Message, reply: ReplyHandler | None) -> None: ...

    def on_inactive(self) -> None: ...

    def on_deactivated(self) -> None: ...


class Transport(ABC):
    """A paired, intermittently reachable link to one peer.

    Implementations report link facts through the query methods and push
    changes to the registered delegate.
    """

    def __init__(self) -> None:
        self._delegate: TransportDelegate | None = None

    def set_delegate(self, delegate: TransportDelegate | None) -> None:
        """Register the receiver of transport callbacks."""
        self._delegate = delegate

    @property
    def delegate(self) -> TransportDelegate | None:
        return self._delegate

    @abstractmethod
    def is_supported(self) -> bool:
        """Whether the platform provides this transport at all."""

    @abstractmethod
    def activate(self) -> None:
        """Start establishing the link.

        Completion is reported through ``on_activation_complete``.
        """

    @abstractmethod
    def is_reachable(self) -> bool:
        """Whether the peer can currently receive messages."""

    @abstractmethod
    def is_paired(self) -> bool:
        """Whether a peer is paired with this endpoint."""

    @abstractmethod
    def is_app_installed(self) -> bool:
        """Whether the paired peer has the app installed."""

    @abstractmethod
    def send(
        self,
        message: Message,
        on_reply: ReplyCallback,
        on_error: ErrorCallback,
    ) -> Any:
        """Send a message to the peer.

        Exactly one of ``on_reply`` or ``on_error`` is expected to fire, but a
        transport may never call either.

        Returns:
            A token for ``cancel``, or None if nothing is left outstanding.
        """

    def cancel(self, token: Any) -> None:
        """Forget an outstanding send so neither callback fires for it."""

    def close(self) -> None:
        """Release transport resources."""
