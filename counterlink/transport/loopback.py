"""In-process transport pairing two endpoints.

Used by the test suite. Every link fact and send outcome can be scripted.
"""

import asyncio
import itertools
import logging
from typing import Callable

from ..errors import SendFailed, SendUnreachable, TransportUnsupported
from ..messages import Ack, Message
from ..state import ActivationState
from .base import ErrorCallback, ReplyCallback, Transport

logger = logging.getLogger(__name__)


async def settle(rounds: int = 10) -> None:
    """Let scheduled deliveries and session callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class LoopbackTransport(Transport):
    """One endpoint of an in-process link.

    Deliveries are scheduled on the running event loop so that callbacks
    arrive asynchronously, as they would from a real link. Without a running
    loop they are delivered inline.
    """

    def __init__(
        self,
        name: str,
        supported: bool = True,
        paired: bool = True,
        installed: bool = True,
        reachable: bool = True,
    ):
        super().__init__()
        self.name = name
        self.supported = supported
        self.paired = paired
        self.installed = installed
        self._reachable = reachable
        self.peer: "LoopbackTransport | None" = None

        self.activated = False
        self.activate_calls = 0
        self.fail_activation: Exception | None = None
        self.fail_next_send: Exception | None = None
        self.drop_replies = False

        self.sent: list[Message] = []
        self.replies: list[Message] = []
        self.cancelled: list[int] = []
        self._send_ids = itertools.count(1)

    @classmethod
    def pair(
        cls,
        primary: str = "primary",
        companion: str = "companion",
    ) -> tuple["LoopbackTransport", "LoopbackTransport"]:
        """Create two linked endpoints."""
        a = cls(primary)
        b = cls(companion)
        a.peer = b
        b.peer = a
        return a, b

    def _schedule(self, callback: Callable[..., None], *args) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback(*args)
            return
        loop.call_soon(callback, *args)

    def is_supported(self) -> bool:
        return self.supported

    def activate(self) -> None:
        self.activate_calls += 1
        if not self.supported:
            raise TransportUnsupported("loopback transport disabled")

        error = self.fail_activation
        self.fail_activation = None
        self.activated = error is None

        if self._delegate:
            state = ActivationState.ACTIVATED if error is None else ActivationState.NOT_ACTIVATED
            self._schedule(self._delegate.on_activation_complete, state, error)

        if self.activated:
            self._notify_peer()

    def _notify_peer(self) -> None:
        peer = self.peer
        if peer is not None and peer._delegate is not None:
            peer._schedule(peer._delegate.on_reachability_changed, peer.is_reachable())

    def is_reachable(self) -> bool:
        return (
            self.activated
            and self._reachable
            and self.peer is not None
            and self.peer.activated
        )

    def is_paired(self) -> bool:
        return self.paired and self.peer is not None

    def is_app_installed(self) -> bool:
        return self.installed

    def set_reachable(self, reachable: bool) -> None:
        """Flip reachability and notify the delegate."""
        self._reachable = reachable
        if self._delegate:
            self._schedule(self._delegate.on_reachability_changed, self.is_reachable())

    def become_inactive(self) -> None:
        if self._delegate:
            self._schedule(self._delegate.on_inactive)

    def deactivate(self) -> None:
        self.activated = False
        if self._delegate:
            self._schedule(self._delegate.on_deactivated)
        self._notify_peer()

    def send(
        self,
        message: Message,
        on_reply: ReplyCallback,
        on_error: ErrorCallback,
    ) -> int | None:
        self.sent.append(message)

        if self.fail_next_send is not None:
            error = self.fail_next_send
            self.fail_next_send = None
            self._schedule(on_error, SendFailed(error))
            return None

        if not self.is_reachable():
            self._schedule(on_error, SendUnreachable())
            return None

        peer = self.peer
        send_id = next(self._send_ids)

        def reply(ack: Ack) -> None:
            self.replies.append(ack)
            if not self.drop_replies and send_id not in self.cancelled:
                self._schedule(on_reply, ack)

        def deliver() -> None:
            if peer._delegate is None:
                logger.debug(f"{peer.name}: no delegate, dropping {message}")
                return
            peer._delegate.on_message(message, reply)

        self._schedule(deliver)
        return send_id

    def cancel(self, token: int | None) -> None:
        if token is not None:
            self.cancelled.append(token)

    def close(self) -> None:
        self.activated = False
        self._notify_peer()
