"""Counter sync session for one peer.

The session owns the local counter and the session status. Transport
callbacks may arrive on any thread; they are posted onto the session's event
loop and applied there strictly in arrival order, so the counter and status
are only ever touched from one thread.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import (
    ActivationFailed,
    CounterlinkError,
    SendFailed,
    SendUnreachable,
    TransportUnsupported,
)
from .messages import Ack, Message, Update, require_counter
from .state import (
    ActivationState,
    LinkFacts,
    SessionState,
    derive_session_state,
    state_for_activation,
)
from .transport.base import ReplyHandler, Transport

logger = logging.getLogger(__name__)

ValueListener = Callable[[int], None]
StatusListener = Callable[[SessionState], None]


class Dispatcher:
    """Posts callbacks onto a single event loop.

    Until a loop is bound, callbacks run inline on the caller's thread.
    """

    def __init__(self) -> None:
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    def post(self, callback: Callable[..., None], *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            callback(*args)
            return
        loop.call_soon_threadsafe(callback, *args)


@dataclass
class PendingSend:
    """The single outbound update awaiting a reply."""

    message_id: int
    counter: int
    created_at: float = field(default_factory=time.time)
    future: asyncio.Future | None = field(default=None, repr=False)
    result: bool | None = None
    token: Any = field(default=None, repr=False)
    _timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.result is not None

    def resolve(self, success: bool) -> None:
        if self.done:
            return
        self.result = success
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.future is not None and not self.future.done():
            self.future.set_result(success)

    async def wait(self) -> bool:
        """Wait for the reply or failure.

        Without a send timeout this can wait forever if the transport never
        answers.
        """
        if self.future is None:
            return bool(self.result)
        return await self.future


class _TransportCallbacks:
    """Transport delegate that marshals every callback onto the session loop."""

    def __init__(self, session: "SyncSession", dispatcher: Dispatcher):
        self._session = session
        self._dispatcher = dispatcher

    def on_activation_complete(
        self, state: ActivationState, error: Exception | None
    ) -> None:
        self._dispatcher.post(self._session.on_activation_complete, state, error)

    def on_reachability_changed(self, reachable: bool) -> None:
        self._dispatcher.post(self._session.on_reachability_changed, reachable)

    def on_message(self, message: Message, reply: ReplyHandler | None) -> None:
        if not isinstance(message, Update):
            logger.debug(f"Ignoring unsolicited message: {message}")
            return
        self._dispatcher.post(self._session.on_receive, message.counter, reply)

    def on_inactive(self) -> None:
        self._dispatcher.post(self._session.on_inactive)

    def on_deactivated(self) -> None:
        self._dispatcher.post(self._session.on_deactivated)


class SyncSession:
    """Replicates one integer counter with a single paired peer.

    Local updates apply immediately and are pushed to the peer when it is
    reachable. Incoming values overwrite the local one (last writer wins).
    Transport failures never propagate out of the session: they surface as a
    session status or a failed send result.
    """

    def __init__(
        self,
        transport: Transport,
        send_timeout: float | None = None,
        name: str = "session",
    ):
        """Initialize the session.

        Args:
            transport: Link to the peer.
            send_timeout: Seconds before an unanswered send is failed.
                None waits indefinitely.
            name: Label used in log messages.
        """
        self.name = name
        self.send_timeout = send_timeout
        self._transport = transport
        self._dispatcher = Dispatcher()
        self._callbacks = _TransportCallbacks(self, self._dispatcher)

        self._value = 0
        self._state = SessionState.NOT_SUPPORTED
        self._activated = False
        self._unsupported = False
        self._last_error: CounterlinkError | None = None

        self._pending: PendingSend | None = None
        self._message_ids = itertools.count(1)

        self._value_listeners: list[ValueListener] = []
        self._status_listeners: list[StatusListener] = []

    # ==================== Properties ====================

    @property
    def value(self) -> int:
        return self._value

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status_key(self) -> str:
        return self._state.status_key

    @property
    def pending(self) -> PendingSend | None:
        return self._pending

    @property
    def last_error(self) -> CounterlinkError | None:
        return self._last_error

    @property
    def transport(self) -> Transport:
        return self._transport

    def facts(self, reachable: bool | None = None) -> LinkFacts:
        """Snapshot the transport's link facts."""
        t = self._transport
        return LinkFacts(
            supported=t.is_supported(),
            paired=t.is_paired(),
            installed=t.is_app_installed(),
            reachable=t.is_reachable() if reachable is None else reachable,
        )

    # ==================== Listeners ====================

    def add_value_listener(self, listener: ValueListener) -> None:
        self._value_listeners.append(listener)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def _notify_value(self) -> None:
        for listener in list(self._value_listeners):
            try:
                listener(self._value)
            except Exception as e:
                logger.error(f"{self.name}: value listener failed: {e}", exc_info=True)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.info(f"{self.name}: {self._state.status_key} -> {state.status_key}")
        self._state = state

        for listener in list(self._status_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"{self.name}: status listener failed: {e}", exc_info=True)

    # ==================== Activation ====================

    async def activate(self) -> None:
        """Ask the transport to establish the link.

        Idempotent while the session is connecting or active. From the
        error status this starts a fresh activation. On a platform without
        the transport the session becomes not_supported and stays there.
        """
        loop = asyncio.get_running_loop()
        self._dispatcher.bind(loop)

        if self._unsupported:
            return
        if self._activated and self._state is not SessionState.ERROR:
            logger.debug(f"{self.name}: already activated")
            return

        if not self._transport.is_supported():
            self._unsupported = True
            self._last_error = TransportUnsupported()
            logger.warning(f"{self.name}: transport is not supported")
            self._set_state(SessionState.NOT_SUPPORTED)
            return

        self._activated = True
        self._last_error = None
        self._transport.set_delegate(self._callbacks)
        self._set_state(SessionState.CONNECTING)

        try:
            self._transport.activate()
        except Exception as e:
            self.on_activation_complete(ActivationState.NOT_ACTIVATED, e)

    # ==================== Transport callbacks ====================

    def _accepts_callbacks(self) -> bool:
        return self._activated and self._state not in (
            SessionState.NOT_SUPPORTED,
            SessionState.ERROR,
        )

    def on_activation_complete(
        self, state: ActivationState, error: Exception | None
    ) -> None:
        """Apply the transport's activation outcome."""
        if not self._activated or self._unsupported:
            return

        if error is not None:
            self._last_error = (
                error if isinstance(error, ActivationFailed) else ActivationFailed(error)
            )
            logger.error(f"{self.name}: {self._last_error}")
            self._set_state(SessionState.ERROR)
            self._fail_pending(self._last_error)
            return

        if self._state is SessionState.ERROR:
            return

        self._set_state(state_for_activation(state, self.facts()))

    def on_reachability_changed(self, reachable: bool) -> None:
        """Recompute the status after the peer's reachability changed."""
        if not self._accepts_callbacks():
            return
        logger.debug(f"{self.name}: reachable={reachable}")
        self._set_state(derive_session_state(self.facts(reachable=reachable)))

    def on_inactive(self) -> None:
        if not self._accepts_callbacks():
            return
        self._set_state(SessionState.NOT_REACHABLE)

    def on_deactivated(self) -> None:
        if not self._activated or self._unsupported:
            return
        self._last_error = ActivationFailed("session deactivated")
        logger.warning(f"{self.name}: session deactivated")
        self._set_state(SessionState.ERROR)
        self._fail_pending(self._last_error)

    def on_receive(self, value: int, reply: ReplyHandler | None = None) -> None:
        """Overwrite the local counter with a value from the peer."""
        logger.debug(f"{self.name}: received counter {value}")
        self._value = value
        self._notify_value()

        if reply is not None:
            try:
                reply(Ack())
            except Exception as e:
                logger.warning(f"{self.name}: failed to acknowledge update: {e}")

    # ==================== Updates ====================

    def set_value(self, value: int) -> PendingSend | None:
        """Set the counter locally and push it to the peer if reachable.

        The local value always changes. When the peer is unreachable nothing
        is sent and nothing is rolled back.

        Returns:
            The pending send, or None if no send was attempted.

        Raises:
            InvalidArgument: If ``value`` is not an integer.
        """
        value = require_counter(value)
        self._value = value
        self._notify_value()

        if not self._activated or self._unsupported:
            logger.debug(f"{self.name}: not activated, keeping {value} local")
            return None
        if not self._transport.is_reachable():
            logger.debug(f"{self.name}: {SendUnreachable()}, dropping {value}")
            return None

        return self._start_send(value)

    def increment(self) -> PendingSend | None:
        return self.set_value(self._value + 1)

    def decrement(self) -> PendingSend | None:
        return self.set_value(self._value - 1)

    async def send_value(self, value: int) -> bool:
        """Set the counter and wait for the peer's acknowledgment.

        Returns:
            True if the peer acknowledged, False if the send was dropped or
            failed.
        """
        pending = self.set_value(value)
        if pending is None:
            return False
        return await pending.wait()

    def _start_send(self, value: int) -> PendingSend:
        if self._pending is not None:
            logger.debug(
                f"{self.name}: superseding pending send of {self._pending.counter}"
            )
            self._release(self._pending)
            self._pending.resolve(False)

        loop = self._dispatcher.loop
        pending = PendingSend(
            message_id=next(self._message_ids),
            counter=value,
            future=loop.create_future() if loop is not None else None,
        )
        self._pending = pending

        if loop is not None and self.send_timeout is not None:
            pending._timer = loop.call_later(
                self.send_timeout,
                self._on_send_error,
                pending.message_id,
                SendFailed("timeout"),
            )

        message_id = pending.message_id
        try:
            pending.token = self._transport.send(
                Update(counter=value),
                on_reply=lambda reply: self._dispatcher.post(
                    self._on_send_reply, message_id, reply
                ),
                on_error=lambda error: self._dispatcher.post(
                    self._on_send_error, message_id, error
                ),
            )
        except Exception as e:
            self._on_send_error(message_id, e)

        return pending

    def _on_send_reply(self, message_id: int, reply: Message) -> None:
        pending = self._pending
        if pending is None or pending.message_id != message_id:
            logger.debug(f"{self.name}: ignoring reply for stale send {message_id}")
            return
        logger.debug(f"{self.name}: peer acknowledged {pending.counter}: {reply}")
        self._pending = None
        pending.resolve(True)

    def _on_send_error(self, message_id: int, error: Exception) -> None:
        pending = self._pending
        if pending is None or pending.message_id != message_id:
            return
        if not isinstance(error, (SendFailed, SendUnreachable)):
            error = SendFailed(error)
        self._last_error = error
        logger.warning(f"{self.name}: send of {pending.counter} failed: {error}")
        self._pending = None
        self._release(pending)
        pending.resolve(False)

    def _release(self, pending: PendingSend) -> None:
        """Tell the transport to stop tracking an abandoned send."""
        try:
            self._transport.cancel(pending.token)
        except Exception as e:
            logger.debug(f"{self.name}: cancel of send {pending.message_id} failed: {e}")

    def _fail_pending(self, reason: CounterlinkError | str) -> None:
        pending = self._pending
        if pending is None:
            return
        logger.warning(f"{self.name}: abandoning send of {pending.counter}: {reason}")
        self._pending = None
        self._release(pending)
        pending.resolve(False)

    # ==================== Lifecycle ====================

    def close(self) -> None:
        """Detach from the transport and release it."""
        self._fail_pending("session closed")
        self._transport.set_delegate(None)
        self._transport.close()
