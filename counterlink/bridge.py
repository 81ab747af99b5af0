"""Method-channel bridge between a presentation layer and a sync session.

A presentation layer invokes named methods with dictionary arguments and
receives named events back, mirroring a platform method channel:

Commands:
    initializeSession()            -> {"status_key": str}
    sendCounter({"counter": int})  -> bool
    getCounter()                   -> {"counter": int, "status_key": str}

Events:
    sessionStateChanged({"status_key": str})
    counterUpdated({"counter": int})
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .errors import InvalidArgument
from .messages import require_counter
from .session import SyncSession
from .state import SessionState

logger = logging.getLogger(__name__)

CHANNEL_NAME = "counterlink"


@dataclass
class MethodCall:
    """A named invocation crossing the channel."""

    method: str
    arguments: Any = None


class MethodNotImplemented(Exception):
    """No handler exists for the invoked method."""

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Method '{method}' not implemented")


class MethodCallError(Exception):
    """A handler rejected a call."""

    def __init__(self, code: str, message: str, details: Any = None):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"{code}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


MethodCallHandler = Callable[[MethodCall], Awaitable[Any]]
EventListener = Callable[[MethodCall], None]


class MethodChannel:
    """Named two-way channel.

    Calls flow in through ``invoke`` to the registered handler; events flow
    out through ``invoke_method`` to every listener.
    """

    def __init__(self, name: str = CHANNEL_NAME):
        self.name = name
        self._handler: MethodCallHandler | None = None
        self._listeners: list[EventListener] = []

    def set_method_call_handler(self, handler: MethodCallHandler | None) -> None:
        self._handler = handler

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def invoke(self, method: str, arguments: Any = None) -> Any:
        """Invoke a method on the handler side.

        Raises:
            MethodNotImplemented: If no handler is set or it does not know
                the method.
            MethodCallError: If the handler rejects the call.
        """
        if self._handler is None:
            raise MethodNotImplemented(method)
        return await self._handler(MethodCall(method, arguments))

    def invoke_method(self, method: str, arguments: Any = None) -> None:
        """Deliver an event to every listener."""
        call = MethodCall(method, arguments)
        for listener in list(self._listeners):
            try:
                listener(call)
            except Exception as e:
                logger.error(f"Channel listener failed for {method}: {e}", exc_info=True)


class SessionBridge:
    """Exposes a SyncSession over a MethodChannel."""

    def __init__(
        self,
        session: SyncSession,
        channel: MethodChannel | None = None,
        initialize_wait: float = 1.0,
    ):
        """Initialize the bridge.

        Args:
            session: Session to expose.
            channel: Channel to serve. A new one is created if omitted.
            initialize_wait: Seconds ``initializeSession`` lets the link
                facts arrive before it reports the status.
        """
        self.session = session
        self.channel = channel or MethodChannel()
        self.initialize_wait = initialize_wait

        self._methods: dict[str, Callable[[Any], Awaitable[Any]]] = {
            "initializeSession": self._initialize_session,
            "sendCounter": self._send_counter,
            "getCounter": self._get_counter,
        }

        self.channel.set_method_call_handler(self.handle)
        session.add_status_listener(self._on_status)
        session.add_value_listener(self._on_value)

    async def handle(self, call: MethodCall) -> Any:
        method = self._methods.get(call.method)
        if method is None:
            logger.warning(f"Unknown method: {call.method}")
            raise MethodNotImplemented(call.method)

        try:
            return await method(call.arguments)
        except InvalidArgument as e:
            raise MethodCallError("INVALID_ARGUMENT", str(e), call.arguments) from e

    async def _initialize_session(self, arguments: Any) -> dict[str, str]:
        await self.session.activate()
        # Presence may trail activation, so always wait the full period
        await asyncio.sleep(self.initialize_wait)
        return {"status_key": self.session.status_key}

    async def _send_counter(self, arguments: Any) -> bool:
        if not isinstance(arguments, dict) or "counter" not in arguments:
            raise InvalidArgument("Invalid counter argument")
        counter = require_counter(arguments["counter"])
        return await self.session.send_value(counter)

    async def _get_counter(self, arguments: Any) -> dict[str, Any]:
        return {"counter": self.session.value, "status_key": self.session.status_key}

    def _on_status(self, state: SessionState) -> None:
        self.channel.invoke_method("sessionStateChanged", {"status_key": state.status_key})

    def _on_value(self, value: int) -> None:
        self.channel.invoke_method("counterUpdated", {"counter": value})
