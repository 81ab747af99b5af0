"""FastAPI web dashboard application."""

import itertools
import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from ..bridge import MethodCall, MethodCallError, MethodNotImplemented, SessionBridge
from ..config import Config

logger = logging.getLogger(__name__)

# Template directory
TEMPLATE_DIR = Path(__file__).parent / "templates"


class EventRecorder:
    """Keeps the most recent channel events for polling clients."""

    def __init__(self, history_size: int = 100):
        self._events: deque[dict[str, Any]] = deque(maxlen=history_size)
        self._seq = itertools.count(1)

    def __call__(self, call: MethodCall) -> None:
        self._events.append(
            {
                "seq": next(self._seq),
                "method": call.method,
                "arguments": call.arguments,
                "timestamp": datetime.now().isoformat(),
            }
        )

    def since(self, seq: int = 0) -> list[dict[str, Any]]:
        return [e for e in self._events if e["seq"] > seq]


def create_app(config: Config, bridge: SessionBridge) -> FastAPI:
    """Create the FastAPI dashboard application.

    Args:
        config: Application configuration.
        bridge: Bridge to the node's sync session.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Counterlink Dashboard",
        description="Counter sync dashboard for a Counterlink node",
        version="0.1.0",
    )

    session = bridge.session
    events = EventRecorder()
    bridge.channel.add_listener(events)

    app.state.config = config
    app.state.bridge = bridge
    app.state.events = events

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    def snapshot() -> dict[str, Any]:
        pending = session.pending
        return {
            "node_name": config.node.name,
            "role": config.node.role,
            "peer": config.session.peer,
            "counter": session.value,
            "status_key": session.status_key,
            "pending": pending is not None,
            "pending_since": (
                datetime.fromtimestamp(pending.created_at).isoformat() if pending else None
            ),
            "last_error": str(session.last_error) if session.last_error else None,
        }

    # ==================== HTML Routes ====================

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        """Main dashboard page."""
        context = {"request": request, **snapshot()}
        return templates.TemplateResponse("index.html", context)

    # ==================== HTMX Partials ====================

    @app.get("/htmx/counter", response_class=HTMLResponse)
    async def htmx_counter(request: Request):
        """HTMX partial for the counter panel."""
        return templates.TemplateResponse(
            "partials/counter.html", {"request": request, **snapshot()}
        )

    @app.post("/htmx/counter/{action}", response_class=HTMLResponse)
    async def htmx_counter_action(request: Request, action: str):
        """Apply an increment/decrement from the page and re-render."""
        if action == "increment":
            session.increment()
        elif action == "decrement":
            session.decrement()
        else:
            return HTMLResponse(f"Unknown action: {action}", status_code=404)
        return templates.TemplateResponse(
            "partials/counter.html", {"request": request, **snapshot()}
        )

    # ==================== API Routes (JSON) ====================

    @app.post("/api/channel/{method}")
    async def api_channel(method: str, request: Request):
        """Invoke a bridge method with the JSON body as arguments."""
        arguments = None
        if await request.body():
            try:
                arguments = await request.json()
            except ValueError as e:
                logger.warning(f"Rejecting {method} with malformed body: {e}")
                return JSONResponse(
                    status_code=400,
                    content={
                        "error": MethodCallError(
                            "INVALID_ARGUMENT", "Request body is not valid JSON"
                        ).to_dict()
                    },
                )

        try:
            result = await bridge.channel.invoke(method, arguments)
        except MethodNotImplemented as e:
            return JSONResponse(
                status_code=404,
                content={"error": {"code": "NOT_IMPLEMENTED", "message": str(e)}},
            )
        except MethodCallError as e:
            return JSONResponse(status_code=400, content={"error": e.to_dict()})

        return {"method": method, "result": result}

    @app.get("/api/state")
    async def api_state() -> dict[str, Any]:
        """Current counter and session status."""
        return snapshot()

    @app.post("/api/counter/{action}")
    async def api_counter(action: str):
        """Increment or decrement the counter."""
        if action == "increment":
            pending = session.increment()
        elif action == "decrement":
            pending = session.decrement()
        else:
            return JSONResponse(
                status_code=404,
                content={"error": {"code": "UNKNOWN_ACTION", "message": action}},
            )
        return {**snapshot(), "sent": pending is not None}

    @app.get("/api/events")
    async def api_events(since: int = 0) -> dict[str, Any]:
        """Channel events newer than ``since``."""
        recorded = events.since(since)
        return {
            "count": len(recorded),
            "events": recorded,
        }

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint for monitoring.

        Always returns 200 OK; the session status is reported, not enforced.
        """
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "node_name": config.node.name,
            "session": {
                "status_key": session.status_key,
                "counter": session.value,
            },
        }

    return app
