"""Tests for the web dashboard."""

from datetime import datetime

import pytest

from counterlink.config import Config, NodeConfig, apply_role_defaults
from counterlink.bridge import MethodCall, SessionBridge
from counterlink.messages import Ack, Update
from counterlink.session import SyncSession
from counterlink.transport.loopback import LoopbackTransport

# Only run tests if fastapi is installed
pytest.importorskip("fastapi")


from fastapi.testclient import TestClient
from counterlink.dashboard import EventRecorder, create_app


class AckingPeer:
    """Peer endpoint delegate that acknowledges updates unless told not to."""

    def __init__(self):
        self.received = []
        self.ack = True

    def on_message(self, message, reply):
        self.received.append(message)
        if self.ack and reply is not None:
            reply(Ack())

    def on_activation_complete(self, state, error):
        pass

    def on_reachability_changed(self, reachable):
        pass

    def on_inactive(self):
        pass

    def on_deactivated(self):
        pass


@pytest.fixture
def config():
    """Create a test configuration."""
    return apply_role_defaults(Config(node=NodeConfig(name="test-dashboard-node")))


@pytest.fixture
def peer():
    return AckingPeer()


@pytest.fixture
def bridge(peer):
    """Create a bridge whose peer endpoint is already active."""
    local, remote = LoopbackTransport.pair()
    remote.set_delegate(peer)
    remote.activated = True
    return SessionBridge(SyncSession(local, name="test-dashboard-node"), initialize_wait=0.05)


@pytest.fixture
def app(config, bridge):
    """Create the FastAPI app."""
    return create_app(config, bridge)


@pytest.fixture
def client(app):
    """Create a test client sharing one event loop across requests."""
    with TestClient(app) as test_client:
        yield test_client


class TestDashboardPages:
    """Tests for HTML page routes."""

    def test_index_page(self, client):
        """Test the main dashboard page."""
        response = client.get("/")

        assert response.status_code == 200
        assert "test-dashboard-node" in response.text
        assert "Counterlink" in response.text

    def test_counter_partial(self, client):
        """Test the HTMX counter partial."""
        response = client.get("/htmx/counter")

        assert response.status_code == 200
        assert "not_supported" in response.text

    def test_counter_partial_action(self, client, bridge):
        """Test incrementing from the page."""
        response = client.post("/htmx/counter/increment")

        assert response.status_code == 200
        assert bridge.session.value == 1

    def test_counter_partial_unknown_action(self, client, bridge):
        """Unknown page actions are not found and leave the counter alone."""
        response = client.post("/htmx/counter/reset")

        assert response.status_code == 404
        assert bridge.session.value == 0


class TestChannelAPI:
    """Tests for invoking bridge methods over HTTP."""

    def test_initialize_session(self, client):
        response = client.post("/api/channel/initializeSession")

        assert response.status_code == 200
        data = response.json()
        assert data["method"] == "initializeSession"
        assert data["result"] == {"status_key": "connected"}

    def test_send_counter(self, client, peer):
        client.post("/api/channel/initializeSession")

        response = client.post("/api/channel/sendCounter", json={"counter": 5})

        assert response.status_code == 200
        assert response.json()["result"] is True
        assert peer.received == [Update(5)]

    def test_send_counter_invalid(self, client):
        response = client.post("/api/channel/sendCounter", json={"counter": "x"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_ARGUMENT"
        assert error["details"] == {"counter": "x"}

    def test_send_counter_without_body(self, client):
        response = client.post("/api/channel/sendCounter")

        assert response.status_code == 400

    def test_send_counter_malformed_body(self, client, bridge):
        """A body that is not JSON is rejected as an invalid argument."""
        response = client.post(
            "/api/channel/sendCounter",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ARGUMENT"
        assert bridge.session.value == 0

    def test_unknown_method(self, client):
        response = client.post("/api/channel/resetCounter")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_IMPLEMENTED"


class TestDashboardAPI:
    """Tests for JSON state routes."""

    def test_state(self, client):
        response = client.get("/api/state")

        assert response.status_code == 200
        data = response.json()
        assert data["node_name"] == "test-dashboard-node"
        assert data["peer"] == "counterlink-companion"
        assert data["counter"] == 0
        assert data["status_key"] == "not_supported"
        assert data["pending"] is False
        assert data["pending_since"] is None
        assert data["last_error"] is None

    def test_counter_actions(self, client):
        client.post("/api/channel/initializeSession")

        response = client.post("/api/counter/increment")
        assert response.status_code == 200
        assert response.json()["counter"] == 1
        assert response.json()["sent"] is True

        response = client.post("/api/counter/decrement")
        assert response.json()["counter"] == 0

    def test_pending_since(self, client, peer):
        """An unanswered send is reported with the time it started."""
        peer.ack = False
        client.post("/api/channel/initializeSession")

        assert client.post("/api/counter/increment").json()["sent"] is True

        data = client.get("/api/state").json()
        assert data["pending"] is True
        assert datetime.fromisoformat(data["pending_since"]) <= datetime.now()

    def test_counter_action_unreachable(self, client):
        """Before initialization nothing is sent but the counter still moves."""
        response = client.post("/api/counter/increment")

        assert response.json()["counter"] == 1
        assert response.json()["sent"] is False

    def test_unknown_counter_action(self, client):
        response = client.post("/api/counter/reset")

        assert response.status_code == 404

    def test_events(self, client):
        client.post("/api/channel/initializeSession")
        client.post("/api/counter/increment")

        response = client.get("/api/events")

        data = response.json()
        methods = [e["method"] for e in data["events"]]
        assert "sessionStateChanged" in methods
        assert data["events"][-1]["method"] == "counterUpdated"
        assert data["events"][-1]["arguments"] == {"counter": 1}

        latest = data["events"][-1]["seq"]
        assert client.get(f"/api/events?since={latest}").json()["count"] == 0

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["session"] == {"status_key": "not_supported", "counter": 0}


class TestEventRecorder:
    """Tests for the event history."""

    def test_history_is_bounded(self):
        recorder = EventRecorder(history_size=2)
        for i in range(3):
            recorder(MethodCall("counterUpdated", {"counter": i}))

        events = recorder.since(0)
        assert [e["arguments"]["counter"] for e in events] == [1, 2]
        assert [e["seq"] for e in events] == [2, 3]
