"""Tests for mDNS discovery helpers."""

import asyncio

import pytest
from datetime import datetime, timedelta

from counterlink import __version__
from counterlink.discovery import DiscoveryManager, PeerInfo, ServiceAnnouncer, ServiceBrowser


COMPANION_TXT = {
    b"role": b"companion",
    b"broker": b"192.168.1.20",
    b"broker_port": b"1883",
    b"version": b"0.1.0",
}


class TestPeerInfo:
    """Tests for reading announcement TXT records."""

    def test_from_txt(self):
        peer = PeerInfo.from_txt("counterlink-companion._counterlink._tcp.local.", COMPANION_TXT)

        assert peer.node_name == "counterlink-companion"
        assert peer.role == "companion"
        assert peer.broker == "192.168.1.20"
        assert peer.broker_port == 1883
        assert peer.version == "0.1.0"

    def test_missing_values(self):
        peer = PeerInfo.from_txt("x._counterlink._tcp.local.", {b"broker": None})

        assert peer.role == "unknown"
        assert peer.broker == ""
        assert peer.broker_port is None

    def test_to_dict(self):
        seen = datetime(2024, 1, 2, 3, 4, 5)
        peer = PeerInfo(node_name="watch", last_seen=seen)

        data = peer.to_dict()

        assert data["node_name"] == "watch"
        assert data["last_seen"] == "2024-01-02T03:04:05"


class TestServiceAnnouncer:
    """Tests for the announced properties."""

    @pytest.mark.parametrize("broker", ["localhost", "127.0.0.1", ""])
    def test_loopback_broker_replaced(self, broker):
        announcer = ServiceAnnouncer("phone", "primary", 8080, broker=broker)

        props = announcer.properties("10.0.0.5")

        assert props[b"broker"] == b"10.0.0.5"
        assert props[b"broker_port"] == b"1883"
        assert props[b"role"] == b"primary"
        assert props[b"version"] == __version__.encode()

    def test_remote_broker_kept(self):
        announcer = ServiceAnnouncer("phone", "primary", 8080, broker="mqtt.lan", broker_port=1884)

        props = announcer.properties("10.0.0.5")

        assert props[b"broker"] == b"mqtt.lan"
        assert props[b"broker_port"] == b"1884"


class TestServiceBrowser:
    """Tests for the peer table."""

    def test_add_and_expire(self):
        browser = ServiceBrowser(cache_ttl_seconds=60)
        browser.add("watch._counterlink._tcp.local.", COMPANION_TXT, "10.0.0.7", 8080)
        stale = browser.add("old._counterlink._tcp.local.", {})
        stale.last_seen = datetime.now() - timedelta(seconds=120)

        peers = browser.peers()

        assert [p.node_name for p in peers] == ["watch"]
        assert peers[0].address == "10.0.0.7"
        assert peers[0].port == 8080


class TestDiscoveryManager:
    """Tests for finding the paired peer."""

    def test_excludes_self(self):
        manager = DiscoveryManager("phone", "primary", 8080, announce=False)
        manager.browser.add("phone._counterlink._tcp.local.", {b"role": b"primary"})
        manager.browser.add("watch._counterlink._tcp.local.", COMPANION_TXT)

        assert [p.node_name for p in manager.peers()] == ["watch"]

    @pytest.mark.asyncio
    async def test_find_peer_already_seen(self):
        manager = DiscoveryManager("phone", "primary", 8080, announce=False)
        manager.browser.add("watch._counterlink._tcp.local.", COMPANION_TXT)

        peer = await manager.find_peer("watch", timeout=1)

        assert peer.broker == "192.168.1.20"

    @pytest.mark.asyncio
    async def test_find_peer_waits_for_announcement(self):
        manager = DiscoveryManager("phone", "primary", 8080, announce=False)
        loop = asyncio.get_running_loop()
        loop.call_later(
            0.01, manager.browser.add, "watch._counterlink._tcp.local.", COMPANION_TXT
        )

        peer = await manager.find_peer("watch", timeout=1)

        assert peer is not None
        assert peer.node_name == "watch"

    @pytest.mark.asyncio
    async def test_find_peer_times_out(self):
        manager = DiscoveryManager("phone", "primary", 8080, announce=False)

        assert await manager.find_peer("watch", timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_find_peer_without_browser(self):
        manager = DiscoveryManager("phone", "primary", 8080, announce=False, browse=False)

        assert await manager.find_peer("watch", timeout=1) is None
        assert manager.peers() == []
