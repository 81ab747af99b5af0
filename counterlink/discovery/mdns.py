"""mDNS/Zeroconf discovery of Counterlink peers.

Each node announces its role and the MQTT broker it uses, so a peer started
without a broker address can join the same broker.
"""

import asyncio
import logging
import socket
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from zeroconf import ServiceInfo, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from .. import __version__

logger = logging.getLogger(__name__)

# Brokers that only mean something on the announcing host
LOCAL_BROKERS = ("localhost", "127.0.0.1", "")


@dataclass
class PeerInfo:
    """A node seen on the local network."""

    node_name: str
    role: str = "unknown"
    broker: str = ""
    broker_port: int | None = None
    version: str = ""
    address: str = ""
    port: int = 0
    last_seen: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_txt(cls, service_name: str, properties: dict[bytes, bytes | None]) -> "PeerInfo":
        """Build peer info from an announcement's TXT records."""

        def text(key: bytes) -> str:
            value = properties.get(key)
            return value.decode("utf-8") if value else ""

        broker_port = text(b"broker_port")
        return cls(
            node_name=service_name.split(".")[0],
            role=text(b"role") or "unknown",
            broker=text(b"broker"),
            broker_port=int(broker_port) if broker_port.isdigit() else None,
            version=text(b"version"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_seen"] = self.last_seen.isoformat()
        return data


def _local_address() -> str:
    return socket.gethostbyname(socket.gethostname())


class ServiceAnnouncer:
    """Publishes this node's role and broker over mDNS."""

    def __init__(
        self,
        node_name: str,
        role: str,
        port: int,
        broker: str = "",
        broker_port: int = 1883,
        service_type: str = "_counterlink._tcp",
    ):
        """Initialize the announcer.

        Args:
            node_name: Instance name; peers look this up by name.
            role: "primary" or "companion".
            port: Port the dashboard listens on.
            broker: MQTT broker host this node uses.
            broker_port: MQTT broker port.
            service_type: mDNS service type.
        """
        self.node_name = node_name
        self.role = role
        self.port = port
        self.broker = broker
        self.broker_port = broker_port
        self.service_type = service_type
        self._zeroconf: AsyncZeroconf | None = None
        self._info: ServiceInfo | None = None

    def properties(self, local_ip: str) -> dict[bytes, bytes]:
        """TXT records for the announcement."""
        broker = local_ip if self.broker in LOCAL_BROKERS else self.broker
        return {
            b"role": self.role.encode("utf-8"),
            b"broker": broker.encode("utf-8"),
            b"broker_port": str(self.broker_port).encode("utf-8"),
            b"version": __version__.encode("utf-8"),
        }

    async def start(self) -> None:
        local_ip = _local_address()
        self._info = ServiceInfo(
            f"{self.service_type}.local.",
            f"{self.node_name}.{self.service_type}.local.",
            addresses=[socket.inet_aton(local_ip)],
            port=self.port,
            properties=self.properties(local_ip),
            server=f"{socket.gethostname()}.local.",
        )
        self._zeroconf = AsyncZeroconf()
        await self._zeroconf.async_register_service(self._info)
        logger.info(f"Announcing {self.node_name} ({self.role}) at {local_ip}:{self.port}")

    async def stop(self) -> None:
        if self._zeroconf is None:
            return
        if self._info is not None:
            await self._zeroconf.async_unregister_service(self._info)
        await self._zeroconf.async_close()
        self._zeroconf = None
        logger.info("Announcement withdrawn")


class ServiceBrowser:
    """Tracks Counterlink nodes announced on the local network.

    Browser callbacks arrive on the event loop, so the peer table is only
    touched from that loop.
    """

    def __init__(
        self,
        service_type: str = "_counterlink._tcp",
        cache_ttl_seconds: int = 300,
    ):
        self.service_type = service_type
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._zeroconf: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._peers: dict[str, PeerInfo] = {}
        self._changed = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    def _on_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if state_change is ServiceStateChange.Removed:
            peer = self._peers.pop(name, None)
            if peer:
                logger.info(f"Peer left: {peer.node_name}")
            return

        task = asyncio.ensure_future(self._resolve(zeroconf, service_type, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, 3000) or not info.addresses:
            logger.debug(f"Could not resolve {name}")
            return
        self.add(name, info.properties or {}, socket.inet_ntoa(info.addresses[0]), info.port)

    def add(
        self,
        name: str,
        properties: dict[bytes, bytes | None],
        address: str = "",
        port: int = 0,
    ) -> PeerInfo:
        """Record an announcement and wake anyone waiting for peers."""
        peer = PeerInfo.from_txt(name, properties)
        peer.address = address
        peer.port = port or 0
        self._peers[name] = peer
        self._changed.set()
        logger.info(f"Found peer {peer.node_name} ({peer.role}) at {address}:{port}")
        return peer

    def peers(self) -> list[PeerInfo]:
        """Peers seen within the cache TTL."""
        cutoff = datetime.now() - self.cache_ttl
        for name in [n for n, p in self._peers.items() if p.last_seen <= cutoff]:
            del self._peers[name]
        return list(self._peers.values())

    async def wait_for_change(self, timeout: float) -> None:
        self._changed.clear()
        try:
            await asyncio.wait_for(self._changed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def start(self) -> None:
        self._zeroconf = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._zeroconf.zeroconf,
            f"{self.service_type}.local.",
            handlers=[self._on_change],
        )
        logger.info(f"Browsing for {self.service_type} peers")

    async def stop(self) -> None:
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf is not None:
            await self._zeroconf.async_close()
            self._zeroconf = None
        for task in list(self._tasks):
            task.cancel()


class DiscoveryManager:
    """Announces this node and browses for its peer."""

    def __init__(
        self,
        node_name: str,
        role: str,
        port: int,
        broker: str = "",
        broker_port: int = 1883,
        service_type: str = "_counterlink._tcp",
        announce: bool = True,
        browse: bool = True,
        cache_ttl_seconds: int = 300,
    ):
        self.node_name = node_name
        self.announcer = (
            ServiceAnnouncer(node_name, role, port, broker, broker_port, service_type)
            if announce
            else None
        )
        self.browser = ServiceBrowser(service_type, cache_ttl_seconds) if browse else None

    async def start(self) -> None:
        if self.announcer:
            await self.announcer.start()
        if self.browser:
            await self.browser.start()

    async def stop(self) -> None:
        if self.announcer:
            await self.announcer.stop()
        if self.browser:
            await self.browser.stop()

    def peers(self) -> list[PeerInfo]:
        """Discovered nodes other than this one."""
        if not self.browser:
            return []
        return [p for p in self.browser.peers() if p.node_name != self.node_name]

    async def find_peer(self, peer_name: str, timeout: float = 10) -> PeerInfo | None:
        """Wait up to ``timeout`` seconds for ``peer_name`` to be announced."""
        if not self.browser:
            return None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            for peer in self.peers():
                if peer.node_name == peer_name:
                    return peer
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"Peer {peer_name} not found within {timeout}s")
                return None
            await self.browser.wait_for_change(remaining)
