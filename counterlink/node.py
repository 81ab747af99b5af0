"""Node runtime: wires configuration, transport, session and bridge."""

import asyncio
import logging

from .bridge import MethodCall, SessionBridge
from .config import Config
from .discovery import DiscoveryManager
from .session import SyncSession
from .transport import MQTTTransport, Transport

logger = logging.getLogger(__name__)


class Node:
    """One peer of a counter sync pair."""

    def __init__(self, config: Config, transport: Transport | None = None):
        self.config = config
        self._stop_event = asyncio.Event()

        self._transport = transport or MQTTTransport(
            config.mqtt,
            node_name=config.node.name,
            peer_name=config.session.peer,
        )
        self.session = SyncSession(
            self._transport,
            send_timeout=config.session.send_timeout_seconds,
            name=config.node.name,
        )
        self.bridge = SessionBridge(
            self.session,
            initialize_wait=config.session.initialize_wait_seconds,
        )
        self.bridge.channel.add_listener(self._log_event)

        self._discovery_manager: DiscoveryManager | None = None
        if config.discovery.enabled:
            self._discovery_manager = DiscoveryManager(
                node_name=config.node.name,
                role=config.node.role,
                port=config.dashboard.port,
                broker=config.mqtt.broker,
                broker_port=config.mqtt.port,
                service_type=config.discovery.service_type,
                announce=config.discovery.announce,
                browse=config.discovery.browse,
                cache_ttl_seconds=config.discovery.cache_ttl_seconds,
            )

    @property
    def channel(self):
        return self.bridge.channel

    def _log_event(self, call: MethodCall) -> None:
        logger.debug(f"Event {call.method}: {call.arguments}")

    async def start(self) -> str:
        """Start discovery and initialize the session.

        Returns:
            The status key reported by ``initializeSession``.
        """
        logger.info(f"Starting Counterlink node: {self.config.node.name} ({self.config.node.role})")

        if self._discovery_manager:
            await self._discovery_manager.start()

            # Without a broker, join the one the peer announces
            if not self.config.mqtt.broker:
                logger.info(f"Waiting for peer {self.config.session.peer} discovery...")
                peer = await self._discovery_manager.find_peer(
                    self.config.session.peer,
                    timeout=self.config.discovery.discovery_timeout_seconds,
                )
                if peer and peer.broker:
                    self.config.mqtt.broker = peer.broker
                    if peer.broker_port:
                        self.config.mqtt.port = peer.broker_port
                    logger.info(
                        f"Using broker {self.config.mqtt.broker}:{self.config.mqtt.port} "
                        f"announced by {peer.node_name}"
                    )
                else:
                    logger.warning("No broker discovered")

        result = await self.channel.invoke("initializeSession")
        logger.info(f"Session status: {result['status_key']}")
        return result["status_key"]

    async def wait(self) -> None:
        """Block until ``stop`` is called."""
        await self._stop_event.wait()

    async def stop(self) -> None:
        """Close the session and stop discovery."""
        logger.info("Stopping node...")
        self._stop_event.set()
        self.session.close()

        if self._discovery_manager:
            await self._discovery_manager.stop()

        logger.info("Node stopped")


async def run_node(config: Config, interactive: bool = True) -> None:
    """Run a node until interrupted.

    Args:
        config: Configuration for the node.
        interactive: Read counter commands from the terminal.
    """
    from .console import ConsolePresenter

    node = Node(config)

    try:
        await node.start()
        if interactive:
            await ConsolePresenter(node.session, node.channel).run()
        else:
            await node.wait()
    finally:
        await node.stop()
