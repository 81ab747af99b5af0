"""mDNS/Zeroconf discovery of Counterlink peers."""

from .mdns import DiscoveryManager, PeerInfo, ServiceAnnouncer, ServiceBrowser

__all__ = ["DiscoveryManager", "PeerInfo", "ServiceAnnouncer", "ServiceBrowser"]
