"""Peer transports for Counterlink."""

from .base import Transport, TransportDelegate
from .loopback import LoopbackTransport
from .mqtt import MQTTTransport

__all__ = ["LoopbackTransport", "MQTTTransport", "Transport", "TransportDelegate"]
