"""Peer link over an MQTT v5 broker.

Each node owns three topics under ``<prefix>/<node>/``:

- ``presence``: retained ``{"online": ..., "app_installed": ...}``, with a
  last will that marks the node offline.
- ``inbox``: updates addressed to the node.
- ``reply``: acknowledgments for updates the node sent.

Replies are matched to sends through the MQTT v5 ``ResponseTopic`` and
``CorrelationData`` properties, so the payloads stay exactly the wire
messages.
"""

import json
import logging
import threading
import uuid
from typing import Any

import paho.mqtt.client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

from .. import messages
from ..config import MQTTConfig
from ..errors import ActivationFailed, DecodeError, SendFailed, SendUnreachable
from ..messages import Ack, Message
from ..state import ActivationState
from .base import ErrorCallback, ReplyCallback, Transport

logger = logging.getLogger(__name__)


class MQTTTransport(Transport):
    """Transport that reaches the peer through an MQTT broker."""

    def __init__(self, config: MQTTConfig, node_name: str, peer_name: str):
        super().__init__()
        self.config = config
        self.node_name = node_name
        self.peer_name = peer_name

        # Paho MQTT client
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"counterlink-{node_name}",
            protocol=mqtt.MQTTv5,
        )
        self._client.on_connect = self._handle_connect
        self._client.on_connect_fail = self._handle_connect_fail
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        # Link state, written from paho's network thread
        self._connected = False
        self._started = False
        self._peer_seen = False
        self._peer_online = False
        self._peer_installed = False

        # Sends awaiting a reply, keyed by correlation data
        self._awaiting: dict[bytes, tuple[ReplyCallback, ErrorCallback]] = {}
        self._lock = threading.Lock()

    # ==================== Topics ====================

    def topic(self, node: str, kind: str) -> str:
        return f"{self.config.topic_prefix}/{node}/{kind}"

    @property
    def presence_topic(self) -> str:
        return self.topic(self.node_name, "presence")

    @property
    def inbox_topic(self) -> str:
        return self.topic(self.node_name, "inbox")

    @property
    def reply_topic(self) -> str:
        return self.topic(self.node_name, "reply")

    @property
    def peer_presence_topic(self) -> str:
        return self.topic(self.peer_name, "presence")

    @property
    def peer_inbox_topic(self) -> str:
        return self.topic(self.peer_name, "inbox")

    # ==================== Paho callbacks ====================

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")

            for topic in (self.inbox_topic, self.reply_topic, self.peer_presence_topic):
                client.subscribe(topic, qos=1)
                logger.debug(f"Subscribed to topic: {topic}")

            client.publish(
                self.presence_topic,
                json.dumps({"online": True, "app_installed": True}),
                qos=1,
                retain=True,
            )

            if self._delegate:
                self._delegate.on_activation_complete(ActivationState.ACTIVATED, None)
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            if self._delegate:
                self._delegate.on_activation_complete(
                    ActivationState.NOT_ACTIVATED,
                    ActivationFailed(f"broker refused connection: {reason_code}"),
                )

    def _handle_connect_fail(self, client: mqtt.Client, userdata: Any) -> None:
        """Handle a broker that could not be reached at all."""
        logger.error(
            f"Could not reach MQTT broker at {self.config.broker}:{self.config.port}"
        )
        if self._delegate:
            self._delegate.on_activation_complete(
                ActivationState.NOT_ACTIVATED,
                ActivationFailed(f"broker {self.config.broker}:{self.config.port} unreachable"),
            )

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

        with self._lock:
            awaiting = list(self._awaiting.values())
            self._awaiting.clear()
        for _, on_error in awaiting:
            on_error(SendFailed("disconnected from broker"))

        if self._delegate:
            self._delegate.on_reachability_changed(False)

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Route an incoming message by topic."""
        logger.debug(f"Received message on {msg.topic}: {msg.payload[:100]!r}")

        if msg.topic == self.peer_presence_topic:
            self._handle_presence(msg.payload)
        elif msg.topic == self.inbox_topic:
            self._handle_inbox(msg)
        elif msg.topic == self.reply_topic:
            self._handle_reply(msg)

    def _handle_presence(self, payload: bytes) -> None:
        if not payload:
            # Retained presence was cleared
            return
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring malformed presence from {self.peer_name}: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed presence from {self.peer_name}: {data!r}")
            return

        self._peer_seen = True
        self._peer_online = bool(data.get("online", False))
        self._peer_installed = bool(data.get("app_installed", True))
        logger.info(
            f"Peer {self.peer_name} is {'online' if self._peer_online else 'offline'}"
        )

        if self._delegate:
            self._delegate.on_reachability_changed(self.is_reachable())

    def _handle_inbox(self, msg: mqtt.MQTTMessage) -> None:
        try:
            message = messages.decode(msg.payload)
        except DecodeError as e:
            logger.warning(f"Dropping undecodable message on {msg.topic}: {e}")
            return

        reply = None
        props = getattr(msg, "properties", None)
        response_topic = getattr(props, "ResponseTopic", None) if props is not None else None
        if response_topic:
            correlation = getattr(props, "CorrelationData", None)

            def reply(ack: Ack) -> None:
                reply_props = Properties(PacketTypes.PUBLISH)
                if correlation is not None:
                    reply_props.CorrelationData = correlation
                self._client.publish(
                    response_topic, messages.encode(ack), qos=1, properties=reply_props
                )

        if self._delegate:
            self._delegate.on_message(message, reply)

    def _handle_reply(self, msg: mqtt.MQTTMessage) -> None:
        props = getattr(msg, "properties", None)
        correlation = getattr(props, "CorrelationData", None) if props is not None else None
        if correlation is None:
            logger.debug("Ignoring reply without correlation data")
            return

        with self._lock:
            callbacks = self._awaiting.pop(bytes(correlation), None)
        if callbacks is None:
            logger.debug("Ignoring reply for unknown send")
            return

        on_reply, on_error = callbacks
        try:
            on_reply(messages.decode(msg.payload))
        except DecodeError as e:
            on_error(SendFailed(e))

    # ==================== Transport interface ====================

    def is_supported(self) -> bool:
        return bool(self.config.broker)

    def activate(self) -> None:
        """Start connecting in paho's network thread."""
        if self._started:
            self._client.loop_stop()

        # Set credentials if configured
        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        self._client.will_set(
            self.presence_topic,
            json.dumps({"online": False, "app_installed": True}),
            qos=1,
            retain=True,
        )

        try:
            self._client.connect_async(
                self.config.broker, self.config.port, keepalive=self.config.keepalive
            )
            self._client.loop_start()
            self._started = True
        except Exception as e:
            raise ActivationFailed(e) from e

    def is_reachable(self) -> bool:
        return self._connected and self._peer_online

    def is_paired(self) -> bool:
        return bool(self.peer_name)

    def is_app_installed(self) -> bool:
        return self._peer_seen and self._peer_installed

    @property
    def is_connected(self) -> bool:
        """Check if connected to broker."""
        return self._connected

    def send(
        self,
        message: Message,
        on_reply: ReplyCallback,
        on_error: ErrorCallback,
    ) -> bytes | None:
        if not self._connected:
            on_error(SendUnreachable("not connected to broker"))
            return None

        correlation = uuid.uuid4().bytes
        props = Properties(PacketTypes.PUBLISH)
        props.ResponseTopic = self.reply_topic
        props.CorrelationData = correlation

        with self._lock:
            self._awaiting[correlation] = (on_reply, on_error)

        result = self._client.publish(
            self.peer_inbox_topic, messages.encode(message), qos=1, properties=props
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            with self._lock:
                self._awaiting.pop(correlation, None)
            on_error(SendFailed(mqtt.error_string(result.rc)))
            return None
        return correlation

    def cancel(self, token: bytes | None) -> None:
        if token is None:
            return
        with self._lock:
            self._awaiting.pop(token, None)

    def close(self) -> None:
        """Mark this node offline and disconnect from the broker."""
        if not self._started:
            return
        if self._connected:
            self._client.publish(
                self.presence_topic,
                json.dumps({"online": False, "app_installed": True}),
                qos=1,
                retain=True,
            )
        self._client.disconnect()
        self._client.loop_stop()
        self._started = False
        self._connected = False

    def check_connection(self) -> bool:
        """Check if broker is reachable."""
        if self.is_connected:
            return True

        # Try a quick connection test
        try:
            test_client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            test_client.connect_timeout = self.config.connect_timeout_seconds
            test_client.connect(self.config.broker, self.config.port, keepalive=5)
            test_client.disconnect()
            return True
        except Exception:
            return False
