"""
Position publisher - emits {"x": int, "y": int} to the position topic.
"""

import json
import logging
import threading
import uuid
from typing import Any, Dict

import paho.mqtt.client as mqtt

from .config import MQTTConfig

# Setup JSON logging
logging.basicConfig(
    format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "message": %(message)s}',
    level=logging.INFO
)
logger = logging.getLogger(__name__)

class PositionPublisher:
    """
    MQTT client for publishing magnet positions.
    Reconnects automatically; publishes are dropped while disconnected.
    """

    def __init__(self, config: MQTTConfig):
        """
        Initialize the publisher.

        Args:
            config: MQTT configuration
        """
        self.config = config

        # Unique ID to prevent duplicate connections
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"{config.client_id}_{uuid.uuid4()}",
            protocol=mqtt.MQTTv311,
            clean_session=True
        )

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

        self._client.reconnect_delay_set(
            min_delay=int(config.reconnect_delay_min),
            max_delay=int(config.reconnect_delay_max)
        )

        if config.username and config.password:
            self._client.username_pw_set(config.username, config.password)

        self._connected = False
        self._connection_lock = threading.Lock()
        self.published_count = 0

    @property
    def connected(self) -> bool:
        with self._connection_lock:
            return self._connected

    def connect(self):
        """Connect to the MQTT broker and start the network loop."""
        try:
            self._client.connect(
                self.config.broker,
                self.config.port,
                self.config.keepalive
            )
            self._client.loop_start()

            logger.info(json.dumps({
                "event": "publisher_started",
                "broker": self.config.broker,
                "port": self.config.port,
                "topic": self.config.position_topic
            }))

        except Exception as e:
            logger.error(json.dumps({
                "event": "connect_failed",
                "error": str(e)
            }))
            raise

    def disconnect(self):
        """Stop the network loop and disconnect."""
        self._client.loop_stop()
        self._client.disconnect()

        logger.info(json.dumps({
            "event": "publisher_stopped",
            "published": self.published_count
        }))

    def publish_position(self, x: int, y: int) -> bool:
        """
        Publish one position.

        Returns:
            True if the message was handed to the client
        """
        payload = json.dumps({"x": int(x), "y": int(y)})
        info = self._client.publish(
            self.config.position_topic,
            payload,
            qos=self.config.qos
        )

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(json.dumps({
                "event": "publish_failed",
                "rc": info.rc,
                "topic": self.config.position_topic
            }))
            return False

        self.published_count += 1
        logger.debug(json.dumps({
            "event": "position_published",
            "x": int(x),
            "y": int(y),
            "topic": self.config.position_topic
        }))
        return True

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Dict, reason_code, properties):
        """Handle MQTT connection."""
        if reason_code.is_failure:
            with self._connection_lock:
                self._connected = False

            logger.error(json.dumps({
                "event": "mqtt_connect_failed",
                "reason": str(reason_code)
            }))
            return

        with self._connection_lock:
            self._connected = True

        logger.info(json.dumps({
            "event": "mqtt_connected",
            "broker": self.config.broker,
            "qos": self.config.qos
        }))

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags, reason_code, properties):
        """Handle MQTT disconnection."""
        with self._connection_lock:
            self._connected = False

        logger.warning(json.dumps({
            "event": "mqtt_disconnected",
            "reason": str(reason_code)
        }))
