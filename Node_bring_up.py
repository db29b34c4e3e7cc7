"""
Sensor node bring-up script: reads the (simulated) magnetometer and sends
secure frames over the LoRa modem.
"""

import json
import logging
import os
import time
from typing import Optional

from packages.datatypes.datatypes import SensorLayout
from packages.mag_gateway.config import DEFAULT_MASTER_KEY, default_sensor_layout
from packages.mag_node.config import NodeConfig
from packages.mag_node.sender import NodeSender
from packages.mag_node.simulated_sensor import SimulatedMagnetometer, figure_eight
from packages.radio.config import RadioConfig
from packages.radio.transport import RadioError, RadioTransport, SerialLoRaRadio

# Setup JSON logging
logging.basicConfig(
    format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "message": %(message)s}',
    level=logging.INFO
)
logger = logging.getLogger(__name__)

class NodeBringUp:
    """Periodically samples the sensor and transmits one frame."""

    def __init__(
        self,
        config: NodeConfig,
        radio: RadioTransport,
        with_magnet: bool = True,
        layout: Optional[SensorLayout] = None
    ):
        layout = layout or default_sensor_layout()
        if config.node_id not in layout.positions:
            raise ValueError(
                f"node_id {config.node_id} has no sensor position; known nodes: {layout.node_ids()}"
            )

        self.config = config
        self.radio = radio
        self.with_magnet = with_magnet
        self.sender = NodeSender(config.master_key, config.node_id, radio)
        self.sensor = SimulatedMagnetometer(
            layout.get_position(config.node_id),
            ambient=config.ambient_milli_ut,
            moment=config.magnet_moment,
            noise_std=config.noise_std,
            temperature_tenths=config.temperature_tenths
        )
        self._start_time = time.time()

    def send_once(self):
        magnet = None
        if self.with_magnet:
            magnet = figure_eight(time.time() - self._start_time, self.config.path_speed)

        payload = self.sensor.read(magnet)
        try:
            self.sender.send(payload)
        except RadioError as e:
            logger.error(json.dumps({
                "event": "send_failed",
                "node_id": self.config.node_id,
                "error": str(e)
            }))
            return

        logger.info(json.dumps({
            "event": "reading_sent",
            "node_id": self.config.node_id,
            "tx_seq": self.sender.tx_seq - 1,
            "field": [payload.x_milli_ut, payload.y_milli_ut, payload.z_milli_ut]
        }))

    def run(self):
        while True:
            self.send_once()
            time.sleep(self.config.send_interval_s)

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='Magnet Sensor Node')
    parser.add_argument('--node-id', type=int, default=int(os.environ.get('NODE_ID', '1')),
                      help='Node identifier (must have a sensor position: 1-3 with the default layout)')
    parser.add_argument('--serial-port', type=str, default=os.environ.get('SERIAL_PORT', '/dev/ttyUSB0'),
                      help='LoRa modem serial port')
    parser.add_argument('--baud', type=int, default=115200,
                      help='LoRa modem baud rate')
    parser.add_argument('--interval', type=float, default=0.5,
                      help='Seconds between readings')
    parser.add_argument('--noise', type=float, default=5.0,
                      help='Simulated sensor noise (m-uT)')
    parser.add_argument('--no-magnet', action='store_true',
                      help='Report the ambient field only')
    args = parser.parse_args()

    known_nodes = default_sensor_layout().node_ids()
    if args.node_id not in known_nodes:
        parser.error(f"--node-id must be one of {known_nodes}, got {args.node_id}")

    key_hex = os.environ.get('MAG_MASTER_KEY')
    master_key = bytes.fromhex(key_hex) if key_hex else DEFAULT_MASTER_KEY

    config = NodeConfig(
        node_id=args.node_id,
        master_key=master_key,
        send_interval_s=args.interval,
        noise_std=args.noise
    )

    radio = SerialLoRaRadio(RadioConfig(serial_port=args.serial_port, baud_rate=args.baud))
    radio.open()

    node = NodeBringUp(config, radio, with_magnet=not args.no_magnet)

    logger.info(json.dumps({
        "event": "node_started",
        "node_id": args.node_id,
        "serial_port": args.serial_port
    }))

    try:
        node.run()
    except KeyboardInterrupt:
        radio.close()
