"""
Gateway bring-up script that coordinates radio reception, calibration,
position estimation and MQTT publishing.
Owns the gateway context and the three worker threads.
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from rich.console import Console

from packages.calibration.console import OperatorConsole
from packages.calibration.engine import CalibrationEngine
from packages.calibration.state import CalibrationState
from packages.datatypes.datatypes import PositionFix, RadioPacket, SensorFrame
from packages.mag_gateway.config import DEFAULT_MASTER_KEY, GatewayConfig
from packages.mag_gateway.context import GatewayMetrics, PositionSlot
from packages.mag_mqtt_publisher.config import MQTTConfig
from packages.mag_mqtt_publisher.publisher import PositionPublisher
from packages.position_algos.blend import estimate_position
from packages.position_algos.dipole.solver import DipoleSolver, measured_fields
from packages.radio.transport import RadioError, RadioTransport
from packages.secure_frame.codec import SecureFrameDecoder
from packages.secure_frame.errors import AuthenticationFailure, ProtocolError

# Setup JSON logging
logging.basicConfig(
    format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "message": %(message)s}',
    level=logging.INFO
)
logger = logging.getLogger(__name__)

@dataclass
class GatewayContext:
    """All per-node and session state, owned by one gateway instance."""
    decoder: SecureFrameDecoder
    engine: CalibrationEngine
    solver: DipoleSolver
    position: PositionSlot
    metrics: GatewayMetrics

    @classmethod
    def create(cls, config: GatewayConfig) -> "GatewayContext":
        return cls(
            decoder=SecureFrameDecoder(config.master_key, config.max_nodes),
            engine=CalibrationEngine(config),
            solver=DipoleSolver(
                config.sensor_layout,
                config=config.solver,
                dipole_orientation=config.dipole_orientation,
                plane_height=config.magnet_plane_height,
                bounds=(config.position_min, config.position_max)
            ),
            position=PositionSlot(),
            metrics=GatewayMetrics()
        )

class GatewayBringUp:
    """
    Central gateway that coordinates:
    1. Radio reception, authentication and decryption
    2. Baseline and calibration-point collection
    3. Position estimation while tracking
    4. Periodic position publishing
    """

    def __init__(
        self,
        config: GatewayConfig,
        radio: RadioTransport,
        publisher: Optional[PositionPublisher] = None,
        console: Optional[Console] = None
    ):
        """Initialize the gateway with configuration."""
        self.config = config
        self.radio = radio
        self.publisher = publisher
        self.context = GatewayContext.create(config)

        self.operator = OperatorConsole(
            self.context.engine,
            console=console,
            on_tracking_started=self._on_tracking_started,
            point_timeout_s=config.calib_point_timeout_s
        )

        # Thread control
        self._stop_event = threading.Event()
        self._receiver_thread = threading.Thread(target=self._receive_loop, daemon=True)
        self._publisher_thread = threading.Thread(target=self._publish_loop, daemon=True)
        self._command_thread: Optional[threading.Thread] = None

        logger.info(json.dumps({
            "event": "gateway_initialized",
            "max_nodes": config.max_nodes,
            "position_method": config.position_method
        }))

    @property
    def engine(self) -> CalibrationEngine:
        return self.context.engine

    @property
    def position(self) -> PositionSlot:
        return self.context.position

    @property
    def metrics(self) -> GatewayMetrics:
        return self.context.metrics

    def start(self, command_lines: Optional[Iterable[str]] = None, interactive: bool = True):
        """
        Start the worker threads.

        Args:
            command_lines: Scripted operator input instead of the terminal
            interactive: Run the operator console at all
        """
        if self.engine.state == CalibrationState.IDLE:
            self.engine.start_calibration()

        if self.publisher is not None:
            self.publisher.connect()

        self._receiver_thread.start()
        self._publisher_thread.start()

        if interactive:
            self._command_thread = threading.Thread(
                target=self.operator.run,
                args=(command_lines,),
                daemon=True
            )
            self._command_thread.start()

        logger.info(json.dumps({"event": "gateway_started"}))

    def stop(self):
        """Stop all processing."""
        self._stop_event.set()
        self.radio.close()
        if self.publisher is not None:
            self.publisher.disconnect()

        logger.info(json.dumps({
            "event": "gateway_stopped",
            "frames_accepted": self.metrics.frames_accepted,
            "security_drops": self.metrics.security_drops,
            "protocol_drops": self.metrics.protocol_drops
        }))

    def _on_tracking_started(self):
        self.position.enable_publishing()

    # ------------------------------------------------------------------
    # Receiver
    # ------------------------------------------------------------------

    def handle_packet(self, packet: RadioPacket) -> Optional[SensorFrame]:
        """
        Decode one packet and apply it.

        Returns:
            The accepted frame, or None if it was dropped
        """
        try:
            frame = self.context.decoder.decode(packet.payload)
        except AuthenticationFailure as e:
            self.metrics.count_security_drop(e.reason)
            logger.warning(json.dumps({
                "event": "security_drop",
                "reason": e.reason,
                "detail": str(e),
                "rssi": packet.rssi,
                "snr": packet.snr
            }))
            return None
        except ProtocolError as e:
            self.metrics.count_protocol_drop(e.reason)
            logger.warning(json.dumps({
                "event": "protocol_drop",
                "reason": e.reason,
                "detail": str(e),
                "len": len(packet.payload)
            }))
            return None

        state = self.engine.process_reading(frame.node_id, frame.field, frame.tx_seq)
        self.metrics.count_accepted(frame.node_id)

        node = self.engine.node_state(frame.node_id)
        logger.info(json.dumps({
            "event": "frame_accepted",
            "node_id": frame.node_id,
            "tx_seq": frame.tx_seq,
            "field": [frame.x_milli_ut, frame.y_milli_ut, frame.z_milli_ut],
            "magnitude": node.last_magnitude,
            "magnet_magnitude": round(node.magnet_magnitude, 1),
            "temp_c": frame.temp_tenths / 10.0,
            "rssi": packet.rssi,
            "snr": packet.snr,
            "len": len(packet.payload)
        }))

        if state == CalibrationState.RUNNING:
            self.update_position()
        return frame

    def update_position(self) -> Optional[PositionFix]:
        """Estimate from a snapshot of the engine state and store the result."""
        snapshot = self.engine.snapshot()

        if self.config.position_method == "dipole":
            fix = self._solve_dipole(snapshot.node_states)
        else:
            fix = estimate_position(
                snapshot.node_states,
                snapshot.points,
                self.config.sensor_layout,
                min_signal=self.config.min_signal_milli_ut,
                bounds=(self.config.position_min, self.config.position_max),
                triangulation_weight=self.config.triangulation_weight
            )

        if fix is None:
            logger.debug(json.dumps({"event": "position_unavailable"}))
            return None

        self.position.set(int(round(fix.x)), int(round(fix.y)))
        logger.info(json.dumps({
            "event": "position_updated",
            "x": round(fix.x, 1),
            "y": round(fix.y, 1),
            "method": fix.method
        }))
        return fix

    def _solve_dipole(self, node_states) -> Optional[PositionFix]:
        estimate = self.context.solver.solve(measured_fields(node_states))
        if estimate is None:
            return None
        if not estimate.converged:
            logger.warning(json.dumps({
                "event": f"solver_{estimate.status}",
                "iterations": estimate.iterations,
                "error": estimate.error
            }))
            return None
        return PositionFix(x=estimate.x, y=estimate.y, method="dipole")

    def receive_once(self) -> Optional[SensorFrame]:
        """One bounded receive; timeouts and radio errors are counted, not raised."""
        try:
            packet = self.radio.receive(self.config.rx_timeout_s)
        except RadioError as e:
            if self._stop_event.is_set():
                return None
            self.metrics.radio_errors += 1
            logger.error(json.dumps({
                "event": "radio_error",
                "error": str(e)
            }))
            return None

        if packet is None:
            self.metrics.radio_timeouts += 1
            logger.debug(json.dumps({
                "event": "radio_timeout",
                "waited_s": self.config.rx_timeout_s
            }))
            return None

        return self.handle_packet(packet)

    def _receive_loop(self):
        while not self._stop_event.is_set():
            try:
                self.receive_once()
            except Exception as e:
                logger.error(json.dumps({
                    "event": "processing_error",
                    "error": str(e)
                }))
                # Avoid a tight loop on a persistent failure
                time.sleep(0.1)

    # ------------------------------------------------------------------
    # Publisher
    # ------------------------------------------------------------------

    def publish_once(self) -> bool:
        """Publish the current position if publishing is enabled and it is valid."""
        position = self.position.publishable()
        if position is None or self.publisher is None:
            return False
        return self.publisher.publish_position(*position)

    def _publish_loop(self):
        while not self._stop_event.wait(self.config.publish_interval_s):
            try:
                self.publish_once()
            except Exception as e:
                logger.error(json.dumps({
                    "event": "publish_error",
                    "error": str(e)
                }))

def _auto_calibrate(gateway: GatewayBringUp, stop_event: threading.Event):
    """Finish the baseline once every node has one, then start tracking."""
    while not stop_event.is_set():
        if gateway.engine.valid_baseline_count() == gateway.config.max_nodes:
            gateway.operator.handle_line("DONE")
            gateway.operator.handle_line("START")
            return
        time.sleep(0.2)

if __name__ == "__main__":
    import argparse

    from packages.mag_node.config import NodeConfig
    from packages.mag_node.simulated_sensor import figure_eight
    from packages.mag_node.simulation import SimulatedNodeCluster
    from packages.radio.config import RadioConfig
    from packages.radio.transport import LoopbackRadio, SerialLoRaRadio

    parser = argparse.ArgumentParser(description='Magnet Tracking Gateway')
    parser.add_argument('--broker', type=str, default=os.environ.get('MQTT_BROKER', 'localhost'),
                      help='MQTT broker IP address')
    parser.add_argument('--port', type=int, default=1883,
                      help='MQTT broker port')
    parser.add_argument('--no-mqtt', action='store_true',
                      help='Run without publishing')
    parser.add_argument('--serial-port', type=str, default=os.environ.get('SERIAL_PORT', '/dev/ttyUSB0'),
                      help='LoRa modem serial port')
    parser.add_argument('--baud', type=int, default=115200,
                      help='LoRa modem baud rate')
    parser.add_argument('--method', choices=['blend', 'dipole'], default='blend',
                      help='Position estimation method')
    parser.add_argument('--simulate', action='store_true',
                      help='Use simulated nodes on a loopback radio')
    parser.add_argument('--auto-calibrate', action='store_true',
                      help='Skip the operator console: finish baselines and start tracking automatically')
    args = parser.parse_args()

    key_hex = os.environ.get('MAG_MASTER_KEY')
    master_key = bytes.fromhex(key_hex) if key_hex else DEFAULT_MASTER_KEY

    config = GatewayConfig(master_key=master_key, position_method=args.method)

    if args.simulate:
        radio = LoopbackRadio()
    else:
        radio = SerialLoRaRadio(RadioConfig(serial_port=args.serial_port, baud_rate=args.baud))
        radio.open()

    publisher = None if args.no_mqtt else PositionPublisher(MQTTConfig(broker=args.broker, port=args.port))

    logger.info(json.dumps({
        "event": "gateway_config",
        "broker": None if args.no_mqtt else args.broker,
        "simulate": args.simulate,
        "method": args.method
    }))

    gateway = GatewayBringUp(config, radio, publisher=publisher)

    sim_stop = threading.Event()
    if args.simulate:
        cluster = SimulatedNodeCluster(
            config.sensor_layout,
            radio,
            NodeConfig(node_id=1, master_key=master_key, noise_std=5.0),
            plane_height=config.magnet_plane_height,
            orientation=config.dipole_orientation
        )
        sim_start = time.time()

        def _simulate():
            while not sim_stop.wait(0.2):
                state = gateway.engine.state
                magnet = None
                if state == CalibrationState.RUNNING:
                    magnet = figure_eight(time.time() - sim_start)
                elif state == CalibrationState.WAITING_INPUT:
                    points = gateway.engine.points()
                    if points:
                        magnet = (points[-1].x, points[-1].y)
                cluster.step(magnet)

        threading.Thread(target=_simulate, daemon=True).start()

    try:
        gateway.start(interactive=not args.auto_calibrate)
        if args.auto_calibrate:
            threading.Thread(target=_auto_calibrate, args=(gateway, sim_stop), daemon=True).start()

        # Keep main thread alive
        while True:
            position = gateway.position.get()
            if position is not None:
                print(f"Current position: {position}")
            time.sleep(1)

    except KeyboardInterrupt:
        sim_stop.set()
        gateway.stop()
