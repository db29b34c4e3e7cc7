"""
A set of simulated sensor nodes sharing one radio.
"""

from typing import Dict, Optional, Tuple

from packages.datatypes.datatypes import SensorLayout
from packages.radio.transport import RadioTransport
from .config import NodeConfig
from .sender import NodeSender
from .simulated_sensor import SimulatedMagnetometer


class SimulatedNodeCluster:
    """One NodeSender and SimulatedMagnetometer per sensor in the layout."""

    def __init__(
        self,
        layout: SensorLayout,
        radio: RadioTransport,
        base_config: NodeConfig,
        plane_height: float = 20.0,
        orientation: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    ):
        self.senders: Dict[int, NodeSender] = {}
        self.sensors: Dict[int, SimulatedMagnetometer] = {}
        for node_id in layout.node_ids():
            self.senders[node_id] = NodeSender(base_config.master_key, node_id, radio)
            self.sensors[node_id] = SimulatedMagnetometer(
                layout.get_position(node_id),
                ambient=base_config.ambient_milli_ut,
                moment=base_config.magnet_moment,
                orientation=orientation,
                plane_height=plane_height,
                noise_std=base_config.noise_std,
                temperature_tenths=base_config.temperature_tenths
            )

    def step(self, magnet_xy: Optional[Tuple[float, float]] = None):
        """Send one reading from every node."""
        for node_id, sender in self.senders.items():
            sender.send(self.sensors[node_id].read(magnet_xy))
