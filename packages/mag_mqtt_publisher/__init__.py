"""
MQTT position publishing.
"""

from .publisher import PositionPublisher
from .config import MQTTConfig

__all__ = ['PositionPublisher', 'MQTTConfig']
