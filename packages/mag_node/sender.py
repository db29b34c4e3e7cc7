"""
Node-side frame sender: owns the transmit sequence number.
"""

import json
import logging

from packages.datatypes.datatypes import SensorPayload
from packages.radio.transport import RadioTransport
from packages.secure_frame.codec import encode_frame

logger = logging.getLogger(__name__)

MAX_TX_SEQ = 0xFFFFFFFF


class NodeSender:
    """
    Encodes readings into secure frames and sends them.

    tx_seq starts at `start_seq` and increments after every built frame, so no
    sequence number is reused under one master key.
    """

    def __init__(
        self,
        master_key: bytes,
        node_id: int,
        radio: RadioTransport,
        start_seq: int = 0
    ):
        self.master_key = bytes(master_key)
        self.node_id = node_id
        self.radio = radio
        self.tx_seq = start_seq

    def build_frame(self, payload: SensorPayload) -> bytes:
        """
        Encode one reading with the next sequence number.

        Raises:
            ValueError: If the sequence space is exhausted or the payload is out of range
        """
        if self.tx_seq > MAX_TX_SEQ:
            raise ValueError("tx_seq exhausted; a new master key is required")

        frame = encode_frame(self.master_key, self.node_id, self.tx_seq, payload)
        self.tx_seq += 1
        return frame

    def send(self, payload: SensorPayload) -> bytes:
        """Encode and transmit one reading. Returns the frame sent."""
        frame = self.build_frame(payload)
        self.radio.send(frame)

        logger.debug(json.dumps({
            "event": "frame_sent",
            "node_id": self.node_id,
            "tx_seq": self.tx_seq - 1,
            "field": [payload.x_milli_ut, payload.y_milli_ut, payload.z_milli_ut]
        }))
        return frame
