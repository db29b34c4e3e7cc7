"""
Secure frame codec: fixed-layout packing, stream-cipher encryption and
encrypt-then-MAC authentication with per-node replay protection.

Wire format (28 bytes, little-endian):
    node_id:1 | tx_seq:4 | ciphertext:15 | tag:8

Plaintext payload (15 bytes, little-endian):
    msg_type:1 | x:4 | y:4 | z:4 | temp_tenths:2
"""

import hmac
import struct
from typing import Dict, List, Tuple

from packages.datatypes.datatypes import SensorFrame, SensorPayload
from .crypto import derive_subkeys, keystream, xor_bytes
from .errors import AuthenticationFailure, ProtocolError
from .siphash import siphash24, TAG_LEN

MSG_TYPE_SENSOR = 0x01
PAYLOAD_FORMAT = "<Biiih"
SENSOR_PLAINTEXT_LEN = struct.calcsize(PAYLOAD_FORMAT)  # 15
HEADER_FORMAT = "<BI"
HEADER_LEN = struct.calcsize(HEADER_FORMAT)  # 5
SECURE_FRAME_LEN = HEADER_LEN + SENSOR_PLAINTEXT_LEN + TAG_LEN  # 28

MAX_NODE_ID = 0xFF


def pack_payload(payload: SensorPayload) -> bytes:
    """
    Pack a sensor payload into its 15-byte plaintext form.

    Raises:
        ValueError: If a component does not fit its field width
    """
    try:
        return struct.pack(
            PAYLOAD_FORMAT,
            MSG_TYPE_SENSOR,
            payload.x_milli_ut,
            payload.y_milli_ut,
            payload.z_milli_ut,
            payload.temp_tenths
        )
    except struct.error as e:
        raise ValueError(f"payload out of range: {e}") from e


def unpack_payload(plaintext: bytes) -> SensorPayload:
    """
    Unpack a 15-byte plaintext payload.

    Raises:
        ProtocolError: If the length or message type is wrong
    """
    if len(plaintext) != SENSOR_PLAINTEXT_LEN:
        raise ProtocolError(
            "bad_payload_length",
            f"payload must be {SENSOR_PLAINTEXT_LEN} bytes, got {len(plaintext)}"
        )

    msg_type, x, y, z, temp = struct.unpack(PAYLOAD_FORMAT, plaintext)
    if msg_type != MSG_TYPE_SENSOR:
        raise ProtocolError("bad_msg_type", f"unexpected msg_type 0x{msg_type:02x}")

    return SensorPayload(x_milli_ut=x, y_milli_ut=y, z_milli_ut=z, temp_tenths=temp)


def _mac_input(node_id: int, tx_seq: int, ciphertext: bytes) -> bytes:
    return struct.pack(HEADER_FORMAT, node_id, tx_seq) + ciphertext


def encode_frame(
    master_key: bytes,
    node_id: int,
    tx_seq: int,
    payload: SensorPayload
) -> bytes:
    """
    Build a 28-byte secure frame.

    Args:
        master_key: 16-byte pre-shared master key
        node_id: Sending node id (1..255)
        tx_seq: Sequence number, never reused for a given key
        payload: Sensor reading to protect

    Returns:
        node_id || tx_seq || ciphertext || tag

    Raises:
        ValueError: If node_id, tx_seq or the payload are out of range
    """
    if not 1 <= node_id <= MAX_NODE_ID:
        raise ValueError(f"Invalid node_id: {node_id}. Must be 1-{MAX_NODE_ID}.")
    if not 0 <= tx_seq <= 0xFFFFFFFF:
        raise ValueError(f"tx_seq must be a u32, got {tx_seq}")

    k_enc, k_mac = derive_subkeys(master_key, node_id)

    plaintext = pack_payload(payload)
    ciphertext = xor_bytes(plaintext, keystream(k_enc, SENSOR_PLAINTEXT_LEN, tx_seq))

    header_and_ct = _mac_input(node_id, tx_seq, ciphertext)
    tag = siphash24(k_mac, header_and_ct)

    return header_and_ct + tag


class SecureFrameDecoder:
    """
    Verifies, replay-checks and decrypts secure frames.
    Holds the per-node replay table for the lifetime of the receiver.
    """

    def __init__(self, master_key: bytes, max_nodes: int):
        """
        Initialize the decoder.

        Args:
            master_key: 16-byte pre-shared master key
            max_nodes: Highest valid node id
        """
        self._master_key = bytes(master_key)
        self.max_nodes = max_nodes

        # Indexed by node id across the full id space
        self.last_seq_seen: List[int] = [0] * (MAX_NODE_ID + 1)
        self._seen: List[bool] = [False] * (MAX_NODE_ID + 1)

        self._subkeys: Dict[int, Tuple[bytes, bytes]] = {}

    def _keys_for(self, node_id: int) -> Tuple[bytes, bytes]:
        if node_id not in self._subkeys:
            self._subkeys[node_id] = derive_subkeys(self._master_key, node_id)
        return self._subkeys[node_id]

    def decode(self, data: bytes) -> SensorFrame:
        """
        Authenticate and decrypt one frame.

        The tag is verified before any replay-table update or decryption.

        Args:
            data: Received bytes (at least 28; extra trailing bytes are ignored)

        Returns:
            Decoded SensorFrame

        Raises:
            ProtocolError: Frame too short, invalid node id or bad message type
            AuthenticationFailure: Tag mismatch ("tag_mismatch") or stale
                sequence number ("replay")
        """
        if len(data) < SECURE_FRAME_LEN:
            raise ProtocolError(
                "short_frame",
                f"frame must be at least {SECURE_FRAME_LEN} bytes, got {len(data)}"
            )

        node_id, tx_seq = struct.unpack_from(HEADER_FORMAT, data, 0)
        if node_id < 1 or node_id > self.max_nodes:
            raise ProtocolError("bad_node_id", f"node_id {node_id} outside 1..{self.max_nodes}")

        ciphertext = bytes(data[HEADER_LEN:HEADER_LEN + SENSOR_PLAINTEXT_LEN])
        tag = bytes(data[HEADER_LEN + SENSOR_PLAINTEXT_LEN:SECURE_FRAME_LEN])

        k_enc, k_mac = self._keys_for(node_id)

        expected = siphash24(k_mac, _mac_input(node_id, tx_seq, ciphertext))
        if not hmac.compare_digest(expected, tag):
            raise AuthenticationFailure("tag_mismatch", f"bad tag from node {node_id}")

        if self._seen[node_id] and tx_seq <= self.last_seq_seen[node_id]:
            raise AuthenticationFailure(
                "replay",
                f"node {node_id} tx_seq {tx_seq} <= last {self.last_seq_seen[node_id]}"
            )
        self.last_seq_seen[node_id] = tx_seq
        self._seen[node_id] = True

        plaintext = xor_bytes(ciphertext, keystream(k_enc, SENSOR_PLAINTEXT_LEN, tx_seq))
        payload = unpack_payload(plaintext)

        return SensorFrame(
            node_id=node_id,
            tx_seq=tx_seq,
            x_milli_ut=payload.x_milli_ut,
            y_milli_ut=payload.y_milli_ut,
            z_milli_ut=payload.z_milli_ut,
            temp_tenths=payload.temp_tenths
        )
