"""
Pure functions for subkey derivation and keystream generation.
Both are built on the SipHash-2-4 keyed hash.
"""

import struct
from typing import Tuple

from .siphash import siphash24, KEY_LEN, TAG_LEN

DOMAIN_SEPARATOR = 0xA5
ENC_LABEL = b"ENC"
MAC_LABEL = b"MAC"


def _expand_to_16(key: bytes, label: bytes) -> bytes:
    """Two hashes of the label (second with the domain separator) give 16 bytes."""
    first = siphash24(key, label)
    second = siphash24(key, label + bytes([DOMAIN_SEPARATOR]))
    return first + second


def derive_subkeys(master_key: bytes, node_id: int) -> Tuple[bytes, bytes]:
    """
    Split a master key into per-node encryption and authentication subkeys.

    Args:
        master_key: 16-byte pre-shared master key
        node_id: Node identifier (0..255)

    Returns:
        (K_enc, K_mac) tuple of 16-byte keys

    Raises:
        ValueError: If the key length or node_id is invalid
    """
    if len(master_key) != KEY_LEN:
        raise ValueError(f"master_key must be {KEY_LEN} bytes, got {len(master_key)}")
    if not 0 <= node_id <= 0xFF:
        raise ValueError(f"node_id must fit in one byte, got {node_id}")

    suffix = bytes([node_id, 0x00, 0x01])
    k_enc = _expand_to_16(master_key, ENC_LABEL + suffix)
    k_mac = _expand_to_16(master_key, MAC_LABEL + suffix)
    return k_enc, k_mac


def keystream(k_enc: bytes, length: int, nonce: int) -> bytes:
    """
    Expand K_enc and a 32-bit nonce into `length` pseudorandom bytes.

    Block b is SipHash(K_enc, 'S' || nonce (LE32) || b (LE32)); the last
    block is truncated to the remaining byte count.

    A (key, nonce) pair must never encrypt two different plaintexts.
    """
    if length < 0:
        raise ValueError(f"length must be non-negative, got {length}")
    if not 0 <= nonce <= 0xFFFFFFFF:
        raise ValueError(f"nonce must be a u32, got {nonce}")

    blocks = []
    produced = 0
    block = 0
    while produced < length:
        tag = siphash24(k_enc, b"S" + struct.pack("<II", nonce, block))
        take = min(TAG_LEN, length - produced)
        blocks.append(tag[:take])
        produced += take
        block += 1

    return b"".join(blocks)


def xor_bytes(data: bytes, stream: bytes) -> bytes:
    """XOR two equal-length byte strings."""
    if len(data) != len(stream):
        raise ValueError(f"length mismatch: {len(data)} != {len(stream)}")
    return bytes(a ^ b for a, b in zip(data, stream))
