"""
SipHash-2-4 keyed pseudorandom function.
Produces an 8-byte tag from a 16-byte key and an arbitrary-length message.
"""

MASK64 = 0xFFFFFFFFFFFFFFFF
KEY_LEN = 16
TAG_LEN = 8


def _rotl(x: int, b: int) -> int:
    return ((x << b) | (x >> (64 - b))) & MASK64


def _sipround(v0: int, v1: int, v2: int, v3: int):
    v0 = (v0 + v1) & MASK64
    v1 = _rotl(v1, 13) ^ v0
    v0 = _rotl(v0, 32)
    v2 = (v2 + v3) & MASK64
    v3 = _rotl(v3, 16) ^ v2
    v0 = (v0 + v3) & MASK64
    v3 = _rotl(v3, 21) ^ v0
    v2 = (v2 + v1) & MASK64
    v1 = _rotl(v1, 17) ^ v2
    v2 = _rotl(v2, 32)
    return v0, v1, v2, v3


def siphash24(key: bytes, message: bytes) -> bytes:
    """
    Compute SipHash-2-4 of a message.

    Args:
        key: 16-byte key
        message: Message bytes of any length

    Returns:
        8-byte tag (little-endian encoding of the 64-bit result)

    Raises:
        ValueError: If the key is not 16 bytes
    """
    if len(key) != KEY_LEN:
        raise ValueError(f"key must be {KEY_LEN} bytes, got {len(key)}")

    k0 = int.from_bytes(key[0:8], 'little')
    k1 = int.from_bytes(key[8:16], 'little')

    v0 = 0x736f6d6570736575 ^ k0
    v1 = 0x646f72616e646f6d ^ k1
    v2 = 0x6c7967656e657261 ^ k0
    v3 = 0x7465646279746573 ^ k1

    length = len(message)
    end = length - (length % 8)

    # Compression: two rounds per full 8-byte word
    for offset in range(0, end, 8):
        m = int.from_bytes(message[offset:offset + 8], 'little')
        v3 ^= m
        v0, v1, v2, v3 = _sipround(v0, v1, v2, v3)
        v0, v1, v2, v3 = _sipround(v0, v1, v2, v3)
        v0 ^= m

    # Last word: trailing bytes plus length in the top byte
    b = ((length & 0xFF) << 56) | int.from_bytes(message[end:], 'little')
    v3 ^= b
    v0, v1, v2, v3 = _sipround(v0, v1, v2, v3)
    v0, v1, v2, v3 = _sipround(v0, v1, v2, v3)
    v0 ^= b

    # Finalization: four rounds
    v2 ^= 0xFF
    for _ in range(4):
        v0, v1, v2, v3 = _sipround(v0, v1, v2, v3)

    return (v0 ^ v1 ^ v2 ^ v3).to_bytes(TAG_LEN, 'little')
