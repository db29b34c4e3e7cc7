"""
Authenticated encryption for sensor frames.
"""

from .siphash import siphash24
from .crypto import derive_subkeys, keystream
from .codec import (
    SecureFrameDecoder,
    encode_frame,
    pack_payload,
    unpack_payload,
    SECURE_FRAME_LEN,
    SENSOR_PLAINTEXT_LEN,
    MSG_TYPE_SENSOR,
)
from .errors import ProtocolError, AuthenticationFailure

__all__ = [
    'siphash24',
    'derive_subkeys',
    'keystream',
    'SecureFrameDecoder',
    'encode_frame',
    'pack_payload',
    'unpack_payload',
    'SECURE_FRAME_LEN',
    'SENSOR_PLAINTEXT_LEN',
    'MSG_TYPE_SENSOR',
    'ProtocolError',
    'AuthenticationFailure'
]
