"""
Data channel wire protocol.
"""

from .codec import (
    HEADER_SIZE,
    build_acknowledge,
    build_handshake,
    decode,
    encode,
    try_decode,
    verify_digest,
)

__all__ = [
    "HEADER_SIZE",
    "build_acknowledge",
    "build_handshake",
    "decode",
    "encode",
    "try_decode",
    "verify_digest",
]
