"""Decoder for the value characteristic payload.

The peripheral exposes its reading as an unsigned 16-bit little-endian integer
in the first two bytes of the characteristic value:

  value = payload[0] | (payload[1] << 8)

Trailing bytes are ignored. No sign extension or scaling is applied.
"""

from __future__ import annotations

import struct
from typing import Optional


def decode_u16_le(payload: Optional[bytes]) -> Optional[int]:
    """Decode the first two bytes of ``payload``; ``None`` if it is too short."""
    if payload is None or len(payload) < 2:
        return None
    return struct.unpack_from('<H', bytes(payload[:2]))[0]
