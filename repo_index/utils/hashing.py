"""Content fingerprints used for change detection."""

from __future__ import annotations

import zlib


def fingerprint(data: bytes) -> int:
    """Return the CRC-32 of ``data`` as an unsigned 32-bit integer.

    The value is only compared for equality against the checksum stored with a
    document. A collision costs at most a skipped re-embed on the next change.
    """
    return zlib.crc32(data) & 0xFFFFFFFF


__all__ = ["fingerprint"]
