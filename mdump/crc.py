"""
CRC-32 (IEEE 802.3, reflected, polynomial 0xEDB88320).

This is the same table-driven routine the dumper runs on the device side,
so both ends agree byte for byte.
"""

from dataclasses import dataclass
from typing import Optional

CRC32_POLY = 0xEDB88320


def build_crc32_table():
    table = []
    for i in range(256):
        ch = i
        crc = 0
        for _ in range(8):
            b = (ch ^ crc) & 1
            crc >>= 1
            if b:
                crc ^= CRC32_POLY
            ch >>= 1
        table.append(crc)
    return table


CRC32_TABLE = build_crc32_table()


class Crc32:
    """Running CRC-32 state.  Feed it with update(), read it with .value."""

    def __init__(self):
        self._crc = 0xFFFFFFFF

    def update(self, data):
        crc = self._crc
        table = CRC32_TABLE
        # mmap iterates as 1-byte bytes objects; a memoryview yields ints.
        with memoryview(data) as view:
            for b in view:
                crc = (crc >> 8) ^ table[(b ^ crc) & 0xFF]
        self._crc = crc
        return self

    @property
    def value(self) -> int:
        return ~self._crc & 0xFFFFFFFF


def crc32(data) -> int:
    """CRC-32 of a bytes-like object (bytes, bytearray, mmap, memoryview)."""
    return Crc32().update(data).value


@dataclass
class CrcCheck:
    """The CRC the device sent next to the one computed over the output."""

    received: Optional[int]
    computed: int

    @property
    def match(self) -> bool:
        return self.received is not None and self.received == self.computed


def verify_crc(received, data) -> CrcCheck:
    return CrcCheck(received, crc32(data))
