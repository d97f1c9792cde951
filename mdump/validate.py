"""
Sanity checks for a dumped x86 memory image.

The dumper is loaded as a boot sector at 0x7C00, so a good dump of low
memory has the boot signature 55 AA at 0x7C00 + 510, and the magic number
0xB16B00B5 four bytes before it.  If the serial link dropped or duplicated
bytes, the signature moves; the magic number tells by how much.  A copy of
the boot sector exactly 1 MiB higher means the A20 gate was closed while
dumping and the upper half of the image is just low memory again.

Passing these checks does not mean the file is good, only that it is very
likely to be.
"""

import enum
import logging
import mmap
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

BOOT_OFFSET = 0x7C00
SECTOR_SIZE = 512
BOOT_SIGNATURE = b"\x55\xaa"
SIGNATURE_OFFSET = BOOT_OFFSET + 510

# 0xB16B00B5, little endian, placed right before the boot signature.
ALIGN_MAGIC = b"\xb5\x00\x6b\xb1"
ALIGN_MAGIC_OFFSET = 506

A20_WRAP = 1 << 20


class ValidationStatus(enum.Enum):
    OK = "ok"
    REFERENCE_NOT_BOOTABLE = "reference-not-bootable"
    TOO_SMALL = "too-small"
    UNUSABLE = "unusable"
    A20_DISABLED = "a20-disabled"


@dataclass
class ValidationReport:
    status: ValidationStatus
    size: int
    expected_length: int
    shift: int = 0
    magic_offset: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status is ValidationStatus.OK

    @property
    def size_matches(self) -> bool:
        return self.size == self.expected_length


class OutputImage:
    """Read-only mmap of a finished dump file."""

    def __init__(self, path):
        self.path = Path(path)
        self._fp = None
        self.data = b""

    def open(self):
        self._fp = open(self.path, "rb")
        if os.fstat(self._fp.fileno()).st_size:
            self.data = mmap.mmap(self._fp.fileno(), 0, access=mmap.ACCESS_READ)
        return self

    def close(self):
        if isinstance(self.data, mmap.mmap):
            self.data.close()
        self.data = b""
        if self._fp is not None:
            self._fp.close()
            self._fp = None

    def __len__(self):
        return len(self.data)

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()
        return False


def _signature_at(image, offset: int) -> bool:
    return image[offset:offset + 2] == BOOT_SIGNATURE


def check_output(image, expected_length: int, reference=None) -> ValidationReport:
    """
    Run the structural checks on `image` (bytes, bytearray or mmap).

    `reference` is the boot sector the dumper was built as; when it exists
    and is not a 512-byte sector there is nothing to compare against.
    """
    size = len(image)

    def report(status, **kw):
        return ValidationReport(status, size, expected_length, **kw)

    if size != expected_length:
        log.warning("Output size (%d) differs from expected: %d bytes!",
                    size, expected_length)

    if reference is not None:
        ref = Path(reference)
        if ref.exists() and ref.stat().st_size != SECTOR_SIZE:
            log.warning("%s file is not a bootable file! "
                        "Unable to check for consistency", ref)
            return report(ValidationStatus.REFERENCE_NOT_BOOTABLE)

    if size < BOOT_OFFSET + SECTOR_SIZE:
        log.warning("Output (%d bytes) is too small to look for the boot "
                    "sector", size)
        return report(ValidationStatus.TOO_SMALL)

    shift = 0
    magic_offset = None
    if not _signature_at(image, SIGNATURE_OFFSET):
        log.warning("Output is not properly aligned!")

        magic_offset = image.find(ALIGN_MAGIC)
        if magic_offset < 0:
            log.warning("Magic number not found, output file should be "
                        "discarded!")
            return report(ValidationStatus.UNUSABLE)

        shift = (magic_offset - BOOT_OFFSET) - ALIGN_MAGIC_OFFSET
        log.warning("Found magic number!, output file is %+d bytes shifted!",
                    shift)

    wrapped = SIGNATURE_OFFSET + A20_WRAP + shift
    if size >= BOOT_OFFSET + SECTOR_SIZE + A20_WRAP + shift \
            and _signature_at(image, wrapped):
        log.warning("A20 line looks like its *not* enabled!")
        return report(ValidationStatus.A20_DISABLED, shift=shift,
                      magic_offset=magic_offset)

    return report(ValidationStatus.OK, shift=shift, magic_offset=magic_offset)
