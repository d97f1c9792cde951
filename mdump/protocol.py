"""
Dump protocol, host side.

    device -> host   preamble ... 0B B0 01 C0        (READY)
    host   -> device length, u32 little endian
    device -> host   <length> raw payload bytes
    device -> host   CRC-32 of the payload, u32 little endian
"""

import logging
import struct
import sys

from .errors import HandshakeError, RelayError, TransportError

log = logging.getLogger(__name__)

READY_MAGIC = bytes([0x0B, 0xB0, 0x01, 0xC0])

PROGRESS_BARS = 32

_U32 = struct.Struct("<I")


def encode_u32(value: int) -> bytes:
    return _U32.pack(value)


def decode_u32(data: bytes) -> int:
    return _U32.unpack(data)[0]


# ---------------------------------------------------------------------------
#  Handshake
# ---------------------------------------------------------------------------

def wait_ready(transport):
    """
    Consume bytes until READY_MAGIC has been seen.

    A mismatch resets the match index to zero without re-testing the
    current byte, so "0B 0B B0 01 C0" is not recognised.  The device side
    never sends such a preamble; keep it that way.
    """
    idx = 0
    while True:
        try:
            c = transport.read_byte()
        except TransportError as e:
            raise HandshakeError(
                f"Unable to receive message from dbg! ({e})") from e
        if c == READY_MAGIC[idx]:
            idx += 1
            if idx == len(READY_MAGIC):
                log.debug("READY received")
                return
        else:
            idx = 0


def send_length(transport, length: int):
    try:
        transport.write_all(encode_u32(length))
    except TransportError as e:
        raise HandshakeError(f"Unable to send amount of bytes! ({e})") from e
    log.debug("Sent length %d (0x%08X)", length, length)


def negotiate(transport, length: int):
    wait_ready(transport)
    send_length(transport, length)


# ---------------------------------------------------------------------------
#  Relay
# ---------------------------------------------------------------------------

class ProgressBar:
    """
    Coarse '#' progress bar on a text stream.

    One '#' per `length // 32` bytes received, so short dumps may end up
    with a few more than 32 segments and the remainder is never drawn.
    """

    def __init__(self, length: int, stream=None):
        self.stream = sys.stderr if stream is None else stream
        self.threshold = max(1, length // PROGRESS_BARS)
        self.counter = 0
        self.segments = 0

    def start(self):
        self.stream.write("Dumping memory: [" + " " * (PROGRESS_BARS + 1) + "]\r")
        self.stream.write("Dumping memory: [")
        self.stream.flush()

    def advance(self, n: int):
        self.counter += n
        if self.counter >= self.threshold:
            count = self.counter // self.threshold
            self.counter %= self.threshold
            self.segments += count
            self.stream.write("#" * count)
            self.stream.flush()

    def finish(self):
        self.stream.write("] done =)\n")
        self.stream.flush()


def relay_dump(transport, out, length: int, progress=None) -> int:
    """Copy exactly `length` bytes from transport to the file object `out`."""
    received = 0
    if progress is not None:
        progress.start()
    while received < length:
        try:
            chunk = transport.read(length - received)
        except TransportError as e:
            raise RelayError(received, f"Failed to read from device! ({e})") from e
        try:
            out.write(chunk)
        except OSError as e:
            raise RelayError(
                received, f"Unable to write to the output file! ({e})") from e
        received += len(chunk)
        if progress is not None:
            progress.advance(len(chunk))
    if progress is not None:
        progress.finish()
    log.debug("Relayed %d bytes", received)
    return received


def receive_crc(transport):
    """Read the trailing CRC-32.  Returns None if the device never sent it."""
    buf = b""
    try:
        while len(buf) < 4:
            buf += transport.read(4 - len(buf))
    except TransportError as e:
        log.warning("Unable to receive CRC-32! (%s)", e)
        return None
    return decode_u32(buf)
