import socket
import threading
import zlib

import pytest

from mdump.errors import TransportError
from mdump.protocol import READY_MAGIC, decode_u32, encode_u32
from mdump.transport import Transport


class PairTransport(Transport):
    """Host end of a socketpair, standing in for a serial line."""

    name = "pair"

    def __init__(self, sock):
        super().__init__()
        self.sock = sock

    def _recv(self, n):
        return self.sock.recv(n)

    def _send(self, data):
        try:
            return self.sock.send(data)
        except OSError as e:
            raise TransportError(str(e)) from e

    def _release(self):
        self.sock.close()


def recv_exact(sock, n):
    buf = b""
    while len(buf) < n:
        chunk = sock.recv(n - len(buf))
        if not chunk:
            break
        buf += chunk
    return buf


class FakeDumper(threading.Thread):
    """
    Device side of the protocol: announce READY, read the length, stream
    that many bytes of `memory`, then the CRC-32 (or `crc` if given).
    """

    def __init__(self, sock, memory, preamble=b"", crc=None):
        super().__init__(daemon=True)
        self.sock = sock
        self.memory = memory
        self.preamble = preamble
        self.crc = crc
        self.requested = None
        self.sent = b""

    def run(self):
        try:
            self.sock.sendall(self.preamble + READY_MAGIC)
            raw = recv_exact(self.sock, 4)
            if len(raw) < 4:
                return
            self.requested = decode_u32(raw)
            self.sent = bytes(self.memory[:self.requested])
            crc = zlib.crc32(self.sent) if self.crc is None else self.crc
            self.sock.sendall(self.sent + encode_u32(crc))
        finally:
            self.sock.close()


@pytest.fixture
def pair():
    host, device = socket.socketpair()
    transport = PairTransport(host)
    yield transport, device
    transport.close()
    device.close()
