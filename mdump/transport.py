"""
Byte channels to the dumper: a raw serial line or a single-client TCP socket.

Both variants share the same small contract, used by the handshake and the
relay:

    read_byte()      next byte, blocking
    read(max_n)      1..max_n bytes, blocking until at least one arrives
    write_all(data)  the whole buffer, retrying partial writes
    close()          release everything; safe to call twice

A closed or failed channel raises TransportError from any of them.
"""

import logging
import os
import socket
import termios

import serial
import serial.tools.list_ports

from .config import (DEFAULT_BAUDRATE, DEFAULT_INTER_BYTE_TIMEOUT,
                     DEFAULT_TCP_HOST, DEFAULT_TCP_PORT)
from .errors import TransportError

log = logging.getLogger(__name__)

RECV_CHUNK = 4096

# ---------------------------------------------------------------------------
#  Common base
# ---------------------------------------------------------------------------


class Transport:
    """Buffered byte channel.  Subclasses supply _recv/_send/_release."""

    name = "transport"

    def __init__(self):
        self._buf = b""
        self._pos = 0
        self._closed = False

    # ---- subclass hooks --------------------------------------------------

    def _recv(self, n: int) -> bytes:
        raise NotImplementedError

    def _send(self, data: bytes) -> int:
        raise NotImplementedError

    def _release(self):
        raise NotImplementedError

    # ---- public API ------------------------------------------------------

    def read(self, max_n: int = RECV_CHUNK) -> bytes:
        if self._pos >= len(self._buf):
            self._buf = self._recv(RECV_CHUNK)
            self._pos = 0
            if not self._buf:
                raise TransportError(f"{self.name}: connection closed by peer")
        out = self._buf[self._pos:self._pos + max_n]
        self._pos += len(out)
        return out

    def read_byte(self) -> int:
        return self.read(1)[0]

    def write_all(self, data: bytes):
        view = memoryview(data)
        while view:
            n = self._send(bytes(view))
            if n <= 0:
                raise TransportError(f"{self.name}: write returned {n}")
            view = view[n:]

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._release()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


# ---------------------------------------------------------------------------
#  Serial line
# ---------------------------------------------------------------------------


class SerialTransport(Transport):
    """
    Raw 8N1 serial line without flow control.

    pyserial puts the tty into raw mode on open (no line discipline, no echo,
    no signals, CLOCAL|CREAD).  With timeout=None and an inter-byte timeout
    of one second this is VMIN=1, VTIME=10.  The attributes the device had
    before we touched it are written back in close().
    """

    def __init__(self, device: str, baudrate: int = DEFAULT_BAUDRATE,
                 inter_byte_timeout: float = DEFAULT_INTER_BYTE_TIMEOUT):
        super().__init__()
        self.device = device
        self.name = device
        self.baudrate = baudrate
        self.inter_byte_timeout = inter_byte_timeout
        self.ser = None
        self._saved_attrs = None

    def _snapshot_attrs(self):
        try:
            fd = os.open(self.device, os.O_RDWR | os.O_NOCTTY | os.O_NONBLOCK)
        except OSError as e:
            raise TransportError(
                f"Failed to open: {self.device}, ({e.strerror})") from e
        try:
            return termios.tcgetattr(fd)
        except termios.error as e:
            raise TransportError(f"Failed to get attr: ({e})") from e
        finally:
            os.close(fd)

    def open(self):
        self._saved_attrs = self._snapshot_attrs()

        ser = serial.Serial()
        ser.port = self.device
        ser.baudrate = self.baudrate
        ser.bytesize = serial.EIGHTBITS
        ser.parity = serial.PARITY_NONE
        ser.stopbits = serial.STOPBITS_ONE
        ser.rtscts = False
        ser.xonxoff = False
        ser.dsrdtr = False
        ser.timeout = None
        ser.inter_byte_timeout = self.inter_byte_timeout
        ser.exclusive = True
        try:
            ser.open()
        except (serial.SerialException, ValueError) as e:
            raise TransportError(f"Failed to configure {self.device}: ({e})") from e

        self.ser = ser
        log.info("Device %s opened for reading at %d baud",
                 self.device, self.baudrate)
        return self

    def _recv(self, n: int) -> bytes:
        try:
            waiting = self.ser.in_waiting
            return self.ser.read(max(1, min(waiting, n)))
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"{self.device}: read failed: {e}") from e

    def _send(self, data: bytes) -> int:
        try:
            n = self.ser.write(data)
            self.ser.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"{self.device}: write failed: {e}") from e
        return len(data) if n is None else n

    def _release(self):
        if self.ser is None:
            return
        try:
            if self._saved_attrs is not None and self.ser.is_open:
                termios.tcsetattr(self.ser.fd, termios.TCSANOW,
                                  self._saved_attrs)
                log.debug("Restored tty attributes on %s", self.device)
        except termios.error as e:
            log.warning("Could not restore tty attributes on %s: %s",
                        self.device, e)
        finally:
            self.ser.close()
            self.ser = None


def available_ports():
    """Return (device, description) for every serial port pyserial can see."""
    return [(p.device, p.description)
            for p in serial.tools.list_ports.comports()]


# ---------------------------------------------------------------------------
#  TCP, one client only
# ---------------------------------------------------------------------------


class NetworkTransport(Transport):
    """
    Listens on host:port and serves exactly one client.

    The listening socket is closed as soon as the client is accepted, so
    later connection attempts are refused.
    """

    def __init__(self, host: str = DEFAULT_TCP_HOST,
                 port: int = DEFAULT_TCP_PORT):
        super().__init__()
        self.host = host
        self.port = port
        self.name = f"{host}:{port}"
        self.address = None
        self.peer = None
        self.srv = None
        self.conn = None

    def listen(self):
        srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            srv.bind((self.host, self.port))
            srv.listen(1)
        except OSError as e:
            srv.close()
            raise TransportError(f"Bind failed on {self.name}: {e}") from e
        self.srv = srv
        self.address = srv.getsockname()[:2]
        log.info("Listening on %s:%d", *self.address)
        return self

    def accept(self):
        if self.srv is None:
            self.listen()
        log.info("Waiting to launch VM...")
        try:
            self.conn, self.peer = self.srv.accept()
        except OSError as e:
            raise TransportError(f"Failed to accept connection: {e}") from e
        finally:
            self.srv.close()
            self.srv = None
        log.info("Client connected: %s:%d", *self.peer[:2])
        return self

    def open(self):
        return self.listen().accept()

    def _recv(self, n: int) -> bytes:
        try:
            return self.conn.recv(n)
        except OSError as e:
            raise TransportError(f"{self.name}: recv failed: {e}") from e

    def _send(self, data: bytes) -> int:
        try:
            return self.conn.send(data)
        except OSError as e:
            raise TransportError(f"{self.name}: send failed: {e}") from e

    def _release(self):
        if self.srv is not None:
            self.srv.close()
            self.srv = None
        if self.conn is not None:
            self.conn.close()
            self.conn = None


def open_transport(config) -> Transport:
    """Open the transport selected by a DumpConfig."""
    if config.socket:
        transport = NetworkTransport(config.host, config.port)
    else:
        transport = SerialTransport(config.device, config.baudrate,
                                    config.inter_byte_timeout)
    try:
        return transport.open()
    except BaseException:
        transport.close()
        raise
