"""
One dump run: open output and transport, negotiate, relay, verify.

DumpSession is the only owner of the transport and the output file.  Leaving
its `with` block, normally or through an exception, unmaps the image, closes
the transport (restoring the tty) and closes the file.
"""

import logging
import sys
from dataclasses import dataclass
from typing import Optional

from .crc import CrcCheck, verify_crc
from .errors import DumpError
from .protocol import ProgressBar, negotiate, receive_crc, relay_dump
from .transport import open_transport
from .validate import OutputImage, ValidationReport, check_output

log = logging.getLogger(__name__)


@dataclass
class DumpResult:
    length: int
    crc: CrcCheck
    validation: Optional[ValidationReport] = None


class DumpSession:

    def __init__(self, config, transport_factory=open_transport,
                 progress_stream=None, out=None):
        self.config = config
        self.transport_factory = transport_factory
        self.progress_stream = progress_stream
        self.stdout = sys.stdout if out is None else out
        self.transport = None
        self.fp = None
        self.image = None

    def __enter__(self):
        try:
            self.fp = open(self.config.output, "wb")
        except OSError as e:
            raise DumpError(
                f"Failed to open: {self.config.output}, ({e.strerror})") from e
        try:
            self.transport = self.transport_factory(self.config)
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def close(self):
        try:
            if self.image is not None:
                self.image.close()
                self.image = None
        finally:
            try:
                if self.transport is not None:
                    self.transport.close()
                    self.transport = None
            finally:
                if self.fp is not None:
                    self.fp.close()
                    self.fp = None

    def _print(self, msg):
        print(msg, file=self.stdout)

    def run(self) -> DumpResult:
        cfg = self.config

        negotiate(self.transport, cfg.length)
        relay_dump(self.transport, self.fp, cfg.length,
                   ProgressBar(cfg.length, self.progress_stream))
        self.fp.flush()

        received = receive_crc(self.transport)
        self.image = OutputImage(cfg.output).open()
        crc = verify_crc(received, self.image.data)
        if received is not None:
            self._print(f"Received CRC-32: {received:08x}")
        self._print(f"Calculated CRC-32: {crc.computed:08x}, match?: "
                    f"{'yes' if crc.match else 'no'}")
        if not crc.match:
            log.warning("CRC-32 mismatch, output differs from what was sent")

        result = DumpResult(cfg.length, crc)
        if cfg.check_output:
            self._print("Checking output file...")
            result.validation = check_output(self.image.data, cfg.length,
                                             cfg.boot_image)
            if result.validation.ok:
                self._print("Success!")
        return result


def run_dump(config, transport_factory=open_transport,
             progress_stream=None, out=None) -> DumpResult:
    """Run a complete dump described by `config`.  Raises DumpError."""
    print(f"Waiting to read {config.length} bytes...",
          file=sys.stdout if out is None else out)
    with DumpSession(config, transport_factory, progress_stream, out) as session:
        return session.run()
