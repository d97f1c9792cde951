"""
Exception hierarchy for mdump.

Anything derived from DumpError is fatal to a run: the command line prints
the message to stderr and exits with status 1.  Integrity and structure
findings about the dumped image are never raised, only reported.
"""


class DumpError(Exception):
    """Base class for fatal dump errors."""


class ConfigError(DumpError):
    """Invalid command line or configuration value."""


class TransportError(DumpError):
    """The serial device or TCP connection failed, or was closed."""


class HandshakeError(DumpError):
    """The device never signalled READY, or the length could not be sent."""


class RelayError(DumpError):
    def __init__(self, offset: int, msg: str):
        self.offset = offset
        super().__init__(f"{msg} (at byte {offset})")
