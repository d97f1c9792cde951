"""Run configuration and its validation."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigError

DEFAULT_BAUDRATE = 115200
DEFAULT_TCP_HOST = "0.0.0.0"
DEFAULT_TCP_PORT = 2345
DEFAULT_BOOT_IMAGE = "mdump.img"

# VTIME=10: one second between bytes.
DEFAULT_INTER_BYTE_TIMEOUT = 1.0

MAX_LENGTH = 0xFFFFFFFF


def parse_length(text: str) -> int:
    """Parse a dump length: decimal (leading zeros allowed) or 0x hex."""
    text = text.strip()
    try:
        if text[:2].lower() == "0x":
            length = int(text[2:], 16)
        else:
            length = int(text, 10)
    except ValueError:
        raise ConfigError(f"Invalid output length: {text!r}") from None
    return validate_length(length)


def validate_length(length: int) -> int:
    """Check a dump length: positive, 32-bit and divisible by 4."""
    if length <= 0 or length % 4 != 0:
        raise ConfigError("Output length must be a positive multiple of 4!")
    if length > MAX_LENGTH:
        raise ConfigError(f"Output length must fit in 32 bits (max {MAX_LENGTH})")
    return length


@dataclass(frozen=True)
class DumpConfig:
    output: Path
    length: int
    device: Optional[str] = None
    socket: bool = False
    host: str = DEFAULT_TCP_HOST
    port: int = DEFAULT_TCP_PORT
    baudrate: int = DEFAULT_BAUDRATE
    inter_byte_timeout: Optional[float] = DEFAULT_INTER_BYTE_TIMEOUT
    boot_image: Optional[Path] = Path(DEFAULT_BOOT_IMAGE)
    check_output: bool = True

    def __post_init__(self):
        validate_length(self.length)
        if self.socket and self.device:
            raise ConfigError("Use either -s or a serial device path, not both")
        if not self.socket and not self.device:
            raise ConfigError("A serial device path (or -s) is required")

    @property
    def target(self) -> str:
        if self.socket:
            return f"tcp://{self.host}:{self.port}"
        return self.device
