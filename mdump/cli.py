"""
mdump – receive a memory dump from the boot-sector dumper.

Usage:  mdump [options] (-s | /serial/path) output_file output_file_length
"""

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import (DEFAULT_BAUDRATE, DEFAULT_BOOT_IMAGE, DEFAULT_TCP_HOST,
                     DEFAULT_TCP_PORT, DumpConfig, parse_length)
from .errors import DumpError, TransportError
from .session import run_dump
from .transport import available_ports

EPILOG = """\
Example:
  # Dumps 4M listening to a socket:
  mdump -s dump4M.img $((4<<20))

  # Dumps 4M using a serial cable:
  mdump /dev/ttyUSB0 dump4M.img $((4<<20))

Note:
  <output_file_length> must be divisible by 4!!
"""


def build_parser():
    parser = argparse.ArgumentParser(
        prog="mdump",
        description="Receive a memory dump over a serial line or TCP",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument(
        "-s", "--socket", action="store_true",
        help=f"Use a TCP connection, listening to {DEFAULT_TCP_PORT}")
    parser.add_argument(
        "device", nargs="?",
        help="Serial device path, like /dev/ttyUSB0")
    parser.add_argument("output", help="Output file")
    parser.add_argument(
        "length",
        help="Amount of bytes to dump (multiple of 4, decimal or 0x hex)")
    parser.add_argument(
        "--host", default=DEFAULT_TCP_HOST,
        help=f"Listen address with -s (default: {DEFAULT_TCP_HOST})")
    parser.add_argument(
        "--port", "-p", type=int, default=DEFAULT_TCP_PORT,
        help=f"Listen port with -s (default: {DEFAULT_TCP_PORT})")
    parser.add_argument(
        "--baud", "-b", type=int, default=DEFAULT_BAUDRATE,
        help=f"Serial baud rate (default: {DEFAULT_BAUDRATE})")
    parser.add_argument(
        "--boot-image", default=DEFAULT_BOOT_IMAGE,
        help="Boot sector the dumper was built as, used to decide whether "
             f"the output can be checked (default: {DEFAULT_BOOT_IMAGE})")
    parser.add_argument(
        "--no-check", action="store_true",
        help="Skip the boot sector / A20 checks (e.g. for BIOS dumps)")
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = DumpConfig(
            output=Path(args.output),
            length=parse_length(args.length),
            device=args.device,
            socket=args.socket,
            host=args.host,
            port=args.port,
            baudrate=args.baud,
            boot_image=Path(args.boot_image) if args.boot_image else None,
            check_output=not args.no_check,
        )
    except DumpError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Try 'mdump --help' for usage.", file=sys.stderr)
        sys.exit(1)

    try:
        run_dump(config)
    except KeyboardInterrupt:
        print("\nAborted by user", file=sys.stderr)
        sys.exit(130)
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        if not config.socket:
            ports = available_ports()
            if ports:
                print("Available ports:", file=sys.stderr)
                for device, description in ports:
                    print(f"  {device}  {description}", file=sys.stderr)
        sys.exit(1)
    except DumpError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
