"""Host side of the x86 boot-sector memory dumper."""

__version__ = "0.1.0"
