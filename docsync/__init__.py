"""Keep a knowledge pack synchronized with the source tree it references."""

__version__ = "0.1.0"
