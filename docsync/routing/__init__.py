"""Routing table parsing and reference handling."""

from .parser import FileMapParser, RoutingTable, RoutingTableError
from .references import REFERENCE_PATTERN, rewrite_references, rewrite_routing_rows

__all__ = [
    "FileMapParser",
    "REFERENCE_PATTERN",
    "RoutingTable",
    "RoutingTableError",
    "rewrite_references",
    "rewrite_routing_rows",
]
