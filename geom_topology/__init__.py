"""
GEOM Topology

This module decodes the FreeBSD GEOM configuration (the kern.geom.confxml
sysctl) into a strongly-typed, read-only graph of disks, partitions, labels
and device nodes.
"""

from . import raw
from .errors import DecodeError, GeomError, GraphError, ParseError, ScanError, SysctlError
from .graph import Graph, decode_graph, scan_ptr
from .models import (
    DiskMetadata,
    Edge,
    EdgeId,
    EdgeMetadata,
    Geom,
    GeomClass,
    LabelMetadata,
    Mode,
    NodeId,
    PartEntryMetadata,
    PartMetadata,
    PartScheme,
    PartState,
)
from .sysctl import GeomSysctl, get_confxml, get_graph, get_mesh

__version__ = "0.1.0"
__all__ = [
    "raw",
    "GeomError", "SysctlError", "DecodeError", "ParseError", "ScanError", "GraphError",
    "Graph", "decode_graph", "scan_ptr",
    "NodeId", "EdgeId", "Geom", "GeomClass", "PartMetadata", "PartScheme", "PartState",
    "Mode", "Edge", "EdgeMetadata", "DiskMetadata", "PartEntryMetadata", "LabelMetadata",
    "GeomSysctl", "get_confxml", "get_mesh", "get_graph",
]
