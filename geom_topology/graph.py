"""Decoded GEOM graph

The GEOM subsystem of FreeBSD is the kernel's abstraction of storage
topology. It forms a forest of disconnected trees: the roots are geoms of
class DISK or similar (e.g. MD, a memory disk), and the leaves are DEV geoms
which back the files in /dev.

Edges from a child geom to its parent are "outedges" here; edges from a parent
to its children are "inedges". GEOM itself calls them consumers and
providers.
"""

import re
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from . import raw
from .errors import GraphError, ScanError
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


IDLE_MODE = "r0w0e0"

_PTR_RE = re.compile(r"^(?:0[xX])?([0-9a-fA-F]+)$")
_PTR_MAX = 2 ** 64 - 1


class Graph:
    """Snapshot of the GEOM state of a FreeBSD system

    Holds every geom (``nodes``) and every consumer/provider pair
    (``edges``), plus the adjacency of each geom by edge id: ``outedges``
    where the geom is the consumer, ``inedges`` where it is the provider.
    All four mappings are read-only and ordered by key.
    """

    __slots__ = ("_nodes", "_edges", "_outedges", "_inedges")

    def __init__(self, nodes: Dict[NodeId, Geom], edges: Dict[EdgeId, Edge],
                 outedges: Dict[NodeId, List[EdgeId]], inedges: Dict[NodeId, List[EdgeId]]):
        self._nodes = MappingProxyType(dict(sorted(nodes.items())))
        self._edges = MappingProxyType(dict(sorted(edges.items())))
        self._outedges = MappingProxyType({k: tuple(v) for k, v in sorted(outedges.items())})
        self._inedges = MappingProxyType({k: tuple(v) for k, v in sorted(inedges.items())})

    @property
    def nodes(self) -> Mapping[NodeId, Geom]:
        return self._nodes

    @property
    def edges(self) -> Mapping[EdgeId, Edge]:
        return self._edges

    @property
    def outedges(self) -> Mapping[NodeId, Tuple[EdgeId, ...]]:
        return self._outedges

    @property
    def inedges(self) -> Mapping[NodeId, Tuple[EdgeId, ...]]:
        return self._inedges

    def roots_iter(self) -> Iterator[Tuple[NodeId, Geom]]:
        """Yield ``(node_id, geom)`` for every root (rank 1), by ascending id"""
        for node_id, geom in self._nodes.items():
            if geom.is_root:
                yield node_id, geom

    def child_edgeids_iter(self, node_id: NodeId) -> Iterator[EdgeId]:
        """Yield the id of each edge descending from a geom

        Yields nothing if the geom has no recorded children.
        """
        yield from self._inedges.get(node_id, ())

    def child_edges_iter(self, node_id: NodeId) -> Iterator[Tuple[EdgeId, Edge]]:
        """Yield ``(edge_id, edge)`` for each edge descending from a geom"""
        for edge_id in self.child_edgeids_iter(node_id):
            yield edge_id, self._edges[edge_id]

    def child_geoms_iter(self, node_id: NodeId) -> Iterator[Tuple[EdgeId, Edge, Geom]]:
        """Yield ``(edge_id, edge, child_geom)`` for each child of a geom"""
        for edge_id, edge in self.child_edges_iter(node_id):
            # decode_graph only records edges whose consumer geom exists
            yield edge_id, edge, self._nodes[edge.consumer_geom]

    def to_dict(self) -> dict:
        """Convert graph to dictionary representation, keyed by hex ids"""
        return {
            "roots": [hex(node_id) for node_id, _ in self.roots_iter()],
            "nodes": {hex(node_id): geom.to_dict() for node_id, geom in self._nodes.items()},
            "edges": [
                dict(edge.to_dict(), id=[hex(cid), hex(pid)])
                for (cid, pid), edge in self._edges.items()
            ],
        }

    def __repr__(self) -> str:
        return f"<Graph nodes={len(self._nodes)} edges={len(self._edges)}>"


def scan_ptr(value: str) -> int:
    """Decode a hex pointer string such as ``"0xfffff80003a4c100"``

    Raises:
        ScanError: If the string is not a 64-bit hexadecimal value
    """
    match = _PTR_RE.match(value.strip())
    if not match:
        raise ScanError(f"invalid pointer '{value}'")
    ptr = int(match.group(1), 16)
    if ptr > _PTR_MAX:
        raise ScanError(f"pointer '{value}' does not fit in 64 bits")
    return ptr


def _require(value, field: str, owner: str):
    if value is None:
        raise GraphError(f"{owner} is missing required field '{field}'")
    return value


def _part_metadata(geom: raw.Geom) -> PartMetadata:
    owner = f"PART geom {geom.id} ({geom.name})"
    config = geom.config
    if config is None:
        raise GraphError(f"{owner} has no config")
    return PartMetadata(
        scheme=PartScheme.from_str(_require(config.scheme, "scheme", owner)),
        state=PartState.from_str(_require(config.state, "state", owner)),
        entries=_require(config.entries, "entries", owner),
        first=_require(config.first, "first", owner),
        last=_require(config.last, "last", owner),
        fwsectors=_require(config.fwsectors, "fwsectors", owner),
        fwheads=_require(config.fwheads, "fwheads", owner),
        modified=_require(config.modified, "modified", owner),
    )


def _disk_metadata(provider: raw.Provider) -> DiskMetadata:
    owner = f"DISK provider {provider.id} ({provider.name})"
    config = provider.config
    return DiskMetadata(
        fwheads=_require(config.fwheads, "fwheads", owner),
        fwsectors=_require(config.fwsectors, "fwsectors", owner),
        rotationrate=_require(config.rotationrate, "rotationrate", owner),
        ident=_require(config.ident, "ident", owner),
        lunid=_require(config.lunid, "lunid", owner),
        descr=_require(config.descr, "descr", owner),
    )


def _part_entry_metadata(provider: raw.Provider) -> PartEntryMetadata:
    owner = f"PART provider {provider.id} ({provider.name})"
    config = provider.config
    return PartEntryMetadata(
        start=_require(config.start, "start", owner),
        end=_require(config.end, "end", owner),
        index=_require(config.index, "index", owner),
        type=_require(config.type, "type", owner),
        offset=_require(config.offset, "offset", owner),
        length=_require(config.length, "length", owner),
        # These vary by partition scheme
        label=config.label,
        rawtype=config.rawtype,
        rawuuid=config.rawuuid,
        efimedia=config.efimedia,
    )


def _label_metadata(provider: raw.Provider) -> LabelMetadata:
    owner = f"{provider.name} provider {provider.id}"
    config = provider.config
    return LabelMetadata(
        index=_require(config.index, "index", owner),
        offset=_require(config.offset, "offset", owner),
        length=_require(config.length, "length", owner),
        seclength=_require(config.seclength, "seclength", owner),
        secoffset=_require(config.secoffset, "secoffset", owner),
    )


# Keyed by the class of the geom owning the provider
EDGE_METADATA_DECODERS: Dict[GeomClass, Callable[[raw.Provider], EdgeMetadata]] = {
    GeomClass.DISK: _disk_metadata,
    GeomClass.PART: _part_entry_metadata,
    GeomClass.LABEL: _label_metadata,
    GeomClass.Flashmap: _label_metadata,
}


def modes_compatible(consumer_mode: str, provider_mode: str, allow_idle_consumers: bool = True) -> bool:
    """Check a consumer's access mode against the provider it is attached to

    DEV geoms consume providers with access ``r0w0e0``; with
    ``allow_idle_consumers`` such a consumer matches any provider mode.
    Otherwise the two strings must be equal.
    """
    if consumer_mode == provider_mode:
        return True
    return allow_idle_consumers and consumer_mode == IDLE_MODE


def decode_graph(mesh: raw.Mesh, allow_idle_consumers: bool = True) -> Graph:
    """Convert a raw ``Mesh`` into a strongly-typed ``Graph``

    Args:
        mesh: Raw mesh from ``raw.parse_xml``
        allow_idle_consumers: Accept ``r0w0e0`` consumers on providers of any mode

    Returns:
        Graph: The decoded forest

    Raises:
        ParseError: Unknown class name, partition scheme or partition state
        ScanError: Malformed pointer or access mode
        GraphError: Dangling reference, missing class field or mode mismatch
    """
    nodes: Dict[NodeId, Geom] = {}
    edges: Dict[EdgeId, Edge] = {}
    outedges: Dict[NodeId, List[EdgeId]] = {}
    inedges: Dict[NodeId, List[EdgeId]] = {}

    # First pass: create nodes; collect consumers, providers and their pairs
    consumers: Dict[int, raw.Consumer] = {}
    providers: Dict[int, raw.Provider] = {}
    pairs: Set[EdgeId] = set()

    for geom_class in mesh.classes:
        class_kind = GeomClass.from_str(geom_class.name)

        for geom in geom_class.geoms:
            geom_id = scan_ptr(geom.id)
            metadata: Optional[PartMetadata] = None
            if class_kind is GeomClass.PART:
                metadata = _part_metadata(geom)

            nodes[geom_id] = Geom(
                geom_class=class_kind,
                name=geom.name,
                rank=geom.rank,
                metadata=metadata,
            )

            for consumer in geom.consumers:
                consumer_id = scan_ptr(consumer.id)
                provider_id = scan_ptr(consumer.provider_ref.ref)
                consumers[consumer_id] = consumer
                pairs.add((consumer_id, provider_id))
            for provider in geom.providers:
                providers[scan_ptr(provider.id)] = provider

    # Second pass: create edges in pair order; fill inedges and outedges
    for consumer_id, provider_id in sorted(pairs):
        raw_consumer = consumers.get(consumer_id)
        if raw_consumer is None:
            raise GraphError(f"no consumer with id {hex(consumer_id)}")
        raw_provider = providers.get(provider_id)
        if raw_provider is None:
            raise GraphError(
                f"consumer {raw_consumer.id} references unknown provider {raw_consumer.provider_ref.ref}"
            )

        if not modes_compatible(raw_consumer.mode, raw_provider.mode, allow_idle_consumers):
            raise GraphError(
                f"consumer {raw_consumer.id} mode {raw_consumer.mode} does not match "
                f"provider {raw_provider.id} mode {raw_provider.mode}"
            )

        provider_geom_id = scan_ptr(raw_provider.geom_ref.ref)
        provider_geom = nodes.get(provider_geom_id)
        if provider_geom is None:
            raise GraphError(f"provider {raw_provider.id} references unknown geom {raw_provider.geom_ref.ref}")

        decode_metadata = EDGE_METADATA_DECODERS.get(provider_geom.geom_class)
        metadata = decode_metadata(raw_provider) if decode_metadata else None

        consumer_geom_id = scan_ptr(raw_consumer.geom_ref.ref)
        if consumer_geom_id not in nodes:
            raise GraphError(f"consumer {raw_consumer.id} references unknown geom {raw_consumer.geom_ref.ref}")

        edge_id = (consumer_id, provider_id)
        edges[edge_id] = Edge(
            name=raw_provider.name,
            mode=Mode.from_str(raw_provider.mode),
            mediasize=raw_provider.mediasize,
            sectorsize=raw_provider.sectorsize,
            stripesize=raw_provider.stripesize,
            stripeoffset=raw_provider.stripeoffset,
            consumer_geom=consumer_geom_id,
            provider_geom=provider_geom_id,
            metadata=metadata,
        )
        inedges.setdefault(provider_geom_id, []).append(edge_id)
        outedges.setdefault(consumer_geom_id, []).append(edge_id)

    return Graph(nodes, edges, outedges, inedges)
