#!/usr/bin/env python3
"""Tests for decoding a raw mesh into a Graph."""

import logging

import pytest

import geom_topology.graph as graph_module
from geom_topology import raw
from geom_topology.errors import GraphError, ParseError, ScanError
from geom_topology.graph import Graph, decode_graph, modes_compatible, scan_ptr
from geom_topology.models import (
    DiskMetadata,
    GeomClass,
    LabelMetadata,
    Mode,
    PartEntryMetadata,
    PartScheme,
    PartState,
)

from tests.fixtures.mesh_fixtures import (
    EMPTY_CONFIG,
    LABEL_PROVIDER_CONFIG,
    PART_GEOM_CONFIG,
    PART_PROVIDER_CONFIG,
    chain_xml,
)

DISK_ADA0 = 0xfffff80003a4c100
MD_MD0 = 0xfffff80003b00100
PART_ADA0 = 0xfffff80003d00100
LABEL_ADA0P1 = 0xfffff80003e00100


def decode(xml: str, **kwargs) -> Graph:
    return decode_graph(raw.parse_xml(xml), **kwargs)


class TestScanPtr:
    """Hex pointer decoding."""

    @pytest.mark.parametrize("value", ["0x0", "0x1", "0xfffff80003a4c100", "0xffffffffffffffff", "deadbeef"])
    def test_round_trip(self, value):
        ptr = scan_ptr(value)
        assert int(hex(ptr), 16) == ptr
        assert hex(ptr) == hex(int(value, 16))

    def test_case_insensitive(self):
        assert scan_ptr("0xFFFFF80003A4C100") == scan_ptr("0xfffff80003a4c100")
        assert scan_ptr("0XAB") == 0xab

    @pytest.mark.parametrize("value", ["", "0x", "0xzz", "ada0p1", "-0x1", "0x1 0x2"])
    def test_malformed(self, value):
        with pytest.raises(ScanError):
            scan_ptr(value)

    def test_overflow(self):
        with pytest.raises(ScanError, match="64 bits"):
            scan_ptr("0x1ffffffffffffffff")


class TestMinimalChain:
    """One DISK geom providing to one DEV geom."""

    def test_two_node_chain(self):
        graph = decode(chain_xml())

        assert len(graph.nodes) == 2
        assert list(graph.edges) == [(0x21, 0x11)]
        assert graph.nodes[0x1].geom_class is GeomClass.DISK
        assert graph.nodes[0x2].geom_class is GeomClass.DEV
        assert [node_id for node_id, _ in graph.roots_iter()] == [0x1]

    def test_decode_does_not_log(self, caplog):
        with caplog.at_level(logging.DEBUG):
            decode(chain_xml())
        assert caplog.records == []

    def test_edge_fields(self):
        graph = decode(chain_xml())
        edge = graph.edges[(0x21, 0x11)]

        assert edge.name == "ada0"
        assert edge.mode == Mode(read=1, write=1, exclusive=1)
        assert edge.mediasize == 1000204886016
        assert edge.sectorsize == 512
        assert edge.stripesize == 4096
        assert edge.stripeoffset == 0
        assert edge.consumer_geom == 0x2
        assert edge.provider_geom == 0x1
        assert edge.metadata == DiskMetadata(
            fwheads=16, fwsectors=63, rotationrate=7200,
            ident="WD-WCC4N0123456", lunid="50014ee2b5a1c2d3", descr="WDC WD10EFRX-68FYTN0",
        )

    def test_adjacency(self):
        graph = decode(chain_xml())
        assert graph.inedges[0x1] == ((0x21, 0x11),)
        assert graph.outedges[0x2] == ((0x21, 0x11),)
        assert 0x1 not in graph.outedges
        assert 0x2 not in graph.inedges


class TestModePolicy:
    """Consumer and provider access modes must agree."""

    def test_mismatch_rejected(self):
        with pytest.raises(GraphError, match="mode"):
            decode(chain_xml(consumer_mode="r1w1e1", provider_mode="r0w0e0"))

    def test_idle_consumer_accepted_by_default(self):
        graph = decode(chain_xml(consumer_mode="r0w0e0", provider_mode="r1w1e1"))
        edge = graph.edges[(0x21, 0x11)]
        # The edge carries the provider's mode
        assert str(edge.mode) == "r1w1e1"

    def test_idle_consumer_rejected_when_strict(self):
        with pytest.raises(GraphError, match="mode"):
            decode(chain_xml(consumer_mode="r0w0e0", provider_mode="r1w1e1"), allow_idle_consumers=False)

    def test_equal_modes_accepted_when_strict(self):
        graph = decode(chain_xml(), allow_idle_consumers=False)
        assert len(graph.edges) == 1

    def test_modes_compatible(self):
        assert modes_compatible("r1w0e0", "r1w0e0")
        assert modes_compatible("r0w0e0", "r2w2e1")
        assert not modes_compatible("r0w0e0", "r2w2e1", allow_idle_consumers=False)
        assert not modes_compatible("r1w1e1", "r0w0e0")

    def test_malformed_provider_mode(self):
        with pytest.raises(ScanError, match="mode"):
            decode(chain_xml(consumer_mode="rw", provider_mode="rw"))


class TestInvariantViolations:
    """Broken references and missing class fields abort the decode."""

    def test_dangling_provider_reference(self):
        with pytest.raises(GraphError, match="unknown provider"):
            decode(chain_xml(provider_ref="0x99"))

    def test_unrecognized_class_name(self, monkeypatch):
        mesh = raw.parse_xml(chain_xml(parent_class="BOGUS"))
        created = []
        real_geom = graph_module.Geom

        def recording_geom(*args, **kwargs):
            created.append(kwargs)
            return real_geom(*args, **kwargs)

        monkeypatch.setattr(graph_module, "Geom", recording_geom)
        with pytest.raises(ParseError, match="BOGUS"):
            decode_graph(mesh)
        # Fails before any geom of the class is materialized
        assert created == []

    def test_malformed_geom_id(self):
        xml = chain_xml().replace('<geom id="0x1">', '<geom id="0xnope">')
        with pytest.raises(ScanError, match="0xnope"):
            decode(xml)

    def test_provider_of_unknown_geom(self):
        xml = chain_xml().replace('<provider id="0x11">\n        <geom ref="0x1"/>',
                                  '<provider id="0x11">\n        <geom ref="0x77"/>')
        with pytest.raises(GraphError, match="unknown geom"):
            decode(xml)

    def test_consumer_of_unknown_geom(self):
        xml = chain_xml().replace('<consumer id="0x21">\n        <geom ref="0x2"/>',
                                  '<consumer id="0x21">\n        <geom ref="0x78"/>')
        with pytest.raises(GraphError, match="unknown geom"):
            decode(xml)

    def test_duplicate_pairs_collapse(self):
        xml = chain_xml()
        start = xml.index('      <consumer id="0x21">')
        end = xml.index("</consumer>", start) + len("</consumer>\n")
        xml = xml[:end] + xml[start:end] + xml[end:]
        assert xml.count('<consumer id="0x21">') == 2

        graph = decode(xml)
        assert list(graph.edges) == [(0x21, 0x11)]
        assert graph.inedges[0x1] == ((0x21, 0x11),)
        assert graph.outedges[0x2] == ((0x21, 0x11),)

    def test_disk_provider_missing_field(self):
        config = "<config><fwheads>16</fwheads><fwsectors>63</fwsectors></config>"
        with pytest.raises(GraphError, match="rotationrate"):
            decode(chain_xml(provider_config=config))

    def test_part_geom_without_config(self):
        xml = chain_xml(parent_class="PART", provider_config=PART_PROVIDER_CONFIG,
                        parent_geom_config="")
        with pytest.raises(GraphError, match="no config"):
            decode(xml)

    def test_part_geom_missing_field(self):
        config = PART_GEOM_CONFIG.replace("<entries>128</entries>", "")
        xml = chain_xml(parent_class="PART", provider_config=PART_PROVIDER_CONFIG,
                        parent_geom_config=config)
        with pytest.raises(GraphError, match="entries"):
            decode(xml)

    @pytest.mark.parametrize("old,new", [
        ("<scheme>GPT</scheme>", "<scheme>ZFS</scheme>"),
        ("<state>OK</state>", "<state>DEGRADED</state>"),
    ])
    def test_part_geom_unknown_enum(self, old, new):
        config = PART_GEOM_CONFIG.replace(old, new)
        xml = chain_xml(parent_class="PART", provider_config=PART_PROVIDER_CONFIG,
                        parent_geom_config=config)
        with pytest.raises(ParseError):
            decode(xml)

    def test_part_provider_missing_field(self):
        config = PART_PROVIDER_CONFIG.replace("<type>freebsd-boot</type>", "")
        xml = chain_xml(parent_class="PART", provider_config=config,
                        parent_geom_config=PART_GEOM_CONFIG)
        with pytest.raises(GraphError, match="type"):
            decode(xml)

    def test_label_provider_missing_field(self):
        config = LABEL_PROVIDER_CONFIG.replace("<seclength>2048</seclength>", "")
        with pytest.raises(GraphError, match="seclength"):
            decode(chain_xml(parent_class="LABEL", provider_config=config))


class TestMetadataVariants:
    """The parent geom's class selects the edge metadata."""

    def test_part_parent(self):
        xml = chain_xml(parent_class="PART", provider_config=PART_PROVIDER_CONFIG,
                        parent_geom_config=PART_GEOM_CONFIG)
        graph = decode(xml)
        meta = graph.edges[(0x21, 0x11)].metadata
        assert isinstance(meta, PartEntryMetadata)
        assert meta.type == "freebsd-boot"
        assert meta.label is None
        assert meta.efimedia is None

    def test_part_node_metadata(self):
        xml = chain_xml(parent_class="PART", provider_config=PART_PROVIDER_CONFIG,
                        parent_geom_config=PART_GEOM_CONFIG)
        part = decode(xml).nodes[0x1]
        assert part.metadata.scheme is PartScheme.GPT
        assert part.metadata.state is PartState.OK
        assert part.metadata.last == 1953525127
        assert part.metadata.modified is False

    @pytest.mark.parametrize("parent_class", ["LABEL", "Flashmap"])
    def test_slice_parents(self, parent_class):
        graph = decode(chain_xml(parent_class=parent_class, provider_config=LABEL_PROVIDER_CONFIG))
        meta = graph.edges[(0x21, 0x11)].metadata
        assert isinstance(meta, LabelMetadata)
        assert meta.kind is GeomClass.LABEL
        assert meta.seclength == 2048

    @pytest.mark.parametrize("parent_class", ["MD", "DEV", "VFS", "SWAP", "RAID", "FD"])
    def test_other_parents_have_no_metadata(self, parent_class):
        graph = decode(chain_xml(parent_class=parent_class, provider_config=EMPTY_CONFIG))
        assert graph.edges[(0x21, 0x11)].metadata is None

    def test_non_part_geoms_have_no_metadata(self, sample_graph):
        for geom in sample_graph.nodes.values():
            if geom.geom_class is GeomClass.PART:
                assert geom.metadata is not None
            else:
                assert geom.metadata is None


class TestSampleGraph:
    """Properties of the decoded sample snapshot."""

    def test_counts(self, sample_graph):
        assert len(sample_graph.nodes) == 10
        assert len(sample_graph.edges) == 8

    def test_roots(self, sample_graph):
        roots = list(sample_graph.roots_iter())
        assert [node_id for node_id, _ in roots] == [DISK_ADA0, MD_MD0]
        for _, root in roots:
            assert root.geom_class in (GeomClass.DISK, GeomClass.MD)
            assert root.rank == 1
            assert root.is_root

    def test_only_roots_are_rank_one(self, sample_graph):
        root_ids = {node_id for node_id, _ in sample_graph.roots_iter()}
        for node_id, geom in sample_graph.nodes.items():
            assert geom.is_root == (node_id in root_ids)

    def test_roots_iter_is_restartable(self, sample_graph):
        assert list(sample_graph.roots_iter()) == list(sample_graph.roots_iter())

    def test_edge_ids_are_ordered(self, sample_graph):
        edge_ids = list(sample_graph.edges)
        assert edge_ids == sorted(edge_ids)

    def test_adjacency_symmetry(self, sample_graph):
        for edge_id, edge in sample_graph.edges.items():
            assert edge_id in sample_graph.inedges[edge.provider_geom]
            assert edge_id in sample_graph.outedges[edge.consumer_geom]
            for node_id, edge_ids in sample_graph.inedges.items():
                if node_id != edge.provider_geom:
                    assert edge_id not in edge_ids
            for node_id, edge_ids in sample_graph.outedges.items():
                if node_id != edge.consumer_geom:
                    assert edge_id not in edge_ids

    def test_metadata_matches_parent_class(self, sample_graph):
        expected = {
            GeomClass.DISK: GeomClass.DISK,
            GeomClass.PART: GeomClass.PART,
            GeomClass.LABEL: GeomClass.LABEL,
            GeomClass.Flashmap: GeomClass.LABEL,
        }
        for edge in sample_graph.edges.values():
            parent = sample_graph.nodes[edge.provider_geom]
            if parent.geom_class in expected:
                assert edge.metadata.kind is expected[parent.geom_class]
            else:
                assert edge.metadata is None

    def test_disk_children(self, sample_graph):
        children = list(sample_graph.child_geoms_iter(DISK_ADA0))
        assert [(child.geom_class, child.name) for _, _, child in children] == [
            (GeomClass.DEV, "ada0"),
            (GeomClass.PART, "ada0"),
        ]
        for _, edge, _ in children:
            assert edge.metadata.descr == "Samsung SSD 860 EVO 500GB"
            assert edge.metadata.is_ssd

    def test_part_children(self, sample_graph):
        edges = list(sample_graph.child_edges_iter(PART_ADA0))
        assert [edge.name for _, edge in edges] == ["ada0p1", "ada0p2", "ada0p1", "ada0p2"]
        efi = edges[0][1].metadata
        assert efi.type == "efi"
        assert efi.label == "efiboot0"
        assert efi.rawtype == "c12a7328-f81f-11d2-ba4b-00a0c93ec93b"

        children = [child for _, _, child in sample_graph.child_geoms_iter(PART_ADA0)]
        assert [child.geom_class for child in children] == [
            GeomClass.DEV, GeomClass.DEV, GeomClass.LABEL, GeomClass.SWAP,
        ]

    def test_label_children(self, sample_graph):
        (_, edge, child), = sample_graph.child_geoms_iter(LABEL_ADA0P1)
        assert edge.name == "gpt/efiboot0"
        assert edge.metadata == LabelMetadata(index=0, offset=0, length=272629760, seclength=532480, secoffset=0)
        assert child.name == "gpt/efiboot0"

    def test_leaf_has_no_children(self, sample_graph):
        dev_ada0 = 0xfffff80003c00100
        assert list(sample_graph.child_edgeids_iter(dev_ada0)) == []
        assert list(sample_graph.child_edges_iter(dev_ada0)) == []
        assert list(sample_graph.child_geoms_iter(dev_ada0)) == []

    def test_unknown_node_has_no_children(self, sample_graph):
        assert list(sample_graph.child_edgeids_iter(0x12345)) == []

    def test_md_edge_has_no_metadata(self, sample_graph):
        (_, edge), = sample_graph.child_edges_iter(MD_MD0)
        assert edge.metadata is None
        assert edge.mediasize == 67108864

    def test_decode_is_idempotent(self, sample_mesh):
        first = decode_graph(sample_mesh)
        second = decode_graph(sample_mesh)
        assert dict(first.nodes) == dict(second.nodes)
        assert dict(first.edges) == dict(second.edges)
        assert dict(first.inedges) == dict(second.inedges)
        assert dict(first.outedges) == dict(second.outedges)

    def test_document_order_does_not_change_result(self, sample_mesh, sample_graph):
        sample_mesh.classes.reverse()
        for geom_class in sample_mesh.classes:
            geom_class.geoms.reverse()
        reordered = decode_graph(sample_mesh)
        assert list(reordered.edges) == list(sample_graph.edges)
        assert dict(reordered.inedges) == dict(sample_graph.inedges)

    def test_graph_is_read_only(self, sample_graph):
        with pytest.raises(TypeError):
            sample_graph.nodes[0x1] = None
        with pytest.raises(AttributeError):
            sample_graph.edges = {}
        edge = next(iter(sample_graph.edges.values()))
        with pytest.raises(AttributeError):
            edge.name = "renamed"

    def test_to_dict(self, sample_graph):
        data = sample_graph.to_dict()
        assert data["roots"] == [hex(DISK_ADA0), hex(MD_MD0)]
        assert data["nodes"][hex(PART_ADA0)]["metadata"]["scheme"] == "GPT"
        assert len(data["edges"]) == 8
