#!/usr/bin/env python3

import pytest

from geom_topology import raw
from geom_topology.graph import decode_graph

from tests.fixtures.mesh_fixtures import SAMPLE_XML_PATH


@pytest.fixture
def sample_xml() -> str:
    """GEOM snapshot of a host with one GPT disk and one memory disk"""
    return SAMPLE_XML_PATH.read_text(encoding="utf-8")


@pytest.fixture
def sample_mesh(sample_xml):
    return raw.parse_xml(sample_xml)


@pytest.fixture
def sample_graph(sample_mesh):
    return decode_graph(sample_mesh)
