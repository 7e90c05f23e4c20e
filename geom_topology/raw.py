"""Raw GEOM mesh records

This is the uncleaned result of parsing the ``kern.geom.confxml`` XML. It
mirrors the document structure one record per element and performs no
semantic checks: identifiers and references stay strings, and every
class-specific config field is optional. You probably want
``geom_topology.graph.decode_graph`` on top of it instead.

Example document shape::

    <mesh>
      <class id="0xffffffff81234567">
        <name>DISK</name>
        <geom id="0xfffff80003a4c100">
          <class ref="0xffffffff81234567"/>
          <name>ada0</name>
          <rank>1</rank>
          <config></config>
          <provider id="0xfffff80003a4bd00">
            <geom ref="0xfffff80003a4c100"/>
            <mode>r1w1e3</mode>
            <name>ada0</name>
            ...
          </provider>
        </geom>
      </class>
    </mesh>
"""

from dataclasses import dataclass, field
from typing import List, Optional, Type, TypeVar, Union
from xml.etree.ElementTree import Element

import defusedxml.ElementTree as ET
from defusedxml import DefusedXmlException

from .errors import DecodeError

T = TypeVar("T")


def _child(elem: Element, tag: str) -> Element:
    """Return the first child element named ``tag`` or fail"""
    child = elem.find(tag)
    if child is None:
        raise DecodeError(f"<{elem.tag}> is missing required element <{tag}>")
    return child


def _attr(elem: Element, name: str) -> str:
    value = elem.get(name)
    if value is None:
        raise DecodeError(f"<{elem.tag}> is missing required attribute '{name}'")
    return value


def _ref(elem: Element, tag: str) -> str:
    """Read the ``ref`` attribute of a reference child like ``<geom ref="0x.."/>``"""
    return _attr(_child(elem, tag), "ref")


def _text(elem: Element, tag: str) -> str:
    return (_child(elem, tag).text or "").strip()


def _opt_text(elem: Element, tag: str) -> Optional[str]:
    child = elem.find(tag)
    if child is None:
        return None
    return (child.text or "").strip()


_U64_MAX = 2**64 - 1
_U64_DIGITS = len(str(_U64_MAX))


def _to_uint(value: str, tag: str) -> int:
    if not (value.isascii() and value.isdigit()):
        raise DecodeError(f"<{tag}> expected an unsigned integer, got '{value}'")
    # Length check first, int() refuses very long decimal strings
    if len(value) > _U64_DIGITS or int(value) > _U64_MAX:
        raise DecodeError(f"<{tag}> does not fit in 64 bits")
    return int(value)


def _uint(elem: Element, tag: str) -> int:
    return _to_uint(_text(elem, tag), tag)


def _opt_uint(elem: Element, tag: str) -> Optional[int]:
    value = _opt_text(elem, tag)
    if value is None:
        return None
    return _to_uint(value, tag)


def _opt_bool(elem: Element, tag: str) -> Optional[bool]:
    value = _opt_text(elem, tag)
    if value is None:
        return None
    lowered = value.lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise DecodeError(f"<{tag}> expected a boolean, got '{value}'")


@dataclass
class ClassRef:
    """Logical pointer to a ``Class``; shares the namespace of ``Class.id``"""

    ref: str

    @classmethod
    def from_element(cls, elem: Element) -> "ClassRef":
        return cls(ref=_attr(elem, "ref"))


@dataclass
class GeomRef:
    """Logical pointer to a ``Geom``; shares the namespace of ``Geom.id``"""

    ref: str

    @classmethod
    def from_element(cls, elem: Element) -> "GeomRef":
        return cls(ref=_attr(elem, "ref"))


@dataclass
class ProviderRef:
    """Logical pointer to a ``Provider``; shares the namespace of ``Provider.id``"""

    ref: str

    @classmethod
    def from_element(cls, elem: Element) -> "ProviderRef":
        return cls(ref=_attr(elem, "ref"))


@dataclass
class GeomConfig:
    """Key-value metadata of a geom; only PART geoms fill it in"""

    scheme: Optional[str] = None
    entries: Optional[int] = None
    first: Optional[int] = None
    last: Optional[int] = None
    fwsectors: Optional[int] = None
    fwheads: Optional[int] = None
    state: Optional[str] = None       # "OK" or "CORRUPT"
    modified: Optional[bool] = None

    @classmethod
    def from_element(cls, elem: Element) -> "GeomConfig":
        return cls(
            scheme=_opt_text(elem, "scheme"),
            entries=_opt_uint(elem, "entries"),
            first=_opt_uint(elem, "first"),
            last=_opt_uint(elem, "last"),
            fwsectors=_opt_uint(elem, "fwsectors"),
            fwheads=_opt_uint(elem, "fwheads"),
            state=_opt_text(elem, "state"),
            modified=_opt_bool(elem, "modified"),
        )


@dataclass
class ProviderConfig:
    """Key-value metadata of a provider

    The union of the fields every provider class may carry. Which of them are
    present depends on the class of the geom owning the provider.
    """

    # DISK
    fwheads: Optional[int] = None
    fwsectors: Optional[int] = None
    rotationrate: Optional[int] = None
    ident: Optional[str] = None
    lunid: Optional[str] = None
    descr: Optional[str] = None
    # PART
    start: Optional[int] = None
    end: Optional[int] = None
    index: Optional[int] = None
    type: Optional[str] = None
    offset: Optional[int] = None
    length: Optional[int] = None
    label: Optional[str] = None
    rawtype: Optional[str] = None
    rawuuid: Optional[str] = None
    efimedia: Optional[str] = None
    # LABEL (index, offset and length are shared with PART)
    seclength: Optional[int] = None
    secoffset: Optional[int] = None

    @classmethod
    def from_element(cls, elem: Element) -> "ProviderConfig":
        return cls(
            fwheads=_opt_uint(elem, "fwheads"),
            fwsectors=_opt_uint(elem, "fwsectors"),
            rotationrate=_opt_uint(elem, "rotationrate"),
            ident=_opt_text(elem, "ident"),
            lunid=_opt_text(elem, "lunid"),
            descr=_opt_text(elem, "descr"),
            start=_opt_uint(elem, "start"),
            end=_opt_uint(elem, "end"),
            index=_opt_uint(elem, "index"),
            type=_opt_text(elem, "type"),
            offset=_opt_uint(elem, "offset"),
            length=_opt_uint(elem, "length"),
            label=_opt_text(elem, "label"),
            rawtype=_opt_text(elem, "rawtype"),
            rawuuid=_opt_text(elem, "rawuuid"),
            efimedia=_opt_text(elem, "efimedia"),
            seclength=_opt_uint(elem, "seclength"),
            secoffset=_opt_uint(elem, "secoffset"),
        )


@dataclass
class Consumer:
    """Pointer from a geom to the provider of a lower-level geom (an out-edge)"""

    id: str
    geom_ref: GeomRef
    provider_ref: ProviderRef
    mode: str

    @classmethod
    def from_element(cls, elem: Element) -> "Consumer":
        return cls(
            id=_attr(elem, "id"),
            geom_ref=GeomRef(_ref(elem, "geom")),
            provider_ref=ProviderRef(_ref(elem, "provider")),
            mode=_text(elem, "mode"),
        )


@dataclass
class Provider:
    """Object a geom exposes to the consumers of higher-level geoms (an in-edge)"""

    id: str
    geom_ref: GeomRef
    mode: str
    name: str
    mediasize: int
    sectorsize: int
    stripesize: int
    stripeoffset: int
    config: ProviderConfig

    @classmethod
    def from_element(cls, elem: Element) -> "Provider":
        return cls(
            id=_attr(elem, "id"),
            geom_ref=GeomRef(_ref(elem, "geom")),
            mode=_text(elem, "mode"),
            name=_text(elem, "name"),
            mediasize=_uint(elem, "mediasize"),
            sectorsize=_uint(elem, "sectorsize"),
            stripesize=_uint(elem, "stripesize"),
            stripeoffset=_uint(elem, "stripeoffset"),
            config=ProviderConfig.from_element(_child(elem, "config")),
        )


@dataclass
class Geom:
    """A disk, partition table, /dev node or other object of some class

    ``consumers`` point at lower-rank geoms this geom depends on;
    ``providers`` are what this geom exposes to higher-rank geoms. For
    example a PART geom consumes the DISK provider "ada0" and provides
    "ada0p1", "ada0p2", and so on.
    """

    id: str
    class_ref: ClassRef
    name: str
    rank: int
    config: Optional[GeomConfig] = None
    consumers: List[Consumer] = field(default_factory=list)
    providers: List[Provider] = field(default_factory=list)

    @classmethod
    def from_element(cls, elem: Element) -> "Geom":
        config_elem = elem.find("config")
        return cls(
            id=_attr(elem, "id"),
            class_ref=ClassRef(_ref(elem, "class")),
            name=_text(elem, "name"),
            rank=_uint(elem, "rank"),
            config=GeomConfig.from_element(config_elem) if config_elem is not None else None,
            consumers=[Consumer.from_element(c) for c in elem.findall("consumer")],
            providers=[Provider.from_element(p) for p in elem.findall("provider")],
        )


@dataclass
class Class:
    """A GEOM class and all of the geoms belonging to it"""

    id: str
    name: str
    geoms: List[Geom] = field(default_factory=list)

    @classmethod
    def from_element(cls, elem: Element) -> "Class":
        return cls(
            id=_attr(elem, "id"),
            name=_text(elem, "name"),
            geoms=[Geom.from_element(g) for g in elem.findall("geom")],
        )


@dataclass
class Mesh:
    """Top-level structure of a GEOM object graph"""

    classes: List[Class] = field(default_factory=list)

    @classmethod
    def from_element(cls, elem: Element) -> "Mesh":
        if elem.tag != "mesh":
            raise DecodeError(f"expected <mesh> document element, got <{elem.tag}>")
        return cls(classes=[Class.from_element(c) for c in elem.findall("class")])


def _fromstring(xml: Union[str, bytes]) -> Element:
    try:
        return ET.fromstring(xml)
    except ET.ParseError as e:
        raise DecodeError(f"malformed XML: {e}") from e
    except DefusedXmlException as e:
        raise DecodeError(f"forbidden XML construct: {e}") from e


def parse_fragment(xml: Union[str, bytes], record_type: Type[T]) -> T:
    """Parse a single XML element into one of the raw record types

    Args:
        xml: XML text whose document element matches ``record_type``
        record_type: A record class from this module, e.g. ``Provider``

    Returns:
        The decoded record

    Raises:
        DecodeError: If the text is not well-formed or misses required fields
    """
    return record_type.from_element(_fromstring(xml))


def parse_xml(xml: Union[str, bytes]) -> Mesh:
    """Parse a GEOM XML configuration into a ``Mesh``

    Args:
        xml: Contents of the ``kern.geom.confxml`` sysctl

    Returns:
        Mesh: The raw, order-preserving mirror of the document

    Raises:
        DecodeError: If the text is not well-formed or does not match the schema
    """
    return parse_fragment(xml, Mesh)
