"""Data models for the decoded GEOM graph"""

import re
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Tuple, Union

from .errors import ParseError, ScanError

# A unique identifier for a Geom in a Graph (the kernel pointer value)
NodeId = int
# A unique identifier for an Edge in a Graph: (consumer id, provider id)
EdgeId = Tuple[int, int]


class _NamedEnum(Enum):
    """Enum looked up by the exact name used in the XML"""

    @classmethod
    def from_str(cls, value: str):
        try:
            return cls[value]
        except KeyError:
            raise ParseError(f"'{value}' is not a valid {cls.__name__}") from None


class GeomClass(_NamedEnum):
    """The class of a Geom"""

    FD = "FD"                # Floppy disk
    RAID = "RAID"
    DISK = "DISK"            # SATA, NVMe, IDE storage devices
    DEV = "DEV"              # Character device node in /dev
    PART = "PART"            # Partition table (GPT, MBR, ...)
    LABEL = "LABEL"          # Aliases: serial numbers, GPT labels, UFS labels
    VFS = "VFS"
    SWAP = "SWAP"
    Flashmap = "Flashmap"
    MD = "MD"                # Memory disk


class PartScheme(_NamedEnum):
    """Partitioning scheme of a PART geom"""

    APM = "APM"        # Apple Partition Map
    BSD = "BSD"        # FreeBSD disklabel
    BSD64 = "BSD64"    # DragonflyBSD disklabel
    EBR = "EBR"        # Extended Boot Record
    GPT = "GPT"        # GUID Partition Table
    LDM = "LDM"        # Logical Disk Manager
    MBR = "MBR"        # Master Boot Record
    VTOC8 = "VTOC8"    # SPARC Volume Table of Contents


class PartState(_NamedEnum):
    """Consistency of a partition table

    CORRUPT covers a damaged primary or secondary GPT header, inconsistent EBR
    metadata, overlapping partitions and similar problems.
    """

    CORRUPT = "CORRUPT"
    OK = "OK"


_MODE_RE = re.compile(r"^r([0-9]+)w([0-9]+)e([0-9]+)$")
_MODE_COUNT_MAX = 0xFFFF       # Counts are 16-bit


@dataclass(frozen=True)
class Mode:
    """GEOM access reference counts"""

    read: int
    write: int
    exclusive: int

    @classmethod
    def from_str(cls, value: str) -> "Mode":
        """Parse a mode string such as ``r1w1e3``"""
        match = _MODE_RE.match(value)
        if not match:
            raise ScanError(f"invalid access mode '{value}'")
        groups = match.groups()
        if any(len(g) > 5 or int(g) > _MODE_COUNT_MAX for g in groups):
            raise ScanError(f"access mode '{value[:32]}' count out of range")
        read, write, exclusive = (int(g) for g in groups)
        return cls(read=read, write=write, exclusive=exclusive)

    def __str__(self) -> str:
        return f"r{self.read}w{self.write}e{self.exclusive}"


@dataclass(frozen=True)
class PartMetadata:
    """Table-wide metadata of a PART geom"""

    scheme: PartScheme
    entries: int              # Number of partition entries in the table
    first: int                # First allocatable LBA
    last: int                 # Last allocatable LBA
    fwsectors: int            # "S" in CHS geometry
    fwheads: int              # "H" in CHS geometry
    state: PartState
    modified: bool            # Changed in memory but not yet written

    def to_dict(self) -> dict:
        """Convert metadata to dictionary representation"""
        data = asdict(self)
        data["scheme"] = self.scheme.value
        data["state"] = self.state.value
        return data


@dataclass(frozen=True)
class DiskMetadata:
    """Metadata of an edge leaving a DISK geom"""

    fwheads: int
    fwsectors: int
    rotationrate: int         # Zero for solid-state drives
    ident: str                # Serial number or similar identifier
    lunid: str                # Logical unit id, synthesized for non-SCSI devices
    descr: str                # Make and model

    kind = GeomClass.DISK

    @property
    def is_ssd(self) -> bool:
        return self.rotationrate == 0

    def to_dict(self) -> dict:
        return dict(asdict(self), kind=self.kind.value)


@dataclass(frozen=True)
class PartEntryMetadata:
    """Metadata of an edge leaving a PART geom, one per partition entry

    ``type`` is the canonical GEOM alias for the partition type (``"efi"``,
    ``"freebsd-zfs"``, ...); ``rawtype`` is the scheme-specific value it was
    decoded from. The optional fields depend on the partition scheme.
    """

    start: int                # First LBA of the entry
    end: int                  # Last LBA of the entry
    index: int                # Index of the entry in the table
    type: str
    offset: int               # Byte offset of the entry
    length: int               # Length of the entry in bytes
    label: Optional[str] = None
    rawtype: Optional[str] = None
    rawuuid: Optional[str] = None
    efimedia: Optional[str] = None

    kind = GeomClass.PART

    def to_dict(self) -> dict:
        return dict(asdict(self), kind=self.kind.value)


@dataclass(frozen=True)
class LabelMetadata:
    """Metadata of an edge leaving a LABEL or Flashmap geom"""

    index: int
    offset: int
    length: int               # Length of the labeled volume in bytes
    seclength: int            # length / 512
    secoffset: int

    kind = GeomClass.LABEL

    def to_dict(self) -> dict:
        return dict(asdict(self), kind=self.kind.value)


EdgeMetadata = Union[DiskMetadata, PartEntryMetadata, LabelMetadata]


@dataclass(frozen=True)
class Geom:
    """A node in the GEOM forest

    Geom names are not unique. ``rank`` is the depth of the geom in its tree;
    roots have rank 1. Only PART geoms carry ``metadata``.
    """

    geom_class: GeomClass
    name: str
    rank: int
    metadata: Optional[PartMetadata] = None

    @property
    def is_root(self) -> bool:
        return self.rank == 1

    def to_dict(self) -> dict:
        """Convert geom to dictionary representation"""
        return {
            "class": self.geom_class.value,
            "name": self.name,
            "rank": self.rank,
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


@dataclass(frozen=True)
class Edge:
    """A consumer/provider pair connecting a child geom to its parent

    ``name`` comes from the provider and is not the parent geom's name: a PART
    geom "ada0" provides edges named "ada0p1", "ada0p2" and so on.
    """

    name: str
    mode: Mode
    mediasize: int            # Size of the volume in bytes
    sectorsize: int           # Native sector size in bytes
    stripesize: int           # May be zero
    stripeoffset: int
    consumer_geom: NodeId     # Child
    provider_geom: NodeId     # Parent
    metadata: Optional[EdgeMetadata] = None

    def to_dict(self) -> dict:
        """Convert edge to dictionary representation"""
        return {
            "name": self.name,
            "mode": str(self.mode),
            "mediasize": self.mediasize,
            "sectorsize": self.sectorsize,
            "stripesize": self.stripesize,
            "stripeoffset": self.stripeoffset,
            "consumer": hex(self.consumer_geom),
            "provider": hex(self.provider_geom),
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }
