"""Exceptions raised while acquiring and decoding the GEOM mesh"""

from typing import Optional


class GeomError(Exception):
    """Base exception for the geom_topology package

    ``str()`` renders the error kind, followed by the detail when one is given
    (e.g. ``"Scan: invalid pointer '0xzz'"``).
    """

    kind = "GeomError"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(detail)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.kind}: {self.detail}"
        return self.kind


class SysctlError(GeomError):
    """Raised when the confxml sysctl cannot be read"""

    kind = "Sysctl"


class DecodeError(GeomError):
    """Raised when the XML text does not match the mesh schema"""

    kind = "Decode"


class ParseError(GeomError):
    """Raised when a value is not a member of the expected enumeration"""

    kind = "Parse"


class ScanError(GeomError):
    """Raised when a hex pointer or mode string is malformed"""

    kind = "Scan"


class GraphError(GeomError):
    """Raised when a graph invariant is violated

    Dangling consumer/provider references, missing class-specific fields and
    consumer/provider access mode mismatches all end up here.
    """

    kind = "GraphError"
