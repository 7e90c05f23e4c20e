"""Acquisition of the GEOM XML snapshot from the running system"""

import logging
import shutil
import subprocess
from typing import List, Optional

from . import raw
from .errors import SysctlError
from .graph import Graph, decode_graph

CONFXML_OID = "kern.geom.confxml"


class GeomSysctl:
    """Reads the GEOM configuration through the sysctl(8) command"""

    def __init__(self, command: str = "sysctl", name: str = CONFXML_OID,
                 timeout: Optional[float] = None, logger: Optional[logging.Logger] = None):
        """Initialize the sysctl reader

        Args:
            command: sysctl binary to run
            name: OID holding the XML snapshot
            timeout: Seconds to wait for the command, None to wait forever
            logger: Logger instance
        """
        self.command = command
        self.name = name
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def is_available(self) -> bool:
        """Check if the sysctl command exists in the system PATH"""
        return shutil.which(self.command) is not None

    def read(self) -> str:
        """Return the XML text of the GEOM configuration

        Raises:
            SysctlError: If the command is missing, fails or returns undecodable output
        """
        cmd: List[str] = [self.command, "-b", self.name]
        self.logger.debug(f"Executing command: {' '.join(cmd)}")

        try:
            output_bytes = subprocess.check_output(cmd, stderr=subprocess.PIPE, timeout=self.timeout)
        except FileNotFoundError as e:
            raise SysctlError(f"command not found: {self.command}") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            raise SysctlError(f"{' '.join(cmd)} exited with status {e.returncode}: {stderr}") from e
        except subprocess.TimeoutExpired as e:
            raise SysctlError(f"{' '.join(cmd)} timed out after {self.timeout} seconds") from e

        try:
            output = output_bytes.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SysctlError(f"{self.name} is not valid UTF-8: {e}") from e

        # Binary sysctl output keeps the C string terminator
        output = output.rstrip("\0")
        if not output.strip():
            raise SysctlError(f"{self.name} returned no data")

        self.logger.debug(f"Read {len(output)} bytes from {self.name}")
        return output


def get_confxml(reader: Optional[GeomSysctl] = None) -> str:
    """Return the contents of the ``kern.geom.confxml`` sysctl"""
    return (reader or GeomSysctl()).read()


def get_mesh(reader: Optional[GeomSysctl] = None) -> raw.Mesh:
    """Return the raw GEOM mesh of the running system"""
    return raw.parse_xml(get_confxml(reader))


def get_graph(reader: Optional[GeomSysctl] = None, allow_idle_consumers: bool = True) -> Graph:
    """Return the decoded GEOM graph of the running system

    Example:
        >>> graph = get_graph()
        >>> for node_id, geom in graph.roots_iter():
        ...     print(geom.name)
    """
    return decode_graph(get_mesh(reader), allow_idle_consumers=allow_idle_consumers)
