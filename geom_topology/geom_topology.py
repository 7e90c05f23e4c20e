"""Main GeomTopology class"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import ConfigManager
from .errors import GeomError
from .graph import Graph, decode_graph
from .models import DiskMetadata, Edge, Geom, NodeId, PartEntryMetadata
from .raw import parse_xml


class GeomTopology:
    """Main class for the GEOM Topology tool

    Reads the GEOM XML snapshot (from sysctl or a file), decodes it into a
    Graph and prints it as a tree, a table of roots or JSON.
    """

    def __init__(self):
        """Initialize the GeomTopology instance"""
        # Options
        self.json_output = False
        self.long_output = False
        self.roots_only = False
        self.verbose = False
        self.quiet = False
        self.xml_file: Optional[str] = None
        self.config_file = "./geom_topology.conf"

        # Components (initialized later)
        self.logger = self._setup_logger()
        self.config_manager: Optional[ConfigManager] = None

        # Data
        self.graph: Optional[Graph] = None

    def _setup_logger(self) -> logging.Logger:
        """Set up the logger for the application"""
        logger = logging.getLogger("geom-topology")
        logger.setLevel(logging.INFO)

        if not logger.handlers:
            ch = logging.StreamHandler()
            ch.setLevel(logging.INFO)

            formatter = logging.Formatter('[%(levelname)s] %(message)s')
            ch.setFormatter(formatter)

            logger.addHandler(ch)

        return logger

    def parse_arguments(self, argv: Optional[List[str]] = None) -> None:
        """Parse command line arguments"""
        parser = argparse.ArgumentParser(
            description="Displays the FreeBSD GEOM storage topology as a forest of disks, partitions and devices."
        )

        parser.add_argument("-f", "--file", metavar="PATH",
                            help="Read the GEOM XML from a file instead of kern.geom.confxml")
        parser.add_argument("-c", "--config", metavar="PATH", default=self.config_file,
                            help="Path to the YAML configuration file")
        parser.add_argument("-j", "--json", action="store_true", help="Output results in JSON format")
        parser.add_argument("-l", "--long", action="store_true", help="Display sizes and metadata in the tree")
        parser.add_argument("--roots", action="store_true", help="Only list the root geoms")
        parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
        parser.add_argument("-q", "--quiet", action="store_true", help="Suppress INFO messages")

        args = parser.parse_args(argv)

        # Set instance variables
        self.xml_file = args.file
        self.config_file = args.config
        self.json_output = args.json
        self.long_output = args.long
        self.roots_only = args.roots
        self.verbose = args.verbose
        self.quiet = args.quiet

        # Configure logger
        if self.verbose:
            level = logging.DEBUG
        elif self.quiet:
            level = logging.WARNING
        else:
            level = logging.INFO
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    def load_graph(self) -> Graph:
        """Acquire the XML snapshot and decode it

        Raises:
            GeomError: If the snapshot cannot be read or decoded
        """
        if self.xml_file:
            self.logger.info(f"Reading GEOM configuration from {self.xml_file}")
            try:
                with open(self.xml_file, 'rb') as f:
                    xml = f.read()
            except OSError as e:
                raise GeomError(f"cannot read {self.xml_file}: {e}") from e
        else:
            reader = self.config_manager.create_sysctl()
            if not reader.is_available():
                self.logger.warning(f"{reader.command} not found in PATH")
            self.logger.info(f"Reading GEOM configuration from {reader.name}")
            xml = reader.read()

        mesh = parse_xml(xml)
        graph = decode_graph(mesh, allow_idle_consumers=self.config_manager.allow_idle_consumers)
        self.logger.info(f"Found {len(graph.nodes)} geoms and {len(graph.edges)} edges")
        return graph

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Main entry point for the application"""
        self.parse_arguments(argv)

        self.config_manager = ConfigManager(self.config_file, logger=self.logger)
        self.graph = self.load_graph()

        if self.json_output:
            print(json.dumps(self.graph.to_dict(), indent=2))
        elif self.roots_only:
            self._display_roots()
        else:
            self._display_tree()

    def _display_roots(self) -> None:
        """Display the roots of the forest as a table"""
        headers = ["ID", "Class", "Name", "Size", "Description"]
        table_data = []

        for node_id, geom in self.graph.roots_iter():
            # A root's own provider carries the disk identity
            edges = [self.graph.edges[e] for e in self.graph.child_edgeids_iter(node_id)]
            size = _format_size(edges[0].mediasize) if edges else "-"
            descr = "-"
            if edges and isinstance(edges[0].metadata, DiskMetadata):
                descr = edges[0].metadata.descr
            table_data.append([hex(node_id), geom.geom_class.value, geom.name, size, descr])

        self._print_table(headers, table_data)

    def _display_tree(self) -> None:
        """Display every tree of the forest, roots first"""
        for node_id, geom in self.graph.roots_iter():
            print(self._format_geom(geom))
            self._display_children(node_id, 1)

    def _display_children(self, node_id: NodeId, depth: int) -> None:
        for _, edge, child in self.graph.child_geoms_iter(node_id):
            child_depth = depth
            if not self.config_manager.is_hidden(child.geom_class.value):
                print("    " * depth + f"{edge.name} -> {self._format_geom(child)}" + self._format_edge(edge))
                child_depth = depth + 1
            self._display_children(edge.consumer_geom, child_depth)

    def _format_geom(self, geom: Geom) -> str:
        line = f"{geom.geom_class.value} {geom.name}"
        if self.long_output and geom.metadata is not None:
            meta = geom.metadata
            line += f" [{meta.scheme.value} {meta.state.value}, {meta.entries} entries]"
        return line

    def _format_edge(self, edge: Edge) -> str:
        if not self.long_output:
            return ""
        details = f" ({_format_size(edge.mediasize)}, {edge.mode}"
        meta = edge.metadata
        if isinstance(meta, DiskMetadata):
            details += f", {meta.descr}, ident {meta.ident}"
        elif isinstance(meta, PartEntryMetadata):
            details += f", {meta.type}"
            if meta.label:
                details += f", label {meta.label}"
        return details + ")"

    def _print_table(self, headers: List[str], data: List[List[str]]) -> None:
        """Print a formatted table"""
        # Calculate column widths
        widths = [len(h) for h in headers]
        for row in data:
            for i, val in enumerate(row):
                if i < len(widths):
                    widths[i] = max(widths[i], len(str(val)))

        # Print header
        header_parts = [h.ljust(widths[i]) for i, h in enumerate(headers)]
        header_line = "  ".join(header_parts)
        print("-" * len(header_line))
        print(header_line)
        print("-" * len(header_line))

        # Print data
        for row in data:
            row_parts = [str(val).ljust(widths[i]) for i, val in enumerate(row)]
            print("  ".join(row_parts))

        print("-" * len(header_line))


def _format_size(size: int) -> str:
    """Format a byte count with a binary unit suffix"""
    value = float(size)
    for unit in ("B", "K", "M", "G", "T"):
        if value < 1024 or unit == "T":
            break
        value /= 1024
    if unit == "B":
        return f"{size}B"
    return f"{value:.1f}{unit}"


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point"""
    app = GeomTopology()
    try:
        app.run(argv)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except GeomError as e:
        app.logger.error(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
