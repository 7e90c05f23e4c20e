#!/usr/bin/env python3
"""
GEOM Topology Tool

This script prints the FreeBSD GEOM storage topology (disks, partition tables,
labels and /dev nodes) read from the kern.geom.confxml sysctl or an XML file.
"""

import sys

from geom_topology.geom_topology import main


if __name__ == "__main__":
    sys.exit(main())
