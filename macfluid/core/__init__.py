"""Grid data structures: lattice coordinates, boxes, sources, interpolation and the MAC grid."""

from .box import Box
from .lattice import LatticeCoord
from .mac_grid import MACGrid3D, MacGrid
from .source import Source

__all__ = ["Box", "LatticeCoord", "MACGrid3D", "MacGrid", "Source"]
