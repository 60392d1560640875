"""MAC-grid incompressible fluid simulation on warp."""

import logging

from .core.box import Box
from .core.lattice import LatticeCoord
from .core.mac_grid import (
    CELL_FREE,
    CELL_SIMULATE,
    CELL_SINK,
    CELL_SOLID,
    CELL_SOURCE,
    DuplicateSourceError,
    MacGrid,
    OutOfGridError,
    StaleBufferError,
)
from .core.simulation import SimulationController
from .core.source import Source
from .scene_parser import SceneParser, load_scene
from .solvers.mac_simulator import MacSimulator

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Grid
    "MacGrid",
    "LatticeCoord",
    "Box",
    "Source",
    "CELL_FREE",
    "CELL_SIMULATE",
    "CELL_SOLID",
    "CELL_SOURCE",
    "CELL_SINK",
    # Errors
    "OutOfGridError",
    "DuplicateSourceError",
    "StaleBufferError",
    # Simulation
    "MacSimulator",
    "SimulationController",
    # Configuration
    "SceneParser",
    "load_scene",
]
