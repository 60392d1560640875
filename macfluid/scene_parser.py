"""
Scene Parser for macfluid

This module provides a parser for JSON scene files that define the container,
solid regions, sources and sinks of a simulation. The parsed configuration is
handed to the grid once at setup time and never changes afterwards.

Usage:
    from macfluid.scene_parser import SceneParser

    parser = SceneParser("scenes/basic.json")
    config = parser.parse()
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple, Union

from macfluid.core.box import Box
from macfluid.core.source import Source


# =============================================================================
# Flow Schema
# =============================================================================

# Face directions a source can push fluid through, mapped to Source fields.
FLOW_SCHEMA: Dict[str, str] = {
    "right": "flow_right",
    "left": "flow_left",
    "up": "flow_up",
    "down": "flow_down",
    "forward": "flow_forward",
    "backward": "flow_backward",
}


# =============================================================================
# Data Classes for Parsed Configuration
# =============================================================================

@dataclass
class SceneConfig:
    """
    Configuration for the simulated container.

    Attributes:
        container_size: Physical size of the volume (meters)
        step_size: Grid cell size (meters)
        gravity: Gravitational acceleration along y (m/s^2)
        steps_per_frame: Simulation sub-steps per displayed frame
        target_fps: Displayed frames per second, sets the sub-step dt
        cfl_check: Whether to compute and log the CFL number after each frame
        strict_buffers: Reject swapping buffers a stage did not fully write
    """
    container_size: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    step_size: float = 0.1
    gravity: float = -9.81
    steps_per_frame: int = 5
    target_fps: int = 60
    cfl_check: bool = False
    strict_buffers: bool = False


@dataclass
class SolverConfig:
    """
    Configuration for the fluid solver.

    Attributes:
        type: Solver type (e.g., "mac")
        p_iter: Maximum number of pressure solver iterations
        rho: Fluid density (kg/m^3)
        tolerance: Left-over divergence at which the pressure solve stops early
    """
    type: str = "mac"
    p_iter: int = 100
    rho: float = 1.0
    tolerance: float = 0.0


@dataclass
class SimulationConfig:
    """
    Complete simulation configuration parsed from a JSON scene file.

    Attributes:
        scene: Container and stepping settings
        solver: Solver parameters
        solids: Solid regions, clamped to the container
        sources: Cells injecting fluid
        sinks: Positions of cells draining fluid
    """
    scene: SceneConfig
    solver: SolverConfig
    solids: List[Box] = field(default_factory=list)
    sources: List[Source] = field(default_factory=list)
    sinks: List[Tuple[float, float, float]] = field(default_factory=list)


# =============================================================================
# Scene Parser Class
# =============================================================================

class SceneParser:
    """
    Parser for JSON scene configuration files.

    Example:
        >>> parser = SceneParser("scenes/basic.json")
        >>> config = parser.parse()
        >>> print(config.scene.step_size)  # 0.1
        >>> print(config.sources[0].flow_down)
    """

    def __init__(self, filepath: Union[str, Path]):
        """
        Args:
            filepath: Path to the JSON scene file

        Raises:
            FileNotFoundError: If the specified file does not exist
        """
        self.filepath = Path(filepath)

        if not self.filepath.exists():
            raise FileNotFoundError(f"Scene file not found: {self.filepath}")

        self._raw_data: Dict[str, Any] = {}

    def _load_json(self) -> Dict[str, Any]:
        with open(self.filepath, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _parse_vector(self, value: Sequence[float], what: str) -> Tuple[float, float, float]:
        """
        Convert a JSON list to a 3-vector.

        Raises:
            ValueError: If value does not hold exactly three numbers
        """
        if not isinstance(value, (list, tuple)) or len(value) != 3:
            raise ValueError(f"{what} must be a list of 3 numbers, got {value!r}")
        try:
            return tuple(float(c) for c in value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{what} must be a list of 3 numbers, got {value!r}") from e

    def _parse_scene(self, scene_data: Dict[str, Any]) -> SceneConfig:
        scene = SceneConfig(
            container_size  = self._parse_vector(scene_data.get("container_size", [1.0, 1.0, 1.0]), "container_size"),
            step_size       = float(scene_data.get("step_size", 0.1)),
            gravity         = float(scene_data.get("gravity", -9.81)),
            steps_per_frame = int(scene_data.get("steps_per_frame", 5)),
            target_fps      = int(scene_data.get("target_fps", 60)),
            cfl_check       = bool(scene_data.get("cfl_check", False)),
            strict_buffers  = bool(scene_data.get("strict_buffers", False))
        )

        if scene.step_size <= 0.0:
            raise ValueError(f"step_size must be positive, got {scene.step_size}")
        if scene.steps_per_frame < 1 or scene.target_fps < 1:
            raise ValueError("steps_per_frame and target_fps must be at least 1")

        return scene

    def _parse_solver(self, solver_data: Dict[str, Any]) -> SolverConfig:
        return SolverConfig(
            type      = solver_data.get("type", "mac"),
            p_iter    = int(solver_data.get("p_iter", 100)),
            rho       = float(solver_data.get("rho", 1.0)),
            tolerance = float(solver_data.get("tolerance", 0.0))
        )

    def _parse_solid(self, solid_data: Dict[str, Any], container_size) -> Box:
        """
        Parse a solid region and clamp it to the container.
        """
        box = Box(
            min = self._parse_vector(solid_data.get("min"), "solid min"),
            max = self._parse_vector(solid_data.get("max"), "solid max")
        )
        return box.clamped(container_size)

    def _parse_source(self, source_data: Dict[str, Any]) -> Source:
        """
        Parse a source. Flows are given per face direction, missing ones are zero.

        Raises:
            ValueError: If a flow direction is unknown
        """
        flows = source_data.get("flow", {})
        unknown = set(flows) - set(FLOW_SCHEMA)
        if unknown:
            raise ValueError(f"Unknown flow directions: {sorted(unknown)}. "
                             f"Supported directions: {list(FLOW_SCHEMA.keys())}")

        return Source(
            position=self._parse_vector(source_data.get("position"), "source position"),
            **{FLOW_SCHEMA[d]: float(v) for d, v in flows.items()}
        )

    def parse(self) -> SimulationConfig:
        """
        Parse the JSON scene file and return a complete simulation configuration.

        Raises:
            FileNotFoundError: If scene file doesn't exist
            json.JSONDecodeError: If JSON is invalid
            ValueError: If fields are malformed
        """
        self._raw_data = self._load_json()

        scene = self._parse_scene(self._raw_data.get("scene", {}))
        solver = self._parse_solver(self._raw_data.get("solver", {}))

        solids = [
            self._parse_solid(s, scene.container_size)
            for s in self._raw_data.get("solids", [])
        ]
        sources = [
            self._parse_source(s)
            for s in self._raw_data.get("sources", [])
        ]
        sinks = [
            self._parse_vector(s.get("position"), "sink position")
            for s in self._raw_data.get("sinks", [])
        ]

        return SimulationConfig(
            scene=scene,
            solver=solver,
            solids=solids,
            sources=sources,
            sinks=sinks
        )

    def get_raw_data(self) -> Dict[str, Any]:
        """
        Get the raw JSON data after parsing.
        """
        return self._raw_data


# =============================================================================
# Utility Functions
# =============================================================================

def load_scene(filepath: Union[str, Path]) -> SimulationConfig:
    """
    Convenience function to load and parse a scene file in one call.
    """
    parser = SceneParser(filepath)
    return parser.parse()


def get_grid_size(config: SimulationConfig) -> Tuple[int, int, int]:
    """
    Grid dimensions (nx, ny, nz) of a scene, truncated like the grid does.
    """
    step = config.scene.step_size
    return tuple(math.floor(size / step) for size in config.scene.container_size)
