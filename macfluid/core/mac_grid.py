"""
MAC (staggered) grid storage.

General information about the grid representation:
- Moving solids are not supported.
- Free surfaces and air cells are not specially marked; everything outside
  the grid is treated as air (CELL_FREE), reads as zero and is never stored.
- Pressure is sampled at cell centers. Velocity components are sampled at
  the center of the cell faces normal to their own axis, one extra plane of
  samples per axis so every cell has all six faces.
- Every float field is double-buffered. Readers use the current buffer,
  stages write the next buffer and swap.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import warp as wp

from macfluid.core.interpolation import lookup, sample_field
from macfluid.core.lattice import (
    BACKWARD, DOWN, FORWARD, LEFT, RIGHT, UP, ZERO, LatticeCoord, iter_range,
)
from macfluid.core.source import Source

logger = logging.getLogger(__name__)

# FREE is cells which are not in the simulation space.
CELL_FREE = wp.constant(-1)
CELL_SIMULATE = wp.constant(0)
CELL_SOLID = wp.constant(1)
CELL_SOURCE = wp.constant(2)
CELL_SINK = wp.constant(3)

VELOCITY_FIELDS = ("velocity_x", "velocity_y", "velocity_z")
BUFFERED_FIELDS = ("pressure",) + VELOCITY_FIELDS

# Stagger axis per field, None for cell-centered
FIELD_AXIS = {
    "pressure": None,
    "velocity_x": 0,
    "velocity_y": 1,
    "velocity_z": 2,
}


class OutOfGridError(IndexError):
    """A setup call referenced a position outside the grid."""


class DuplicateSourceError(ValueError):
    """A second source was registered in an occupied cell."""


class StaleBufferError(RuntimeError):
    """A next buffer was swapped in without being fully written."""


@wp.struct
class MACGrid3D:
    nx: int
    ny: int
    nz: int
    step: float

    # Pressure (Cell Centers)
    pressure:      wp.array3d(dtype=float) # size: nx, ny, nz
    pressure_next: wp.array3d(dtype=float) # size: nx, ny, nz

    # Velocity (Staggered Faces)
    velocity_x:      wp.array3d(dtype=float) # size: nx+1, ny, nz
    velocity_x_next: wp.array3d(dtype=float) # size: nx+1, ny, nz
    velocity_y:      wp.array3d(dtype=float) # size: nx, ny+1, nz
    velocity_y_next: wp.array3d(dtype=float) # size: nx, ny+1, nz
    velocity_z:      wp.array3d(dtype=float) # size: nx, ny, nz+1
    velocity_z_next: wp.array3d(dtype=float) # size: nx, ny, nz+1

    # Classification and projection scratch (Cell Centers)
    cell_type:  wp.array3d(dtype=int)   # size: nx, ny, nz
    divergence: wp.array3d(dtype=float) # size: nx, ny, nz

    # Outward source speeds, grid units (Cell Centers)
    source_flow_pos: wp.array3d(dtype=wp.vec3) # right, up, forward
    source_flow_neg: wp.array3d(dtype=wp.vec3) # left, down, backward


@wp.func
def cell_type_at(grid: MACGrid3D, i: int, j: int, k: int):
    if i < 0 or j < 0 or k < 0:
        return CELL_FREE
    if i >= grid.nx or j >= grid.ny or k >= grid.nz:
        return CELL_FREE
    return grid.cell_type[i, j, k]


@wp.func
def velocity_at_center(grid: MACGrid3D, i: int, j: int, k: int):
    """
    Velocity at the center of cell (i, j, k), each component averaged from
    the two faces of the cell along its axis.
    """
    u = (lookup(grid.velocity_x, i, j, k) + lookup(grid.velocity_x, i + 1, j, k)) * 0.5
    v = (lookup(grid.velocity_y, i, j, k) + lookup(grid.velocity_y, i, j + 1, k)) * 0.5
    w = (lookup(grid.velocity_z, i, j, k) + lookup(grid.velocity_z, i, j, k + 1)) * 0.5
    return wp.vec3(u, v, w)


@wp.func
def velocity_at_staggered_x(grid: MACGrid3D, i: int, j: int, k: int):
    """
    Velocity at x-face (i, j, k), between cells i-1 and i.
    """
    u = lookup(grid.velocity_x, i, j, k)
    v = (lookup(grid.velocity_y, i - 1, j, k) + lookup(grid.velocity_y, i - 1, j + 1, k) +
         lookup(grid.velocity_y, i, j, k) + lookup(grid.velocity_y, i, j + 1, k)) * 0.25
    w = (lookup(grid.velocity_z, i - 1, j, k) + lookup(grid.velocity_z, i - 1, j, k + 1) +
         lookup(grid.velocity_z, i, j, k) + lookup(grid.velocity_z, i, j, k + 1)) * 0.25
    return wp.vec3(u, v, w)


@wp.func
def velocity_at_staggered_y(grid: MACGrid3D, i: int, j: int, k: int):
    """
    Velocity at y-face (i, j, k), between cells j-1 and j.
    """
    u = (lookup(grid.velocity_x, i, j - 1, k) + lookup(grid.velocity_x, i + 1, j - 1, k) +
         lookup(grid.velocity_x, i, j, k) + lookup(grid.velocity_x, i + 1, j, k)) * 0.25
    v = lookup(grid.velocity_y, i, j, k)
    w = (lookup(grid.velocity_z, i, j - 1, k) + lookup(grid.velocity_z, i, j - 1, k + 1) +
         lookup(grid.velocity_z, i, j, k) + lookup(grid.velocity_z, i, j, k + 1)) * 0.25
    return wp.vec3(u, v, w)


@wp.func
def velocity_at_staggered_z(grid: MACGrid3D, i: int, j: int, k: int):
    """
    Velocity at z-face (i, j, k), between cells k-1 and k.
    """
    u = (lookup(grid.velocity_x, i, j, k - 1) + lookup(grid.velocity_x, i + 1, j, k - 1) +
         lookup(grid.velocity_x, i, j, k) + lookup(grid.velocity_x, i + 1, j, k)) * 0.25
    v = (lookup(grid.velocity_y, i, j, k - 1) + lookup(grid.velocity_y, i, j + 1, k - 1) +
         lookup(grid.velocity_y, i, j, k) + lookup(grid.velocity_y, i, j + 1, k)) * 0.25
    w = lookup(grid.velocity_z, i, j, k)
    return wp.vec3(u, v, w)


class MacGrid:
    """
    Host-side owner of a MAC grid.

    Holds the device struct handed to kernels, the source registry and the
    buffer bookkeeping. Read queries are bounds-checked and return the
    boundary value outside the grid; setup calls fail loudly instead.
    """

    def __init__(self,
                 size: Sequence[float],
                 step_size: float,
                 device=None,
                 strict_buffers: bool = False):
        """
        Args:
            size: Physical extent of the volume (meters), ideally a multiple of step_size
            step_size: Edge length of one cubic cell (meters)
            device: Warp device for all fields (default: current device)
            strict_buffers: Reject swapping a next buffer that was not fully written
        """
        if device is None:
            device = wp.get_device()
        else:
            device = wp.get_device(device)

        step_size = float(step_size)
        if not np.isfinite(step_size) or step_size <= 0.0:
            raise ValueError(f"Step size must be a positive number, got {step_size}")
        if len(size) != 3:
            raise ValueError(f"Size must have three components, got {size}")

        self.size = tuple(float(s) for s in size)
        self.step_size = step_size
        self.grid_size = LatticeCoord.floor_of([s / step_size for s in self.size])
        if min(self.grid_size) <= 0:
            raise ValueError(f"Size {self.size} holds no cells for step size {step_size}")

        self.device = device
        self.strict_buffers = strict_buffers
        self.sources: Dict[LatticeCoord, Source] = {}
        self.sinks: List[LatticeCoord] = []

        nx, ny, nz = self.grid_size
        shapes = {
            "pressure": (nx, ny, nz),
            "velocity_x": (nx + 1, ny, nz),
            "velocity_y": (nx, ny + 1, nz),
            "velocity_z": (nx, ny, nz + 1),
        }

        # [current, next] per double-buffered field
        self._buffers = {
            name: [wp.zeros(shape=shape, dtype=float, device=device),
                   wp.zeros(shape=shape, dtype=float, device=device)]
            for name, shape in shapes.items()
        }
        self.generation = {name: 0 for name in BUFFERED_FIELDS}
        self._written = set()
        # Host copies of current buffers, dropped whenever the buffer changes
        self._host: Dict[str, np.ndarray] = {}

        grid = MACGrid3D()
        grid.nx = nx
        grid.ny = ny
        grid.nz = nz
        grid.step = step_size
        grid.cell_type = wp.zeros(shape=(nx, ny, nz), dtype=int, device=device)
        grid.source_flow_pos = wp.zeros(shape=(nx, ny, nz), dtype=wp.vec3, device=device)
        grid.source_flow_neg = wp.zeros(shape=(nx, ny, nz), dtype=wp.vec3, device=device)
        grid.divergence = wp.zeros(shape=(nx, ny, nz), dtype=float, device=device)
        self.data = grid
        self._sync_struct()

    def __str__(self) -> str:
        return f"MAC Grid: Size {self.size} in {self.grid_size} elements for step size {self.step_size}"

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    def _sync_struct(self):
        for name, (current, nxt) in self._buffers.items():
            setattr(self.data, name, current)
            setattr(self.data, name + "_next", nxt)

    def _check_fields(self, fields):
        for name in fields:
            if name not in self._buffers:
                raise ValueError(f"Unknown field: {name}. "
                                 f"Buffered fields: {list(BUFFERED_FIELDS)}")

    def current(self, name: str) -> wp.array:
        self._check_fields([name])
        return self._buffers[name][0]

    def next_buffer(self, name: str) -> wp.array:
        self._check_fields([name])
        return self._buffers[name][1]

    def mark_written(self, *fields: str):
        """Declare that the next buffers of these fields were fully overwritten."""
        self._check_fields(fields)
        self._written.update(fields)

    def swap_buffers(self, *fields: str):
        """
        Exchange current and next storage for exactly the named fields.

        No values are copied: a field whose next buffer was not rewritten
        since its last swap brings back data from two generations ago.
        """
        fields = tuple(dict.fromkeys(fields))
        self._check_fields(fields)

        if self.strict_buffers:
            stale = [name for name in fields if name not in self._written]
            if stale:
                raise StaleBufferError(f"Next buffer not written before swap: {stale}")

        for name in fields:
            pair = self._buffers[name]
            pair[0], pair[1] = pair[1], pair[0]
            self.generation[name] += 1
            self._written.discard(name)
            self._host.pop(name, None)

        self._sync_struct()

    def reset(self):
        """Zero every float buffer. Cell classification and sources are kept."""
        for current, nxt in self._buffers.values():
            current.zero_()
            nxt.zero_()
        self.data.divergence.zero_()
        self.generation = {name: 0 for name in BUFFERED_FIELDS}
        self._written.clear()
        self._host.clear()

    def load_fields(self, **fields: np.ndarray):
        """Assign values to the current buffer of the named fields."""
        self._check_fields(fields)
        for name, values in fields.items():
            target = self._buffers[name][0]
            values = np.asarray(values, dtype=np.float32)
            if values.shape != target.shape:
                raise ValueError(f"Field {name} expects shape {target.shape}, got {values.shape}")
            target.assign(values)
            self._host.pop(name, None)

    def fields(self) -> Dict[str, np.ndarray]:
        """Copies of the current buffer of every field."""
        return {name: pair[0].numpy().copy() for name, pair in self._buffers.items()}

    def _host_view(self, name: str) -> np.ndarray:
        """
        Host copy of a current buffer (or of cell_type) shared by all point
        queries until the buffer is swapped, loaded or reset. Kernels only
        write next buffers, so the copy cannot go stale between those calls.
        """
        view = self._host.get(name)
        if view is None:
            array = self.data.cell_type if name == "cell_type" else self.current(name)
            view = array.numpy()
            self._host[name] = view
        return view

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def extents(self, axis: Optional[int] = None) -> LatticeCoord:
        """Sample counts per axis for a centered (None) or staggered field."""
        if axis is None:
            return self.grid_size
        return self.grid_size + LatticeCoord.unit(axis)

    def index(self, p: LatticeCoord, axis: Optional[int] = None) -> int:
        """Linear index x + ex * (y + ey * z) for the field shape given by axis."""
        ex, ey, _ = self.extents(axis)
        return p.x + ex * (p.y + ey * p.z)

    def flat(self, name: str) -> np.ndarray:
        """Current buffer of a field flattened in index() order."""
        return self._host_view(name).ravel(order="F")

    def valid_index(self, p: LatticeCoord) -> bool:
        return (0 <= p.x < self.grid_size.x and
                0 <= p.y < self.grid_size.y and
                0 <= p.z < self.grid_size.z)

    def valid_index_staggered(self, p: LatticeCoord, axis: int) -> bool:
        # One extra sample is valid along the staggered axis only
        ex, ey, ez = self.extents(axis)
        return 0 <= p.x < ex and 0 <= p.y < ey and 0 <= p.z < ez

    def position_to_cell(self, position: Sequence[float]) -> LatticeCoord:
        return LatticeCoord.floor_of([c / self.step_size for c in position])

    def meters_to_grid(self, value: float) -> float:
        return value / self.step_size

    def world_to_lattice(self, position: Sequence[float]) -> np.ndarray:
        """Physical position to lattice space (cell centers on integers)."""
        return np.asarray(position, dtype=np.float64) / self.step_size - 0.5

    # ------------------------------------------------------------------
    # Read queries
    # ------------------------------------------------------------------

    def _read(self, name: str, p: LatticeCoord) -> float:
        axis = FIELD_AXIS[name]
        valid = self.valid_index(p) if axis is None else self.valid_index_staggered(p, axis)
        if not valid:
            return 0.0
        return float(self._host_view(name)[p.x, p.y, p.z])

    def pressure_at_center(self, p: LatticeCoord) -> float:
        return self._read("pressure", p)

    # The direction names refer to the normal component through that face of
    # cell p. Flow to the right/up/forward is positive, left/down/backward negative.

    def velocity_right(self, p: LatticeCoord) -> float:
        return self._read("velocity_x", p + RIGHT)

    def velocity_left(self, p: LatticeCoord) -> float:
        return self._read("velocity_x", p)

    def velocity_up(self, p: LatticeCoord) -> float:
        return self._read("velocity_y", p + UP)

    def velocity_down(self, p: LatticeCoord) -> float:
        return self._read("velocity_y", p)

    def velocity_forward(self, p: LatticeCoord) -> float:
        return self._read("velocity_z", p + FORWARD)

    def velocity_backward(self, p: LatticeCoord) -> float:
        return self._read("velocity_z", p)

    def cell_type(self, p: LatticeCoord) -> int:
        if not self.valid_index(p):
            return CELL_FREE
        return int(self._host_view("cell_type")[p.x, p.y, p.z])

    def velocity_at_center(self, p: LatticeCoord) -> np.ndarray:
        return np.array([
            0.5 * (self.velocity_left(p) + self.velocity_right(p)),
            0.5 * (self.velocity_down(p) + self.velocity_up(p)),
            0.5 * (self.velocity_backward(p) + self.velocity_forward(p)),
        ])

    def velocity_at_staggered(self, p: LatticeCoord, axis: int) -> np.ndarray:
        """
        Velocity at face sample p of the field staggered on axis. The other two
        components average the four faces of cells p - e_axis and p that
        straddle the sample.
        """
        below = p - LatticeCoord.unit(axis)
        result = np.zeros(3)
        for b, name in enumerate(VELOCITY_FIELDS):
            if b == axis:
                result[b] = self._read(name, p)
                continue
            up = LatticeCoord.unit(b)
            result[b] = 0.25 * (self._read(name, below) + self._read(name, below + up) +
                                self._read(name, p) + self._read(name, p + up))
        return result

    def sample(self, name: str, points) -> np.ndarray:
        """Interpolate the current buffer of a field at lattice-space points."""
        return sample_field(self.current(name), points, FIELD_AXIS[name])

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _update_cells(self, name: str, updates):
        array = getattr(self.data, name)
        values = array.numpy().copy()
        for p, value in updates:
            values[p.x, p.y, p.z] = value
        array.assign(values)
        self._host.pop(name, None)

    def _drop_sources(self, cells):
        """Unregister the sources held by any of the given cells and clear their flows."""
        dropped = [p for p in cells if self.sources.pop(p, None) is not None]
        if dropped:
            zero = [(p, (0.0, 0.0, 0.0)) for p in dropped]
            self._update_cells("source_flow_pos", zero)
            self._update_cells("source_flow_neg", zero)
        return dropped

    def mark_solid_cells(self, marker: Callable[[tuple], bool]):
        """
        Mark every cell whose origin corner (physical space) satisfies marker as SOLID.

        A solid cell replaces any source or sink registered there.
        """
        step = self.step_size
        cells = [
            p for p in iter_range(ZERO, self.grid_size)
            if marker((p.x * step, p.y * step, p.z * step))
        ]
        self._update_cells("cell_type", [(p, CELL_SOLID) for p in cells])

        covered = set(cells)
        dropped = self._drop_sources(covered)
        self.sinks = [p for p in self.sinks if p not in covered]
        logger.debug("Marked %d solid cells (%d sources removed)", len(cells), len(dropped))

    def add_source(self, source: Source):
        p = self.position_to_cell(source.position)
        if not self.valid_index(p):
            raise OutOfGridError(f"pos {source.position} => p {p} is out of bounds")
        if p in self.sources:
            raise DuplicateSourceError(f"Cell {p} already holds a source")

        source.grid_position = p
        self.sources[p] = source
        self._update_cells("cell_type", [(p, CELL_SOURCE)])
        self._update_cells("source_flow_pos", [(p, [self.meters_to_grid(f) for f in source.outflow_positive])])
        self._update_cells("source_flow_neg", [(p, [self.meters_to_grid(f) for f in source.outflow_negative])])

    def add_sink(self, position: Sequence[float]):
        p = self.position_to_cell(position)
        if not self.valid_index(p):
            raise OutOfGridError(f"pos {tuple(position)} => p {p} is out of bounds")

        # A sink replaces a source registered in the same cell
        self._drop_sources([p])
        if p not in self.sinks:
            self.sinks.append(p)
        self._update_cells("cell_type", [(p, CELL_SINK)])

    def source_flow(self, p: LatticeCoord) -> np.ndarray:
        """
        Outward speeds (grid units) of the source in cell p, ordered right, left,
        up, down, forward, backward. Zero for cells without a source.
        """
        if not self.valid_index(p):
            return np.zeros(6)
        pos = self.data.source_flow_pos.numpy()[p.x, p.y, p.z]
        neg = self.data.source_flow_neg.numpy()[p.x, p.y, p.z]
        return np.array([pos[0], neg[0], pos[1], neg[1], pos[2], neg[2]], dtype=np.float64)
