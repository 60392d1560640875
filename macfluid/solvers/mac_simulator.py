import logging
import math

import warp as wp

from macfluid.core.interpolation import lerp_staggered, lookup
from macfluid.core.mac_grid import (
    CELL_SIMULATE, CELL_SOLID, CELL_SOURCE, VELOCITY_FIELDS, MACGrid3D, MacGrid,
    cell_type_at, velocity_at_center, velocity_at_staggered_x, velocity_at_staggered_y,
    velocity_at_staggered_z,
)
from macfluid.solvers.base_solver import Solver

logger = logging.getLogger(__name__)


#######################################################################
# Advection Kernels
#######################################################################

@wp.kernel
def advect_x(grid: MACGrid3D, dt: float):
    i, j, k = wp.tid()

    # velocity_x size: (nx+1, ny, nz)
    if i >= grid.nx + 1 or j >= grid.ny or k >= grid.nz:
        return

    # x-face (i, j, k) is at lattice position (i-0.5, j, k)
    vel = velocity_at_staggered_x(grid, i, j, k)

    # Back-trace in lattice space
    gx = float(i) - 0.5 - vel[0] * dt
    gy = float(j) - vel[1] * dt
    gz = float(k) - vel[2] * dt

    grid.velocity_x_next[i, j, k] = lerp_staggered(grid.velocity_x, gx, gy, gz, 0)


@wp.kernel
def advect_y(grid: MACGrid3D, dt: float):
    i, j, k = wp.tid()

    # velocity_y size: (nx, ny+1, nz)
    if i >= grid.nx or j >= grid.ny + 1 or k >= grid.nz:
        return

    # y-face (i, j, k) is at lattice position (i, j-0.5, k)
    vel = velocity_at_staggered_y(grid, i, j, k)

    gx = float(i) - vel[0] * dt
    gy = float(j) - 0.5 - vel[1] * dt
    gz = float(k) - vel[2] * dt

    grid.velocity_y_next[i, j, k] = lerp_staggered(grid.velocity_y, gx, gy, gz, 1)


@wp.kernel
def advect_z(grid: MACGrid3D, dt: float):
    i, j, k = wp.tid()

    # velocity_z size: (nx, ny, nz+1)
    if i >= grid.nx or j >= grid.ny or k >= grid.nz + 1:
        return

    # z-face (i, j, k) is at lattice position (i, j, k-0.5)
    vel = velocity_at_staggered_z(grid, i, j, k)

    gx = float(i) - vel[0] * dt
    gy = float(j) - vel[1] * dt
    gz = float(k) - 0.5 - vel[2] * dt

    grid.velocity_z_next[i, j, k] = lerp_staggered(grid.velocity_z, gx, gy, gz, 2)


#######################################################################
# External Force Kernels
#######################################################################

@wp.kernel
def apply_gravity_kernel(
    v_in: wp.array3d(dtype=float),
    v_out: wp.array3d(dtype=float),
    gravity_step: float
):
    i, j, k = wp.tid()
    v_out[i, j, k] = v_in[i, j, k] + gravity_step


#######################################################################
# Projection Kernels
#######################################################################

@wp.func
def is_active_source(grid: MACGrid3D, i: int, j: int, k: int):
    if cell_type_at(grid, i, j, k) != CELL_SOURCE:
        return False
    flow = wp.length_sq(grid.source_flow_pos[i, j, k]) + wp.length_sq(grid.source_flow_neg[i, j, k])
    return flow > 0.0


@wp.func
def is_fluid(grid: MACGrid3D, i: int, j: int, k: int):
    # A source without flow is plain fluid
    t = cell_type_at(grid, i, j, k)
    if t == CELL_SIMULATE:
        return True
    return t == CELL_SOURCE and not is_active_source(grid, i, j, k)


@wp.func
def source_outflow(grid: MACGrid3D, i: int, j: int, k: int, axis: int, positive: int):
    # Outward speed of an active source through its face on one side of axis
    if not is_active_source(grid, i, j, k):
        return 0.0
    if positive == 1:
        return grid.source_flow_pos[i, j, k][axis]
    return grid.source_flow_neg[i, j, k][axis]


@wp.func
def face_condition(grid: MACGrid3D, i: int, j: int, k: int, axis: int):
    """
    Boundary condition of the face between cell (i, j, k) and the cell below
    it along axis, as (pinned, velocity). Faces touching a solid are closed,
    faces of an active source carry its outward flow, all others are left
    to the pressure solve (pinned = 0).
    """
    li = i
    lj = j
    lk = k
    if axis == 0:
        li = i - 1
    elif axis == 1:
        lj = j - 1
    else:
        lk = k - 1

    if cell_type_at(grid, li, lj, lk) == CELL_SOLID or cell_type_at(grid, i, j, k) == CELL_SOLID:
        return wp.vec2(1.0, 0.0)

    if is_active_source(grid, li, lj, lk) or is_active_source(grid, i, j, k):
        # The lower cell pushes along +axis, the upper cell along -axis
        out_lower = source_outflow(grid, li, lj, lk, axis, 1)
        out_upper = source_outflow(grid, i, j, k, axis, 0)
        return wp.vec2(1.0, out_lower - out_upper)

    return wp.vec2(0.0, 0.0)


@wp.func
def face_velocity(grid: MACGrid3D, velocity: wp.array3d(dtype=float), i: int, j: int, k: int, axis: int):
    bc = face_condition(grid, i, j, k, axis)
    if bc[0] > 0.0:
        return bc[1]
    return lookup(velocity, i, j, k)


@wp.func
def pressure_neighbor(grid: MACGrid3D, p: wp.array3d(dtype=float), i: int, j: int, k: int):
    # (pressure, weight). Solid and active source neighbours sit behind pinned
    # faces and drop out, air and sink neighbours hold zero pressure.
    if cell_type_at(grid, i, j, k) == CELL_SOLID or is_active_source(grid, i, j, k):
        return wp.vec2(0.0, 0.0)
    return wp.vec2(lookup(p, i, j, k), 1.0)


@wp.func
def pressure_neighbors(grid: MACGrid3D, p: wp.array3d(dtype=float), i: int, j: int, k: int):
    return (pressure_neighbor(grid, p, i - 1, j, k) + pressure_neighbor(grid, p, i + 1, j, k) +
            pressure_neighbor(grid, p, i, j - 1, k) + pressure_neighbor(grid, p, i, j + 1, k) +
            pressure_neighbor(grid, p, i, j, k - 1) + pressure_neighbor(grid, p, i, j, k + 1))


@wp.func
def projected_face(grid: MACGrid3D, velocity: wp.array3d(dtype=float), coeff: float,
                   i: int, j: int, k: int, axis: int, p_lower: float, p_upper: float):
    bc = face_condition(grid, i, j, k, axis)
    if bc[0] > 0.0:
        return bc[1]
    return velocity[i, j, k] - coeff * (p_upper - p_lower)


@wp.kernel
def compute_divergence_kernel(grid: MACGrid3D):
    i, j, k = wp.tid()
    if i >= grid.nx or j >= grid.ny or k >= grid.nz:
        return

    if not is_fluid(grid, i, j, k):
        grid.divergence[i, j, k] = 0.0
        return

    # Pinned faces (solids, sources) enter with their prescribed velocity
    grid.divergence[i, j, k] = \
        (face_velocity(grid, grid.velocity_x, i + 1, j, k, 0) - face_velocity(grid, grid.velocity_x, i, j, k, 0)) + \
        (face_velocity(grid, grid.velocity_y, i, j + 1, k, 1) - face_velocity(grid, grid.velocity_y, i, j, k, 1)) + \
        (face_velocity(grid, grid.velocity_z, i, j, k + 1, 2) - face_velocity(grid, grid.velocity_z, i, j, k, 2))


@wp.kernel
def pressure_solve_jacobi_kernel(
    grid: MACGrid3D,
    p_in: wp.array3d(dtype=float),
    p_out: wp.array3d(dtype=float),
    scale: float
):
    i, j, k = wp.tid()
    if i >= grid.nx or j >= grid.ny or k >= grid.nz:
        return

    if not is_fluid(grid, i, j, k):
        p_out[i, j, k] = 0.0
        return

    # Pressure Poisson equation: nabla^2 p = (rho/dt) * nabla . u  (lattice units)
    # Update rule: p = (sum(p_neighbors) - (rho/dt) * div) / n_open_neighbors
    acc = pressure_neighbors(grid, p_in, i, j, k)
    if acc[1] == 0.0:
        p_out[i, j, k] = 0.0
        return

    p_out[i, j, k] = (acc[0] - scale * grid.divergence[i, j, k]) / acc[1]


@wp.kernel
def pressure_residual_kernel(
    grid: MACGrid3D,
    p: wp.array3d(dtype=float),
    inv_scale: float,
    max_residual: wp.array1d(dtype=float)
):
    i, j, k = wp.tid()
    if i >= grid.nx or j >= grid.ny or k >= grid.nz:
        return

    if not is_fluid(grid, i, j, k):
        return

    # Divergence left over after subtracting the gradient of p
    acc = pressure_neighbors(grid, p, i, j, k)
    laplacian = acc[0] - acc[1] * p[i, j, k]
    residual = wp.abs(grid.divergence[i, j, k] - laplacian * inv_scale)
    wp.atomic_max(max_residual, 0, residual)


@wp.kernel
def subtract_gradient_kernel(grid: MACGrid3D, coeff: float):
    # u_new = u_old - (dt/rho) * grad(p), written to the next buffers
    i, j, k = wp.tid()

    # Handle velocity_x (nx+1, ny, nz)
    if i < grid.nx + 1 and j < grid.ny and k < grid.nz:
        grid.velocity_x_next[i, j, k] = projected_face(
            grid, grid.velocity_x, coeff, i, j, k, 0,
            lookup(grid.pressure, i - 1, j, k), lookup(grid.pressure, i, j, k))

    # Handle velocity_y (nx, ny+1, nz)
    if i < grid.nx and j < grid.ny + 1 and k < grid.nz:
        grid.velocity_y_next[i, j, k] = projected_face(
            grid, grid.velocity_y, coeff, i, j, k, 1,
            lookup(grid.pressure, i, j - 1, k), lookup(grid.pressure, i, j, k))

    # Handle velocity_z (nx, ny, nz+1)
    if i < grid.nx and j < grid.ny and k < grid.nz + 1:
        grid.velocity_z_next[i, j, k] = projected_face(
            grid, grid.velocity_z, coeff, i, j, k, 2,
            lookup(grid.pressure, i, j, k - 1), lookup(grid.pressure, i, j, k))


#######################################################################
# Diagnostics Kernels
#######################################################################

@wp.kernel
def compute_cfl_kernel(grid: MACGrid3D, dt: float, max_cfl: wp.array1d(dtype=float)):
    i, j, k = wp.tid()
    if i >= grid.nx or j >= grid.ny or k >= grid.nz:
        return

    # Velocities are in cells per second, so |u| * dt is the CFL number
    vel = velocity_at_center(grid, i, j, k)
    wp.atomic_max(max_cfl, 0, wp.length(vel) * dt)


@wp.kernel
def max_abs_kernel(field: wp.array3d(dtype=float), result: wp.array1d(dtype=float)):
    i, j, k = wp.tid()
    wp.atomic_max(result, 0, wp.abs(field[i, j, k]))


#######################################################################
# MacSimulator
#######################################################################

class MacSimulator(Solver):
    def __init__(
        self,
        grid: MacGrid,
        gravity: float = -9.81,
        rho: float = 1.0,
        pressure_iterations: int = 100,
        tolerance: float = 0.0,
        check_interval: int = 10,
        timing: bool = False,
        **kwargs
    ):
        """
        Initialize the MAC grid simulator.

        Args:
            grid: Grid to advance in place
            gravity: Gravitational acceleration along y (m/s^2)
            rho: Fluid density
            pressure_iterations: Maximum Jacobi iterations per projection
            tolerance: Stop the pressure solve once the left-over divergence
                (cells per second) drops below this; 0 always runs every iteration
            check_interval: Jacobi iterations between tolerance checks
            timing: Print a wp.ScopedTimer report for every step
        """
        if rho <= 0.0:
            raise ValueError(f"Density must be positive, got {rho}")
        if pressure_iterations < 0:
            raise ValueError(f"Pressure iterations must be non-negative, got {pressure_iterations}")
        if check_interval < 1:
            raise ValueError(f"Check interval must be at least 1, got {check_interval}")

        self.grid = grid
        self.gravity = gravity
        self.rho = rho
        self.pressure_iterations = pressure_iterations
        self.tolerance = tolerance
        self.check_interval = check_interval
        self.timing = timing

        # Velocities are stored in grid units, so convert once
        self.gravity_grid = grid.meters_to_grid(gravity)

        self.last_iterations = 0
        self.last_residual = None

    def step(self, dt: float):
        self.simulate_step(dt)

    def advance(self, dt: float):
        """Advance the grid in place by dt. Step cadence is left to the caller."""
        self.simulate_step(dt)

    def simulate_step(self, dt: float):
        """
        Execute one time step. Each stage reads the current buffers, writes
        the next buffers and swaps; a step must run to completion.
        """
        dt = float(dt)
        if not math.isfinite(dt) or dt < 0.0:
            raise ValueError(f"Time step must be finite and non-negative, got {dt}")

        with wp.ScopedTimer("MAC Step", active=self.timing, synchronize=True):
            # 1. Advect velocity through itself (write to next)
            self._advect(dt)
            self.grid.swap_buffers(*VELOCITY_FIELDS)

            # 2. External forces, gravity only touches y
            self._apply_body_forces(dt)
            self.grid.swap_buffers("velocity_y")

            # 3. Projection
            self._project(dt)
            self.grid.swap_buffers(*VELOCITY_FIELDS)

    def _advect(self, dt: float):
        grid = self.grid
        for kernel, name in ((advect_x, "velocity_x"), (advect_y, "velocity_y"), (advect_z, "velocity_z")):
            wp.launch(kernel=kernel, dim=grid.current(name).shape, inputs=[grid.data, dt], device=grid.device)
        grid.mark_written(*VELOCITY_FIELDS)

    def _apply_body_forces(self, dt: float):
        grid = self.grid
        wp.launch(
            kernel=apply_gravity_kernel,
            dim=grid.current("velocity_y").shape,
            inputs=[grid.current("velocity_y"), grid.next_buffer("velocity_y"), dt * self.gravity_grid],
            device=grid.device
        )
        grid.mark_written("velocity_y")

    def _project(self, dt: float):
        grid = self.grid

        if dt == 0.0:
            # No time passes, so no pressure builds up
            for name in VELOCITY_FIELDS:
                wp.copy(grid.next_buffer(name), grid.current(name))
            grid.mark_written(*VELOCITY_FIELDS)
            return

        # 3-1. Compute Divergence
        wp.launch(kernel=compute_divergence_kernel, dim=grid.data.divergence.shape,
                  inputs=[grid.data], device=grid.device)

        # 3-2. Pressure Solve (Jacobi), warm-started from the last step
        self._solve_pressure(scale=self.rho / dt)

        # 3-3. Subtract Gradient
        nx, ny, nz = grid.grid_size
        wp.launch(kernel=subtract_gradient_kernel, dim=(nx + 1, ny + 1, nz + 1),
                  inputs=[grid.data, dt / self.rho], device=grid.device)
        grid.mark_written(*VELOCITY_FIELDS)

    def _solve_pressure(self, scale: float):
        grid = self.grid
        self.last_iterations = 0
        self.last_residual = None

        for it in range(self.pressure_iterations):
            wp.launch(
                kernel=pressure_solve_jacobi_kernel,
                dim=grid.current("pressure").shape,
                inputs=[grid.data, grid.current("pressure"), grid.next_buffer("pressure"), scale],
                device=grid.device
            )
            grid.mark_written("pressure")
            grid.swap_buffers("pressure")
            self.last_iterations = it + 1

            if self.tolerance > 0.0 and self.last_iterations % self.check_interval == 0:
                self.last_residual = self._pressure_residual(1.0 / scale)
                if self.last_residual < self.tolerance:
                    logger.debug("Pressure solve converged after %d iterations (residual %.3e)",
                                 self.last_iterations, self.last_residual)
                    break

    def _pressure_residual(self, inv_scale: float) -> float:
        grid = self.grid
        result = wp.zeros(1, dtype=float, device=grid.device)
        wp.launch(kernel=pressure_residual_kernel, dim=grid.current("pressure").shape,
                  inputs=[grid.data, grid.current("pressure"), inv_scale, result], device=grid.device)
        return float(result.numpy()[0])

    def max_divergence(self) -> float:
        """
        Largest divergence (cells per second) of the current velocity field over
        fluid cells. Faces of solids and active sources count with their pinned
        velocity.
        """
        grid = self.grid
        wp.launch(kernel=compute_divergence_kernel, dim=grid.data.divergence.shape,
                  inputs=[grid.data], device=grid.device)
        result = wp.zeros(1, dtype=float, device=grid.device)
        wp.launch(kernel=max_abs_kernel, dim=grid.data.divergence.shape,
                  inputs=[grid.data.divergence, result], device=grid.device)
        return float(result.numpy()[0])

    def max_cfl(self, dt: float) -> float:
        grid = self.grid
        result = wp.zeros(1, dtype=float, device=grid.device)
        wp.launch(kernel=compute_cfl_kernel, dim=grid.data.divergence.shape,
                  inputs=[grid.data, dt, result], device=grid.device)
        return float(result.numpy()[0])
