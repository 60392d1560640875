import logging
from typing import Optional, Type

import warp as wp

from macfluid.core.mac_grid import MacGrid
from macfluid.scene_parser import SimulationConfig
from macfluid.solvers.base_solver import Solver
from macfluid.solvers.mac_simulator import MacSimulator

logger = logging.getLogger(__name__)

SOLVERS = {
    "mac": MacSimulator,
}


class SimulationController:
    def __init__(self,
                 config: SimulationConfig,
                 solver_type: Optional[Type[Solver]] = None,
                 device=None):
        """
        Build the grid from a scene configuration and register its solids,
        sources and sinks before the first step.

        Args:
            config: Parsed SimulationConfig from a scene JSON file
            solver_type: Solver class to use (default: looked up from config.solver.type)
            device: Warp device for the grid (default: current device)
        """
        self.device = wp.get_device() if device is None else wp.get_device(device)
        self.config = config

        scene = config.scene
        solver_cfg = config.solver

        self.steps_per_frame = scene.steps_per_frame
        self.target_fps = scene.target_fps
        self.cfl_check = scene.cfl_check

        # Create grid
        self.grid = MacGrid(
            size=scene.container_size,
            step_size=scene.step_size,
            device=self.device,
            strict_buffers=scene.strict_buffers
        )
        self.nx, self.ny, self.nz = self.grid.grid_size

        # Classification is fixed once set up
        solids = [box.clamped(scene.container_size) for box in config.solids]
        if solids:
            self.grid.mark_solid_cells(lambda p: any(box.contains(p) for box in solids))
        for source in config.sources:
            self.grid.add_source(source)
        for sink in config.sinks:
            self.grid.add_sink(sink)

        if solver_type is None:
            if solver_cfg.type not in SOLVERS:
                raise ValueError(f"Unknown solver type: {solver_cfg.type}. "
                                 f"Supported solvers: {list(SOLVERS.keys())}")
            solver_type = SOLVERS[solver_cfg.type]

        self.solver = solver_type(
            grid=self.grid,
            gravity=scene.gravity,
            rho=solver_cfg.rho,
            pressure_iterations=solver_cfg.p_iter,
            tolerance=solver_cfg.tolerance
        )

        self.frame_count = 0

        logger.info("Simulation initialized on %s", self.device)
        logger.info("%s", self.grid)
        logger.info("Solids: %d, Sources: %d, Sinks: %d",
                    len(solids), len(self.grid.sources), len(self.grid.sinks))

    @property
    def substep_dt(self) -> float:
        """Fixed sub-step so steps_per_frame sub-steps fill one displayed frame."""
        return (1.0 / self.target_fps) / self.steps_per_frame

    def step(self, dt: Optional[float] = None):
        """Advance the simulation by one sub-step (default: substep_dt)."""
        self.solver.step(self.substep_dt if dt is None else dt)

    def advance_frame(self, dt: Optional[float] = None):
        """Run every sub-step of one displayed frame (default sub-step: substep_dt)."""
        dt = self.substep_dt if dt is None else dt
        for _ in range(self.steps_per_frame):
            self.solver.step(dt)
        self.frame_count += 1

        if self.cfl_check:
            logger.info("Frame %d: max CFL number %.4f", self.frame_count, self.solver.max_cfl(dt))

    def reset(self):
        """Reset the simulation fields to rest. Solids, sources and sinks stay."""
        self.grid.reset()
        self.frame_count = 0
