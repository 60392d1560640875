from pathlib import Path

import numpy as np
import pytest

from macfluid.core.box import Box
from macfluid.core.lattice import LatticeCoord
from macfluid.core.mac_grid import CELL_SINK, CELL_SOLID, CELL_SOURCE, OutOfGridError
from macfluid.core.simulation import SimulationController
from macfluid.core.source import Source
from macfluid.scene_parser import SceneConfig, SimulationConfig, SolverConfig, load_scene
from macfluid.solvers.mac_simulator import MacSimulator

SCENES_DIR = Path(__file__).parent.parent / "scenes"


def make_config(**scene_kwargs):
    scene_kwargs.setdefault("step_size", 0.125)
    return SimulationConfig(
        scene=SceneConfig(**scene_kwargs),
        solver=SolverConfig(p_iter=20),
    )


def test_bundled_scene_setup(device):
    sim = SimulationController(load_scene(SCENES_DIR / "basic.json"), device=device)

    assert (sim.nx, sim.ny, sim.nz) == (10, 10, 10)
    assert isinstance(sim.solver, MacSimulator)
    # Floor slab plus the 4 x 1 x 4 block
    assert (sim.grid.flat("cell_type") == CELL_SOLID).sum() == 116
    assert sim.grid.cell_type(LatticeCoord(5, 9, 5)) == CELL_SOURCE
    assert sim.grid.cell_type(LatticeCoord(0, 1, 0)) == CELL_SINK
    assert sim.grid.cell_type(LatticeCoord(9, 1, 9)) == CELL_SINK


def test_substep_dt(device):
    sim = SimulationController(make_config(target_fps=50, steps_per_frame=4), device=device)

    assert sim.substep_dt == pytest.approx(0.005)


def test_advance_frame_runs_all_substeps(device):
    sim = SimulationController(make_config(steps_per_frame=3, cfl_check=True), device=device)

    sim.advance_frame()
    sim.advance_frame()

    assert sim.frame_count == 2
    assert sim.grid.generation["velocity_x"] == 12
    assert sim.grid.generation["velocity_y"] == 18


def test_step_with_explicit_dt(device):
    sim = SimulationController(make_config(gravity=-10.0), device=device)

    sim.step(0.01)

    # -10 m/s^2 for 0.01 s is -0.8 cells per second at 0.125 m per cell
    np.testing.assert_allclose(sim.grid.fields()["velocity_y"], -0.8, rtol=1e-5)


def test_reset(device):
    config = make_config()
    config.sources.append(Source(position=(0.5, 0.5, 0.5), flow_up=1.0))
    sim = SimulationController(config, device=device)
    sim.advance_frame()

    sim.reset()

    assert sim.frame_count == 0
    assert not sim.grid.fields()["velocity_y"].any()
    assert sim.grid.cell_type(LatticeCoord(4, 4, 4)) == CELL_SOURCE


def test_solids_outside_container_are_clamped(device):
    config = make_config()
    config.solids.append(Box(min=(-1.0, -1.0, -1.0), max=(0.125, 0.125, 0.125)))
    sim = SimulationController(config, device=device)

    assert (sim.grid.flat("cell_type") == CELL_SOLID).sum() == 1


def test_unknown_solver_type(device):
    config = make_config()
    config.solver.type = "flip"

    with pytest.raises(ValueError):
        SimulationController(config, device=device)


def test_source_outside_container(device):
    config = make_config()
    config.sources.append(Source(position=(1.5, 0.5, 0.5)))

    with pytest.raises(OutOfGridError):
        SimulationController(config, device=device)
