import numpy as np
import pytest

from macfluid.core.box import Box
from macfluid.core.lattice import DOWN, LatticeCoord
from macfluid.core.mac_grid import MacGrid
from macfluid.core.source import Source
from macfluid.solvers.mac_simulator import MacSimulator


def random_velocities(grid, seed=0, scale=1.0):
    rng = np.random.default_rng(seed)
    return {
        name: rng.uniform(-scale, scale, size=values.shape)
        for name, values in grid.fields().items()
        if name != "pressure"
    }


def test_gravity_on_open_grid(grid):
    grid.add_source(Source(position=(0.5, 0.9, 0.5)))
    sim = MacSimulator(grid, gravity=-9.8)

    sim.step(1.0 / 60.0)

    expected = -9.8 / 0.1 / 60.0
    p = LatticeCoord(5, 9, 5)
    assert grid.velocity_down(p) == pytest.approx(expected, rel=1e-5)
    assert grid.velocity_up(p) == pytest.approx(expected, rel=1e-5)

    fields = grid.fields()
    np.testing.assert_allclose(fields["velocity_y"], expected, rtol=1e-5)
    assert not fields["velocity_x"].any()
    assert not fields["velocity_z"].any()
    assert not fields["pressure"].any()


def test_zero_dt_is_noop(small_grid):
    grid = small_grid
    rng = np.random.default_rng(3)
    values = random_velocities(grid, seed=3)
    values["pressure"] = rng.uniform(size=(8, 8, 8))
    grid.load_fields(**values)
    sim = MacSimulator(grid, gravity=-9.81)

    sim.step(0.0)

    after = grid.fields()
    for name, before in values.items():
        np.testing.assert_allclose(after[name], before, rtol=0.0, atol=1e-6)


@pytest.mark.parametrize("dt", [-0.01, float("nan"), float("inf")])
def test_invalid_dt(small_grid, dt):
    sim = MacSimulator(small_grid)

    with pytest.raises(ValueError):
        sim.step(dt)

    assert all(g == 0 for g in small_grid.generation.values())


@pytest.mark.parametrize("kwargs", [
    {"rho": 0.0},
    {"pressure_iterations": -1},
    {"check_interval": 0},
])
def test_invalid_parameters(small_grid, kwargs):
    with pytest.raises(ValueError):
        MacSimulator(small_grid, **kwargs)


def test_projection_reduces_divergence(small_grid):
    grid = small_grid
    grid.load_fields(**random_velocities(grid, seed=4))
    sim = MacSimulator(grid, gravity=0.0, pressure_iterations=200)
    before = sim.max_divergence()

    sim.step(0.01)

    assert before > 0.5
    assert sim.max_divergence() < 0.1 * before


def test_solid_faces_are_closed(small_grid):
    grid = small_grid
    solid = Box(min=(0.25, 0.25, 0.25), max=(0.5, 0.5, 0.5))
    grid.mark_solid_cells(solid.contains)
    grid.load_fields(**random_velocities(grid, seed=5))
    sim = MacSimulator(grid, gravity=-9.81, pressure_iterations=20)

    sim.step(0.01)

    fields = grid.fields()
    # Solid cells are 2..3 on every axis, check all six faces of each
    for i in (2, 3):
        for j in (2, 3):
            for k in (2, 3):
                assert fields["velocity_x"][i, j, k] == 0.0
                assert fields["velocity_x"][i + 1, j, k] == 0.0
                assert fields["velocity_y"][i, j, k] == 0.0
                assert fields["velocity_y"][i, j + 1, k] == 0.0
                assert fields["velocity_z"][i, j, k] == 0.0
                assert fields["velocity_z"][i, j, k + 1] == 0.0
    assert fields["velocity_x"][1, 2, 2] != 0.0


def source_step(grid, **flows):
    grid.add_source(Source(position=(0.5, 0.5, 0.5), **flows))
    sim = MacSimulator(grid, gravity=0.0, pressure_iterations=300)
    sim.step(0.01)
    return sim


def test_source_pushes_only_through_its_flow_faces(small_grid):
    grid = small_grid
    sim = source_step(grid, flow_down=0.5)

    # 0.5 m/s is 4 cells per second at 0.125 m per cell
    p = LatticeCoord(4, 4, 4)
    assert grid.velocity_down(p) == pytest.approx(-4.0, rel=1e-6)
    assert grid.velocity_up(p) == 0.0
    assert grid.velocity_right(p) == 0.0
    assert grid.velocity_left(p) == 0.0
    assert grid.velocity_forward(p) == 0.0
    assert grid.velocity_backward(p) == 0.0

    # The fluid below carries the injected flow away
    assert grid.velocity_down(p + DOWN) < 0.0
    assert sim.max_divergence() < 0.04


def test_source_direction_changes_the_flow(device):
    down = MacGrid((1.0, 1.0, 1.0), 0.125, device=device)
    right = MacGrid((1.0, 1.0, 1.0), 0.125, device=device)
    source_step(down, flow_down=0.5)
    source_step(right, flow_right=0.5)

    p = LatticeCoord(4, 4, 4)
    assert right.velocity_right(p) == pytest.approx(4.0, rel=1e-6)
    assert right.velocity_down(p) == 0.0
    assert down.velocity_right(p) == 0.0
    assert not np.allclose(down.fields()["velocity_y"], right.fields()["velocity_y"])


def test_opposing_sources_share_a_face(small_grid):
    grid = small_grid
    grid.add_source(Source(position=(0.3, 0.5, 0.5), flow_right=0.25))
    grid.add_source(Source(position=(0.4, 0.5, 0.5), flow_left=0.5))
    sim = MacSimulator(grid, gravity=0.0, pressure_iterations=50)

    sim.step(0.01)

    # Cells 2 and 3 push against each other through x-face 3
    assert grid.velocity_right(LatticeCoord(2, 4, 4)) == pytest.approx(2.0 - 4.0, rel=1e-6)


def test_sink_holds_zero_pressure(small_grid):
    grid = small_grid
    grid.add_sink((0.5, 0.5, 0.5))
    grid.load_fields(**random_velocities(grid, seed=6))
    sim = MacSimulator(grid, gravity=-9.81, pressure_iterations=30)

    sim.step(0.01)

    assert grid.pressure_at_center(LatticeCoord(4, 4, 4)) == 0.0


def test_tolerance_stops_early(small_grid):
    grid = small_grid
    grid.load_fields(**random_velocities(grid, seed=7))
    sim = MacSimulator(grid, gravity=0.0, pressure_iterations=1000, tolerance=1e-3, check_interval=10)

    sim.step(0.01)

    assert sim.last_iterations < 1000
    assert sim.last_iterations % 10 == 0
    assert sim.last_residual < 1e-3


def test_full_iterations_without_tolerance(small_grid):
    sim = MacSimulator(small_grid, pressure_iterations=25)

    sim.step(0.01)

    assert sim.last_iterations == 25
    assert sim.last_residual is None


def test_stage_buffer_generations(small_grid):
    sim = MacSimulator(small_grid, pressure_iterations=7)

    sim.step(0.01)
    sim.advance(0.0)

    assert small_grid.generation == {
        "pressure": 7,
        "velocity_x": 4,
        "velocity_y": 6,
        "velocity_z": 4,
    }


def test_strict_buffers_full_step(device):
    grid = MacGrid((1.0, 1.0, 1.0), 0.125, device=device, strict_buffers=True)
    grid.add_source(Source(position=(0.5, 0.5, 0.5), flow_down=1.0))
    grid.load_fields(**random_velocities(grid, seed=8))
    sim = MacSimulator(grid, pressure_iterations=10, tolerance=1e-6, check_interval=5)

    sim.step(0.01)
    sim.step(0.0)

    assert grid.generation["velocity_y"] == 6


def test_max_cfl_uniform_flow(small_grid):
    small_grid.load_fields(velocity_x=np.full((9, 8, 8), 2.0))
    sim = MacSimulator(small_grid)

    assert sim.max_cfl(0.1) == pytest.approx(0.2, rel=1e-5)
