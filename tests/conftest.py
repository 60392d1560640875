import pytest
import warp as wp

from macfluid.core.mac_grid import MacGrid

wp.init()


@pytest.fixture
def device():
    return "cpu"


@pytest.fixture
def grid(device):
    # 10 x 10 x 10 cells
    return MacGrid((1.0, 1.0, 1.0), 0.1, device=device)


@pytest.fixture
def small_grid(device):
    # 8 x 8 x 8 cells
    return MacGrid((1.0, 1.0, 1.0), 0.125, device=device)
