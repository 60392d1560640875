from abc import ABC, abstractmethod

from macfluid.core.mac_grid import MacGrid


class Solver(ABC):
    @abstractmethod
    def __init__(self, grid: MacGrid, **kwargs):
        pass

    @abstractmethod
    def step(self, dt: float):
        pass
