from .base_solver import Solver
from .mac_simulator import MacSimulator

__all__ = ["Solver", "MacSimulator"]
