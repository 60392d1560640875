from dataclasses import dataclass
from typing import Optional, Tuple

from macfluid.core.lattice import LatticeCoord


@dataclass
class Source:
    """
    A cell that continuously injects fluid.

    Attributes:
        position: Position in physical space (meters)
        flow_*: Outward speed through each of the six faces (m/s)
        grid_position: Lattice coordinate, filled in when registered on a grid
    """
    position: Tuple[float, float, float]
    flow_right: float = 0.0
    flow_left: float = 0.0
    flow_up: float = 0.0
    flow_down: float = 0.0
    flow_forward: float = 0.0
    flow_backward: float = 0.0
    grid_position: Optional[LatticeCoord] = None

    @property
    def net_outflow(self) -> float:
        return (self.flow_right + self.flow_left +
                self.flow_up + self.flow_down +
                self.flow_forward + self.flow_backward)

    @property
    def outflow_positive(self) -> Tuple[float, float, float]:
        """Flows through the right, up and forward faces."""
        return (self.flow_right, self.flow_up, self.flow_forward)

    @property
    def outflow_negative(self) -> Tuple[float, float, float]:
        """Flows through the left, down and backward faces."""
        return (self.flow_left, self.flow_down, self.flow_backward)
