from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass(frozen=True)
class Box:
    """
    Axis-aligned box in physical space, used to stamp solid cells.

    Attributes:
        min: Lower corner (inclusive)
        max: Upper corner (exclusive)
    """
    min: Tuple[float, float, float]
    max: Tuple[float, float, float]

    def contains(self, point: Sequence[float]) -> bool:
        return (self.min[0] <= point[0] < self.max[0] and
                self.min[1] <= point[1] < self.max[1] and
                self.min[2] <= point[2] < self.max[2])

    def clamped(self, size: Sequence[float]) -> "Box":
        """Intersect the box with the container [0, size]."""
        lo = tuple(max(0.0, float(self.min[a])) for a in range(3))
        hi = tuple(min(float(size[a]), float(self.max[a])) for a in range(3))
        return Box(min=lo, max=hi)

    @property
    def center(self) -> Tuple[float, float, float]:
        return tuple(0.5 * (self.min[a] + self.max[a]) for a in range(3))

    @property
    def extent(self) -> Tuple[float, float, float]:
        return tuple(self.max[a] - self.min[a] for a in range(3))
