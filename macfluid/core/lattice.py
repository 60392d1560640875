import math
from dataclasses import dataclass
from typing import Iterator, Sequence, Union


@dataclass(frozen=True)
class LatticeCoord:
    """
    Integer coordinate of a grid cell or of a staggered face sample.

    Immutable, hashable by component so it can key the source registry.
    """
    x: int
    y: int
    z: int

    def __add__(self, other: "LatticeCoord") -> "LatticeCoord":
        return LatticeCoord(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "LatticeCoord") -> "LatticeCoord":
        return LatticeCoord(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, other: Union["LatticeCoord", int]) -> "LatticeCoord":
        if isinstance(other, LatticeCoord):
            return LatticeCoord(self.x * other.x, self.y * other.y, self.z * other.z)
        return LatticeCoord(self.x * other, self.y * other, self.z * other)

    __rmul__ = __mul__

    def __iter__(self) -> Iterator[int]:
        yield self.x
        yield self.y
        yield self.z

    def __str__(self) -> str:
        return f"({self.x}, {self.y}, {self.z})"

    @staticmethod
    def floor_of(v: Sequence[float]) -> "LatticeCoord":
        """Component-wise floor of a continuous 3-vector."""
        return LatticeCoord(math.floor(v[0]), math.floor(v[1]), math.floor(v[2]))

    @staticmethod
    def unit(axis: int) -> "LatticeCoord":
        """Unit step along axis 0 (x), 1 (y) or 2 (z)."""
        return _UNITS[axis]


RIGHT = LatticeCoord(1, 0, 0)
LEFT = LatticeCoord(-1, 0, 0)
UP = LatticeCoord(0, 1, 0)
DOWN = LatticeCoord(0, -1, 0)
FORWARD = LatticeCoord(0, 0, 1)
BACKWARD = LatticeCoord(0, 0, -1)
ONE = LatticeCoord(1, 1, 1)
ZERO = LatticeCoord(0, 0, 0)

_UNITS = (RIGHT, UP, FORWARD)


def iter_range(start: LatticeCoord, end: LatticeCoord) -> Iterator[LatticeCoord]:
    """Yield every coordinate in [start, end), x outermost."""
    for x in range(start.x, end.x):
        for y in range(start.y, end.y):
            for z in range(start.z, end.z):
                yield LatticeCoord(x, y, z)
