from macfluid.core.lattice import (
    BACKWARD, DOWN, FORWARD, LEFT, ONE, RIGHT, UP, ZERO, LatticeCoord, iter_range,
)


def test_arithmetic():
    a = LatticeCoord(1, 2, 3)
    b = LatticeCoord(-4, 5, 0)

    assert a + b == LatticeCoord(-3, 7, 3)
    assert a - b == LatticeCoord(5, -3, 3)
    assert a * b == LatticeCoord(-4, 10, 0)
    assert a * 2 == LatticeCoord(2, 4, 6)
    assert 2 * a == LatticeCoord(2, 4, 6)


def test_equality_and_hash():
    registry = {LatticeCoord(1, 2, 3): "source"}

    assert LatticeCoord(1, 2, 3) in registry
    assert LatticeCoord(3, 2, 1) not in registry
    assert LatticeCoord(1, 2, 3) != LatticeCoord(1, 2, 4)


def test_floor_of_rounds_towards_negative_infinity():
    assert LatticeCoord.floor_of((0.5, 9.99, -0.1)) == LatticeCoord(0, 9, -1)
    assert LatticeCoord.floor_of((-2.0, 3.0, 0.0)) == LatticeCoord(-2, 3, 0)


def test_directions():
    assert RIGHT + LEFT == ZERO
    assert UP + DOWN == ZERO
    assert FORWARD + BACKWARD == ZERO
    assert RIGHT + UP + FORWARD == ONE
    assert [LatticeCoord.unit(a) for a in range(3)] == [RIGHT, UP, FORWARD]


def test_unpacking_and_str():
    x, y, z = LatticeCoord(7, 8, 9)
    assert (x, y, z) == (7, 8, 9)
    assert str(LatticeCoord(1, -2, 3)) == "(1, -2, 3)"


def test_iter_range_is_half_open():
    coords = list(iter_range(ZERO, LatticeCoord(2, 3, 4)))

    assert len(coords) == 24
    assert coords[0] == ZERO
    assert coords[-1] == LatticeCoord(1, 2, 3)
    assert len(set(coords)) == 24
