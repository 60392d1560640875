"""
Trilinear interpolation on lattice-space sample grids.

Lattice space is physical space divided by the step size, shifted so that
cell-centered samples sit on integer coordinates. A face sample staggered on
axis A sits half a cell below the cell it belongs to along A, i.e.
``velocity_x[i, j, k]`` is located at ``(i - 0.5, j, k)``.
"""

import numpy as np
import warp as wp


@wp.func
def lookup(data: wp.array3d(dtype=float), i: int, j: int, k: int):
    """
    Bounds-checked read. Anything outside the array's own shape is open air
    and reads as zero.
    """
    if i < 0 or j < 0 or k < 0:
        return 0.0
    if i >= data.shape[0] or j >= data.shape[1] or k >= data.shape[2]:
        return 0.0
    return data[i, j, k]


@wp.func
def lerp_centered(data: wp.array3d(dtype=float), gx: float, gy: float, gz: float):
    """
    Trilinear sampling of data stored on integer lattice points.
    """
    ix = int(wp.floor(gx))
    iy = int(wp.floor(gy))
    iz = int(wp.floor(gz))

    tx = gx - float(ix)
    ty = gy - float(iy)
    tz = gz - float(iz)

    # Interpolate along x
    # z = iz
    c00 = wp.lerp(lookup(data, ix, iy, iz), lookup(data, ix + 1, iy, iz), tx)
    c10 = wp.lerp(lookup(data, ix, iy + 1, iz), lookup(data, ix + 1, iy + 1, iz), tx)

    # z = iz + 1
    c01 = wp.lerp(lookup(data, ix, iy, iz + 1), lookup(data, ix + 1, iy, iz + 1), tx)
    c11 = wp.lerp(lookup(data, ix, iy + 1, iz + 1), lookup(data, ix + 1, iy + 1, iz + 1), tx)

    # Interpolate along y
    c0 = wp.lerp(c00, c10, ty)
    c1 = wp.lerp(c01, c11, ty)

    # Interpolate along z
    return wp.lerp(c0, c1, tz)


@wp.func
def lerp_staggered(data: wp.array3d(dtype=float), gx: float, gy: float, gz: float, axis: int):
    """
    Trilinear sampling of face data staggered on exactly one axis
    (0 = x, 1 = y, 2 = z). The query is shifted by the half-cell offset
    so the face samples line up with integer coordinates.
    """
    if axis == 0:
        return lerp_centered(data, gx + 0.5, gy, gz)
    if axis == 1:
        return lerp_centered(data, gx, gy + 0.5, gz)
    return lerp_centered(data, gx, gy, gz + 0.5)


@wp.kernel
def sample_points_kernel(
    data: wp.array3d(dtype=float),
    points: wp.array1d(dtype=wp.vec3),
    axis: int,
    out: wp.array1d(dtype=float)
):
    tid = wp.tid()
    p = points[tid]

    # axis < 0 selects the cell-centered variant
    if axis < 0:
        out[tid] = lerp_centered(data, p[0], p[1], p[2])
    else:
        out[tid] = lerp_staggered(data, p[0], p[1], p[2], axis)


def sample_field(data: wp.array, points, axis=None) -> np.ndarray:
    """
    Evaluate the interpolation of a field at many lattice-space points.

    Args:
        data: 3D field array (centered or staggered)
        points: Array-like of shape (N, 3) in lattice space
        axis: Stagger axis of the field (0, 1, 2) or None for cell-centered

    Returns:
        Numpy array of N interpolated values
    """
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 3)
    if len(pts) == 0:
        return np.zeros(0, dtype=np.float32)
    if axis is not None and axis not in (0, 1, 2):
        raise ValueError(f"Stagger axis must be 0, 1, 2 or None, got {axis}")

    device = data.device
    points_wp = wp.array(pts, dtype=wp.vec3, device=device)
    out = wp.zeros(len(pts), dtype=float, device=device)

    wp.launch(
        kernel=sample_points_kernel,
        dim=len(pts),
        inputs=[data, points_wp, -1 if axis is None else int(axis), out],
        device=device
    )
    return out.numpy()
