"""Sparse Yee-grid operators used to verify and fold source currents.

Fields are stored as `[f_x, f_y, f_z]` with each component an array of the
grid shape, and vectorized in column-major (Fortran) order by `vec`. E- and
H-field values live on a Yee cell: `E_a` is shifted half a cell along `a`
from the grid point, `H_a` half a cell along both other axes. The `dxes`
argument holds the grid spacing as `[[dx_e, dy_e, dz_e], [dx_h, dy_h, dz_h]]`
where the primary (`_e`) widths are used when differentiating E and the dual
(`_h`) widths when differentiating H.

The time convention is `exp(+i omega t)`, so the E-field wave equation reads
`(curl curl / mu - omega**2 epsilon) E = -i omega J`.
"""
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sparse

from modesource import types


def vec(f: types.VecField) -> Optional[np.ndarray]:
    """Flattens a vector field `[f_x, f_y, f_z]` into a 1D array.

    Returns `None` if `f` is `None`.
    """
    if f is None:
        return None
    return np.hstack([np.asarray(fi).flatten(order="F") for fi in f])


def unvec(v: np.ndarray, shape: Sequence[int]) -> Optional[List[np.ndarray]]:
    """Inverse of `vec`: splits a 1D array back into three arrays of `shape`."""
    if v is None:
        return None
    return [vi.reshape(shape, order="F") for vi in np.split(v, 3)]


def shift_with_bloch(axis: int,
                     shape: Sequence[int],
                     shift_distance: int = 1,
                     bloch_phase: float = 0) -> sparse.spmatrix:
    """Circular shift by one cell along `axis` with a Bloch boundary phase.

    Row `i` of the operator picks the element `i + shift_distance` along
    `axis`. Elements that wrap around the domain pick up
    `exp(-i bloch_phase)` (forward) or `exp(+i bloch_phase)` (backward),
    consistent with fields that vary as `exp(-i k.r)`.

    Args:
        axis: Axis to shift along.
        shape: Shape of the grid.
        shift_distance: Either 1 or -1.
        bloch_phase: Bloch wavevector component times the domain length.

    Returns:
        Sparse matrix implementing the shift.
    """
    if shift_distance not in (-1, 1):
        raise ValueError(
            "Shift must be either 1 or -1, got {}".format(shift_distance))

    ind0 = np.meshgrid(*[np.arange(n) for n in shape], indexing="ij")
    ind = [np.copy(i) for i in ind0]
    ind[axis] += shift_distance

    data = np.ones(ind0[0].shape, dtype=complex)
    data[ind[axis] >= shape[axis]] *= np.exp(-1j * bloch_phase)
    data[ind[axis] < 0] *= np.exp(1j * bloch_phase)

    n = int(np.prod(shape))
    row_ind = np.ravel_multi_index(
        ind0, shape, mode="wrap", order="F").flatten(order="F")
    col_ind = np.ravel_multi_index(
        ind, shape, mode="wrap", order="F").flatten(order="F")
    return sparse.csr_matrix((data.flatten(order="F"), (row_ind, col_ind)),
                             shape=(n, n))


def _bloch_phases(dx: List[np.ndarray], bloch_vec: np.ndarray) -> np.ndarray:
    lengths = np.array([np.real(np.sum(d)) for d in dx])
    return lengths * bloch_vec


def deriv_forward(dx_e: List[np.ndarray],
                  bloch_vec: Optional[np.ndarray] = None
                 ) -> List[sparse.spmatrix]:
    """Forward-difference derivative operators along x, y and z."""
    if bloch_vec is None:
        bloch_vec = np.zeros(3)

    shape = [d.size for d in dx_e]
    n = int(np.prod(shape))
    phase = _bloch_phases(dx_e, bloch_vec)
    dx_expanded = np.meshgrid(*dx_e, indexing="ij")

    return [
        sparse.diags(1 / dx.flatten(order="F")) @
        (shift_with_bloch(axis, shape, 1, phase[axis]) - sparse.eye(n))
        for axis, dx in enumerate(dx_expanded)
    ]


def deriv_back(dx_h: List[np.ndarray],
               bloch_vec: Optional[np.ndarray] = None) -> List[sparse.spmatrix]:
    """Backward-difference derivative operators along x, y and z."""
    if bloch_vec is None:
        bloch_vec = np.zeros(3)

    shape = [d.size for d in dx_h]
    n = int(np.prod(shape))
    phase = _bloch_phases(dx_h, bloch_vec)
    dx_expanded = np.meshgrid(*dx_h, indexing="ij")

    return [
        sparse.diags(1 / dx.flatten(order="F")) @
        (sparse.eye(n) - shift_with_bloch(axis, shape, -1, phase[axis]))
        for axis, dx in enumerate(dx_expanded)
    ]


def cross(B: List[sparse.spmatrix]) -> sparse.spmatrix:
    """Cross product operator `(B x)` for `B = [Bx, By, Bz]`."""
    n = B[0].shape[0]
    zero = sparse.csr_matrix((n, n))
    return sparse.bmat([[zero, -B[2], B[1]], [B[2], zero, -B[0]],
                        [-B[1], B[0], zero]])


def curl_e(dxes: types.GridSpacing,
           bloch_vec: Optional[np.ndarray] = None) -> sparse.spmatrix:
    """Curl operator acting on E (result lives on H points)."""
    return cross(deriv_forward(dxes[0], bloch_vec))


def curl_h(dxes: types.GridSpacing,
           bloch_vec: Optional[np.ndarray] = None) -> sparse.spmatrix:
    """Curl operator acting on H (result lives on E points)."""
    return cross(deriv_back(dxes[1], bloch_vec))


def e_full(omega: complex,
           dxes: types.GridSpacing,
           epsilon: np.ndarray,
           mu: Optional[np.ndarray] = None,
           bloch_vec: Optional[np.ndarray] = None) -> sparse.spmatrix:
    """Wave operator `curl (1/mu) curl - omega**2 epsilon` acting on E.

    Args:
        omega: Angular frequency.
        dxes: Grid spacing (possibly complex, i.e. with PMLs applied).
        epsilon: Vectorized permittivity.
        mu: Vectorized permeability; 1 everywhere if `None`.
        bloch_vec: Bloch wavevector `[kx, ky, kz]`.

    Returns:
        Sparse wave operator.
    """
    ce = curl_e(dxes, bloch_vec)
    ch = curl_h(dxes, bloch_vec)
    if mu is None:
        m_div = sparse.eye(epsilon.size)
    else:
        m_div = sparse.diags(1 / mu)
    return ch @ m_div @ ce - omega**2 * sparse.diags(epsilon)


def e_full_preconditioners(dxes: types.GridSpacing
                          ) -> Tuple[sparse.spmatrix, sparse.spmatrix]:
    """Diagonal left/right preconditioners that symmetrize `e_full`."""
    p_squared = [
        dxes[0][0][:, None, None] * dxes[1][1][None, :, None] *
        dxes[1][2][None, None, :],
        dxes[1][0][:, None, None] * dxes[0][1][None, :, None] *
        dxes[1][2][None, None, :],
        dxes[1][0][:, None, None] * dxes[1][1][None, :, None] *
        dxes[0][2][None, None, :],
    ]
    p_vector = np.sqrt(vec(p_squared))
    return sparse.diags(p_vector), sparse.diags(1 / p_vector)


def e2h(omega: complex,
        dxes: types.GridSpacing,
        mu: Optional[np.ndarray] = None,
        bloch_vec: Optional[np.ndarray] = None) -> sparse.spmatrix:
    """Operator converting E into H, assuming no magnetic current."""
    op = curl_e(dxes, bloch_vec) / (-1j * omega)
    if mu is not None:
        op = sparse.diags(1 / mu) @ op
    return op


FieldFunction = Callable[[List[np.ndarray]], List[np.ndarray]]


def curl_h_fn(dxes: types.GridSpacing) -> FieldFunction:
    """Matrix-free curl of H with periodic wrapping.

    Only used on fields that are localized away from the domain boundary, so
    Bloch phases are not needed.
    """
    dxyz = np.meshgrid(*dxes[1], indexing="ij")

    def dh(f, axis):
        return (f - np.roll(f, 1, axis=axis)) / dxyz[axis]

    def curl(h: List[np.ndarray]) -> List[np.ndarray]:
        return [
            dh(h[2], 1) - dh(h[1], 2),
            dh(h[0], 2) - dh(h[2], 0),
            dh(h[1], 0) - dh(h[0], 1),
        ]

    return curl
