"""Stretched-coordinate PMLs for the verification solves.

The PML is applied by giving the outermost cells a complex width, so it only
modifies `dxes` and leaves the wave operator untouched.
"""
import itertools
from typing import Callable, Optional, Union

import numpy as np

from modesource import types

SFunction = Callable[[np.ndarray], np.ndarray]


def prepare_s_function(ln_R: float = -16, m: float = 4) -> SFunction:
    """Create an s-function for use with `stretch_with_scpml`.

    Args:
        ln_R: Natural logarithm of the desired reflectance.
        m: Polynomial order of the conductivity profile.

    Returns:
        Function of the normalized depth into the PML returning the imaginary
        part of the stretch factor (before division by the PML thickness,
        `sqrt(epsilon_effective)` and `omega`).
    """

    def s_factor(distance: np.ndarray) -> np.ndarray:
        # Halved since the wave crosses the layer twice before returning.
        s_max = (m + 1) * ln_R / 2
        return s_max * distance**m

    return s_factor


def stretch_with_scpml(dxes: types.GridSpacing,
                       axis: int,
                       polarity: int,
                       omega: float,
                       epsilon_effective: float = 1.0,
                       thickness: int = 10,
                       s_function: Optional[SFunction] = None
                      ) -> types.GridSpacing:
    """Stretches `dxes` to hold a PML on one side of one axis.

    Follows the `fdfd_tools.grid.stretch_with_scpml` routine of spins-b, with
    one difference: `polarity` names the end of the axis that receives the
    layer (-1 for the low end) instead of the direction of the stretch, so
    `polarity=-1` here corresponds to `polarity=+1` there.

    Args:
        dxes: Grid spacing to modify (modified in place and returned).
        axis: Axis to stretch.
        polarity: -1 for the low end of the axis, +1 for the high end.
        omega: Angular frequency of PML operation.
        epsilon_effective: Permittivity of the material entering the PML.
        thickness: Number of PML cells.
        s_function: Conductivity profile, see `prepare_s_function`.

    Returns:
        The stretched grid spacing.
    """
    if s_function is None:
        s_function = prepare_s_function()

    dx_e = dxes[0][axis].astype(complex)
    dx_h = dxes[1][axis].astype(complex)

    pos = np.hstack((0, np.real(dx_e).cumsum()))
    pos_e = (pos[:-1] + pos[1:]) / 2
    pos_h = pos[:-1]

    s_correction = np.sqrt(epsilon_effective) * np.real(omega)

    if polarity < 0:
        bound = pos[thickness]
        depth = bound - pos[0]

        def normalized_depth(x):
            return (bound - x) / depth

        slc = slice(thickness)
    else:
        bound = pos[-thickness - 1]
        depth = pos[-1] - bound

        def normalized_depth(x):
            return (x - bound) / depth

        slc = slice(-thickness, None)

    dx_e[slc] *= (1 + 1j * s_function(normalized_depth(pos_e[slc])) / depth /
                  s_correction)
    dx_h[slc] *= (1 + 1j * s_function(normalized_depth(pos_h[slc])) / depth /
                  s_correction)

    dxes[0][axis] = dx_e
    dxes[1][axis] = dx_h
    return dxes


def apply_scpml(dxes: types.GridSpacing,
                pml_layers: Optional[Union[int, types.PmlLayers]],
                omega: float,
                epsilon_effective: float = 1.0) -> types.GridSpacing:
    """Applies PMLs to a copy of the grid spacing.

    Args:
        dxes: Grid spacing.
        pml_layers: Number of PML cells on each side, ordered
            x-, x+, y-, y+, z-, z+. A scalar applies the same thickness on
            every side; `None` applies no PML.
        omega: Angular frequency of PML operation.
        epsilon_effective: Permittivity of the material entering the PML.

    Returns:
        A new grid spacing with the PMLs applied.
    """
    dxes = [[np.array(dxes[grid][i]) for i in range(3)] for grid in range(2)]

    if not pml_layers:
        return dxes

    if isinstance(pml_layers, int):
        pml_layers = [pml_layers] * 6

    for thickness, (axis, polarity) in zip(
            pml_layers, itertools.product(range(3), [-1, 1])):
        if thickness > 0:
            dxes = stretch_with_scpml(dxes,
                                      axis=axis,
                                      polarity=polarity,
                                      omega=omega,
                                      epsilon_effective=epsilon_effective,
                                      thickness=thickness)
    return dxes
