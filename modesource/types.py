"""This module defines types for the package."""
from typing import List, Tuple, Union

import numpy as np

# A scalar field over the simulation grid, shape `(nx, ny, nz)`.
ScalarField = np.ndarray
# A 3D vector field, i.e. three components for every point in space.
VecField = Union[Tuple[ScalarField, ScalarField, ScalarField], np.ndarray]
# A 3D real vector.
Vec3d = Union[Tuple[float, float, float], np.ndarray]
# Grid spacing: primary (E) and dual (H) spacings, each a list of three 1D
# arrays holding the cell widths along x, y and z.
GridSpacing = List[List[np.ndarray]]
# Number of PML cells on each side of the domain, ordered
# x-, x+, y-, y+, z-, z+.
PmlLayers = Tuple[int, int, int, int, int, int]
# Slices selecting a region of a scalar field.
Region = Tuple[slice, slice, slice]

# Field component names, in vector order.
E_COMPONENTS = ("Ex", "Ey", "Ez")
H_COMPONENTS = ("Hx", "Hy", "Hz")
FIELD_COMPONENTS = E_COMPONENTS + H_COMPONENTS
