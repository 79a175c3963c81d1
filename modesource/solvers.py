"""Frequency-domain solves used to verify injected currents.

A current that launches a mode in one direction in the time domain does the
same at its carrier frequency, so the fields it radiates can be checked with
a single sparse solve of `(curl curl / mu - omega**2 eps) E = -i omega J`.
"""
import abc
import logging
from typing import List, Optional, Union

import numpy as np
import scipy.sparse
import scipy.sparse.linalg

from modesource import operators
from modesource import pml
from modesource import types

logger = logging.getLogger(__name__)


class LocalMatrixSolver(metaclass=abc.ABCMeta):
    """Base class for solvers that rely on a generic sparse matrix solve."""

    @abc.abstractmethod
    def solve_matrix_equation(self, A: scipy.sparse.csr_matrix,
                              b: np.ndarray) -> np.ndarray:
        """Solve matrix equation Ax = b.

        Args:
            A: The matrix A.
            b: The vector b.

        Returns:
            x satisfying Ax = b.
        """
        raise NotImplementedError("solve_matrix_equation not implemented")

    def solve(self,
              omega: complex,
              dxes: types.GridSpacing,
              J: np.ndarray,
              epsilon: np.ndarray,
              pml_layers: Optional[Union[int, types.PmlLayers]] = None,
              mu: Optional[np.ndarray] = None,
              bloch_vec: Optional[np.ndarray] = None,
              pml_epsilon: float = 1.0) -> np.ndarray:
        """Solves for the vectorized E-field radiated by `J`.

        Args:
            omega: Angular frequency.
            dxes: Grid spacing, without PMLs.
            J: Vectorized current density.
            epsilon: Vectorized permittivity.
            pml_layers: PML thicknesses, see `pml.apply_scpml`.
            mu: Vectorized permeability.
            bloch_vec: Bloch wavevector for periodic boundaries.
            pml_epsilon: Permittivity of the material entering the PMLs.

        Returns:
            The vectorized E-field.
        """
        if bloch_vec is None:
            bloch_vec = np.zeros(3)

        dxes = pml.apply_scpml(dxes, pml_layers, omega, pml_epsilon)

        b0 = -1j * omega * J
        A0 = operators.e_full(omega,
                              dxes,
                              epsilon=epsilon,
                              mu=mu,
                              bloch_vec=bloch_vec)
        Pl, Pr = operators.e_full_preconditioners(dxes)

        A = Pl @ A0 @ Pr
        b = Pl @ b0
        x = self.solve_matrix_equation(A.astype(np.complex128).tocsr(), b)
        return Pr @ x


class DirectSolver(LocalMatrixSolver):
    """Sparse direct solve using `scipy.sparse.linalg.spsolve`."""

    def solve_matrix_equation(self, A, b):
        return scipy.sparse.linalg.spsolve(A, b)


def solve_fields(omega: float,
                 dxes: types.GridSpacing,
                 J: np.ndarray,
                 epsilon: List[np.ndarray],
                 pml_layers: Optional[Union[int, types.PmlLayers]] = None,
                 bloch_vec: Optional[np.ndarray] = None,
                 mu: Optional[List[np.ndarray]] = None,
                 pml_epsilon: float = 1.0,
                 solver: Optional[LocalMatrixSolver] = None):
    """Solves for the E- and H-fields radiated by a current on the grid.

    Args:
        omega: Angular frequency.
        dxes: Grid spacing, without PMLs.
        J: Current density of shape `(3, nx, ny, nz)`.
        epsilon: Permittivity at the Ex, Ey and Ez points.
        pml_layers: PML thicknesses, see `pml.apply_scpml`.
        bloch_vec: Bloch wavevector for periodic boundaries.
        mu: Permeability at the Hx, Hy and Hz points.
        pml_epsilon: Permittivity of the material entering the PMLs.
        solver: Matrix solver; defaults to `DirectSolver`.

    Returns:
        Tuple `(E, H)` of field lists `[f_x, f_y, f_z]`.
    """
    if solver is None:
        solver = DirectSolver()
    shape = epsilon[0].shape
    mu_vec = operators.vec(mu)

    logger.debug("Solving for fields on a {} grid at omega = {:.6g}.".format(
        shape, omega))
    e = solver.solve(omega,
                     dxes,
                     operators.vec(J),
                     operators.vec(epsilon),
                     pml_layers=pml_layers,
                     mu=mu_vec,
                     bloch_vec=bloch_vec,
                     pml_epsilon=pml_epsilon)

    stretched = pml.apply_scpml(dxes, pml_layers, omega, pml_epsilon)
    h = operators.e2h(omega, stretched, mu_vec, bloch_vec) @ e
    return operators.unvec(e, shape), operators.unvec(h, shape)
