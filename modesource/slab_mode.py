"""Mode solver for straight waveguides in 2D simulations.

The host permittivity is sampled along the line through the request origin
perpendicular to the propagation direction, and the 1D eigenproblem

    K(beta) e = omega**2 M e

is solved at fixed propagation constant `beta`. For `ODD_Z` modes the unknown
is `Ez` with `K = -d^2/du^2 + beta**2` and `M = mu eps`; for `EVEN_Z` modes it
is `Hz` with `K = -d/du (1/eps) d/du + beta**2 / eps` and `M = mu`. The field
vanishes just outside the cross-section.

Since `dK/dbeta = 2 beta W` (with `W = 1` or `1/eps`), the group velocity
follows from first-order perturbation theory as
`beta (e.W e) / (omega (e.M e))`, which is what makes the Newton iteration in
`mode.acquire_mode` converge quadratically.

Y parity refers to the mirror through the waveguide axis, i.e. `u -> -u`.
"""
import logging
from typing import Optional, Tuple

import numpy as np
import scipy.linalg

from modesource import errors
from modesource import grid as grid_module
from modesource import mode

logger = logging.getLogger(__name__)

# Relative field amplitude at the cross-section edge above which a warning is
# logged.
EDGE_FIELD_WARNING = 1e-2


class SlabModeSolver(mode.ModeSolver):
    """Solves for in-plane modes of a 2D grid along a 1D cross-section."""

    def __init__(self,
                 grid: grid_module.SimulationGrid,
                 resolution: Optional[float] = None,
                 num_modes: int = 8) -> None:
        """Creates a new solver.

        Args:
            grid: Grid providing the host permittivity.
            resolution: Samples per unit length along the cross-section.
                Defaults to four times the finest in-plane grid resolution.
            num_modes: Minimum number of eigenpairs computed per solve.
        """
        self.grid = grid
        if resolution is None:
            spacing = min(
                np.min(np.real(grid.dxes[0][axis])) for axis in range(2))
            resolution = 4 / spacing
        self.resolution = resolution
        self.num_modes = num_modes

    def _frame(self, request: mode.ModeRequest
              ) -> Tuple[float, np.ndarray, np.ndarray]:
        k = np.asarray(request.wavevector, dtype=float)
        beta = np.linalg.norm(k)
        if beta == 0:
            raise errors.InvalidSourceConfiguration(
                "Slab modes need a non-zero wavevector.")
        if abs(k[2]) > mode.AXES_TOLERANCE * beta:
            raise errors.InvalidSourceConfiguration(
                "Slab modes propagate in the xy plane, got wavevector "
                "{}".format(k))
        s = k / beta
        # (s, t, z) is right-handed.
        t = np.cross([0, 0, 1], s)
        return beta, s, t

    def _coordinates(self, extent: float) -> np.ndarray:
        half = max(2, int(np.ceil(extent * self.resolution / 2)))
        return np.linspace(-extent / 2, extent / 2, 2 * half + 1)

    def solve(self, request: mode.ModeRequest) -> mode.ModeProfile:
        beta, s, t = self._frame(request)
        parity = mode.check_parity(request.parity)
        te = mode.Parity.EVEN_Z in parity

        u = self._coordinates(request.extent)
        h = u[1] - u[0]
        points = np.asarray(request.origin, dtype=float) + np.outer(u, t)
        eps = self.grid.permittivity_at(points)
        mu = float(np.mean(self.grid.permeability_at(points)))

        stiffness, mass, weight = _operators(beta, eps, mu, h, te)
        num_eigs = min(u.size, max(self.num_modes, 2 * request.band + 4))
        omega_sq, vecs = scipy.linalg.eigh(stiffness,
                                           mass,
                                           subset_by_index=[0, num_eigs - 1])

        candidates = [
            i for i in range(num_eigs)
            if _matches_parity(vecs[:, i], parity, te)
        ]
        if len(candidates) <= request.band:
            raise errors.ModeNotFound(
                "Only {} modes with parity {} found, requested band {}.".format(
                    len(candidates), sorted(p.name for p in parity),
                    request.band))

        index = candidates[request.band]
        omega = np.sqrt(omega_sq[index])
        e = vecs[:, index]
        e = e * np.sign(e[np.argmax(np.abs(e))])
        group_velocity = beta * (e @ (weight * e)) / (omega * (e @ mass @ e))

        fields = _vector_fields(e, beta, omega, eps, mu, h, s, t, te)

        if te:
            parity = parity | {mode.Parity.EVEN_Z}
        else:
            parity = parity | {mode.Parity.ODD_Z}
        return mode.ModeProfile(frequency=float(omega),
                                wavevector=beta * s,
                                origin=np.asarray(request.origin, dtype=float),
                                transverse_axes=(t,),
                                coords=(u,),
                                fields=fields,
                                parity=parity,
                                band=request.band,
                                group_velocity=float(group_velocity))

    def validate(self, profile: mode.ModeProfile) -> None:
        """Rejects modes that are not guided by the structure."""
        t = profile.transverse_axes[0]
        u = profile.coords[0]
        edges = profile.origin + np.outer([u[0], u[-1]], t)
        n_clad = np.sqrt(
            np.max(
                self.grid.permittivity_at(edges) *
                self.grid.permeability_at(edges)))
        if profile.propagation_constant <= profile.frequency * n_clad:
            raise errors.ModeNotFound(
                "Band {} is not guided: propagation constant {:.6g} is below "
                "the cladding light line {:.6g}.".format(
                    profile.band, profile.propagation_constant,
                    profile.frequency * n_clad))

        scalar = profile.fields["Hz" if mode.Parity.EVEN_Z in
                                profile.parity else "Ez"]
        edge_ratio = np.max(np.abs(scalar[[0, -1]])) / np.max(np.abs(scalar))
        if edge_ratio > EDGE_FIELD_WARNING:
            logger.warning(
                "Mode field at the cross-section edge is {:.2g} of its peak; "
                "consider a wider cross-section.".format(edge_ratio))


def _operators(beta: float, eps: np.ndarray, mu: float, h: float,
               te: bool) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Builds stiffness, mass and `dK/dbeta / (2 beta)` weight."""
    n = eps.size
    if te:
        inv_eps_half = np.empty(n + 1)
        inv_eps_half[0] = 1 / eps[0]
        inv_eps_half[-1] = 1 / eps[-1]
        inv_eps_half[1:-1] = 2 / (eps[:-1] + eps[1:])
        stiffness = (np.diag(inv_eps_half[:-1] + inv_eps_half[1:]) -
                     np.diag(inv_eps_half[1:-1], 1) -
                     np.diag(inv_eps_half[1:-1], -1)) / h**2
        weight = 1 / eps
        stiffness += beta**2 * np.diag(weight)
        mass = mu * np.eye(n)
    else:
        stiffness = (2 * np.eye(n) - np.eye(n, k=1) - np.eye(n, k=-1)) / h**2
        stiffness += beta**2 * np.eye(n)
        weight = np.ones(n)
        mass = mu * np.diag(eps)
    return stiffness, mass, weight


def _matches_parity(e: np.ndarray, parity, te: bool) -> bool:
    """Checks the mirror symmetry of the scalar field `e` about `u = 0`."""
    # Hz is a pseudovector component, so its symmetry is flipped relative to
    # the electric field.
    if mode.Parity.EVEN_Y in parity:
        want_symmetric = not te
    elif mode.Parity.ODD_Y in parity:
        want_symmetric = te
    else:
        return True

    overlap = (e @ e[::-1]) / (e @ e)
    if want_symmetric:
        return overlap > 0.5
    return overlap < -0.5


def _vector_fields(e: np.ndarray, beta: float, omega: float, eps: np.ndarray,
                   mu: float, h: float, s: np.ndarray, t: np.ndarray,
                   te: bool):
    """Cartesian E and H envelopes of a slab mode, normalized to unit power."""
    de = np.gradient(e, h)
    zero = np.zeros_like(e)
    if te:
        e_t = beta * e / (omega * eps)
        e_s = -1j * de / (omega * eps)
        e_vec = [e_t * t[i] + e_s * s[i] for i in range(2)] + [zero]
        h_vec = [zero, zero, e]
        power = 0.5 * beta / omega * np.sum(np.abs(e)**2 / eps) * h
    else:
        h_t = -beta * e / (omega * mu)
        h_s = 1j * de / (omega * mu)
        e_vec = [zero, zero, e]
        h_vec = [h_t * t[i] + h_s * s[i] for i in range(2)] + [zero]
        power = 0.5 * beta / (omega * mu) * np.sum(np.abs(e)**2) * h

    norm = 1 / np.sqrt(power)
    fields = {}
    for i, axis in enumerate("xyz"):
        fields["E" + axis] = norm * np.asarray(e_vec[i], dtype=complex)
        fields["H" + axis] = norm * np.asarray(h_vec[i], dtype=complex)
    return fields
