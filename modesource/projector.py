"""Projection of mode profiles onto unidirectional grid currents.

A mode crossing a surface can be reproduced on one side of it, and cancelled
on the other, by the equivalent surface currents `J = n x H` and
`M = -n x E`. On a Yee grid the surface sits half a cell behind the E-plane
of the source: `J` is placed on the E-plane itself using `H` carried back by
one cell with the mode's phase, and `M` is placed on the H-plane behind it
using `E` of the source plane. `M` is folded into an equivalent electric
current, `J += curl(M / mu) / (i omega)`, so the solver only needs `J`.

The phase that carries `H` between planes uses the normal wavenumber that the
grid itself supports for the mode's transverse wavevector, which makes the
launch exactly one-sided for planewaves on an axis-aligned plane. Profiles
whose cross-section is not aligned with the grid (e.g. rotated waveguides)
are interpolated onto the Yee points; the resulting imperfection is reported
as `ProjectedCurrent.interpolation_error` and measured by
`diagnostics.launched_power`.
"""
import dataclasses
import logging
from typing import List, Sequence, Tuple

import numpy as np

from modesource import direction as direction_utils
from modesource import errors
from modesource import grid as grid_module
from modesource import mode
from modesource import normalization
from modesource import operators
from modesource import types

logger = logging.getLogger(__name__)

# Interpolation error above which the projector logs a warning.
INTERPOLATION_WARNING = 1e-3

# Shortfall of the sampled power relative to the mode power above which a
# bounded profile counts as truncated by the source plane.
TRUNCATION_TOLERANCE = 0.02


@dataclasses.dataclass(frozen=True)
class SourcePlane:
    """Axis-aligned grid plane occupied by a source.

    Attributes:
        axis: Normal axis of the plane.
        index: Index of the E-plane along `axis`.
        slices: Grid slices covered by the plane; `slices[axis]` selects the
            single plane `index`.
    """
    axis: int
    index: int
    slices: types.Region

    @classmethod
    def from_region(cls, grid: grid_module.SimulationGrid,
                    center: Sequence[float],
                    size: Sequence[float]) -> "SourcePlane":
        """Locates the plane of a flat source region on the grid.

        Args:
            grid: Host grid.
            center: Center of the source region.
            size: Size of the region; exactly one in-grid dimension must be
                zero. Use `np.inf` to span the whole grid.

        Raises:
            InvalidSourceConfiguration: If the region is not a plane, lies
                on the grid boundary or covers no grid points.
        """
        center = np.asarray(center, dtype=float)
        size = np.asarray(size, dtype=float)
        flat = [a for a in range(grid.ndim) if size[a] == 0]
        if len(flat) != 1:
            raise errors.InvalidSourceConfiguration(
                "A source region must be flat along exactly one axis, got "
                "size {}".format(size))
        axis = flat[0]

        index = grid.index_of(axis, center[axis])
        if index < 1 or index > grid.shape[axis] - 2:
            raise errors.InvalidSourceConfiguration(
                "Source plane at index {} is too close to the grid boundary "
                "along axis {}.".format(index, axis))

        slices = []
        for a in range(3):
            if a == axis:
                slices.append(slice(index, index + 1))
                continue
            slc = grid.indices_within(a, center[a] - size[a] / 2,
                                      center[a] + size[a] / 2)
            if slc.stop <= slc.start:
                raise errors.InvalidSourceConfiguration(
                    "Source region {} +/- {} covers no grid points along "
                    "axis {}.".format(center, size / 2, a))
            slices.append(slc)
        return cls(axis, index, tuple(slices))


@dataclasses.dataclass(frozen=True, eq=False)
class ProjectedCurrent:
    """Spatial current distribution of a source, before scaling.

    Attributes:
        omega: Angular frequency of the mode.
        wavevector: Wavevector of the projected mode.
        axis: Normal axis of the source plane.
        polarity: +1 if the mode is launched towards increasing `axis`.
        index: E-plane index of the source.
        wavenumber: Normal wavenumber used for the half-cell phases.
        J: Electric current density on the whole grid, shape
            `(3, nx, ny, nz)`.
        E: Tangential E of the mode on the source E-plane.
        H: Tangential H of the mode on the H-plane half a cell downstream.
        power: Power carried by `E` and `H` through the plane.
        interpolation_error: Relative difference between linear and cubic
            resampling of the profile onto the plane; 0 if not measurable.
        rotated: Whether the profile's cross-section is tilted relative to
            the source plane.
        region: Bounding slices of the non-zero current.
    """
    omega: float
    wavevector: np.ndarray
    axis: int
    polarity: int
    index: int
    wavenumber: float
    J: np.ndarray
    E: List[np.ndarray]
    H: List[np.ndarray]
    power: float
    interpolation_error: float
    rotated: bool
    region: types.Region

    @property
    def values(self) -> np.ndarray:
        """The current restricted to `region`."""
        return self.J[(slice(None),) + tuple(self.region)]


def normal_wavenumber(wavevector: np.ndarray,
                      axis: int,
                      dxes: types.GridSpacing,
                      index: int,
                      dispersion_correction: bool = True) -> float:
    """Wavenumber normal to a grid plane for a mode of given wavevector.

    Given the transverse wavevector, the Yee dispersion relation
    `sum_a (2 / dx_a sin(k_a dx_a / 2))**2 = |k|**2` fixes the normal
    component supported by the grid.

    Args:
        wavevector: Wavevector of the mode.
        axis: Normal axis.
        dxes: Grid spacing.
        index: Plane index, selecting the normal cell width.
        dispersion_correction: If `False`, returns `|k_axis|` unchanged.

    Returns:
        The (non-negative) normal wavenumber.
    """
    k = np.asarray(wavevector, dtype=float)
    if not dispersion_correction:
        return float(abs(k[axis]))

    k_transverse_sq = 0
    for a in range(3):
        if a == axis:
            continue
        dx = np.real(dxes[0][a][0])
        k_transverse_sq += (2 / dx * np.sin(k[a] * dx / 2))**2
    k_normal = np.sqrt(max(np.dot(k, k) - k_transverse_sq, 0))

    dx_normal = np.real(dxes[0][axis][index])
    arg = k_normal * dx_normal / 2
    if arg >= 1:
        raise errors.InvalidSourceConfiguration(
            "Grid is too coarse to support wavenumber {:.6g} along axis "
            "{}.".format(k_normal, axis))
    return float(2 / dx_normal * np.arcsin(arg))


def _bounding_region(mask: np.ndarray) -> types.Region:
    nonzero = np.nonzero(mask)
    if nonzero[0].size == 0:
        raise errors.InvalidSourceConfiguration("Projected current vanishes.")
    return tuple(slice(int(ind.min()), int(ind.max()) + 1) for ind in nonzero)


def _check_truncation(profile: mode.ModeProfile, power: float,
                      half_phase: float) -> None:
    """Rejects bounded profiles that the source plane only partly covers.

    The sampled power pairs E with H half a cell downstream, which lowers it
    by `cos(half_phase)` relative to the power of the profile itself.
    """
    expected = normalization.mode_power(profile) * np.cos(half_phase)
    if expected <= 0:
        return
    if power < (1 - TRUNCATION_TOLERANCE) * expected:
        raise errors.InvalidSourceConfiguration(
            "Source plane captures only {:.3g} of the mode power; the mode "
            "is truncated by the source region.".format(power / expected))


class CurrentProjector:
    """Converts mode profiles into currents on a fixed source plane."""

    def __init__(self, grid: grid_module.SimulationGrid,
                 plane: SourcePlane) -> None:
        self.grid = grid
        self.plane = plane

    def _plane_points(self, component: str) -> Tuple[np.ndarray, Tuple]:
        """Yee points of `component` on the plane, projected onto the E-plane.

        Returns:
            Tuple `(points, shape)` with `points` an `(N, 3)` array.
        """
        axis = self.plane.axis
        coords = list(self.grid.yee_positions(component))
        coords[axis] = self.grid.grid_points(axis)
        selected = [coords[a][self.plane.slices[a]] for a in range(3)]
        grids = np.meshgrid(*selected, indexing="ij")
        points = np.stack([g.ravel() for g in grids], axis=-1)
        return points, grids[0].shape

    def _check_placement(self, profile: mode.ModeProfile,
                         dx_normal: float) -> None:
        """Requires the profile's cross-section to pass through the plane."""
        axis = self.plane.axis
        position = self.grid.grid_points(axis)[self.plane.index]
        offset = abs(profile.origin[axis] - position)
        if offset > dx_normal / 2 * (1 + 1e-9):
            raise errors.InvalidSourceConfiguration(
                "Profile origin {} lies {:.3g} away from the source plane at "
                "{:.6g} along axis {}.".format(tuple(profile.origin), offset,
                                               position, axis))

    def _resolve_polarity(self, profile: mode.ModeProfile,
                          direction: direction_utils.SourceDirection) -> int:
        axis = self.plane.axis
        if direction.is_explicit and direction.axis != axis:
            raise errors.InvalidSourceConfiguration(
                "Direction {} does not match the source plane normal along "
                "axis {}.".format(direction.name, axis))
        k = profile.wavevector
        k_normal = k[axis]
        if abs(k_normal) <= direction_utils.AXIS_TOLERANCE * np.linalg.norm(k):
            raise errors.InvalidSourceConfiguration(
                "Mode propagates parallel to the source plane.")
        return int(np.sign(k_normal))

    def project(self,
                profile: mode.ModeProfile,
                direction: direction_utils.SourceDirection = direction_utils.
                SourceDirection.AUTOMATIC,
                dispersion_correction: bool = True) -> ProjectedCurrent:
        """Builds the unidirectional current for `profile`.

        Args:
            profile: Mode to launch.
            direction: Launch direction; explicit axes must match the plane.
            dispersion_correction: Use the grid's normal wavenumber for the
                half-cell phases instead of the continuum one.

        Returns:
            The projected current.

        Raises:
            InvalidSourceConfiguration: If the profile does not fit the grid,
                propagates parallel to the plane, or is bounded and either
                lies off the plane or is truncated by the source region.
        """
        grid = self.grid
        axis = self.plane.axis
        index = self.plane.index
        if len(profile.transverse_axes) != grid.ndim - 1:
            raise errors.InvalidSourceConfiguration(
                "A {}D simulation needs a profile with {} transverse axes, "
                "got {}.".format(grid.ndim, grid.ndim - 1,
                                 len(profile.transverse_axes)))

        polarity = self._resolve_polarity(profile, direction)
        dxes = grid.dxes
        dx_normal = np.real(dxes[1][axis][index])
        wavenumber = normal_wavenumber(profile.wavevector, axis, dxes, index,
                                       dispersion_correction)
        rotated = abs(abs(profile.normal[axis]) - 1) > mode.AXES_TOLERANCE
        if not profile.unbounded:
            self._check_placement(profile, dx_normal)

        shape = grid.shape
        E = [np.zeros(shape, dtype=complex) for _ in range(3)]
        H = [np.zeros(shape, dtype=complex) for _ in range(3)]
        residual = 0.0
        norm = 0.0
        can_estimate = all(c.size >= 4 for c in profile.coords)
        for a in range(3):
            if a == axis:
                continue
            for fields, component in ((E, types.E_COMPONENTS[a]),
                                      (H, types.H_COMPONENTS[a])):
                points, plane_shape = self._plane_points(component)
                values = profile.sample(component, points)
                fields[a][self.plane.slices] = values.reshape(plane_shape)
                if can_estimate:
                    cubic = profile.sample(component, points, method="cubic")
                    residual += np.sum(np.abs(values - cubic)**2)
                    norm += np.sum(np.abs(values)**2)
        interpolation_error = float(np.sqrt(residual / norm)) if norm else 0.0

        # H is sampled on the E-plane; move it half a cell downstream.
        h_shift = np.exp(-1j * polarity * wavenumber * dx_normal / 2)
        H = [h * h_shift for h in H]

        power = polarity * normalization.plane_flux(
            E, H, dxes, axis, index, ndim=grid.ndim)
        if not profile.unbounded:
            _check_truncation(profile, power, wavenumber * dx_normal / 2)
        J = self._equivalent_current(E, H, profile.frequency, polarity,
                                     wavenumber)
        region = _bounding_region(np.any(J != 0, axis=0))

        logger.info("Projected band {} onto plane {} along axis {} "
                    "(polarity {:+d}, power {:.6g}).".format(
                        profile.band, index, axis, polarity, power))
        if rotated and interpolation_error > INTERPOLATION_WARNING:
            logger.warning(
                "Profile is tilted relative to the grid; interpolation error "
                "{:.3g} limits unidirectionality.".format(interpolation_error))

        return ProjectedCurrent(omega=profile.frequency,
                                wavevector=np.array(profile.wavevector),
                                axis=axis,
                                polarity=polarity,
                                index=index,
                                wavenumber=wavenumber,
                                J=J,
                                E=E,
                                H=H,
                                power=float(power),
                                interpolation_error=interpolation_error,
                                rotated=rotated,
                                region=region)

    def _equivalent_current(self, E: List[np.ndarray], H: List[np.ndarray],
                            omega: float, polarity: int,
                            wavenumber: float) -> np.ndarray:
        """Folds `J = n x H` and `M = -n x E` into one electric current."""
        axis = self.plane.axis
        dxes = self.grid.dxes
        dx_normal = np.real(dxes[1][axis][self.plane.index])
        b, c = (axis + 1) % 3, (axis + 2) % 3

        center = np.array([
            np.mean(self.grid.grid_points(a)[self.plane.slices[a]])
            for a in range(3)
        ])
        mu = float(self.grid.permeability_at(center)[0])

        # Carry H back from the H-plane downstream to the one behind.
        exp_iphi = np.exp(1j * polarity * wavenumber * dx_normal)
        J = [np.zeros_like(E[0]) for _ in range(3)]
        J[c] = polarity * exp_iphi * H[b]
        J[b] = -polarity * exp_iphi * H[c]

        M = [np.zeros_like(E[0]) for _ in range(3)]
        M[c] = -polarity * np.roll(E[b], -1, axis=axis)
        M[b] = polarity * np.roll(E[c], -1, axis=axis)

        curl_m = operators.curl_h_fn(dxes)([m / mu for m in M])
        return np.array([J[i] + curl_m[i] / (1j * omega) for i in range(3)
                        ]) / dx_normal
