"""Mode profiles and their acquisition.

A `ModeProfile` is the only object that crosses the boundary between a mode
solver and the source code. It stores the slowly varying envelope of every
field component on the cross-sectional plane together with the wavevector;
the full field at a point `r` is `envelope(r) * exp(-i k.(r - origin))`.

Mode solvers implement `ModeSolver.solve`, which returns the mode at a given
wavevector (the frequency is an output). `acquire_mode` wraps a solver with
the frequency-matching iteration that refines the propagation constant until
the mode's frequency equals the source frequency. Planewaves in homogeneous
media are built in closed form by `planewave_profile` and never go through a
solver.
"""
import abc
import dataclasses
import enum
import logging
import types as pytypes
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy import interpolate

from modesource import direction as direction_utils
from modesource import errors
from modesource import types

logger = logging.getLogger(__name__)

# Tolerance used when checking that the transverse axes are orthonormal.
AXES_TOLERANCE = 1e-6


class Parity(enum.Enum):
    """Mirror symmetry of a mode.

    Parity refers to the electric field as a vector: an `EVEN_Y` mode
    satisfies `E(x, -y, z) = M_y E(x, y, z)` with `M_y` the mirror flipping the
    y component. For a 2D simulation `ODD_Z` modes have `E = Ez z` and
    `EVEN_Z` modes have `H = Hz z`.
    """
    EVEN_Y = "even_y"
    ODD_Y = "odd_y"
    EVEN_Z = "even_z"
    ODD_Z = "odd_z"


def check_parity(parity: Iterable[Parity]) -> FrozenSet[Parity]:
    """Validates a parity set, rejecting contradictory constraints."""
    parity = frozenset(parity)
    for even, odd in ((Parity.EVEN_Y, Parity.ODD_Y), (Parity.EVEN_Z,
                                                      Parity.ODD_Z)):
        if even in parity and odd in parity:
            raise errors.InvalidSourceConfiguration(
                "Parity cannot be both {} and {}.".format(even.name, odd.name))
    return parity


def _frozen_array(value, dtype=None) -> np.ndarray:
    arr = np.array(value, dtype=dtype)
    arr.setflags(write=False)
    return arr


def _interpolate(coords: Tuple[np.ndarray, ...], values: np.ndarray,
                 points: np.ndarray, method: str,
                 fill_value: Optional[float]) -> np.ndarray:
    """Interpolates complex `values` on the grid `coords` at `points`."""
    result = np.zeros(points.shape[0], dtype=complex)
    for part, unit in ((np.real(values), 1), (np.imag(values), 1j)):
        if not np.any(part):
            continue
        interp = interpolate.RegularGridInterpolator(coords,
                                                     part,
                                                     method=method,
                                                     bounds_error=False,
                                                     fill_value=fill_value)
        result += unit * interp(points)
    return result


@dataclasses.dataclass(frozen=True, eq=False)
class ModeProfile:
    """Immutable description of a transverse mode.

    Attributes:
        frequency: Angular frequency of the mode.
        wavevector: Propagation constant as a 3-vector.
        origin: A point on the cross-sectional plane; the phase reference.
        transverse_axes: Orthonormal vectors spanning the cross-section, one
            for 2D simulations and two for 3D.
        coords: Sample coordinates along each transverse axis.
        fields: Complex envelope of each Cartesian field component
            (`"Ex"` to `"Hz"`) sampled on the `coords` grid. Missing
            components are zero.
        parity: Mirror symmetries of the mode.
        band: Band index within the parity class, counting from 0.
        group_velocity: Group velocity, if the solver reports it.
        unbounded: If `True`, the envelope extends past the samples (e.g. for
            planewaves); otherwise it is zero outside.
    """
    frequency: float
    wavevector: np.ndarray
    origin: np.ndarray
    transverse_axes: Tuple[np.ndarray, ...]
    coords: Tuple[np.ndarray, ...]
    fields: Mapping[str, np.ndarray]
    parity: FrozenSet[Parity] = frozenset()
    band: int = 0
    group_velocity: Optional[float] = None
    unbounded: bool = False

    def __post_init__(self):
        setter = lambda name, value: object.__setattr__(self, name, value)

        if not np.isfinite(self.frequency) or self.frequency <= 0:
            raise errors.InvalidSourceConfiguration(
                "Mode frequency must be positive, got {}".format(
                    self.frequency))
        if self.band < 0:
            raise errors.InvalidSourceConfiguration(
                "Band index must be non-negative, got {}".format(self.band))
        setter("parity", check_parity(self.parity))

        wavevector = _frozen_array(self.wavevector, float)
        origin = _frozen_array(self.origin, float)
        if wavevector.shape != (3,) or origin.shape != (3,):
            raise errors.InvalidSourceConfiguration(
                "Wavevector and origin must be 3-vectors.")
        setter("wavevector", wavevector)
        setter("origin", origin)

        axes = tuple(_frozen_array(t, float) for t in self.transverse_axes)
        if len(axes) not in (1, 2):
            raise errors.InvalidSourceConfiguration(
                "A mode profile needs one or two transverse axes, got {}".format(
                    len(axes)))
        gram = np.array([[np.dot(a, b) for b in axes] for a in axes])
        if not np.allclose(gram, np.eye(len(axes)), atol=AXES_TOLERANCE):
            raise errors.InvalidSourceConfiguration(
                "Transverse axes must be orthonormal.")
        setter("transverse_axes", axes)

        coords = tuple(_frozen_array(c, float) for c in self.coords)
        if len(coords) != len(axes):
            raise errors.InvalidSourceConfiguration(
                "Expected {} coordinate arrays, got {}".format(
                    len(axes), len(coords)))
        for c in coords:
            if c.ndim != 1 or c.size < 2 or np.any(np.diff(c) <= 0):
                raise errors.InvalidSourceConfiguration(
                    "Sample coordinates must be increasing with at least two "
                    "points.")
        setter("coords", coords)

        shape = tuple(c.size for c in coords)
        unknown = set(self.fields) - set(types.FIELD_COMPONENTS)
        if unknown:
            raise errors.InvalidSourceConfiguration(
                "Unknown field components: {}".format(sorted(unknown)))
        fields = {}
        for component in types.FIELD_COMPONENTS:
            if component in self.fields:
                value = _frozen_array(self.fields[component], complex)
            else:
                value = _frozen_array(np.zeros(shape), complex)
            if value.shape != shape:
                raise errors.InvalidSourceConfiguration(
                    "Field {} has shape {}, expected {}".format(
                        component, value.shape, shape))
            fields[component] = value
        setter("fields", pytypes.MappingProxyType(fields))

    @property
    def propagation_constant(self) -> float:
        return float(np.linalg.norm(self.wavevector))

    @property
    def direction(self) -> np.ndarray:
        """Unit vector along the wavevector."""
        beta = self.propagation_constant
        if beta == 0:
            raise errors.InvalidSourceConfiguration(
                "Mode has no propagation direction.")
        return self.wavevector / beta

    @property
    def normal(self) -> np.ndarray:
        """Unit normal of the cross-section, oriented along the wavevector."""
        if len(self.transverse_axes) == 1:
            normal = np.cross(self.transverse_axes[0], [0, 0, 1])
        else:
            normal = np.cross(self.transverse_axes[0], self.transverse_axes[1])
        if np.dot(normal, self.wavevector) < 0:
            normal = -normal
        return normal

    def points(self) -> np.ndarray:
        """Coordinates of every sample, as an `(N, 3)` array (C order)."""
        grids = np.meshgrid(*self.coords, indexing="ij")
        points = np.tile(self.origin, (grids[0].size, 1))
        for axis, grid in zip(self.transverse_axes, grids):
            points = points + grid.reshape(-1, 1) * axis[np.newaxis, :]
        return points

    @property
    def field_samples(self) -> Dict[Tuple[str, Tuple[float, ...]], complex]:
        """Envelope samples keyed by `(component, point)`."""
        points = [tuple(p) for p in self.points()]
        samples = {}
        for component, values in self.fields.items():
            for point, value in zip(points, values.ravel()):
                samples[(component, point)] = complex(value)
        return samples

    def envelope(self, component: str, points: np.ndarray,
                 method: str = "linear") -> np.ndarray:
        """Interpolated envelope of `component` at an `(N, 3)` array of points.

        Points are projected onto the cross-section before interpolating.
        """
        points = np.atleast_2d(np.asarray(points, dtype=float))
        local = np.stack([(points - self.origin) @ axis
                          for axis in self.transverse_axes],
                         axis=-1)
        fill_value = None if self.unbounded else 0.0
        return _interpolate(self.coords, np.asarray(self.fields[component]),
                            local, method, fill_value)

    def sample(self, component: str, points: np.ndarray,
               method: str = "linear") -> np.ndarray:
        """Full complex field of `component` at an `(N, 3)` array of points."""
        points = np.atleast_2d(np.asarray(points, dtype=float))
        phase = np.exp(-1j * ((points - self.origin) @ self.wavevector))
        return self.envelope(component, points, method) * phase


@dataclasses.dataclass(frozen=True)
class ModeRequest:
    """Parameters handed to a `ModeSolver`.

    Attributes:
        frequency: Target angular frequency.
        wavevector: Wavevector at which to solve; its direction is fixed
            during frequency matching and its magnitude is the initial guess.
        origin: Center of the cross-section.
        extent: Width of the cross-section.
        band: Band index within the parity class.
        parity: Required mirror symmetries.
    """
    frequency: float
    wavevector: Tuple[float, float, float]
    origin: Tuple[float, float, float]
    extent: float
    band: int = 0
    parity: FrozenSet[Parity] = frozenset()

    def with_wavevector(self, wavevector: np.ndarray) -> "ModeRequest":
        return dataclasses.replace(self, wavevector=tuple(wavevector))


class ModeSolver(metaclass=abc.ABCMeta):
    """Interface to an external eigenmode solver."""

    @abc.abstractmethod
    def solve(self, request: ModeRequest) -> ModeProfile:
        """Solves for the mode at `request.wavevector`.

        Returns:
            The mode profile; its frequency is whatever the wavevector
            implies, not necessarily `request.frequency`.

        Raises:
            ModeNotFound: If no mode of the requested band and parity exists.
        """
        raise NotImplementedError("solve not implemented")

    def validate(self, profile: ModeProfile) -> None:
        """Checks the final, frequency-matched mode.

        Raises:
            ModeNotFound: If the profile is not an acceptable mode.
        """


def acquire_mode(solver: ModeSolver,
                 request: ModeRequest,
                 match_frequency: bool = True,
                 tolerance: float = 1e-8,
                 max_iterations: int = 50) -> ModeProfile:
    """Obtains a mode from `solver`, matching its frequency if requested.

    Frequency matching is a Newton iteration on the propagation constant,
    using the group velocity as the slope `d omega / d beta`. When the solver
    does not report a group velocity, a secant step is taken instead.

    Args:
        solver: Mode solver to query.
        request: Target frequency, wavevector guess and mode selection.
        match_frequency: If `False`, the mode at the guessed wavevector is
            returned as is.
        tolerance: Relative frequency tolerance.
        max_iterations: Maximum number of wavevector updates.

    Returns:
        The mode profile.

    Raises:
        ModeNotFound: If the solver cannot find the mode.
        ConvergenceFailure: If frequency matching does not converge.
        InvalidSourceConfiguration: If the wavevector guess is zero.
    """
    k_guess = np.asarray(request.wavevector, dtype=float)
    beta = np.linalg.norm(k_guess)
    if beta == 0:
        raise errors.InvalidSourceConfiguration(
            "Mode acquisition needs a non-zero wavevector guess.")

    profile = solver.solve(request)
    if match_frequency:
        profile = _match_frequency(solver, request, profile, k_guess / beta,
                                   tolerance, max_iterations)
    solver.validate(profile)
    logger.info("Found band {} with propagation constant {:.6g} at "
                "frequency {:.6g}.".format(profile.band,
                                           profile.propagation_constant,
                                           profile.frequency))
    return profile


def _match_frequency(solver: ModeSolver, request: ModeRequest,
                     profile: ModeProfile, direction: np.ndarray,
                     tolerance: float, max_iterations: int) -> ModeProfile:
    target = request.frequency
    beta = profile.propagation_constant
    previous = None
    for iteration in range(max_iterations):
        mismatch = profile.frequency - target
        logger.debug("Iteration {}: beta = {:.10g}, frequency mismatch = "
                     "{:.3g}".format(iteration, beta, mismatch))
        if abs(mismatch) <= tolerance * target:
            return profile

        slope = profile.group_velocity
        if (slope is None or slope <= 0) and previous is not None:
            slope = (profile.frequency - previous[1]) / (beta - previous[0])
        if slope is None or not np.isfinite(slope) or slope <= 0:
            # Homogeneous-medium estimate.
            slope = profile.frequency / beta
        previous = (beta, profile.frequency)

        beta = beta - mismatch / slope
        if beta <= 0:
            logger.error("Propagation constant became non-positive.")
            raise errors.ConvergenceFailure(
                "Frequency matching diverged after {} iterations.".format(
                    iteration + 1))
        profile = solver.solve(request.with_wavevector(beta * direction))

    mismatch = profile.frequency - target
    if abs(mismatch) <= tolerance * target:
        return profile
    logger.error("Frequency matching did not converge.")
    raise errors.ConvergenceFailure(
        "Frequency matching did not converge within {} iterations, relative "
        "mismatch {:.3g}.".format(max_iterations, abs(mismatch) / target))


def planewave_profile(frequency: float,
                      direction: Sequence[float],
                      index: float = 1.0,
                      polarization: Sequence[complex] = (0, 0, 1),
                      origin: Sequence[float] = (0, 0, 0),
                      plane_normal: Optional[Sequence[float]] = None,
                      ndim: int = 2,
                      mu: float = 1.0) -> ModeProfile:
    """Closed-form planewave mode of a homogeneous medium.

    The propagation constant is `frequency * index`, so no eigen-solve is
    involved. The envelope is constant and extends over the whole plane.

    Args:
        frequency: Angular frequency.
        direction: Propagation direction (need not be normalized).
        index: Refractive index of the medium.
        polarization: Electric field direction; the component along
            `direction` is removed.
        origin: Phase reference point.
        plane_normal: Normal of the cross-section on which the profile is
            sampled; defaults to `direction`.
        ndim: Dimensionality of the simulation (2 or 3).
        mu: Relative permeability of the medium.

    Returns:
        The planewave mode profile.
    """
    if index <= 0:
        raise errors.InvalidSourceConfiguration(
            "Refractive index must be positive, got {}".format(index))
    if ndim not in (2, 3):
        raise ValueError("ndim must be 2 or 3, got {}".format(ndim))

    d = np.asarray(direction, dtype=float)
    if np.linalg.norm(d) == 0:
        raise errors.InvalidSourceConfiguration(
            "Planewave direction must be non-zero.")
    d = d / np.linalg.norm(d)
    if ndim == 2 and abs(d[2]) > AXES_TOLERANCE:
        raise errors.InvalidSourceConfiguration(
            "A 2D planewave must propagate in the xy plane, got {}".format(d))

    pol = np.asarray(polarization, dtype=complex)
    pol = pol - np.dot(pol, d) * d
    if np.linalg.norm(pol) < 1e-12:
        raise errors.InvalidSourceConfiguration(
            "Polarization must not be parallel to the propagation direction.")
    pol = pol / np.linalg.norm(pol)
    h_field = index * np.cross(d, pol) / mu

    if plane_normal is None:
        plane_normal = d
    normal = np.asarray(plane_normal, dtype=float)
    normal = normal / np.linalg.norm(normal)
    if ndim == 2:
        if abs(normal[2]) > AXES_TOLERANCE:
            raise errors.InvalidSourceConfiguration(
                "A 2D source plane must contain the z axis.")
        axes = (np.cross([0, 0, 1], normal),)
    else:
        seed = direction_utils.unit_vector(int(np.argmin(np.abs(normal))))
        t1 = seed - np.dot(seed, normal) * normal
        t1 = t1 / np.linalg.norm(t1)
        axes = (t1, np.cross(normal, t1))

    shape = (2,) * len(axes)
    fields = {}
    for i in range(3):
        fields[types.E_COMPONENTS[i]] = np.full(shape, pol[i])
        fields[types.H_COMPONENTS[i]] = np.full(shape, h_field[i])

    parity = set()
    if ndim == 2:
        if abs(abs(pol[2]) - 1) < AXES_TOLERANCE:
            parity.add(Parity.ODD_Z)
        elif abs(pol[2]) < AXES_TOLERANCE:
            parity.add(Parity.EVEN_Z)

    return ModeProfile(frequency=frequency,
                       wavevector=frequency * index * d,
                       origin=np.asarray(origin, dtype=float),
                       transverse_axes=axes,
                       coords=(np.array([-1.0, 1.0]),) * len(axes),
                       fields=fields,
                       parity=frozenset(parity),
                       band=0,
                       group_velocity=1 / index,
                       unbounded=True)


def retune_planewave(profile: ModeProfile, frequency: float) -> ModeProfile:
    """Moves a planewave profile to a new frequency along its dispersion line."""
    if not profile.unbounded:
        raise errors.InvalidSourceConfiguration(
            "Only planewave profiles can be retuned analytically.")
    return dataclasses.replace(profile,
                               frequency=frequency,
                               wavevector=profile.wavevector * frequency /
                               profile.frequency)


def check_dispersion(profile: ModeProfile, index: float) -> float:
    """Relative mismatch of `frequency = |k| / index` for a homogeneous mode."""
    return abs(profile.frequency -
               profile.propagation_constant / index) / profile.frequency
