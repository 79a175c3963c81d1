"""Per-timestep application of mode sources.

A `SourceInjector` couples a projected current with its temporal envelope and
writes `amplitude_scale * scale * J * amplitude(t)` into a caller-owned
`CurrentAccumulator` every timestep. Whether it writes anything is decided by
an explicit state machine keyed on simulation time:

    IDLE ---> ACTIVE ---> DECAYED

`IDLE` lasts until the envelope becomes non-negligible and `DECAYED` starts
once a pulsed envelope has fallen below its cutoff. `DECAYED` is terminal;
continuous envelopes never leave `ACTIVE`.

`build_injector` performs the one-time setup of a source (mode acquisition,
projection and normalization); `setup_all` runs it for several sources in
parallel and `inject_all` applies several injectors for one timestep.
"""
import concurrent.futures
import dataclasses
import enum
import logging
from typing import FrozenSet, List, Optional, Sequence, Tuple, Union

import numpy as np

from modesource import direction as direction_utils
from modesource import envelope as envelope_module
from modesource import errors
from modesource import grid as grid_module
from modesource import mode
from modesource import normalization
from modesource import projector
from modesource import types

logger = logging.getLogger(__name__)

SourceDirection = direction_utils.SourceDirection

# Relative frequency mismatch tolerated between a supplied profile and the
# envelope carrier.
FREQUENCY_TOLERANCE = 1e-8


class InjectorState(enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    DECAYED = "decayed"


@dataclasses.dataclass(frozen=True)
class SourceSpecification:
    """User-facing description of a mode source.

    Attributes:
        center: Center of the source region.
        size: Size of the source region; flat along the plane normal.
        envelope: Temporal envelope of the source.
        direction: Launch direction, see `SourceDirection`.
        match_frequency: Refine the mode until its frequency matches the
            envelope carrier.
        amplitude_scale: Extra factor applied on top of the normalization.
        target_power: Power carried by the launched mode.
        frequency_normalized: Normalize the spectral power at the carrier
            rather than the power of a unit-amplitude mode.
        kpoint: Guess for the propagation direction before `rotation`.
        rotation: Counter-clockwise rotation of `kpoint` about z, in radians.
        band: Band index within the parity class.
        parity: Required mirror symmetries of the mode.
        extent: Width of the cross-section handed to the mode solver;
            defaults to the width of the source region.
    """
    center: Tuple[float, float, float]
    size: Tuple[float, float, float]
    envelope: envelope_module.TemporalEnvelope
    direction: SourceDirection = SourceDirection.AUTOMATIC
    match_frequency: bool = True
    amplitude_scale: float = 1.0
    target_power: float = 1.0
    frequency_normalized: bool = False
    kpoint: Tuple[float, float, float] = (1.0, 0.0, 0.0)
    rotation: float = 0.0
    band: int = 0
    parity: FrozenSet[mode.Parity] = frozenset()
    extent: Optional[float] = None

    @property
    def wavevector_direction(self) -> np.ndarray:
        """Unit vector along the rotated `kpoint`, or zero."""
        k = direction_utils.rotate_in_plane(self.kpoint, self.rotation)
        norm = np.linalg.norm(k)
        if norm == 0:
            return k
        return k / norm

    def validate(self, wavevector: Optional[np.ndarray] = None) -> None:
        """Checks the specification against a (guessed) wavevector.

        A non-zero wavevector that is not along a grid axis can only be
        launched with `NO_DIRECTION`. Explicit axes must agree with an
        axis-aligned wavevector.

        Args:
            wavevector: Wavevector of the mode; defaults to the rotated
                `kpoint`.

        Raises:
            InvalidSourceConfiguration: If the specification is inconsistent.
        """
        if not np.isfinite(self.amplitude_scale):
            raise errors.InvalidSourceConfiguration(
                "Amplitude scale must be finite, got {}".format(
                    self.amplitude_scale))
        if not np.isfinite(self.target_power) or self.target_power <= 0:
            raise errors.InvalidSourceConfiguration(
                "Target power must be positive, got {}".format(
                    self.target_power))
        if self.band < 0:
            raise errors.InvalidSourceConfiguration(
                "Band index must be non-negative, got {}".format(self.band))
        mode.check_parity(self.parity)

        if wavevector is None:
            wavevector = self.wavevector_direction
        k = np.asarray(wavevector, dtype=float)
        if np.linalg.norm(k) == 0:
            return

        if not direction_utils.is_axis_aligned(k):
            if self.direction is not SourceDirection.NO_DIRECTION:
                raise errors.InvalidSourceConfiguration(
                    "Wavevector {} is not along a grid axis; direction must "
                    "be NO_DIRECTION, got {}.".format(k, self.direction.name))
        elif (self.direction.is_explicit and
              direction_utils.axisvec2axis(k) != self.direction.axis):
            raise errors.InvalidSourceConfiguration(
                "Direction {} disagrees with wavevector {}.".format(
                    self.direction.name, k))


@dataclasses.dataclass(frozen=True, eq=False)
class InjectedCurrent:
    """Current added by one source during one timestep."""
    region: types.Region
    values: np.ndarray


class CurrentAccumulator:
    """Caller-owned current-source term consumed by the field update.

    Contributions are added, never overwritten, so overlapping sources sum.
    """

    def __init__(self, shape: Sequence[int], dtype=np.complex128) -> None:
        self.J = np.zeros((3,) + tuple(shape), dtype=dtype)

    def add(self, region: types.Region, values: np.ndarray) -> None:
        """Adds `values` (shape `(3, ...)`) to the cells in `region`.

        Real accumulators receive the real part of `values`.
        """
        target = self.J[(slice(None),) + tuple(region)]
        if np.iscomplexobj(target):
            target += values
        else:
            target += np.real(values)

    def merge(self, partials: Sequence["CurrentAccumulator"]) -> None:
        """Adds partial accumulators in the given order."""
        for partial in partials:
            self.J += partial.J

    def clear(self) -> None:
        self.J[...] = 0


class SourceInjector:
    """Applies one source to the grid, timestep by timestep."""

    def __init__(self, specification: SourceSpecification,
                 current: projector.ProjectedCurrent,
                 normalizer: normalization.PowerNormalizer) -> None:
        """Creates a new injector.

        Args:
            specification: The source specification.
            current: Projected current of the source mode.
            normalizer: Normalizer whose scale has been computed.

        Raises:
            InvalidSourceConfiguration: If the specification is inconsistent
                with the projected mode.
        """
        specification.validate(current.wavevector)
        self.specification = specification
        self.current = current
        self.normalizer = normalizer
        self.envelope = specification.envelope

        self.amplitude = specification.amplitude_scale * normalizer.amplitude(
            specification.envelope)
        self.region = current.region
        self._profile = self.amplitude * current.values
        self._profile.setflags(write=False)
        self._state = InjectorState.IDLE
        self._time = None

    @property
    def state(self) -> InjectorState:
        return self._state

    @property
    def scale(self) -> float:
        """Normalization scale of the source."""
        return self.normalizer.scale

    @property
    def spatial_profile(self) -> np.ndarray:
        """Scaled current over `region`, before the envelope is applied."""
        return self._profile

    def state_at(self, t: float) -> InjectorState:
        """State implied by the envelope support at time `t`."""
        if t < self.envelope.start_time:
            return InjectorState.IDLE
        end_time = self.envelope.end_time
        if end_time is not None and t > end_time:
            return InjectorState.DECAYED
        return InjectorState.ACTIVE

    def advance(self, t: float) -> InjectorState:
        """Moves the state machine to time `t`.

        Raises:
            ValueError: If `t` is earlier than a previous call.
        """
        if self._time is not None and t < self._time:
            raise ValueError(
                "Simulation time went backwards from {} to {}".format(
                    self._time, t))
        self._time = t
        if self._state is InjectorState.DECAYED:
            return self._state

        state = self.state_at(t)
        if state is not self._state:
            logger.debug("Source at {} moved from {} to {} at t = {}.".format(
                self.specification.center, self._state.name, state.name, t))
            self._state = state
        return self._state

    def currents_at(self, t: float) -> Optional[InjectedCurrent]:
        """Current injected at time `t`, without advancing the state."""
        if self.state_at(t) is not InjectorState.ACTIVE:
            return None
        return InjectedCurrent(self.region,
                               self._profile * self.envelope.amplitude(t))

    def contribution(self, t: float) -> Optional[InjectedCurrent]:
        """Advances to `t` and returns the current to inject, if any."""
        if self.advance(t) is not InjectorState.ACTIVE:
            return None
        return InjectedCurrent(self.region,
                               self._profile * self.envelope.amplitude(t))

    def step(self, t: float, accumulator: CurrentAccumulator) -> None:
        """Adds this source's current at time `t` to `accumulator`."""
        current = self.contribution(t)
        if current is not None:
            accumulator.add(current.region, current.values)


def inject_all(injectors: Sequence[SourceInjector],
               t: float,
               accumulator: CurrentAccumulator,
               executor: Optional[concurrent.futures.Executor] = None,
               max_workers: Optional[int] = None) -> None:
    """Applies several injectors for one timestep.

    Contributions are evaluated concurrently when `executor` or `max_workers`
    is given, then added in the order of `injectors`, so the result does not
    depend on the order in which evaluations finish.

    Args:
        injectors: Injectors to apply.
        t: Simulation time.
        accumulator: Accumulator receiving the currents.
        executor: Executor to evaluate the injectors on.
        max_workers: If no executor is given, size of a thread pool created
            for this call.
    """
    if executor is None and max_workers is not None:
        with concurrent.futures.ThreadPoolExecutor(max_workers) as pool:
            inject_all(injectors, t, accumulator, executor=pool)
        return

    if executor is None:
        contributions = [injector.contribution(t) for injector in injectors]
    else:
        contributions = list(
            executor.map(lambda injector: injector.contribution(t), injectors))
    for current in contributions:
        if current is not None:
            accumulator.add(current.region, current.values)


def _cross_section_extent(grid: grid_module.SimulationGrid,
                          specification: SourceSpecification,
                          plane: projector.SourcePlane) -> float:
    if specification.extent is not None:
        return specification.extent
    widths = []
    for a in range(grid.ndim):
        if a == plane.axis:
            continue
        points = grid.grid_points(a)[plane.slices[a]]
        widths.append(points[-1] - points[0])
    return float(max(widths))


def resolve_mode(grid: grid_module.SimulationGrid,
                 specification: SourceSpecification,
                 source: Union[mode.ModeProfile, mode.ModeSolver],
                 plane: projector.SourcePlane,
                 tolerance: float = 1e-8,
                 max_iterations: int = 50) -> mode.ModeProfile:
    """Obtains the mode profile of a source.

    Args:
        grid: Host grid.
        specification: Source specification.
        source: Either a ready profile or a solver to acquire it from.
        plane: Source plane, used for the default cross-section width.
        tolerance: Relative frequency tolerance of frequency matching.
        max_iterations: Iteration bound of frequency matching.

    Returns:
        A profile at the envelope frequency (unless matching is disabled).
    """
    omega = specification.envelope.frequency
    if isinstance(source, mode.ModeProfile):
        mismatch = abs(source.frequency - omega) / omega
        if mismatch <= FREQUENCY_TOLERANCE:
            return source
        if not specification.match_frequency:
            logger.warning("Profile frequency {:.6g} differs from the source "
                           "frequency {:.6g}.".format(source.frequency, omega))
            return source
        if source.unbounded:
            return mode.retune_planewave(source, omega)
        raise errors.InvalidSourceConfiguration(
            "Profile frequency {:.6g} differs from the source frequency "
            "{:.6g}; supply a mode solver to match it.".format(
                source.frequency, omega))

    if not isinstance(source, mode.ModeSolver):
        raise TypeError("Expected a ModeProfile or ModeSolver, got {}".format(
            type(source)))

    center = np.asarray(specification.center, dtype=float)
    index = np.sqrt(
        grid.permittivity_at(center)[0] * grid.permeability_at(center)[0])
    request = mode.ModeRequest(
        frequency=omega,
        wavevector=tuple(omega * index * specification.wavevector_direction),
        origin=tuple(center),
        extent=_cross_section_extent(grid, specification, plane),
        band=specification.band,
        parity=frozenset(specification.parity))
    return mode.acquire_mode(source,
                             request,
                             match_frequency=specification.match_frequency,
                             tolerance=tolerance,
                             max_iterations=max_iterations)


def build_injector(grid: grid_module.SimulationGrid,
                   specification: SourceSpecification,
                   source: Union[mode.ModeProfile, mode.ModeSolver],
                   tolerance: float = 1e-8,
                   max_iterations: int = 50,
                   dispersion_correction: bool = True) -> SourceInjector:
    """Performs the one-time setup of a source.

    Args:
        grid: Host grid.
        specification: Source specification.
        source: Mode profile, or a solver to acquire the mode from.
        tolerance: Relative frequency tolerance of frequency matching.
        max_iterations: Iteration bound of frequency matching.
        dispersion_correction: See `CurrentProjector.project`.

    Returns:
        The injector, in state `IDLE`.

    Raises:
        InvalidSourceConfiguration: If the source is misconfigured.
        ModeNotFound: If the mode solver finds no matching mode.
        ConvergenceFailure: If frequency matching does not converge.
    """
    if isinstance(source, mode.ModeProfile):
        specification.validate(source.wavevector)
    else:
        specification.validate()

    plane = projector.SourcePlane.from_region(grid, specification.center,
                                              specification.size)
    profile = resolve_mode(grid, specification, source, plane, tolerance,
                           max_iterations)
    current = projector.CurrentProjector(grid, plane).project(
        profile, specification.direction, dispersion_correction)

    normalizer = normalization.PowerNormalizer(
        specification.target_power, specification.frequency_normalized)
    normalizer.compute(current)
    return SourceInjector(specification, current, normalizer)


def setup_all(grid: grid_module.SimulationGrid,
              specifications: Sequence[SourceSpecification],
              sources: Sequence[Union[mode.ModeProfile, mode.ModeSolver]],
              max_workers: Optional[int] = None,
              **kwargs) -> List[SourceInjector]:
    """Sets up several independent sources in parallel.

    Args:
        grid: Host grid.
        specifications: One specification per source.
        sources: One profile or solver per source.
        max_workers: Thread pool size; defaults to the executor default.
        **kwargs: Forwarded to `build_injector`.

    Returns:
        Injectors in the order of `specifications`.
    """
    if len(specifications) != len(sources):
        raise ValueError("Got {} specifications but {} sources.".format(
            len(specifications), len(sources)))
    with concurrent.futures.ThreadPoolExecutor(max_workers) as executor:
        futures = [
            executor.submit(build_injector, grid, spec, source, **kwargs)
            for spec, source in zip(specifications, sources)
        ]
        return [future.result() for future in futures]
