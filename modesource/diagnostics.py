"""Measurements of the power launched by a source.

`launched_power` drives the grid with an injector's current at its carrier
frequency and reports the power travelling forward and backward through
planes on either side of the source. The ratio of the two is the figure of
merit for unidirectionality.
"""
import dataclasses
import logging
from typing import Optional, Sequence, Union

import numpy as np
import scipy.integrate
from scipy import interpolate

from modesource import grid as grid_module
from modesource import injector as injector_module
from modesource import normalization
from modesource import solvers
from modesource import types

logger = logging.getLogger(__name__)

# Distance, in cells, between the source and the flux planes.
DEFAULT_FLUX_OFFSET = 5


@dataclasses.dataclass(frozen=True)
class InjectionReport:
    """Result of `launched_power`.

    Attributes:
        forward: Power travelling away from the source in the launch
            direction.
        backward: Power travelling away from the source against it.
        ratio: `backward / forward`.
        scale: Normalization scale of the source.
        interpolation_error: Interpolation error of the projection.
    """
    forward: float
    backward: float
    ratio: float
    scale: float
    interpolation_error: float


def flux_through_plane(grid: grid_module.SimulationGrid,
                       E: types.VecField,
                       H: types.VecField,
                       axis: int,
                       index: int,
                       slices: Optional[types.Region] = None) -> float:
    """Power flowing along `+axis` through grid plane `index`."""
    return normalization.plane_flux(E,
                                    H,
                                    grid.dxes,
                                    axis,
                                    index,
                                    slices=slices,
                                    ndim=grid.ndim)


def flux_through_line(grid: grid_module.SimulationGrid,
                      E: types.VecField,
                      H: types.VecField,
                      start: Sequence[float],
                      end: Sequence[float],
                      num_points: int = 200) -> float:
    """Power per unit length along z crossing a straight line in a 2D grid.

    The line may be tilted relative to the grid. Each field component is
    interpolated from its own Yee points, and the flux is counted positive
    along `t x z` with `t` the direction from `start` to `end`.

    Args:
        grid: A 2D grid.
        E: Electric field on the grid.
        H: Magnetic field on the grid.
        start: Start point of the line.
        end: End point of the line.
        num_points: Number of quadrature points.

    Returns:
        The time-averaged flux.
    """
    if grid.ndim != 2:
        raise ValueError("Line fluxes need a 2D grid, got {}D".format(
            grid.ndim))
    start = np.asarray(start, dtype=float)[:2]
    end = np.asarray(end, dtype=float)[:2]
    length = np.linalg.norm(end - start)
    if length == 0:
        raise ValueError("Line must have non-zero length.")
    tangent = (end - start) / length
    normal = np.array([tangent[1], -tangent[0], 0])

    s = np.linspace(0, length, num_points)
    points = start[np.newaxis, :] + s[:, np.newaxis] * tangent[np.newaxis, :]

    def sample(field, component):
        xs, ys, _ = grid.yee_positions(component)
        values = field[:, :, 0]
        result = np.zeros(num_points, dtype=complex)
        for part, unit in ((np.real(values), 1), (np.imag(values), 1j)):
            interp = interpolate.RegularGridInterpolator((xs, ys),
                                                         part,
                                                         bounds_error=False,
                                                         fill_value=None)
            result += unit * interp(points)
        return result

    e_line = np.stack(
        [sample(E[i], types.E_COMPONENTS[i]) for i in range(3)])
    h_line = np.stack(
        [sample(H[i], types.H_COMPONENTS[i]) for i in range(3)])
    poynting = 0.5 * np.real(np.cross(e_line, np.conj(h_line), axis=0))
    return float(scipy.integrate.trapezoid(normal @ poynting, s))


def _check_flux_plane(grid: grid_module.SimulationGrid, axis: int, index: int,
                      pml_layers) -> None:
    if isinstance(pml_layers, int):
        pml_layers = [pml_layers] * 6
    low, high = (0, 0) if not pml_layers else pml_layers[2 * axis:2 * axis + 2]
    if index < low or index >= grid.shape[axis] - high - 1:
        raise ValueError(
            "Flux plane at index {} along axis {} lies outside the region "
            "free of PMLs.".format(index, axis))


def _permeability(grid: grid_module.SimulationGrid):
    """Permeability sampled at the Hx, Hy and Hz points."""
    mu = []
    for component in types.H_COMPONENTS:
        coords = np.meshgrid(*grid.yee_positions(component), indexing="ij")
        points = np.stack([c.ravel() for c in coords], axis=-1)
        mu.append(grid.permeability_at(points).reshape(grid.shape))
    return mu


def launched_power(grid: grid_module.SimulationGrid,
                   injector: injector_module.SourceInjector,
                   pml_layers: Optional[Union[int, types.PmlLayers]],
                   bloch_vec: Optional[np.ndarray] = None,
                   offset: int = DEFAULT_FLUX_OFFSET,
                   pml_epsilon: float = 1.0,
                   solver: Optional[solvers.LocalMatrixSolver] = None
                  ) -> InjectionReport:
    """Measures the power an injector launches in each direction.

    The injector's normalized current (without its temporal envelope) is
    solved for at the carrier frequency. Powers are therefore the
    steady-state powers of a continuous-wave source.

    Args:
        grid: Host grid.
        injector: Injector to measure.
        pml_layers: PML thicknesses, see `pml.apply_scpml`.
        bloch_vec: Bloch wavevector for periodic boundaries.
        offset: Distance in cells from the source to the flux planes.
        pml_epsilon: Permittivity of the material entering the PMLs.
        solver: Matrix solver; defaults to `solvers.DirectSolver`.

    Returns:
        The injection report.
    """
    current = injector.current
    axis = current.axis
    polarity = current.polarity
    forward_index = current.index + polarity * offset
    backward_index = current.index - polarity * offset - 1
    for index in (forward_index, backward_index):
        _check_flux_plane(grid, axis, index, pml_layers)

    J = (injector.specification.amplitude_scale * injector.scale) * current.J
    mu = _permeability(grid)
    E, H = solvers.solve_fields(current.omega,
                                grid.dxes,
                                J,
                                grid.epsilon,
                                pml_layers=pml_layers,
                                bloch_vec=bloch_vec,
                                mu=mu,
                                pml_epsilon=pml_epsilon,
                                solver=solver)

    forward = polarity * flux_through_plane(grid, E, H, axis, forward_index)
    backward = -polarity * flux_through_plane(grid, E, H, axis, backward_index)
    ratio = abs(backward) / forward if forward > 0 else np.inf

    logger.info("Launched power {:.6g} forward, {:.3g} backward "
                "(ratio {:.3g}).".format(forward, backward, ratio))
    return InjectionReport(forward=forward,
                           backward=backward,
                           ratio=float(ratio),
                           scale=injector.scale,
                           interpolation_error=current.interpolation_error)
