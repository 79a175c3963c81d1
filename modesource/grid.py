"""Host grid seen by the source subsystem.

The time-stepping solver owns the grid; the source code only reads its
geometry and material properties through `SimulationGrid`. `YeeGrid` is a
rectilinear implementation with uniform spacing along each axis, used by the
verification solves and the tests. Its structures are extruded polygons
(`Shape`), rendered onto the Yee points by area fraction.
"""
import abc
import dataclasses
import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import shapely
import shapely.affinity
import shapely.geometry

from modesource import types

logger = logging.getLogger(__name__)

# Offsets of the field components from a grid point, in units of the cell
# width. Row `i` holds the offset of component `i`.
E_SHIFTS = 0.5 * np.eye(3)
H_SHIFTS = 0.5 * (np.ones((3, 3)) - np.eye(3))


def component_shift(component: str) -> np.ndarray:
    """Yee offset of a component such as `"Ey"`, in units of the cell width."""
    if component not in types.FIELD_COMPONENTS:
        raise ValueError("Unknown field component, got {}".format(component))
    axis = "xyz".index(component[1])
    if component[0] == "E":
        return E_SHIFTS[axis]
    return H_SHIFTS[axis]


class SimulationGrid(metaclass=abc.ABCMeta):
    """Interface to the host grid consumed by the source subsystem."""

    @property
    @abc.abstractmethod
    def shape(self) -> Tuple[int, int, int]:
        raise NotImplementedError("shape not implemented")

    @property
    @abc.abstractmethod
    def dxes(self) -> types.GridSpacing:
        """Primary and dual cell widths, `[[dx_e, dy_e, dz_e], [dx_h, ...]]`."""
        raise NotImplementedError("dxes not implemented")

    @abc.abstractmethod
    def yee_positions(self, component: str
                     ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Coordinates of the Yee points of `component` along x, y and z."""
        raise NotImplementedError("yee_positions not implemented")

    @abc.abstractmethod
    def permittivity_at(self, points: np.ndarray) -> np.ndarray:
        """Relative permittivity at an `(N, 3)` array of points."""
        raise NotImplementedError("permittivity_at not implemented")

    @abc.abstractmethod
    def permeability_at(self, points: np.ndarray) -> np.ndarray:
        """Relative permeability at an `(N, 3)` array of points."""
        raise NotImplementedError("permeability_at not implemented")

    @property
    @abc.abstractmethod
    def epsilon(self) -> List[np.ndarray]:
        """Permittivity sampled at the Ex, Ey and Ez points."""
        raise NotImplementedError("epsilon not implemented")

    @property
    def ndim(self) -> int:
        """2 for a single-cell-thick grid along z, otherwise 3."""
        return 2 if self.shape[2] == 1 else 3

    def grid_points(self, axis: int) -> np.ndarray:
        """Coordinates of the grid points along `axis`."""
        # Ey and Ex are unshifted along x and along y, z respectively.
        return self.yee_positions("Ey" if axis == 0 else "Ex")[axis]

    def index_of(self, axis: int, coordinate: float) -> int:
        """Index of the grid point closest to `coordinate` along `axis`."""
        nodes = self.grid_points(axis)
        return int(np.argmin(np.abs(nodes - coordinate)))

    def indices_within(self, axis: int, low: float, high: float) -> slice:
        """Slice of grid points with coordinates in `[low, high]` along `axis`.

        For a 2D grid the z axis always selects its single cell.
        """
        if axis == 2 and self.ndim == 2:
            return slice(0, 1)
        nodes = self.grid_points(axis)
        tol = 1e-9 * max(1, np.max(np.abs(nodes)))
        inside = np.flatnonzero((nodes >= low - tol) & (nodes <= high + tol))
        if inside.size == 0:
            return slice(0, 0)
        return slice(int(inside[0]), int(inside[-1]) + 1)


@dataclasses.dataclass(frozen=True)
class Shape:
    """A polygon in the xy plane extruded over `z_span`."""
    polygon: shapely.geometry.Polygon
    permittivity: float
    z_span: Tuple[float, float] = (-np.inf, np.inf)


def box(center: Sequence[float],
        size: Sequence[float],
        permittivity: float,
        z_span: Tuple[float, float] = (-np.inf, np.inf)) -> Shape:
    """Axis-aligned rectangle of `size = (sx, sy)` centered at `center`."""
    polygon = shapely.geometry.box(center[0] - size[0] / 2,
                                   center[1] - size[1] / 2,
                                   center[0] + size[0] / 2,
                                   center[1] + size[1] / 2)
    return Shape(polygon, permittivity, z_span)


def rotated_slab(center: Sequence[float],
                 width: float,
                 angle: float,
                 permittivity: float,
                 length: float = 1e3,
                 z_span: Tuple[float, float] = (-np.inf, np.inf)) -> Shape:
    """Straight waveguide of `width` along direction `angle` (radians from x).

    The slab is `length` long, which by default reaches far past any
    practical simulation domain.
    """
    slab = box(center, (length, width), permittivity, z_span)
    polygon = shapely.affinity.rotate(slab.polygon,
                                      angle,
                                      origin=(center[0], center[1]),
                                      use_radians=True)
    return Shape(polygon, permittivity, z_span)


class YeeGrid(SimulationGrid):
    """Uniform rectilinear Yee grid with extruded-polygon structures.

    Grid point `(i, j, k)` sits at `origin + (i dx, j dy, k dz)`. Shapes are
    drawn in order, each later shape replacing what lies beneath it.
    """

    def __init__(self,
                 shape: Sequence[int],
                 spacing: Union[float, Sequence[float]],
                 origin: Optional[Sequence[float]] = None,
                 background: float = 1.0,
                 mu: float = 1.0,
                 shapes: Optional[Sequence[Shape]] = None) -> None:
        """Creates a new grid.

        Args:
            shape: Number of cells along x, y and z. Use `nz = 1` for 2D.
            spacing: Cell width, either a scalar or one per axis.
            origin: Coordinates of grid point `(0, 0, 0)`.
            background: Background relative permittivity.
            mu: Relative permeability, uniform over the grid.
            shapes: Structures to draw over the background.
        """
        if len(shape) != 3 or min(shape) < 1:
            raise ValueError("Grid shape must have three positive entries, "
                             "got {}".format(shape))
        self._shape = tuple(int(n) for n in shape)
        self.spacing = np.broadcast_to(np.asarray(spacing, dtype=float),
                                       (3,)).copy()
        if origin is None:
            origin = np.zeros(3)
        self.origin = np.asarray(origin, dtype=float)
        self.background = background
        self.mu = mu
        self.shapes = list(shapes or [])
        self.nodes = [
            self.origin[a] + self.spacing[a] * np.arange(self._shape[a])
            for a in range(3)
        ]
        self._epsilon = None

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self._shape

    @property
    def dxes(self) -> types.GridSpacing:
        return [[np.full(n, d) for n, d in zip(self._shape, self.spacing)]
                for _ in range(2)]

    def yee_positions(self, component: str
                     ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        shift = component_shift(component)
        return tuple(self.nodes[a] + shift[a] * self.spacing[a]
                     for a in range(3))

    def permittivity_at(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(np.asarray(points, dtype=float))
        eps = np.full(points.shape[0], self.background, dtype=float)
        for shape in self.shapes:
            inside = shapely.contains_xy(shape.polygon, points[:, 0],
                                         points[:, 1])
            if self.ndim == 3:
                inside &= ((points[:, 2] >= shape.z_span[0]) &
                           (points[:, 2] <= shape.z_span[1]))
            eps[inside] = shape.permittivity
        return eps

    def permeability_at(self, points: np.ndarray) -> np.ndarray:
        points = np.atleast_2d(points)
        return np.full(points.shape[0], self.mu, dtype=float)

    @property
    def epsilon(self) -> List[np.ndarray]:
        if self._epsilon is None:
            self._epsilon = [self._render(c) for c in types.E_COMPONENTS]
            logger.debug("Rendered permittivity of {} shapes on a {} grid.".format(
                len(self.shapes), self._shape))
        return self._epsilon

    def _render(self, component: str) -> np.ndarray:
        xs, ys, zs = self.yee_positions(component)
        eps = np.full(self._shape, self.background, dtype=float)
        for shape in self.shapes:
            fraction = self._fill_fraction(shape, xs, ys, zs)
            eps = eps * (1 - fraction) + shape.permittivity * fraction
        return eps

    def _fill_fraction(self, shape: Shape, xs: np.ndarray, ys: np.ndarray,
                       zs: np.ndarray) -> np.ndarray:
        """Fraction of each Yee cell around `(xs, ys, zs)` covered by `shape`."""
        dx, dy, dz = self.spacing
        xx, yy = np.meshgrid(xs, ys, indexing="ij")
        cells = shapely.box(xx - dx / 2, yy - dy / 2, xx + dx / 2, yy + dy / 2)
        frac_xy = shapely.area(shapely.intersection(cells,
                                                    shape.polygon)) / (dx * dy)

        if self.ndim == 2:
            frac_z = np.ones(zs.size)
        else:
            overlap = (np.minimum(zs + dz / 2, shape.z_span[1]) -
                       np.maximum(zs - dz / 2, shape.z_span[0]))
            frac_z = np.clip(overlap, 0, dz) / dz
        return frac_xy[:, :, None] * frac_z[None, None, :]
