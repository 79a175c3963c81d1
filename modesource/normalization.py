"""Power normalization of mode sources.

The current of a source is scaled once at setup so that the launched mode
carries `target_power`. The power is computed from the same Yee-staggered
field samples the current is built from, which makes the normalization
independent of how the mode is oriented relative to the grid.

Powers are time averages, `0.5 Re(E x H*)`. In 2D simulations they are per
unit length along z.
"""
import logging
from typing import List, Optional

import numpy as np
import scipy.integrate

from modesource import errors
from modesource import types

logger = logging.getLogger(__name__)


def _area_element(dxes: types.GridSpacing, axis: int, transverse: List[slice],
                  ndim: int) -> np.ndarray:
    """Cell areas of a plane normal to `axis`, over the given slices."""
    widths = []
    for a in range(3):
        if a == axis:
            continue
        if a == 2 and ndim == 2:
            widths.append(np.ones(1))
        else:
            widths.append(np.real(dxes[1][a])[transverse[a]])
    return np.multiply.outer(widths[0], widths[1])


def plane_flux(E: types.VecField,
               H: types.VecField,
               dxes: types.GridSpacing,
               axis: int,
               index: int,
               slices: Optional[types.Region] = None,
               ndim: int = 3) -> float:
    """Poynting flux along `+axis` through the plane `index`.

    Pairs E on E-plane `index` with H on the H-plane half a cell downstream,
    which is stored at the same index. For a lossless medium this pairing is
    conserved exactly from plane to plane.

    Args:
        E: Electric field `[Ex, Ey, Ez]`.
        H: Magnetic field `[Hx, Hy, Hz]`.
        dxes: Grid spacing.
        axis: Normal axis.
        index: Plane index along `axis`.
        slices: Optional region restricting the transverse extent; the entry
            for `axis` is ignored.
        ndim: 2 to compute flux per unit length along z.

    Returns:
        The time-averaged flux.
    """
    if slices is None:
        slices = (slice(None),) * 3
    transverse = list(slices)
    transverse[axis] = index
    sel = tuple(transverse)

    b, c = (axis + 1) % 3, (axis + 2) % 3
    s = E[b][sel] * np.conj(H[c][sel]) - E[c][sel] * np.conj(H[b][sel])
    area = _area_element(dxes, axis, transverse, ndim)
    return float(0.5 * np.real(np.sum(s * area)))


def mode_power(profile) -> float:
    """Power carried by a mode profile through its own cross-section.

    Integrates `0.5 Re(E x H*) . n` over the samples with the trapezoidal
    rule. For unbounded profiles (planewaves) the power per unit area is
    returned instead.
    """
    E = np.stack([np.asarray(profile.fields[c]) for c in types.E_COMPONENTS])
    H = np.stack([np.asarray(profile.fields[c]) for c in types.H_COMPONENTS])
    poynting = 0.5 * np.real(np.cross(E, np.conj(H), axis=0))
    flux = np.tensordot(profile.normal, poynting, axes=1)
    if profile.unbounded:
        return float(np.mean(flux))
    for coords in reversed(profile.coords):
        flux = scipy.integrate.trapezoid(flux, coords, axis=-1)
    return float(flux)


class PowerNormalizer:
    """Computes and caches the amplitude scale of a source.

    The scale is computed from the first `ProjectedCurrent` handed to
    `compute` and reused for the rest of the run.
    """

    def __init__(self,
                 target_power: float = 1.0,
                 frequency_normalized: bool = False) -> None:
        """Creates a new normalizer.

        Args:
            target_power: Power the launched mode should carry.
            frequency_normalized: If `True`, the amplitude is additionally
                divided by the envelope spectrum at the carrier, so that the
                time-integrated spectral power at the carrier equals
                `target_power` regardless of pulse shape.
        """
        if not np.isfinite(target_power) or target_power <= 0:
            raise errors.InvalidSourceConfiguration(
                "Target power must be positive, got {}".format(target_power))
        self.target_power = target_power
        self.frequency_normalized = frequency_normalized
        self._scale = None

    @property
    def scale(self) -> float:
        if self._scale is None:
            raise ValueError("Normalization scale has not been computed.")
        return self._scale

    def compute(self, current) -> float:
        """Computes the scale `sqrt(target_power / power)` once.

        Args:
            current: Projected current of the source.

        Returns:
            The amplitude scale.

        Raises:
            InvalidSourceConfiguration: If the mode carries no forward power.
        """
        if self._scale is not None:
            return self._scale

        if not np.isfinite(current.power) or current.power <= 0:
            raise errors.InvalidSourceConfiguration(
                "Mode carries no power through the source plane, got "
                "{}".format(current.power))
        self._scale = float(np.sqrt(self.target_power / current.power))

        logger.info("Normalization scale {:.6g} for target power {:.6g}.".format(
            self._scale, self.target_power))
        return self._scale

    def spectral_scale(self, envelope, omega: float) -> float:
        """Scale giving `target_power` of spectral power density at `omega`."""
        return self.scale / abs(envelope.spectrum(omega))

    def amplitude(self, envelope) -> float:
        """Amplitude applied to the current for the given envelope."""
        if self.frequency_normalized:
            return self.spectral_scale(envelope, envelope.frequency)
        return self.scale
