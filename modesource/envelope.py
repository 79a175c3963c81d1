"""Temporal envelopes modulating the source current.

An envelope supplies the complex waveform `amplitude(t) = g(t) exp(i omega t)`
multiplying the spatial current, with `g` a slowly varying real envelope.
Pulsed envelopes have finite support: outside `[start_time, end_time]` the
envelope is below `cutoff` and the source is switched off. Continuous
envelopes ramp up smoothly and never switch off.

Spectra use the transform `S(w) = integral amplitude(t) exp(-i w t) dt`.
"""
import abc
from typing import Optional, Tuple

import numpy as np

from modesource import errors

# Minimum Gaussian delay, in units of the pulse width, for the turn-on
# transient to stay negligible.
MIN_GAUSSIAN_OFFSET = 2.5


class TemporalEnvelope(metaclass=abc.ABCMeta):
    """Base class for temporal envelopes."""

    def __init__(self, frequency: float, start_time: float = 0.0) -> None:
        """Creates a new envelope.

        Args:
            frequency: Angular carrier frequency.
            start_time: Time before which the envelope is zero.
        """
        if not np.isfinite(frequency) or frequency <= 0:
            raise errors.InvalidSourceConfiguration(
                "Envelope frequency must be positive, got {}".format(frequency))
        self.frequency = frequency
        self._start_time = start_time

    @abc.abstractmethod
    def envelope(self, t):
        """Real, slowly varying envelope `g(t)`."""
        raise NotImplementedError("envelope not implemented")

    @abc.abstractmethod
    def spectrum(self, omega):
        """Fourier transform of `amplitude` at angular frequency `omega`."""
        raise NotImplementedError("spectrum not implemented")

    def amplitude(self, t):
        """Complex waveform `g(t) exp(i omega t)`."""
        return self.envelope(t) * np.exp(1j * self.frequency * t)

    @property
    def start_time(self) -> float:
        """Time at which the envelope first becomes non-negligible."""
        return self._start_time

    @property
    def end_time(self) -> Optional[float]:
        """Time after which the envelope is negligible; `None` if never."""
        return None

    def spectral_weight(self, omega):
        """`|S(omega)|` relative to its value at the carrier."""
        return np.abs(self.spectrum(omega)) / np.abs(
            self.spectrum(self.frequency))

    @abc.abstractmethod
    def frequency_range(self, num_widths: float = 4.0) -> Tuple[float, float]:
        """Band of angular frequencies carrying appreciable power."""
        raise NotImplementedError("frequency_range not implemented")


class ContinuousEnvelope(TemporalEnvelope):
    """Continuous wave switched on with a smooth `sin**2` ramp."""

    def __init__(self,
                 frequency: float,
                 start_time: float = 0.0,
                 ramp_width: Optional[float] = None) -> None:
        """Creates a continuous envelope.

        Args:
            frequency: Angular carrier frequency.
            start_time: Time at which the ramp starts.
            ramp_width: Duration of the ramp. Defaults to three periods.
        """
        super().__init__(frequency, start_time)
        if ramp_width is None:
            ramp_width = 3 * 2 * np.pi / frequency
        if ramp_width < 0:
            raise errors.InvalidSourceConfiguration(
                "Ramp width must be non-negative, got {}".format(ramp_width))
        self.ramp_width = ramp_width

    def envelope(self, t):
        t = np.asarray(t, dtype=float)
        if self.ramp_width == 0:
            return np.where(t >= self.start_time, 1.0, 0.0)
        phase = np.clip((t - self.start_time) / self.ramp_width, 0, 1)
        return np.sin(np.pi / 2 * phase)**2

    def spectrum(self, omega):
        # A continuous wave is a spectral line; it is normalized to unit
        # weight at the carrier.
        return np.where(np.isclose(omega, self.frequency), 1.0 + 0j, 0j)

    def frequency_range(self, num_widths: float = 4.0) -> Tuple[float, float]:
        return (self.frequency, self.frequency)


class GaussianEnvelope(TemporalEnvelope):
    """Gaussian pulse `exp(-(t - t0)**2 / (2 tau**2))` with `tau = 1 / width`."""

    def __init__(self,
                 frequency: float,
                 bandwidth: float,
                 offset: float = 5.0,
                 cutoff: float = 1e-6,
                 start_time: float = 0.0) -> None:
        """Creates a Gaussian pulse.

        Args:
            frequency: Angular carrier frequency.
            bandwidth: Standard deviation of the spectrum in angular
                frequency.
            offset: Delay of the peak after `start_time`, in units of `tau`.
            cutoff: Envelope value below which the pulse counts as off.
            start_time: Time origin of the pulse.
        """
        super().__init__(frequency, start_time)
        if not np.isfinite(bandwidth) or bandwidth <= 0:
            raise errors.InvalidSourceConfiguration(
                "Pulse bandwidth must be positive, got {}".format(bandwidth))
        if offset < MIN_GAUSSIAN_OFFSET:
            raise errors.InvalidSourceConfiguration(
                "Pulse offset must be at least {}, got {}".format(
                    MIN_GAUSSIAN_OFFSET, offset))
        if not 0 < cutoff < 1:
            raise errors.InvalidSourceConfiguration(
                "Cutoff must lie in (0, 1), got {}".format(cutoff))
        self.bandwidth = bandwidth
        self.offset = offset
        self.cutoff = cutoff

    @property
    def width(self) -> float:
        """Temporal standard deviation `tau`."""
        return 1 / self.bandwidth

    @property
    def peak_time(self) -> float:
        return self._start_time + self.offset * self.width

    @property
    def _half_support(self) -> float:
        return self.width * np.sqrt(2 * np.log(1 / self.cutoff))

    @property
    def start_time(self) -> float:
        return max(self._start_time, self.peak_time - self._half_support)

    @property
    def end_time(self) -> float:
        return self.peak_time + self._half_support

    def envelope(self, t):
        t = np.asarray(t, dtype=float)
        value = np.exp(-(t - self.peak_time)**2 / (2 * self.width**2))
        return np.where(t >= self._start_time, value, 0.0)

    def spectrum(self, omega):
        detuning = np.asarray(omega, dtype=float) - self.frequency
        return (self.width * np.sqrt(2 * np.pi) *
                np.exp(-(detuning * self.width)**2 / 2) *
                np.exp(-1j * detuning * self.peak_time))

    def frequency_range(self, num_widths: float = 4.0) -> Tuple[float, float]:
        return (max(self.frequency - num_widths * self.bandwidth, 0),
                self.frequency + num_widths * self.bandwidth)
