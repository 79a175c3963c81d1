"""Test temporal envelopes."""
import numpy as np
import pytest
import scipy.integrate

from modesource import envelope
from modesource import errors


def test_gaussian_support():
    env = envelope.GaussianEnvelope(2 * np.pi, bandwidth=0.5, offset=5.0,
                                    cutoff=1e-6)
    tau = 2.0
    assert env.width == pytest.approx(tau)
    assert env.peak_time == pytest.approx(5 * tau)
    half = tau * np.sqrt(2 * np.log(1e6))
    assert env.end_time == pytest.approx(5 * tau + half)
    # The support is clipped at the time origin.
    assert env.start_time == pytest.approx(0)

    np.testing.assert_allclose(env.envelope(env.end_time), 1e-6, rtol=1e-9)
    assert env.envelope(-1.0) == 0
    assert env.envelope(env.peak_time) == pytest.approx(1)


def test_gaussian_start_time_shifts_pulse():
    env = envelope.GaussianEnvelope(1.0, 1.0, offset=10, start_time=3.0)
    assert env.peak_time == pytest.approx(13)
    assert env.start_time == pytest.approx(13 - np.sqrt(2 * np.log(1e6)))


def test_gaussian_amplitude_has_carrier():
    env = envelope.GaussianEnvelope(3.0, 1.0)
    t = np.array([4.0, 5.0, 6.0])
    np.testing.assert_allclose(env.amplitude(t),
                               env.envelope(t) * np.exp(3j * t))


def test_gaussian_spectrum_matches_quadrature():
    env = envelope.GaussianEnvelope(5.0, 0.8, offset=6.0)
    t = np.linspace(0, env.end_time, 20001)
    for omega in (4.2, 5.0, 5.5):
        numeric = scipy.integrate.trapezoid(
            env.amplitude(t) * np.exp(-1j * omega * t), t)
        np.testing.assert_allclose(env.spectrum(omega), numeric, rtol=1e-5)


def test_gaussian_spectral_weight():
    env = envelope.GaussianEnvelope(5.0, 0.5)
    assert env.spectral_weight(5.0) == pytest.approx(1)
    assert env.spectral_weight(5.5) == pytest.approx(np.exp(-0.5))
    assert env.frequency_range(2) == pytest.approx((4.0, 6.0))


@pytest.mark.parametrize("kwargs", [
    dict(frequency=1.0, bandwidth=0),
    dict(frequency=1.0, bandwidth=1, offset=2.0),
    dict(frequency=1.0, bandwidth=1, cutoff=1.5),
    dict(frequency=-1.0, bandwidth=1),
])
def test_gaussian_invalid(kwargs):
    with pytest.raises(errors.InvalidSourceConfiguration):
        envelope.GaussianEnvelope(**kwargs)


def test_continuous_ramp():
    omega = 2 * np.pi
    env = envelope.ContinuousEnvelope(omega, start_time=1.0)
    assert env.ramp_width == pytest.approx(3)
    assert env.end_time is None
    assert env.start_time == 1.0
    np.testing.assert_allclose(env.envelope([0.0, 1.0, 2.5, 4.0, 100.0]),
                               [0, 0, 0.5, 1, 1],
                               atol=1e-15)


def test_continuous_step():
    env = envelope.ContinuousEnvelope(1.0, ramp_width=0)
    np.testing.assert_array_equal(env.envelope([-1, 0, 1]), [0, 1, 1])


def test_continuous_spectrum_is_a_line():
    env = envelope.ContinuousEnvelope(2.0)
    assert env.spectrum(2.0) == 1
    assert env.spectrum(2.1) == 0
    assert env.frequency_range() == (2.0, 2.0)


def test_continuous_invalid_ramp():
    with pytest.raises(errors.InvalidSourceConfiguration):
        envelope.ContinuousEnvelope(1.0, ramp_width=-1)
