"""Test source specifications, injectors and current accumulation."""
import concurrent.futures
import dataclasses
import logging

import numpy as np
import pytest

from modesource import envelope
from modesource import errors
from modesource import grid
from modesource import injector
from modesource import mode
from modesource import slab_mode
from modesource.direction import SourceDirection
from modesource.injector import InjectorState, SourceSpecification

OMEGA = 2 * np.pi
INDEX = 1.5


@pytest.fixture
def uniform_grid():
    return grid.YeeGrid((60, 10, 1),
                        0.05,
                        origin=(-1.5, -0.25, 0),
                        background=INDEX**2)


def make_spec(**kwargs):
    params = dict(center=(0, 0, 0),
                  size=(0, np.inf, 0),
                  envelope=envelope.GaussianEnvelope(OMEGA, 1.0, offset=10))
    params.update(kwargs)
    return SourceSpecification(**params)


def make_planewave(frequency=OMEGA, angle=0.0):
    return mode.planewave_profile(frequency, (np.cos(angle), np.sin(angle), 0),
                                  index=INDEX,
                                  plane_normal=(1, 0, 0))


class TestSpecificationValidation:

    def test_axis_aligned_defaults(self):
        make_spec().validate()
        make_spec(direction=SourceDirection.X).validate()

    def test_rotated_requires_no_direction(self):
        make_spec(rotation=0.3,
                  direction=SourceDirection.NO_DIRECTION).validate()
        for direction in (SourceDirection.X, SourceDirection.Y,
                          SourceDirection.AUTOMATIC):
            with pytest.raises(errors.InvalidSourceConfiguration,
                               match="NO_DIRECTION"):
                make_spec(rotation=0.3, direction=direction).validate()

    def test_explicit_axis_must_match_wavevector(self):
        with pytest.raises(errors.InvalidSourceConfiguration,
                           match="disagrees"):
            make_spec(direction=SourceDirection.X).validate([0, 2.0, 0])

    def test_zero_wavevector_accepts_any_direction(self):
        make_spec(kpoint=(0, 0, 0), direction=SourceDirection.Z).validate()

    @pytest.mark.parametrize("kwargs", [
        dict(amplitude_scale=np.inf),
        dict(target_power=0.0),
        dict(band=-1),
        dict(parity=frozenset({mode.Parity.EVEN_Z, mode.Parity.ODD_Z})),
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(errors.InvalidSourceConfiguration):
            make_spec(**kwargs).validate()

    def test_wavevector_direction(self):
        spec = make_spec(kpoint=(2, 0, 0), rotation=np.pi / 2)
        np.testing.assert_allclose(spec.wavevector_direction, [0, 1, 0],
                                   atol=1e-15)


def test_injector_state_machine(uniform_grid):
    inj = injector.build_injector(uniform_grid, make_spec(), make_planewave())
    env = inj.envelope
    assert inj.state is InjectorState.IDLE
    assert inj.state_at(env.start_time - 1) is InjectorState.IDLE
    assert inj.state_at(env.peak_time) is InjectorState.ACTIVE
    assert inj.state_at(env.end_time + 1) is InjectorState.DECAYED

    assert inj.advance(0.0) is InjectorState.IDLE
    assert inj.advance(env.peak_time) is InjectorState.ACTIVE
    assert inj.advance(env.end_time + 1) is InjectorState.DECAYED
    assert inj.advance(env.end_time + 2) is InjectorState.DECAYED
    with pytest.raises(ValueError, match="backwards"):
        inj.advance(env.peak_time)


def test_continuous_injector_never_decays(uniform_grid):
    spec = make_spec(envelope=envelope.ContinuousEnvelope(OMEGA))
    inj = injector.build_injector(uniform_grid, spec, make_planewave())
    for t in (0.0, 1.0, 1e3, 1e6):
        assert inj.advance(t) is InjectorState.ACTIVE


def test_step_adds_scaled_current(uniform_grid):
    spec = make_spec(amplitude_scale=3.0)
    inj = injector.build_injector(uniform_grid, spec, make_planewave())
    acc = injector.CurrentAccumulator(uniform_grid.shape)

    inj.step(1.0, acc)
    np.testing.assert_array_equal(acc.J, 0)

    t = inj.envelope.peak_time
    inj.step(t, acc)
    expected = np.zeros_like(acc.J)
    expected[(slice(None),) + inj.region] = (3.0 * inj.scale *
                                             inj.current.values *
                                             inj.envelope.amplitude(t))
    np.testing.assert_allclose(acc.J, expected, rtol=1e-14)


def test_currents_at_does_not_advance(uniform_grid):
    inj = injector.build_injector(uniform_grid, make_spec(), make_planewave())
    t = inj.envelope.peak_time
    current = inj.currents_at(t)
    assert inj.state is InjectorState.IDLE
    assert current.region == inj.region
    np.testing.assert_allclose(current.values,
                               inj.spatial_profile * inj.envelope.amplitude(t))
    assert inj.currents_at(0.0) is None


def test_normalization_reaches_target_power(uniform_grid):
    spec = make_spec(target_power=2.5)
    inj = injector.build_injector(uniform_grid, spec, make_planewave())
    assert inj.current.power * inj.scale**2 == pytest.approx(2.5)


def test_rotated_planewave_needs_no_direction(uniform_grid):
    profile = make_planewave(angle=0.3)
    spec = make_spec(rotation=0.3, direction=SourceDirection.NO_DIRECTION)
    inj = injector.build_injector(uniform_grid, spec, profile)
    assert inj.current.polarity == 1

    with pytest.raises(errors.InvalidSourceConfiguration):
        injector.build_injector(uniform_grid,
                                make_spec(rotation=0.3,
                                          direction=SourceDirection.X),
                                profile)


def test_planewave_is_retuned_to_envelope(uniform_grid):
    inj = injector.build_injector(uniform_grid, make_spec(),
                                  make_planewave(frequency=1.1 * OMEGA))
    assert inj.current.omega == pytest.approx(OMEGA)
    np.testing.assert_allclose(inj.current.wavevector, [OMEGA * INDEX, 0, 0])


def test_bounded_profile_frequency_mismatch(uniform_grid, caplog):
    profile = dataclasses.replace(make_planewave(frequency=1.1 * OMEGA),
                                  coords=(np.array([-0.125, 0.125]),),
                                  unbounded=False)
    with pytest.raises(errors.InvalidSourceConfiguration, match="solver"):
        injector.build_injector(uniform_grid, make_spec(), profile)

    with caplog.at_level(logging.WARNING):
        inj = injector.build_injector(uniform_grid,
                                      make_spec(match_frequency=False),
                                      profile)
    assert inj.current.omega == pytest.approx(1.1 * OMEGA)
    assert "differs" in caplog.text


def test_build_injector_rejects_unknown_source(uniform_grid):
    with pytest.raises(TypeError):
        injector.build_injector(uniform_grid, make_spec(), "planewave")


def test_build_injector_with_mode_solver():
    omega = 2 * np.pi / 1.55
    g = grid.YeeGrid((120, 100, 1),
                     0.05,
                     origin=(-3, -2.5, 0),
                     shapes=[grid.box((0, 0), (100, 1.0), 12.0)])
    spec = SourceSpecification(center=(0, 0, 0),
                               size=(0, 4.0, 0),
                               envelope=envelope.ContinuousEnvelope(omega),
                               parity=frozenset({mode.Parity.EVEN_Y}))
    inj = injector.build_injector(g, spec, slab_mode.SlabModeSolver(g))
    assert inj.current.omega == pytest.approx(omega, rel=1e-8)
    assert inj.current.power * inj.scale**2 == pytest.approx(1.0)
    assert not inj.current.rotated


def test_build_injector_rejects_misplaced_profile():
    omega = 2 * np.pi / 1.55
    g = grid.YeeGrid((120, 100, 1),
                     0.05,
                     origin=(-3, -2.5, 0),
                     shapes=[grid.box((0, 0), (100, 1.0), 12.0)])
    request = mode.ModeRequest(frequency=omega,
                               wavevector=(3 * omega, 0, 0),
                               origin=(0, 0, 0),
                               extent=4.0,
                               parity=frozenset({mode.Parity.EVEN_Y}))
    profile = mode.acquire_mode(slab_mode.SlabModeSolver(g), request)
    shifted = dataclasses.replace(profile, origin=(0, 1.9, 0))

    spec = SourceSpecification(center=(-1, 0, 0),
                               size=(0, 4.0, 0),
                               envelope=envelope.ContinuousEnvelope(omega),
                               match_frequency=False,
                               parity=frozenset({mode.Parity.EVEN_Y}))
    with pytest.raises(errors.InvalidSourceConfiguration,
                       match="away from the source plane"):
        injector.build_injector(g, spec, shifted)

    spec = dataclasses.replace(spec, center=(0, 0, 0))
    with pytest.raises(errors.InvalidSourceConfiguration, match="truncated"):
        injector.build_injector(g, spec, shifted)

    inj = injector.build_injector(g, spec, profile)
    assert inj.current.power * inj.scale**2 == pytest.approx(1.0)


def test_accumulator_add_and_clear():
    acc = injector.CurrentAccumulator((4, 3, 1))
    region = (slice(1, 3), slice(0, 3), slice(0, 1))
    values = np.ones((3, 2, 3, 1)) * (1 + 2j)
    acc.add(region, values)
    acc.add(region, values)
    np.testing.assert_array_equal(acc.J[:, 1:3], 2 + 4j)
    np.testing.assert_array_equal(acc.J[:, 0], 0)
    acc.clear()
    np.testing.assert_array_equal(acc.J, 0)


def test_real_accumulator_takes_real_part():
    acc = injector.CurrentAccumulator((2, 2, 1), dtype=float)
    acc.add((slice(0, 1), slice(0, 2), slice(0, 1)),
            np.full((3, 1, 2, 1), 1 + 5j))
    assert acc.J.dtype == float
    np.testing.assert_array_equal(acc.J[:, 0], 1)


def test_accumulator_merge():
    total = injector.CurrentAccumulator((2, 2, 1))
    partials = [injector.CurrentAccumulator((2, 2, 1)) for _ in range(3)]
    for i, partial in enumerate(partials):
        partial.J[...] = i + 1
    total.merge(partials)
    np.testing.assert_array_equal(total.J, 6)


def test_parallel_injection_matches_serial(uniform_grid):
    specs = [
        make_spec(),
        make_spec(center=(0.5, 0, 0), amplitude_scale=0.5),
        make_spec(envelope=envelope.ContinuousEnvelope(OMEGA)),
    ]
    injectors = injector.setup_all(uniform_grid, specs,
                                   [make_planewave()] * 3,
                                   max_workers=3)
    assert [inj.specification for inj in injectors] == specs

    def run(**kwargs):
        clones = injector.setup_all(uniform_grid, specs,
                                    [make_planewave()] * 3)
        acc = injector.CurrentAccumulator(uniform_grid.shape)
        for t in np.linspace(0, 20, 41):
            injector.inject_all(clones, t, acc, **kwargs)
        return acc.J

    serial = run()
    with concurrent.futures.ThreadPoolExecutor(4) as executor:
        threaded = run(executor=executor)
    pooled = run(max_workers=2)
    np.testing.assert_array_equal(serial, threaded)
    np.testing.assert_array_equal(serial, pooled)
    assert np.any(serial != 0)


def test_overlapping_sources_add(uniform_grid):
    injectors = injector.setup_all(uniform_grid, [make_spec()] * 2,
                                   [make_planewave()] * 2)
    single = injector.CurrentAccumulator(uniform_grid.shape)
    double = injector.CurrentAccumulator(uniform_grid.shape)
    t = injectors[0].envelope.peak_time
    injectors[0].step(t, single)
    injector.inject_all(injectors, t, double)
    np.testing.assert_allclose(double.J, 2 * single.J)


def test_setup_all_length_mismatch(uniform_grid):
    with pytest.raises(ValueError, match="specifications"):
        injector.setup_all(uniform_grid, [make_spec()], [])
