"""Test loading and building sources from configuration files."""
import json

import numpy as np
import pytest
from schematics import exceptions

from modesource import envelope
from modesource import grid
from modesource import injector
from modesource import mode
from modesource import schema
from modesource import slab_mode
from modesource.direction import SourceDirection

CONFIG_YAML = """
sources:
  - type: source.mode
    center: [0, 0, 0]
    size: [0, 4, 0]
    kpoint: [1, 0, 0]
    rotation: 0.35
    direction: no_direction
    parity: [even_y]
    band: 1
    target_power: 2.0
    envelope:
      type: envelope.gaussian
      frequency: 6.28
      bandwidth: 0.5
  - type: source.plane_wave
    center: [0, 0, 0]
    size: [0, .inf, 0]
    amplitude_scale: 0.5
    envelope:
      type: envelope.continuous
      frequency: 6.28
      ramp_width: 2.0
"""


@pytest.fixture
def uniform_grid():
    return grid.YeeGrid((60, 10, 1),
                        0.05,
                        origin=(-1.5, -0.25, 0),
                        background=2.25)


def test_load_yaml(tmp_path):
    path = tmp_path / "sources.yml"
    path.write_text(CONFIG_YAML)
    config = schema.load_config(str(path))

    mode_config, planewave_config = config.sources
    assert isinstance(mode_config, schema.ModeSourceConfig)
    assert isinstance(mode_config.envelope, schema.GaussianEnvelopeConfig)
    assert mode_config.envelope.offset == 5.0
    assert isinstance(planewave_config, schema.PlaneWaveSourceConfig)
    assert planewave_config.polarization == [0, 0, 1]

    spec = schema.build_specification(mode_config)
    assert spec.direction is SourceDirection.NO_DIRECTION
    assert spec.parity == frozenset({mode.Parity.EVEN_Y})
    assert spec.band == 1
    assert spec.target_power == 2.0
    assert spec.rotation == 0.35
    assert isinstance(spec.envelope, envelope.GaussianEnvelope)
    assert spec.envelope.bandwidth == 0.5

    spec = schema.build_specification(planewave_config)
    assert spec.direction is SourceDirection.AUTOMATIC
    assert spec.amplitude_scale == 0.5
    assert isinstance(spec.envelope, envelope.ContinuousEnvelope)
    assert spec.envelope.ramp_width == 2.0


def test_load_json(tmp_path):
    data = {
        "sources": [{
            "type": "source.plane_wave",
            "center": [0, 0, 0],
            "size": [0, 1, 0],
            "index": 2.0,
            "envelope": {
                "type": "envelope.gaussian",
                "frequency": 1.0,
                "bandwidth": 0.1,
                "start_time": 3.0,
            },
        }]
    }
    path = tmp_path / "sources.json"
    path.write_text(json.dumps(data))
    config = schema.load_config(str(path))
    assert config.sources[0].index == 2.0
    assert config.sources[0].envelope.start_time == 3.0


def test_model_from_kwargs():
    config = schema.GaussianEnvelopeConfig(frequency=1.0, bandwidth=0.2)
    assert config.type == "envelope.gaussian"
    config.validate()
    assert config.to_primitive()["bandwidth"] == 0.2


@pytest.mark.parametrize("envelope_data", [
    {
        "type": "envelope.gaussian",
        "frequency": 1.0,
        "bandwidth": 0.1,
        "offset": 1.0
    },
    {
        "type": "envelope.gaussian",
        "frequency": 1.0
    },
])
def test_invalid_envelope(envelope_data):
    with pytest.raises(exceptions.DataError):
        config = schema.SourceListConfig({
            "sources": [{
                "type": "source.plane_wave",
                "center": [0, 0, 0],
                "size": [0, 1, 0],
                "envelope": envelope_data,
            }]
        })
        config.validate()


def test_invalid_direction():
    config = schema.PlaneWaveSourceConfig(
        center=[0, 0, 0],
        size=[0, 1, 0],
        direction="diagonal",
        envelope=schema.ContinuousEnvelopeConfig(frequency=1.0))
    with pytest.raises(exceptions.DataError):
        config.validate()


def test_build_source(uniform_grid):
    env = schema.ContinuousEnvelopeConfig(frequency=2 * np.pi)
    mode_config = schema.ModeSourceConfig(center=[0, 0, 0],
                                          size=[0, 0.4, 0],
                                          resolution=50.0,
                                          envelope=env)
    solver = schema.build_source(mode_config, uniform_grid)
    assert isinstance(solver, slab_mode.SlabModeSolver)
    assert solver.resolution == 50.0

    planewave_config = schema.PlaneWaveSourceConfig(center=[0, 0, 0],
                                                    size=[0, 0.4, 0],
                                                    rotation=0.2,
                                                    envelope=env)
    profile = schema.build_source(planewave_config, uniform_grid)
    assert isinstance(profile, mode.ModeProfile)
    assert profile.unbounded
    assert np.linalg.norm(profile.wavevector) == pytest.approx(2 * np.pi *
                                                               1.5)
    np.testing.assert_allclose(profile.normal, [1, 0, 0], atol=1e-12)


def test_build_injectors(uniform_grid):
    config = schema.SourceListConfig(sources=[
        schema.PlaneWaveSourceConfig(
            center=[0, 0, 0],
            size=[0, np.inf, 0],
            envelope=schema.GaussianEnvelopeConfig(frequency=2 * np.pi,
                                                   bandwidth=1.0)),
        schema.PlaneWaveSourceConfig(
            center=[0.5, 0, 0],
            size=[0, np.inf, 0],
            target_power=4.0,
            envelope=schema.ContinuousEnvelopeConfig(frequency=2 * np.pi)),
    ])
    injectors = schema.build_injectors(config, uniform_grid, max_workers=2)
    assert len(injectors) == 2
    assert all(inj.state is injector.InjectorState.IDLE for inj in injectors)
    assert injectors[1].current.index == 40
    assert injectors[1].scale == pytest.approx(2 * injectors[0].scale)
