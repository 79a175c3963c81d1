"""Schema for describing mode sources in configuration files.

Sources are described with `schematics` models so that a list of sources can
be written in YAML or JSON, e.g.

```yaml
sources:
  - type: source.mode
    center: [0, 0, 0]
    size: [0, 4, 0]
    kpoint: [1, 0, 0]
    rotation: 0.35
    direction: no_direction
    envelope:
      type: envelope.gaussian
      frequency: 6.28
      bandwidth: 0.5
```

Envelopes and sources are polymorphic: the `type` field selects the model.
"""
import json
import logging
import warnings
from typing import List, Optional, Tuple, Union

import numpy as np
from schematics import models
from schematics import types
import yaml

from modesource import direction as direction_utils
from modesource import envelope as envelope_module
from modesource import grid as grid_module
from modesource import injector
from modesource import mode
from modesource import slab_mode

logger = logging.getLogger(__name__)

ENVELOPE_TYPES = []
SOURCE_TYPES = []


def polymorphic_model_type(name: str) -> types.StringType:
    """Returns the `type` field of a polymorphic model named `name`."""
    return types.StringType(default=name, choices=(name,), required=True)


def polymorphic_model(type_list: Optional[Union[List, Tuple[List]]] = None):
    """Registers a model as one choice of a polymorphic field.

    The decorated class must define a `type` field created with
    `polymorphic_model_type`; data is claimed by the model whose `type`
    matches.

    Args:
        type_list: List, or tuple of lists, to register the model in.

    Returns:
        A class decorator.
    """

    def decorator(cls):
        if isinstance(type_list, tuple):
            for type_list_ in type_list:
                type_list_.append(cls)
        elif type_list is not None:
            type_list.append(cls)

        assert len(cls._schema.fields["type"].choices) == 1

        def _claim_polymorphic(data):
            return data["type"] == cls._schema.fields["type"].choices[0]

        cls._claim_polymorphic = _claim_polymorphic  # pylint: disable=protected-access
        return cls

    return decorator


def vec3d(**kwargs) -> types.ListType:
    """Field holding a list of three floats."""
    return types.ListType(types.FloatType(), min_size=3, max_size=3, **kwargs)


class Model(models.Model):
    """Model that can also be built from keyword arguments.

    `Model(a=1)` is equivalent to `Model({"a": 1})`.
    """

    class Options:
        serialize_when_none = False

    def __init__(self, *args, **kwargs):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            fields = self._schema.fields.keys()
            super().__init__(
                *args, **{k: v for k, v in kwargs.items() if k not in fields})
            for key, value in kwargs.items():
                if key in fields:
                    self[key] = value


class EnvelopeConfig(Model):
    """Fields shared by all envelopes.

    Attributes:
        frequency: Angular carrier frequency.
        start_time: Time origin of the envelope.
    """
    frequency = types.FloatType(required=True, min_value=0)
    start_time = types.FloatType(default=0.0)


@polymorphic_model(ENVELOPE_TYPES)
class GaussianEnvelopeConfig(EnvelopeConfig):
    """Gaussian pulse, see `envelope.GaussianEnvelope`."""
    type = polymorphic_model_type("envelope.gaussian")
    bandwidth = types.FloatType(required=True, min_value=0)
    offset = types.FloatType(default=5.0,
                             min_value=envelope_module.MIN_GAUSSIAN_OFFSET)
    cutoff = types.FloatType(default=1e-6, min_value=0, max_value=1)


@polymorphic_model(ENVELOPE_TYPES)
class ContinuousEnvelopeConfig(EnvelopeConfig):
    """Continuous wave, see `envelope.ContinuousEnvelope`.

    Attributes:
        ramp_width: Duration of the turn-on ramp; three periods if unset.
    """
    type = polymorphic_model_type("envelope.continuous")
    ramp_width = types.FloatType(min_value=0)


class SourceConfig(Model):
    """Fields shared by all sources.

    Attributes:
        center: Center of the source region.
        size: Size of the source region, zero along the plane normal.
        envelope: Temporal envelope.
        direction: Name of a `SourceDirection`.
        kpoint: Propagation direction before rotation.
        rotation: Rotation of `kpoint` about z, in radians.
        amplitude_scale: Extra amplitude factor.
        target_power: Power carried by the launched mode.
        frequency_normalized: Normalize the spectral power at the carrier.
    """
    center = vec3d(required=True)
    size = vec3d(required=True)
    envelope = types.PolyModelType(ENVELOPE_TYPES, required=True)
    direction = types.StringType(
        default=direction_utils.SourceDirection.AUTOMATIC.value,
        choices=[d.value for d in direction_utils.SourceDirection])
    kpoint = vec3d(default=[1.0, 0.0, 0.0])
    rotation = types.FloatType(default=0.0)
    amplitude_scale = types.FloatType(default=1.0)
    target_power = types.FloatType(default=1.0, min_value=0)
    frequency_normalized = types.BooleanType(default=False)


@polymorphic_model(SOURCE_TYPES)
class ModeSourceConfig(SourceConfig):
    """Waveguide mode computed by `slab_mode.SlabModeSolver`.

    Attributes:
        match_frequency: Refine the mode to the envelope frequency.
        band: Band index within the parity class.
        parity: Names of `Parity` values.
        extent: Width of the mode cross-section.
        resolution: Samples per unit length of the mode solver.
    """
    type = polymorphic_model_type("source.mode")
    match_frequency = types.BooleanType(default=True)
    band = types.IntType(default=0, min_value=0)
    parity = types.ListType(
        types.StringType(choices=[p.value for p in mode.Parity]), default=[])
    extent = types.FloatType(min_value=0)
    resolution = types.FloatType(min_value=0)


@polymorphic_model(SOURCE_TYPES)
class PlaneWaveSourceConfig(SourceConfig):
    """Planewave in a homogeneous medium.

    Attributes:
        index: Refractive index; taken from the grid at `center` if unset.
        polarization: Direction of the electric field.
    """
    type = polymorphic_model_type("source.plane_wave")
    index = types.FloatType(min_value=0)
    polarization = vec3d(default=[0.0, 0.0, 1.0])


class SourceListConfig(Model):
    """Top-level model of a source configuration file."""
    sources = types.ListType(types.PolyModelType(SOURCE_TYPES), default=[])


def load_config(path: str) -> SourceListConfig:
    """Loads and validates a source configuration file.

    Files ending in `.json` are read as JSON, everything else as YAML.

    Raises:
        schematics.exceptions.DataError: If the configuration is invalid.
    """
    with open(path, "r") as fp:
        if path.endswith(".json"):
            data = json.load(fp)
        else:
            data = yaml.safe_load(fp)
    config = SourceListConfig(data)
    config.validate()
    logger.debug("Loaded {} sources from {}.".format(len(config.sources),
                                                     path))
    return config


def build_envelope(config: EnvelopeConfig) -> envelope_module.TemporalEnvelope:
    if isinstance(config, GaussianEnvelopeConfig):
        return envelope_module.GaussianEnvelope(config.frequency,
                                                config.bandwidth,
                                                offset=config.offset,
                                                cutoff=config.cutoff,
                                                start_time=config.start_time)
    if isinstance(config, ContinuousEnvelopeConfig):
        return envelope_module.ContinuousEnvelope(
            config.frequency,
            start_time=config.start_time,
            ramp_width=config.ramp_width)
    raise ValueError("Unknown envelope type, got {}".format(type(config)))


def build_specification(
        config: SourceConfig) -> injector.SourceSpecification:
    """Converts a validated source model into a `SourceSpecification`."""
    config.validate()
    kwargs = {}
    if isinstance(config, ModeSourceConfig):
        kwargs = dict(match_frequency=config.match_frequency,
                      band=config.band,
                      parity=frozenset(mode.Parity(p) for p in config.parity),
                      extent=config.extent)
    return injector.SourceSpecification(
        center=tuple(config.center),
        size=tuple(config.size),
        envelope=build_envelope(config.envelope),
        direction=direction_utils.SourceDirection(config.direction),
        amplitude_scale=config.amplitude_scale,
        target_power=config.target_power,
        frequency_normalized=config.frequency_normalized,
        kpoint=tuple(config.kpoint),
        rotation=config.rotation,
        **kwargs)


def build_source(config: SourceConfig, grid: grid_module.SimulationGrid
                ) -> Union[mode.ModeProfile, mode.ModeSolver]:
    """Creates the mode solver or planewave profile a source draws from."""
    if isinstance(config, ModeSourceConfig):
        return slab_mode.SlabModeSolver(grid, resolution=config.resolution)

    center = np.asarray(config.center, dtype=float)
    mu = float(grid.permeability_at(center)[0])
    index = config.index
    if index is None:
        index = float(np.sqrt(grid.permittivity_at(center)[0] * mu))
    normal_axis = int(np.argmin(np.abs(config.size[:grid.ndim])))
    return mode.planewave_profile(
        config.envelope.frequency,
        direction_utils.rotate_in_plane(config.kpoint, config.rotation),
        index=index,
        polarization=config.polarization,
        origin=center,
        plane_normal=direction_utils.unit_vector(normal_axis),
        ndim=grid.ndim,
        mu=mu)


def build_injectors(config: SourceListConfig,
                    grid: grid_module.SimulationGrid,
                    max_workers: Optional[int] = None
                   ) -> List[injector.SourceInjector]:
    """Sets up every source of a configuration in parallel."""
    specifications = [build_specification(c) for c in config.sources]
    sources = [build_source(c, grid) for c in config.sources]
    return injector.setup_all(grid, specifications, sources, max_workers)
