LOG_FORMAT = "[%(asctime)-15s][%(levelname)s][%(module)s][%(funcName)s] %(message)s"

from modesource.errors import *
from modesource.direction import SourceDirection
from modesource.mode import (ModeProfile, ModeRequest, ModeSolver, Parity,
                             acquire_mode, planewave_profile)
from modesource.envelope import (TemporalEnvelope, ContinuousEnvelope,
                                 GaussianEnvelope)
from modesource.projector import CurrentProjector, SourcePlane
from modesource.normalization import PowerNormalizer
from modesource.injector import (CurrentAccumulator, InjectorState,
                                 SourceInjector, SourceSpecification,
                                 build_injector, inject_all, setup_all)

from modesource import grid
from modesource import slab_mode
from modesource import diagnostics
from modesource import schema
from modesource import util
