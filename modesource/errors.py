"""Exceptions raised while building and applying mode sources."""


class ModeSourceError(Exception):
    """Base class for all errors raised by `modesource`."""

    def __init__(self, value):
        super().__init__(value)
        self.value = value

    def __str__(self):
        return repr(self.value)


class ModeNotFound(ModeSourceError):
    """No eigenmode matches the requested band and parity near the guess."""


class ConvergenceFailure(ModeSourceError):
    """Frequency matching did not converge within the iteration bound."""


class InvalidSourceConfiguration(ModeSourceError):
    """Source parameters are mutually inconsistent.

    Raised at construction time, before any timestep runs.
    """
