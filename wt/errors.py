"""
Boundary-facing exceptions for the wt toolkit.

Numerical edge cases inside the analysis stages never raise; only
configuration input, replay sources and analyze runs surface these.
"""


class TopologyError(Exception):
    """
    Base class for user-visible wt failures.
    """
    exit_code: int = 1


class ConfigError(TopologyError, ValueError):
    """
    A configuration value is missing, malformed, or out of bounds.
    """


class ReplayError(TopologyError):
    """
    A replay source could not be read or holds no snapshot lines.
    """


class NoObservationsError(TopologyError):
    """
    An analyze run completed without observing a single network.
    """
    exit_code = 2
