"""Exceptions raised by the presence service."""


class PresenceError(Exception):
    """Base class for presence detection failures."""


class ProbeToolUnavailableError(PresenceError):
    """The probe executable is not installed or not on the PATH."""


class ProbeLaunchError(PresenceError):
    """A probe process could not be spawned."""
