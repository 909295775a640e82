"""
Exception types for Certificate Monitor.
"""


class CertMonitorError(Exception):
    """Base class for Certificate Monitor errors."""


class ConfigFetchError(CertMonitorError):
    """The configuration store could not be reached or answered with an error."""


class ConfigParseError(CertMonitorError):
    """The fetched configuration is not a valid YAML mapping."""


class ConfigRejectedError(CertMonitorError):
    """The fetched configuration failed validation and was not applied."""
