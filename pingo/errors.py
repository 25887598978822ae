"""Exception types raised by pingo components."""


class PingoError(Exception):
    """Base class for all pingo errors."""


class InvalidTargetError(PingoError):
    """Target is not a valid IP address or hostname."""


class ProbeExecutionError(PingoError):
    """The ping process could not be started or produced no usable output."""


class StorageError(PingoError):
    """Any failure while reading or writing the statistics database."""


class InvalidTimeFormatError(PingoError):
    """A query bound could not be parsed."""


class ConfigError(PingoError):
    """Configuration file could not be parsed or holds invalid values."""
