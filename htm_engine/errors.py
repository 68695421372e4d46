class HTMError(Exception):
    """Base class for every error raised by htm_engine."""


class InvalidParameterError(HTMError, ValueError):
    """A parameter value or combination is not usable."""


class InvalidSpatialPoolerParamError(InvalidParameterError):
    pass


class InvalidTemporalMemoryParamError(InvalidParameterError):
    pass


class InputSizeMismatchError(HTMError, ValueError):
    """Input vector does not match the configured input space."""


class InvalidHandleError(HTMError, LookupError):
    """Segment, synapse, cell or column handle is unknown or already destroyed."""
