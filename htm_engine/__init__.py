"""Spatial pooler and temporal memory over a shared connections graph."""

import logging

from .connections import EPSILON, Connections, Segment, Synapse
from .errors import (
    HTMError,
    InputSizeMismatchError,
    InvalidHandleError,
    InvalidParameterError,
    InvalidSpatialPoolerParamError,
    InvalidTemporalMemoryParamError,
)
from .monitor import Metric, MonitoredTemporalMemory, Trace
from .parameters import Parameters, check_parameters
from .pool import Pool
from .spatial_pooler import PASpatialPooler, SpatialPooler
from .temporal_memory import ComputeCycle, TemporalMemory
from .topology import Topology

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "EPSILON",
    "ComputeCycle",
    "Connections",
    "HTMError",
    "InputSizeMismatchError",
    "InvalidHandleError",
    "InvalidParameterError",
    "InvalidSpatialPoolerParamError",
    "InvalidTemporalMemoryParamError",
    "Metric",
    "MonitoredTemporalMemory",
    "PASpatialPooler",
    "Parameters",
    "Pool",
    "Segment",
    "SpatialPooler",
    "Synapse",
    "TemporalMemory",
    "Topology",
    "Trace",
    "check_parameters",
]
