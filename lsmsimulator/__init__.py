"""Discrete event simulation of an LSM storage engine write path.

Client writes fill an in-memory buffer, buffers flush to level 0, and
background jobs compact data downward through the level hierarchy. The
model is deterministic: a configuration plus a sequence of calls always
replays to the same state.

Logging is silent by default. Enable it with one of the helpers in
``lsmsimulator.logging_config``::

    import lsmsimulator
    lsmsimulator.enable_console_logging(level="DEBUG")
"""

import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

from lsmsimulator.config import (
    COMPRESSION_PROFILES,
    CompressionProfile,
    SimConfig,
    default_config,
    get_compression_profile,
    three_level_config,
)
from lsmsimulator.control import Notification, NotificationChannel, SimulationController
from lsmsimulator.core import EventQueue, EventType, Instant
from lsmsimulator.errors import ConfigValidationError, InvariantViolation, SimulationError
from lsmsimulator.instrumentation import MetricsHistory, MetricsSnapshot
from lsmsimulator.logging_config import (
    configure_from_env,
    disable_logging,
    enable_console_logging,
    enable_file_logging,
    enable_json_logging,
    set_level,
    set_module_level,
)
from lsmsimulator.simulation import SimulationState, Simulator, StepResult

__all__ = [
    # Configuration
    "SimConfig",
    "CompressionProfile",
    "COMPRESSION_PROFILES",
    "default_config",
    "three_level_config",
    "get_compression_profile",
    # Engine
    "Simulator",
    "StepResult",
    "SimulationState",
    "EventQueue",
    "EventType",
    "Instant",
    # Metrics
    "MetricsSnapshot",
    "MetricsHistory",
    # Boundary
    "SimulationController",
    "Notification",
    "NotificationChannel",
    # Errors
    "SimulationError",
    "ConfigValidationError",
    "InvariantViolation",
    # Logging
    "configure_from_env",
    "disable_logging",
    "enable_console_logging",
    "enable_file_logging",
    "enable_json_logging",
    "set_level",
    "set_module_level",
]
