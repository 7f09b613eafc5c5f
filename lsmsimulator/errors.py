"""Exception hierarchy for the LSM simulator.

Three kinds of trouble are distinguished:

- ``ConfigValidationError``: a proposed configuration breaks a bound or
  tries to change a structural field while the simulation is running.
  Raised synchronously; simulator state is left untouched.
- ``InvariantViolation``: internal bookkeeping went wrong while processing
  an event. The simulator converts it into a fault result and stops.
- Out-of-memory is not an exception at all. It is a terminal model state
  queried through ``Simulator.is_oom_killed``.
"""

from __future__ import annotations


class SimulationError(Exception):
    """Base class for all simulator errors."""


class ConfigValidationError(SimulationError, ValueError):
    """A configuration was rejected.

    Attributes:
        problems: Every rule the configuration violated, in check order.
    """

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("invalid config: " + "; ".join(self.problems))


class InvariantViolation(SimulationError):
    """Internal model state became inconsistent during event processing."""
