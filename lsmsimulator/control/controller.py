"""Boundary between a simulator and whatever drives it.

A transport (websocket server, notebook widget, CLI loop) talks to a
SimulationController, never to the Simulator directly. The controller maps
operator commands onto the simulator, turns wall-clock ticks into virtual
time using the speed multiplier, and guarantees that nothing raised inside
the core escapes into the host process: faults come back as values.
"""

from __future__ import annotations

import logging
from typing import Any, Union

from lsmsimulator.config import SimConfig
from lsmsimulator.control.notifications import DEFAULT_CAPACITY, NotificationChannel, NotificationLogHandler
from lsmsimulator.errors import ConfigValidationError
from lsmsimulator.simulation import Simulator, StepResult

logger = logging.getLogger(__name__)


class SimulationController:
    """Start/pause/reset/update/tick facade over one Simulator.

    Args:
        config: Initial engine configuration.
        channel_capacity: Notifications buffered between snapshots.
        forward_logs: Also forward ``lsmsimulator`` log records (INFO and up)
            into the notification channel.

    Example::

        controller = SimulationController(SimConfig(write_rate_mbps=100))
        controller.start()
        while serving:
            controller.tick(0.5)
            push_to_client(controller.snapshot())
    """

    def __init__(
        self,
        config: SimConfig | None = None,
        channel_capacity: int = DEFAULT_CAPACITY,
        forward_logs: bool = False,
    ) -> None:
        self.notifications = NotificationChannel(channel_capacity)
        self.simulator = Simulator(config, notifications=self.notifications)
        self._last_fault: str | None = None

        self._log_handler: NotificationLogHandler | None = None
        if forward_logs:
            self._log_handler = NotificationLogHandler(self.notifications, clock=lambda: self.simulator.now.to_seconds())
            logging.getLogger("lsmsimulator").addHandler(self._log_handler)

    @property
    def is_running(self) -> bool:
        return self.simulator.is_running

    @property
    def last_fault(self) -> str | None:
        return self._last_fault

    def start(self) -> None:
        """Resume ticking. A terminated run (OOM or fault) is reset first."""
        if self.simulator.is_oom_killed or self.simulator.fault is not None or self._last_fault is not None:
            self.reset()
        self.simulator.start()

    def pause(self) -> None:
        self.simulator.pause()

    def reset(self) -> tuple[bool, str | None]:
        try:
            self.simulator.reset()
        except ConfigValidationError as exc:
            return False, str(exc)
        self._last_fault = None
        return True, None

    def update_config(self, config: Union[SimConfig, dict[str, Any]]) -> tuple[bool, str | None]:
        """Apply a config change.

        Returns:
            (True, None) on success, (False, reason) if the change was rejected.
        """
        try:
            self.simulator.update_config(config)
        except ConfigValidationError as exc:
            logger.info("Rejected config update: %s", exc)
            return False, str(exc)
        return True, None

    def tick(self, wall_seconds: float) -> StepResult | None:
        """Advance ``wall_seconds * simulation_speed_multiplier`` of virtual time.

        Does nothing and returns None while paused.
        """
        if not self.simulator.is_running:
            return None
        virtual_seconds = wall_seconds * self.simulator.config.simulation_speed_multiplier
        try:
            result = self.simulator.advance(virtual_seconds)
        except Exception as exc:
            logger.exception("Unexpected error while advancing the simulation")
            self.simulator.pause()
            self._last_fault = f"{type(exc).__name__}: {exc}"
            return StepResult("fault", self.simulator.virtual_time, fault=self._last_fault)

        if result.status == "fault":
            self._last_fault = result.fault
        return result

    def snapshot(self) -> dict[str, Any]:
        """Metrics, level state and new notifications as plain dicts.

        Starts a new metrics window, so throughputs in consecutive snapshots
        cover consecutive intervals.
        """
        metrics = self.simulator.metrics(reset_window=True)
        state = self.simulator.state()
        return {
            "metrics": metrics.to_dict(),
            "state": state.to_dict(),
            "notifications": [n.to_dict() for n in self.notifications.drain()],
            "dropped_notifications": self.notifications.dropped,
            "last_fault": self._last_fault,
        }

    def close(self) -> None:
        """Detach the log forwarder, if any."""
        if self._log_handler is not None:
            logging.getLogger("lsmsimulator").removeHandler(self._log_handler)
            self._log_handler = None

    def __repr__(self) -> str:
        return f"SimulationController({self.simulator!r}, channel={self.notifications!r})"
