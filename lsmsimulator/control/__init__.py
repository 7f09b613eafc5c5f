"""Boundary layer: notifications and the run controller."""

from lsmsimulator.control.notifications import Notification, NotificationChannel, NotificationLogHandler
from lsmsimulator.control.controller import SimulationController

__all__ = [
    "Notification",
    "NotificationChannel",
    "NotificationLogHandler",
    "SimulationController",
]
