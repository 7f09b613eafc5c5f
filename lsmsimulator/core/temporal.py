"""Virtual time for the simulation clock.

Instant stores time as integer nanoseconds so that repeated additions of
write intervals (1/rate seconds) never drift the way float seconds would.
"""

from __future__ import annotations

from functools import total_ordering

_NANOS_PER_SECOND = 1_000_000_000


@total_ordering
class Instant:
    """A point on the virtual timeline, in integer nanoseconds.

    Instants are immutable. Adding an int or float treats it as seconds.

    Example::

        t = Instant.from_seconds(1.5)
        t2 = t + 0.1
        assert (t2 - t).to_seconds() == pytest.approx(0.1)
    """

    __slots__ = ("nanoseconds",)

    def __init__(self, nanoseconds: int) -> None:
        if not isinstance(nanoseconds, int):
            raise TypeError(f"Instant requires integer nanoseconds, got {type(nanoseconds).__name__}")
        self.nanoseconds = nanoseconds

    @classmethod
    def from_seconds(cls, seconds: int | float) -> Instant:
        if isinstance(seconds, int):
            return cls(seconds * _NANOS_PER_SECOND)
        return cls(round(seconds * _NANOS_PER_SECOND))

    @classmethod
    def epoch(cls) -> Instant:
        return cls(0)

    def to_seconds(self) -> float:
        return self.nanoseconds / _NANOS_PER_SECOND

    def __add__(self, other: Instant | int | float) -> Instant:
        if isinstance(other, Instant):
            return Instant(self.nanoseconds + other.nanoseconds)
        if isinstance(other, (int, float)):
            return Instant(self.nanoseconds + Instant.from_seconds(other).nanoseconds)
        return NotImplemented

    def __sub__(self, other: Instant | int | float) -> Instant:
        if isinstance(other, Instant):
            return Instant(self.nanoseconds - other.nanoseconds)
        if isinstance(other, (int, float)):
            return Instant(self.nanoseconds - Instant.from_seconds(other).nanoseconds)
        return NotImplemented

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Instant):
            return NotImplemented
        return self.nanoseconds == other.nanoseconds

    def __lt__(self, other: Instant) -> bool:
        if not isinstance(other, Instant):
            return NotImplemented
        return self.nanoseconds < other.nanoseconds

    def __hash__(self) -> int:
        return hash(self.nanoseconds)

    def __repr__(self) -> str:
        return f"Instant({self.to_seconds():.9f}s)"
