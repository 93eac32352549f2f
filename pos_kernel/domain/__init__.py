"""
Pure domain layer.

Contains the time abstraction shared by every service, with NO dependency
on the ORM or the database.
"""

from pos_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
