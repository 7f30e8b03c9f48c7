"""Reminder kinds and their hierarchy.

Kinds are ordered from coarsest (furthest from the event) to finest:

    24h < 2h < 1h < starting

A finer reminder supersedes every coarser one for the same subject.
"""

from datetime import timedelta
from enum import Enum


class ReminderKind(Enum):
    """Lead-time category of a reminder relative to the trigger instant."""
    DAY_BEFORE = "24h"
    TWO_HOURS = "2h"
    ONE_HOUR = "1h"
    STARTING = "starting"

    @property
    def offset(self) -> timedelta:
        """How long before the trigger instant this reminder fires."""
        return _OFFSETS[self]

    @property
    def level(self) -> int:
        """Position in the hierarchy, 0 = coarsest."""
        return _ORDER.index(self)

    def coarser_kinds(self) -> list["ReminderKind"]:
        """All kinds strictly coarser than this one."""
        return list(_ORDER[:self.level])

    @classmethod
    def ordered(cls) -> list["ReminderKind"]:
        """All kinds, coarsest first."""
        return list(_ORDER)


_ORDER = (
    ReminderKind.DAY_BEFORE,
    ReminderKind.TWO_HOURS,
    ReminderKind.ONE_HOUR,
    ReminderKind.STARTING,
)

_OFFSETS = {
    ReminderKind.DAY_BEFORE: timedelta(hours=24),
    ReminderKind.TWO_HOURS: timedelta(hours=2),
    ReminderKind.ONE_HOUR: timedelta(hours=1),
    ReminderKind.STARTING: timedelta(0),
}
