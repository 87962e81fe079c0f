"""File status and real-time clock records."""

from __future__ import annotations

import datetime
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar


class FileType(IntEnum):
    DIR = 1
    FILE = 2
    DEV = 3


_STAT = struct.Struct("<h2xiIh2xI")


@dataclass(frozen=True)
class Stat:
    """Status of a file, as returned by fstat."""

    type: FileType
    dev: int
    ino: int
    nlink: int
    size: int

    SIZE: ClassVar[int] = _STAT.size

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", FileType(self.type))

    def pack(self) -> bytes:
        return _STAT.pack(int(self.type), self.dev, self.ino, self.nlink, self.size)

    @classmethod
    def unpack(cls, data: bytes) -> "Stat":
        if len(data) != cls.SIZE:
            raise ValueError(f"stat record must be {cls.SIZE} bytes, got {len(data)}")
        return cls(*_STAT.unpack(bytes(data)))


@dataclass(frozen=True)
class RtcDate:
    """A calendar time as read from the real-time clock."""

    second: int
    minute: int
    hour: int
    day: int
    month: int
    year: int

    def to_datetime(self) -> datetime.datetime:
        return datetime.datetime(
            self.year, self.month, self.day, self.hour, self.minute, self.second
        )

    @classmethod
    def from_datetime(cls, moment: datetime.datetime) -> "RtcDate":
        return cls(
            second=moment.second,
            minute=moment.minute,
            hour=moment.hour,
            day=moment.day,
            month=moment.month,
            year=moment.year,
        )