"""GNSS antenna status as reported by the receiver's MON-RF block."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class AntStatus(IntEnum):
    """Antenna supervisor state."""

    NOT_OK = 0
    UNKNOWN = 1
    OK = 2

    def __str__(self) -> str:
        return self.name

    def int_string(self) -> str:
        return str(int(self))


class PowerStatus(IntEnum):
    """Antenna power state."""

    OFF = 0
    ON = 1

    def __str__(self) -> str:
        return self.name

    def int_string(self) -> str:
        return str(int(self))


@dataclass
class GNSSAntStatus:
    """Status of one antenna block."""

    ant_status: AntStatus
    power_status: PowerStatus
    block_id: int = 0

    def antenna_ok(self) -> bool:
        """True when the antenna is OK and powered."""
        return self.ant_status == AntStatus.OK and self.power_status == PowerStatus.ON


def new_ant_status(ant: AntStatus, power: PowerStatus) -> GNSSAntStatus:
    """Create the status of block 0."""
    return GNSSAntStatus(ant_status=ant, power_status=power, block_id=0)