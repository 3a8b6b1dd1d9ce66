"""Synchronous Ethernet (SyncE) quality levels and synce4l log parsing."""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Optional

log = logging.getLogger(__name__)

# Not a valid SSM code, so it marks a value that has not been read yet.
QL_DEFAULT_SSM = 0x3
# Without extended SSM the extended value is implicitly 0xFF.
QL_DEFAULT_ENHSSM = 0xFF

QL_DNU_SSM = 0xF
QL_DUS_SSM = 0xF
QL_DNU_ENHSSM = 0xFF
QL_DUS_ENHSSM = 0xFF
SYNCE_NETWORK_OPT_1 = 1
SYNCE_NETWORK_OPT_2 = 2
EXTENDED_TLV_ENABLED = 1
EXTENDED_TLV_DISABLED = 0

_STATES = r"(EEC_FREERUN|EEC_INVALID|EEC_LOCKED|EEC_HOLDOVER|EEC_LOCKED_HO_ACQ)"

# "... EEC_LOCKED/EEC_LOCKED_HO_ACQ on GNSS of synce1"
_STATE_OF_REGEX = re.compile(_STATES + r" on ([\w/]+) of ([\w/]+)", re.ASCII)
# "... EEC_HOLDOVER on synce1"
_STATE_ON_REGEX = re.compile(_STATES + r" on ([\w/]+)", re.ASCII)
# "... act on EEC_LOCKED/EEC_LOCKED_HO_ACQ for ens7f0"
_STATE_FOR_REGEX = re.compile(_STATES + r" for ([\w/]+)", re.ASCII)
_QL_REGEX = re.compile(r" QL=0x([0-9a-fA-F]+) on (\w+)", re.ASCII)
_EXT_QL_REGEX = re.compile(r"EXT_QL=0x([0-9a-fA-F]+) on (\w+)", re.ASCII)


class LogType(IntEnum):
    """Kind of information carried by a synce4l log line."""

    SYNCE_STATE = 0
    QL_STATE = 1
    EXT_QL_STATE = 2


class EECState(IntEnum):
    """Ethernet equipment clock state."""

    EEC_UNKNOWN = 0
    EEC_INVALID = 1
    EEC_FREERUN = 2
    EEC_LOCKED = 3
    EEC_LOCKED_HO_ACQ = 4
    EEC_HOLDOVER = 5

    def __str__(self) -> str:
        return self.name


def string_to_eec_state(text: str) -> EECState:
    """Convert a state name to an EECState; unknown names give EEC_UNKNOWN."""
    try:
        return EECState[text]
    except KeyError:
        return EECState.EEC_UNKNOWN


class QualityLevel(IntEnum):
    """SyncE quality levels of option 1 and option 2 networks."""

    EPRTC = 0
    PRTC = 1
    PRC = 2
    SSUA = 3
    SSUB = 4
    EEC1 = 5
    PRS = 6
    STU = 7
    ST2 = 8
    TNC = 9
    ST3E = 10
    EEC2 = 11
    PROV = 12
    DNU = 13
    DUS = 14

    def __str__(self) -> str:
        return _QUALITY_LEVEL_LABELS.get(self, "UNKNOWN")


_QUALITY_LEVEL_LABELS = {
    level: level.name for level in QualityLevel if level is not QualityLevel.TNC
}


@dataclass
class QualityLevelInfo:
    """Priority and SSM codes of one quality level."""

    priority: int = 0
    ssm: int = 0
    extended_ssm: int = 0

    def compare(self, other: "QualityLevelInfo") -> bool:
        """True when the SSM codes match; an unread extended code matches any."""
        return self.ssm == other.ssm and (
            other.extended_ssm == QL_DEFAULT_SSM or self.extended_ssm == other.extended_ssm
        )


_OPTION1 = {
    QualityLevel.EPRTC: QualityLevelInfo(0, 0x2, 0x21),
    QualityLevel.PRTC: QualityLevelInfo(1, 0x2, 0x20),
    QualityLevel.PRC: QualityLevelInfo(2, 0x2, 0xFF),
    QualityLevel.SSUA: QualityLevelInfo(3, 0x4, 0xFF),
    QualityLevel.SSUB: QualityLevelInfo(4, 0x8, 0xFF),
    QualityLevel.EEC1: QualityLevelInfo(5, 0xB, 0xFF),
    QualityLevel.DNU: QualityLevelInfo(6, 0xF, 0xFF),
}

_OPTION2 = {
    QualityLevel.EPRTC: QualityLevelInfo(0, 0x1, 0x21),
    QualityLevel.PRTC: QualityLevelInfo(1, 0x1, 0x20),
    QualityLevel.PRS: QualityLevelInfo(2, 0x1, 0xFF),
    QualityLevel.STU: QualityLevelInfo(3, 0x0, 0xFF),
    QualityLevel.ST2: QualityLevelInfo(4, 0x7, 0xFF),
    QualityLevel.TNC: QualityLevelInfo(5, 0x4, 0xFF),
    QualityLevel.ST3E: QualityLevelInfo(6, 0xD, 0xFF),
    QualityLevel.EEC2: QualityLevelInfo(7, 0xA, 0xFF),
    QualityLevel.PROV: QualityLevelInfo(8, 0xE, 0xFF),
    QualityLevel.DUS: QualityLevelInfo(9, 0xF, 0xFF),
}


def _copy_table(table: dict[QualityLevel, QualityLevelInfo]) -> dict[QualityLevel, QualityLevelInfo]:
    return {level: replace(info) for level, info in table.items()}


def get_quality_level_info_option1() -> dict[QualityLevel, QualityLevelInfo]:
    """A copy of the option 1 network quality level table."""
    return _copy_table(_OPTION1)


def get_quality_level_info_option2() -> dict[QualityLevel, QualityLevelInfo]:
    """A copy of the option 2 network quality level table."""
    return _copy_table(_OPTION2)


def _print_table(table: dict[QualityLevel, QualityLevelInfo]) -> None:
    for level, info in table.items():
        print(
            f"Quality Level: {int(level)}, Priority: {info.priority}, "
            f"SSM: 0x{info.ssm:X}, Extended SSM: 0x{info.extended_ssm:X}"
        )


def print_option1_networks() -> None:
    """Print the option 1 network table."""
    print("Option 1 Networks:")
    _print_table(_OPTION1)


def print_option2_networks() -> None:
    """Print the option 2 network table."""
    print("\nOption 2 Networks:")
    _print_table(_OPTION2)


@dataclass
class LogEntry:
    """Data extracted from one synce4l log line."""

    state: Optional[str] = None
    ql: int = 0
    ext_ql: int = 0
    ext_source: Optional[str] = None
    device: Optional[str] = None
    source: Optional[str] = None
    log_type: LogType = LogType.SYNCE_STATE

    def __str__(self) -> str:
        return (
            f"state: {self.state or ''}\n"
            f"Device: {self.device or ''}\n"
            f"Source: {self.source or ''}\n"
            f"ExtSource: {self.ext_source or ''}\n"
            f"ql: {chr(self.ql)}\n"
            f"extql: {chr(self.ext_ql)}\n"
        )


def _parse_ql(pattern: "re.Pattern[str]", output: str) -> Optional[tuple[int, str]]:
    for found in pattern.finditer(output):
        value = int(found.group(1), 16)
        if value <= 0xFF:
            return value, found.group(2)
    return None


def parse_log(output: str) -> LogEntry:
    """Parse a synce4l log line into a LogEntry."""
    found = _STATE_OF_REGEX.search(output)
    if found is not None:
        return LogEntry(
            state=found.group(1),
            ext_source=found.group(2),
            device=found.group(3),
            log_type=LogType.SYNCE_STATE,
        )
    found = _STATE_ON_REGEX.search(output)
    if found is not None:
        return LogEntry(state=found.group(1), device=found.group(2), log_type=LogType.SYNCE_STATE)
    found = _STATE_FOR_REGEX.search(output)
    if found is not None:
        return LogEntry(state=found.group(1), source=found.group(2), log_type=LogType.SYNCE_STATE)

    ext = _parse_ql(_EXT_QL_REGEX, output)
    if ext is not None:
        return LogEntry(ext_ql=ext[0], source=ext[1], log_type=LogType.EXT_QL_STATE)
    ql = _parse_ql(_QL_REGEX, output)
    if ql is not None:
        return LogEntry(
            ext_ql=QL_DEFAULT_SSM, ql=ql[0], source=ql[1], log_type=LogType.QL_STATE
        )
    return LogEntry(ql=QL_DEFAULT_SSM, ext_ql=QL_DEFAULT_SSM)


@dataclass
class Config:
    """Configuration of one SyncE device."""

    name: str = ""
    ifaces: list[str] = field(default_factory=list)
    clock_id: str = ""
    network_option: int = SYNCE_NETWORK_OPT_1
    extended_tlv: int = EXTENDED_TLV_DISABLED
    external_source: str = ""
    last_ql_state: dict[str, QualityLevelInfo] = field(default_factory=dict)
    last_clock_state: Any = None

    def clock_quality(self, quality_info: QualityLevelInfo) -> tuple[str, QualityLevelInfo]:
        """Name and table entry of the quality level matching ``quality_info``.

        Returns an empty name when the extended code is expected but has not
        been read yet, or when the network option is unknown.
        """
        if self.extended_tlv == EXTENDED_TLV_DISABLED:
            quality_info = replace(quality_info, extended_ssm=QL_DEFAULT_ENHSSM)
        elif (
            self.extended_tlv == EXTENDED_TLV_ENABLED
            and quality_info.extended_ssm == QL_DEFAULT_SSM
        ):
            return "", replace(quality_info)

        if self.network_option == SYNCE_NETWORK_OPT_1:
            table, fallback = _OPTION1, (QualityLevel.DNU, QL_DNU_SSM, QL_DNU_ENHSSM)
        elif self.network_option == SYNCE_NETWORK_OPT_2:
            table, fallback = _OPTION2, (QualityLevel.DUS, QL_DUS_SSM, QL_DUS_ENHSSM)
        else:
            return "", QualityLevelInfo()

        for level, info in table.items():
            if info.compare(quality_info):
                return str(level), replace(info)
        level, ssm, ext = fallback
        return str(level), QualityLevelInfo(ssm=ssm, extended_ssm=ext)


@dataclass
class Relations:
    """The set of configured SyncE devices."""

    devices: list[Config] = field(default_factory=list)

    def add_device_config(self, config: Config) -> None:
        """Add a copy of ``config``."""
        self.devices.append(copy.copy(config))

    def add_clock_ids(self, ptp_settings: dict[str, str]) -> None:
        """Assign the first ``clockId[iface]`` setting that names a device interface."""
        for key, value in ptp_settings.items():
            if not key.startswith("clockId"):
                continue
            iface = key.replace("clockId[", "").replace("]", "")
            for device in self.devices:
                if iface in device.ifaces:
                    device.clock_id = value
                    return
                log.error(
                    "clock ID not found for syncE device %s - no interfaces provided. "
                    "Check synce4lConf section",
                    device.name,
                )

    def append_device_config(
        self, ifaces: list[str], dev_name: str, network_option: int, extended_tlv: int
    ) -> None:
        """Add a device when it has at least one interface."""
        if ifaces:
            self.devices.append(
                Config(
                    name=dev_name,
                    ifaces=ifaces,
                    network_option=network_option,
                    extended_tlv=extended_tlv,
                )
            )

    def get_synce_relation(
        self, device_name: str, ext_source_name: str, iface: str
    ) -> tuple[int, int, str, str, list[str]]:
        """Find the device by name, external source or interface.

        Returns (network_option, extended_tlv, device, external_source,
        ifaces); the last matching device wins.
        """
        network_option, ext_tlv, device, ext_source = 0, 0, "", ""
        ifaces: list[str] = []
        for config in self.devices:
            if (
                config.name == device_name
                or config.external_source == ext_source_name
                or iface in config.ifaces
            ):
                device = config.name
                network_option = config.network_option
                ext_tlv = config.extended_tlv
                ext_source = config.external_source
                ifaces = config.ifaces
        return network_option, ext_tlv, device, ext_source, ifaces