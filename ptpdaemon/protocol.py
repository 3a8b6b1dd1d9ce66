"""Grandmaster settings as exchanged with the PTP management client."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

log = logging.getLogger(__name__)

# Clock classes per ITU-T G.8275.1 table 3, beyond the standard set.
CLOCK_CLASS_FREERUN = 248
CLOCK_CLASS_UNINITIALIZED = 0
CLOCK_CLASS_OUT_OF_SPEC = 140

_UNSIGNED = re.compile(r"[0-9]+")
_SIGNED = re.compile(r"[+-]?[0-9]+")
_HEX = re.compile(r"[0-9a-fA-F]+")


@dataclass
class ClockQuality:
    """PTP clock quality triple."""

    clock_class: int = 0
    clock_accuracy: int = 0
    offset_scaled_log_variance: int = 0


@dataclass
class TimePropertiesDS:
    """PTP time properties data set."""

    current_utc_offset: int = 0
    current_utc_offset_valid: bool = False
    leap59: bool = False
    leap61: bool = False
    time_traceable: bool = False
    frequency_traceable: bool = False
    ptp_timescale: bool = False
    time_source: int = 0


def _parse(text: str, pattern: re.Pattern, base: int, low: int, high: int) -> int:
    """Parse an integer; syntax errors give 0 and out-of-range values are clamped."""
    if not pattern.fullmatch(text):
        log.warning("invalid number syntax: %r", text)
        return 0
    value = int(text, base)
    if value > high or value < low:
        log.warning("value out of range: %r", text)
        return max(low, min(high, value))
    return value


def _to_u8(text: str) -> int:
    return _parse(text, _UNSIGNED, 10, 0, 0xFF)


def _to_u8_hex(text: str) -> int:
    return _parse(text.replace("0x", "", 1), _HEX, 16, 0, 0xFF)


def _to_u16_hex(text: str) -> int:
    return _parse(text.replace("0x", "", 1), _HEX, 16, 0, 0xFFFF)


def _to_i32(text: str) -> int:
    return _parse(text, _SIGNED, 10, -(2**31), 2**31 - 1)


def _to_bool(text: str) -> bool:
    return text == "1"


_KEYS = (
    "clockClass",
    "clockAccuracy",
    "offsetScaledLogVariance",
    "currentUtcOffset",
    "leap61",
    "leap59",
    "currentUtcOffsetValid",
    "ptpTimescale",
    "timeTraceable",
    "frequencyTraceable",
    "timeSource",
)

_VALUE_REGEX = {
    "clockClass": r"(\d+)",
    "clockAccuracy": r"(0x[\da-f]+)",
    "offsetScaledLogVariance": r"(0x[\da-f]+)",
    "currentUtcOffset": r"(\d+)",
    "currentUtcOffsetValid": r"([01])",
    "leap59": r"([01])",
    "leap61": r"([01])",
    "timeTraceable": r"([01])",
    "frequencyTraceable": r"([01])",
    "ptpTimescale": r"([01])",
    "timeSource": r"(0x[\da-f]+)",
}

# key -> (which data set, attribute, converter)
_FIELDS: dict[str, tuple[str, str, Callable[[str], object]]] = {
    "clockClass": ("clock_quality", "clock_class", _to_u8),
    "clockAccuracy": ("clock_quality", "clock_accuracy", _to_u8_hex),
    "offsetScaledLogVariance": ("clock_quality", "offset_scaled_log_variance", _to_u16_hex),
    "currentUtcOffset": ("time_properties", "current_utc_offset", _to_i32),
    "currentUtcOffsetValid": ("time_properties", "current_utc_offset_valid", _to_bool),
    "leap59": ("time_properties", "leap59", _to_bool),
    "leap61": ("time_properties", "leap61", _to_bool),
    "timeTraceable": ("time_properties", "time_traceable", _to_bool),
    "frequencyTraceable": ("time_properties", "frequency_traceable", _to_bool),
    "ptpTimescale": ("time_properties", "ptp_timescale", _to_bool),
    "timeSource": ("time_properties", "time_source", _to_u8_hex),
}


@dataclass
class GrandmasterSettings:
    """Contents of GRANDMASTER_SETTINGS_NP."""

    clock_quality: ClockQuality = field(default_factory=ClockQuality)
    time_properties: TimePropertiesDS = field(default_factory=TimePropertiesDS)

    def __str__(self) -> str:
        cq = self.clock_quality
        tp = self.time_properties
        return (
            f" clockClass              {cq.clock_class}\n"
            f" clockAccuracy           0x{cq.clock_accuracy:x}\n"
            f" offsetScaledLogVariance 0x{cq.offset_scaled_log_variance:x}\n"
            f" currentUtcOffset        {tp.current_utc_offset}\n"
            f" leap61                  {int(tp.leap61)}\n"
            f" leap59                  {int(tp.leap59)}\n"
            f" currentUtcOffsetValid   {int(tp.current_utc_offset_valid)}\n"
            f" ptpTimescale            {int(tp.ptp_timescale)}\n"
            f" timeTraceable           {int(tp.time_traceable)}\n"
            f" frequencyTraceable      {int(tp.frequency_traceable)}\n"
            f" timeSource              0x{tp.time_source:x}\n"
        )

    def keys(self) -> list[str]:
        """Field names in the order the management client prints them."""
        return list(_KEYS)

    def value_regex(self) -> dict[str, str]:
        """Pattern capturing each field's value."""
        return dict(_VALUE_REGEX)

    def regex(self) -> str:
        """Pattern matching a whole settings block, one group per key."""
        return "".join(rf"\s+{key}\s+{_VALUE_REGEX[key]}" for key in _KEYS)

    def update(self, key: str, value: str) -> None:
        """Set the field named by ``key`` from its textual value; unknown keys are ignored."""
        spec = _FIELDS.get(key)
        if spec is None:
            return
        target, attr, convert = spec
        setattr(getattr(self, target), attr, convert(value))