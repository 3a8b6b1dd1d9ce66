"""Access to a u-blox GNSS receiver through the ubxtool utility."""

from __future__ import annotations

import logging
import re
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional, Sequence, Union

log = logging.getLogger(__name__)

PROTO_VERSION_REGEX = re.compile(r"PROTVER=+(\d+)")
ANTENNA_STATUS_REGEX = re.compile(r"antStatus\s+(\d+)\santPower\s+(\d+)")
NAV_STATUS_REGEX = re.compile(r"gpsFix\s+(\d+)")

CMD_PROTO_VERSION = " -p MON-VER"
CMD_VOLTAGE_CONTROLLER = " -v 1 -z CFG-HW-ANT_CFG_VOLTCTRL,%d"
CMD_NAV_STATUS = " -t -p NAV-STATUS"
UBX_COMMAND = "/usr/local/bin/ubxtool"
DEFAULT_PROTO_VERSION = "29.20"
POLL_WAIT = 1_000_000_000

DEFAULT_POLL_COMMAND = (
    "python3",
    "-u",
    UBX_COMMAND,
    "-t",
    "-P",
    DEFAULT_PROTO_VERSION,
    "-w",
    str(POLL_WAIT),
)

Runner = Callable[[Sequence[str]], str]
Pattern = Union[str, "re.Pattern[str]"]


class UBloxStatus(IntEnum):
    """State of the background ubxtool polling process."""

    NEW = 0
    ACTIVE = 1
    DEAD = 2
    STOPPED = 3


@dataclass
class TimeLs:
    """Leap second information from a NAV-TIMELS message."""

    # Source of the current number of leap seconds.
    src_of_curr_ls: int = 0
    # Leap seconds since the start of GPS time (GPS ahead of UTC).
    curr_ls: int = 0
    # Source of the future leap second event.
    src_of_ls_change: int = 0
    # Scheduled change: +1, -1, or 0 for none.
    ls_change: int = 0
    # Seconds until (or, if negative, since) the leap second event.
    time_to_ls_event: int = 0
    # GPS week number of the event.
    date_of_ls_gps_wn: int = 0
    # GPS day of week of the event.
    date_of_ls_gps_dn: int = 0
    # Bit 0: current leap seconds valid; bit 1: time to event valid.
    valid: int = 0


def _default_runner(args: Sequence[str]) -> str:
    """Run a command and return its combined output; fail on a non-zero exit."""
    completed = subprocess.run(
        list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        check=True,
    )
    return completed.stdout


_UNSIGNED = re.compile(r"[0-9]+")
_SIGNED = re.compile(r"[+-]?[0-9]+")


def _parse_int(text: str, *, signed: bool, bits: int) -> int:
    """Parse a decimal integer; bad syntax gives 0, out-of-range values are clamped."""
    pattern = _SIGNED if signed else _UNSIGNED
    if not pattern.fullmatch(text):
        return 0
    value = int(text, 10)
    if signed:
        low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    else:
        low, high = 0, (1 << bits) - 1
    return max(low, min(high, value))


def _parse_prefixed_u8(text: str) -> int:
    """Parse an unsigned byte whose base is chosen by its prefix (0x, 0b, 0o, 0)."""
    lowered = text.lower()
    if lowered.startswith("0x"):
        digits, base = text[2:], 16
    elif lowered.startswith("0b"):
        digits, base = text[2:], 2
    elif lowered.startswith("0o"):
        digits, base = text[2:], 8
    elif text.startswith("0") and len(text) > 1:
        digits, base = text[1:], 8
    else:
        digits, base = text, 10
    if not digits or digits[0] in "+-":
        return 0
    try:
        value = int(digits, base)
    except ValueError:
        return 0
    return min(value, 0xFF)


def _u8(text: str) -> int:
    return _parse_int(text, signed=False, bits=8)


def _i8(text: str) -> int:
    return _parse_int(text, signed=True, bits=8)


def _i32(text: str) -> int:
    return _parse_int(text, signed=True, bits=32)


def _u16(text: str) -> int:
    return _parse_int(text, signed=False, bits=16)


def _u16_as_u8(text: str) -> int:
    return _parse_int(text, signed=False, bits=16) & 0xFF


def _valid_flags(text: str) -> int:
    return _parse_prefixed_u8("0" + text)


_LEAP_FIELDS: dict[str, tuple[str, Callable[[str], int]]] = {
    "srcOfCurrLs": ("src_of_curr_ls", _u8),
    "currLs": ("curr_ls", _i8),
    "srcOfLsChange": ("src_of_ls_change", _u8),
    "lsChange": ("ls_change", _i8),
    "timeToLsEvent": ("time_to_ls_event", _i32),
    "dateOfLsGpsWn": ("date_of_ls_gps_wn", _u16),
    "dateOfLsGpsDn": ("date_of_ls_gps_dn", _u16_as_u8),
    "valid": ("valid", _valid_flags),
}


def match(stdout: str, regex: Pattern) -> str:
    """Return the first captured group of ``regex`` in ``stdout``."""
    found = re.search(regex, stdout)
    if found is None:
        raise ValueError(f"error parsing {stdout}")
    return found.group(1)


def _extract_field(output: str, name: str) -> int:
    for line in output.split("\n"):
        if name not in line:
            continue
        fields = line.split()
        for i, item in enumerate(fields):
            if item == name:
                if i + 1 >= len(fields):
                    return 0
                return _parse_int(fields[i + 1], signed=True, bits=64)
    return -1


def extract_offset(output: str) -> int:
    """Return the value following ``tAcc`` in the output, or -1 if absent."""
    return _extract_field(output, "tAcc")


def extract_nav_status(output: str) -> int:
    """Return the value following ``gpsFix`` in the output, or -1 if absent."""
    return _extract_field(output, "gpsFix")


def extract_leap_sec(output: Sequence[str]) -> TimeLs:
    """Collect NAV-TIMELS fields from the given output lines."""
    data = TimeLs()
    for line in output:
        fields = line.split()
        for i, item in enumerate(fields):
            spec = _LEAP_FIELDS.get(item)
            if spec is None or i + 1 >= len(fields):
                continue
            attr, parse = spec
            setattr(data, attr, parse(fields[i + 1]))
    return data


class UBlox:
    """A u-blox receiver driven through ubxtool.

    ``runner`` executes one command line and returns its output, raising on
    failure; ``poll_command`` is the command whose output lines are buffered
    by the polling thread.
    """

    def __init__(
        self,
        runner: Optional[Runner] = None,
        poll_command: Optional[Sequence[str]] = None,
    ) -> None:
        self.proto_version: Optional[str] = DEFAULT_PROTO_VERSION
        self.poll_command: list[str] = list(poll_command or DEFAULT_POLL_COMMAND)
        self._run: Runner = runner or _default_runner
        self._status = UBloxStatus.NEW
        self._status_lock = threading.Lock()
        self._buffer: deque[str] = deque()
        self._buffer_lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._reader: Optional[threading.Thread] = None

    @property
    def status(self) -> UBloxStatus:
        with self._status_lock:
            return self._status

    def _set_status(self, value: UBloxStatus) -> None:
        with self._status_lock:
            self._status = value

    def init(self) -> None:
        """Read the protocol version, then switch the receiver to NMEA output."""
        try:
            version = self.mon_version(CMD_PROTO_VERSION, PROTO_VERSION_REGEX)
        except (ValueError, OSError, subprocess.CalledProcessError) as exc:
            raise RuntimeError(
                f"UBlox could not find version for method MON-VER with error {exc}"
            ) from exc
        self.proto_version = version
        self.disable_binary()
        self.enable_nmea()

    def mon_version(self, command: str, regex: Pattern) -> str:
        """Query the monitor version."""
        try:
            result = self.query(command, regex)
        except (ValueError, OSError, subprocess.CalledProcessError) as exc:
            log.error("error reading ublox MON-VER command %s", exc)
            raise
        log.info("Queried Ublox output %s", result)
        return result

    def query(self, command: str, prompt_re: Pattern) -> str:
        """Run ubxtool with ``command`` and return the first group of ``prompt_re``."""
        args = f"{UBX_COMMAND} {command}".split()
        try:
            output = self._run(args)
        except (OSError, subprocess.CalledProcessError):
            log.error("error executing cmd %s %s", UBX_COMMAND, command)
            raise
        log.info("Ublox cmd ubxtool %s returned\n %s", command, output)
        return match(output, prompt_re)

    def enable_disable_voltage_controller(self, command: str, value: int) -> str:
        """Set a receiver configuration item to ``value`` (1 enables, 0 disables)."""
        if self.proto_version is None:
            raise RuntimeError("Cannot query UBlox without protocol version")
        args = [
            UBX_COMMAND,
            "-v",
            "1",
            "-P",
            self.proto_version,
            "-p",
            f"{command},{value}",
        ]
        return self._run(args)

    def poll_pull(self) -> str:
        """Take the oldest buffered output line, or return "" when none is buffered."""
        with self._buffer_lock:
            return self._buffer.popleft() if self._buffer else ""

    def poll_init(self) -> None:
        """Start the polling process unless it is already running."""
        if self.status not in (UBloxStatus.NEW, UBloxStatus.DEAD):
            return
        with self._buffer_lock:
            self._buffer.clear()
        self._set_status(UBloxStatus.ACTIVE)
        try:
            self._process = subprocess.Popen(
                self.poll_command,
                stdout=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            log.error("UbloxPoll err=%s", exc)
            self._set_status(UBloxStatus.STOPPED)
            return
        log.info("Starting ubxtool polling with PID=%d", self._process.pid)
        self._reader = threading.Thread(
            target=self._push_lines, args=(self._process,), daemon=True
        )
        self._reader.start()

    def _push_lines(self, process: subprocess.Popen) -> None:
        stream = process.stdout
        try:
            while True:
                line = stream.readline()
                if not line.endswith("\n"):
                    break
                with self._buffer_lock:
                    self._buffer.append(line)
        except (OSError, ValueError) as exc:
            log.error("ublox poll thread error %s", exc)
        finally:
            with self._status_lock:
                if self._status != UBloxStatus.STOPPED:
                    self._status = UBloxStatus.DEAD
            stream.close()
        log.error("ublox poll thread error EOF")

    def _require_process(self) -> subprocess.Popen:
        if self._process is None:
            raise RuntimeError("ubxtool polling was not started")
        return self._process

    def poll_reset(self) -> None:
        """Kill the polling process so that the next poll_init restarts it."""
        process = self._require_process()
        log.info("Stopping ubxtool polling with PID=%d", process.pid)
        process.kill()
        with self._status_lock:
            if self._status != UBloxStatus.STOPPED:
                self._status = UBloxStatus.DEAD
        process.wait()

    def poll_stop(self) -> None:
        """Stop polling for good."""
        process = self._require_process()
        log.info("Stopping ubxtool polling with PID=%d", process.pid)
        self._set_status(UBloxStatus.STOPPED)
        process.kill()
        process.wait()

    def _run_logged(self, args: list[str], success: str) -> None:
        try:
            self._run(args)
        except (OSError, subprocess.CalledProcessError) as exc:
            log.error("error executing ubxtool command: %s", exc)
        else:
            log.info(success)

    def disable_binary(self) -> None:
        """Turn off the binary protocol output."""
        self._run_logged(
            [UBX_COMMAND, "-d", "BINARY", "-P", DEFAULT_PROTO_VERSION], "disable binary"
        )

    def enable_nmea(self) -> None:
        """Turn on NMEA output."""
        self._run_logged(
            [UBX_COMMAND, "-e", "NMEA", "-P", DEFAULT_PROTO_VERSION], "Enable NMEA"
        )


def new_ublox() -> UBlox:
    """Create a receiver handle and switch it to NMEA output."""
    u = UBlox()
    u.enable_nmea()
    u.disable_binary()
    return u