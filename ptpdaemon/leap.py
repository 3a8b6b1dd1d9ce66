"""Maintenance of the leap second list used by ts2phc.

The list is kept per node in a shared config map, seeded from the system's
``leap-seconds.list`` and updated from GNSS NAV-TIMELS indications.
"""

from __future__ import annotations

import hashlib
import logging
import os
import queue
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Protocol, Union

from ptpdaemon.pmc import PmcError, run_pmc_exp_get_gm_settings, run_pmc_exp_set_gm_settings
from ptpdaemon.ublox import TimeLs

log = logging.getLogger(__name__)

DEFAULT_LEAP_FILE_NAME = "leap-seconds.list"
DEFAULT_LEAP_FILE_PATH = "/usr/share/zoneinfo"
GPS_TO_TAI_DIFF = 19
CURR_LS_VALID_MASK = 0x1
TIME_TO_LS_EVENT_VALID_MASK = 0x2
LEAP_SOURCE_GPS = 2
LEAP_CONFIGMAP_NAME = "leap-configmap"
MAINTENANCE_PERIOD = timedelta(minutes=1)
PMC_WINDOW_START = timedelta(hours=12)
PMC_WINDOW_END = timedelta(seconds=60)

NTP_EPOCH = datetime(1900, 1, 1, tzinfo=timezone.utc)
GPS_EPOCH = datetime(1980, 1, 6, tzinfo=timezone.utc)
DEFAULT_EXPIRATION = datetime(2036, 1, 1, tzinfo=timezone.utc)

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_INTEGER = re.compile(r"[+-]?[0-9]+")
_POLL_INTERVAL = 0.05
_ESCAPES = {
    "\0": "\ufffd",
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "+": "&#43;",
    "<": "&lt;",
    ">": "&gt;",
}
_HEADER = "# Do not edit\n# This file is generated automatically by ptpdaemon\n"

_MOCK_NAMESPACE = "ptp"
_MOCK_NODE_NAME = "test-node-name"
_MOCK_LEAP_DATA = (
    _HEADER + "#$\t3927775672\n#@\t4291747200\n3692217600     37    # 1 Jan 2017"
)


class LeapError(RuntimeError):
    """Leap second data is missing, malformed or could not be stored."""


@dataclass
class LeapEvent:
    """One leap second entry: NTP time of the event and TAI-UTC after it."""

    leap_time: str
    leap_sec: int
    comment: str = ""


@dataclass
class LeapFile:
    """Contents of a leap-seconds.list file."""

    expiration_time: str = ""
    update_time: str = ""
    leap_events: list[LeapEvent] = field(default_factory=list)
    hash: str = ""


@dataclass
class LeapIndResult:
    """A leap event derived from a GNSS indication that the list lacks."""

    leap_time: datetime
    leap_sec: int
    update_time: datetime


class ConfigMapClient(Protocol):
    """Access to config map data; failures raise LeapError or OSError."""

    def get(self, namespace: str, name: str) -> dict[str, str]:
        """Return a copy of the config map's data."""
        ...

    def update(self, namespace: str, name: str, data: dict[str, str]) -> None:
        """Replace the config map's data."""
        ...


class InMemoryConfigMapClient:
    """Config maps held in memory, keyed by namespace and name."""

    def __init__(self, configmaps: Optional[dict[tuple[str, str], dict[str, str]]] = None) -> None:
        self._configmaps = {key: dict(data) for key, data in (configmaps or {}).items()}
        self._lock = threading.Lock()

    def get(self, namespace: str, name: str) -> dict[str, str]:
        with self._lock:
            try:
                return dict(self._configmaps[(namespace, name)])
            except KeyError:
                raise LeapError(f'configmaps "{name}" not found in {namespace}') from None

    def update(self, namespace: str, name: str, data: dict[str, str]) -> None:
        with self._lock:
            if (namespace, name) not in self._configmaps:
                raise LeapError(f'configmaps "{name}" not found in {namespace}')
            self._configmaps[(namespace, name)] = dict(data)


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def _seconds_since_ntp_epoch(moment: datetime) -> int:
    return (_as_utc(moment) - NTP_EPOCH) // timedelta(seconds=1)


def _parse_int(text: str, bits: int) -> Optional[int]:
    if not _INTEGER.fullmatch(text):
        return None
    value = int(text, 10)
    if not -(1 << (bits - 1)) <= value < (1 << (bits - 1)):
        return None
    return value


def _escape(text: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


def _header_value(fields: list[str], line: str) -> str:
    if len(fields) < 2:
        raise LeapError(f"missing value in leap file line {line!r}")
    return fields[1]


def parse_leap_file(data: Union[str, bytes]) -> LeapFile:
    """Parse the text of a leap-seconds.list file."""
    text = data.decode() if isinstance(data, bytes) else data
    leap_file = LeapFile()
    for line in text.split("\n"):
        fields = line.split()
        if line.startswith("#$"):
            leap_file.update_time = _header_value(fields, line)
        elif line.startswith("#@"):
            leap_file.expiration_time = _header_value(fields, line)
        elif line.startswith("#h"):
            leap_file.hash = " ".join(fields[1:])
        elif not line.startswith("#"):
            if len(fields) < 2:
                continue
            sec = _parse_int(fields[1], 8)
            if sec is None:
                raise LeapError(f"failed to parse Leap seconds {fields[1]} value")
            if _parse_int(fields[0], 64) is None:
                raise LeapError(f"failed to parse Leap event time {fields[0]}")
            leap_file.leap_events.append(
                LeapEvent(leap_time=fields[0], leap_sec=sec, comment=" ".join(fields[2:]))
            )
    return leap_file


_lock = threading.Lock()
_manager: Optional["LeapManager"] = None


class LeapManager:
    """Keeps the leap second list current and announces leap events to ptp4l."""

    def __init__(
        self,
        client: Optional[ConfigMapClient] = None,
        namespace: str = "",
        leap_file: Optional[LeapFile] = None,
        leap_file_path: str = DEFAULT_LEAP_FILE_PATH,
        leap_file_name: str = DEFAULT_LEAP_FILE_NAME,
        maintenance_period: timedelta = MAINTENANCE_PERIOD,
    ) -> None:
        self.ublox_ls_ind: "queue.Queue[TimeLs]" = queue.Queue(maxsize=2)
        self.client = client
        self.namespace = namespace
        self.leap_file = leap_file if leap_file is not None else LeapFile()
        self.leap_file_path = leap_file_path
        self.leap_file_name = leap_file_name
        self.maintenance_period = maintenance_period
        self.retry_update = False
        self.utc_offset = 0
        self.utc_offset_time = datetime.min.replace(tzinfo=timezone.utc)
        self.ptp4l_config_path = ""
        self.pmc_leap_sent = False
        self._closed = threading.Event()

    def _client(self) -> ConfigMapClient:
        if self.client is None:
            raise LeapError("no config map client configured")
        return self.client

    def _last_event(self) -> LeapEvent:
        if not self.leap_file.leap_events:
            raise LeapError("leap file holds no leap events")
        return self.leap_file.leap_events[-1]

    def _last_leap_time(self) -> datetime:
        last = self._last_event()
        seconds = _parse_int(last.leap_time, 64)
        if seconds is None:
            raise LeapError(f"failed to convert Leap time {last.leap_time} to seconds")
        return NTP_EPOCH + timedelta(seconds=seconds)

    def _set_utc_offset(self) -> None:
        self.utc_offset_time = self._last_leap_time()
        self.utc_offset = self._last_event().leap_sec

    def set_ptp4l_config_path(self, path: str) -> None:
        """Set the ptp4l configuration that leap announcements go to."""
        log.info("set Leap manager ptp4l config file name to %s", path)
        self.ptp4l_config_path = path

    def render_leap_data(self) -> str:
        """Render the leap list in leap-seconds.list format."""
        lf = self.leap_file
        events = "".join(
            f"{_escape(ev.leap_time)}     {ev.leap_sec}    {_escape(ev.comment)}\n"
            for ev in lf.leap_events
        )
        return (
            f"{_HEADER}#$\t{_escape(lf.update_time)}\n#@\t{_escape(lf.expiration_time)}\n"
            f"{events}\n#h\t{_escape(lf.hash)}"
        )

    def populate_leap_data(self) -> None:
        """Load this node's list from the config map, or seed it from the system file."""
        client = self._client()
        data = client.get(self.namespace, LEAP_CONFIGMAP_NAME)
        node_name = os.environ.get("NODE_NAME", "")
        stored = data.get(node_name)
        if stored is None:
            log.info("Populate Leap data from file")
            path = Path(self.leap_file_path) / self.leap_file_name
            try:
                raw = path.read_bytes()
            except OSError as exc:
                raise LeapError(f"failed to read {path}: {exc}") from exc
            self.leap_file = parse_leap_file(raw)
            self.leap_file.expiration_time = str(_seconds_since_ntp_epoch(DEFAULT_EXPIRATION))
            self.rehash_leap_data()
            data[node_name] = self.render_leap_data()
            try:
                client.update(self.namespace, LEAP_CONFIGMAP_NAME, data)
            except (LeapError, OSError):
                self.retry_update = True
                raise
        else:
            log.info("Populate Leap data from configmap")
            self.leap_file = parse_leap_file(stored)
        log.info("Leap file expiration is set to %s", self.leap_file.expiration_time)
        self._set_utc_offset()

    def run(self) -> None:
        """Serve indications and periodic maintenance until close() is called."""
        log.info("starting Leap file manager")
        period = self.maintenance_period.total_seconds()
        next_tick = time.monotonic() + period
        try:
            while not self._closed.is_set():
                wait = min(max(next_tick - time.monotonic(), 0.0), _POLL_INTERVAL)
                try:
                    indication = self.ublox_ls_ind.get(timeout=wait)
                except queue.Empty:
                    indication = None
                if indication is not None:
                    self.handle_leap_indication(indication)
                    continue
                if time.monotonic() >= next_tick:
                    next_tick += period
                    self._maintain()
        finally:
            self._release()

    def close(self) -> None:
        """Stop run() and drop this manager as the process-wide one."""
        self._closed.set()
        self._release()

    def _release(self) -> None:
        global _manager
        with _lock:
            if _manager is self:
                _manager = None

    def _maintain(self) -> None:
        if self.retry_update:
            self.update_leap_configmap()
        now = datetime.now(timezone.utc)
        try:
            in_window = self.is_leap_in_window(now, -PMC_WINDOW_START, -PMC_WINDOW_END)
        except LeapError as exc:
            log.error("error in Leap: %s", exc)
            return
        if not in_window:
            self.pmc_leap_sent = False
            return
        if self.pmc_leap_sent:
            return
        try:
            settings = run_pmc_exp_get_gm_settings(self.ptp4l_config_path)
        except PmcError as exc:
            log.error("error in Leap: %s", exc)
            return
        tp = settings.time_properties
        leap_diff = self._last_event().leap_sec - tp.current_utc_offset
        if leap_diff == 0:
            # No actual change in leap seconds, nothing to announce.
            self.pmc_leap_sent = True
            return
        tp.leap59 = leap_diff < 0
        tp.leap61 = leap_diff > 0
        log.info("Sending PMC command in Leap window")
        log.info("Leap time properties: %s", tp)
        try:
            run_pmc_exp_set_gm_settings(self.ptp4l_config_path, settings)
        except PmcError as exc:
            log.error("failed to send PMC for Leap: %s", exc)
            return
        self.pmc_leap_sent = True

    def update_leap_file(self, leap_time: datetime, leap_sec: int, current_time: datetime) -> None:
        """Append a leap event (unless ``leap_sec`` is 0) and stamp the update time."""
        if leap_sec != 0:
            leap_time = _as_utc(leap_time)
            self.leap_file.leap_events.append(
                LeapEvent(
                    leap_time=str(_seconds_since_ntp_epoch(leap_time)),
                    leap_sec=leap_sec,
                    comment=f"# {leap_time.day} {_MONTHS[leap_time.month - 1]} {leap_time.year}",
                )
            )
        self.leap_file.update_time = str(_seconds_since_ntp_epoch(current_time))
        self.rehash_leap_data()
        self._set_utc_offset()

    def rehash_leap_data(self) -> None:
        """Recompute the list's SHA-1 checksum, grouped in blocks of 8 hex digits."""
        lf = self.leap_file
        data = lf.update_time + lf.expiration_time
        data += "".join(f"{ev.leap_time}{ev.leap_sec}" for ev in lf.leap_events)
        digest = hashlib.sha1(data.encode()).hexdigest()
        lf.hash = " ".join(digest[i : i + 8] for i in range(0, 40, 8))

    def update_leap_configmap(self) -> None:
        """Store the rendered list for this node; on failure mark it for retry."""
        rendered = self.render_leap_data()
        try:
            client = self._client()
            data = client.get(self.namespace, LEAP_CONFIGMAP_NAME)
        except (LeapError, OSError) as exc:
            self.retry_update = True
            log.info("failed to get leap configmap (will retry): %s", exc)
            return
        data[os.environ.get("NODE_NAME", "")] = rendered
        try:
            client.update(self.namespace, LEAP_CONFIGMAP_NAME, data)
        except (LeapError, OSError) as exc:
            self.retry_update = True
            log.info("failed to update leap configmap (will retry): %s", exc)
            return
        self.retry_update = False

    def handle_leap_indication(self, data: TimeLs) -> None:
        """Apply a NAV-TIMELS indication to the list and the config map."""
        try:
            result = self.process_leap_indication(data)
        except LeapError as exc:
            log.error("%s", exc)
            return
        if result is not None:
            self.update_leap_file(result.leap_time, result.leap_sec, result.update_time)
            self.update_leap_configmap()

    def process_leap_indication(self, data: TimeLs) -> Optional[LeapIndResult]:
        """Return the leap event a GPS indication calls for, or None if the list is current."""
        log.info("Leap indication: %s", data)
        if data.src_of_curr_ls != LEAP_SOURCE_GPS:
            log.info("Discarding Leap event not originating from GPS")
            return None
        leap_sec_on_file = self._last_event().leap_sec
        file_ls_date = self._last_leap_time()
        current_time = datetime.now(timezone.utc)
        file_ls_passed = file_ls_date < current_time

        valid_curr_ls = data.valid & CURR_LS_VALID_MASK
        valid_time_to_event = data.valid & TIME_TO_LS_EVENT_VALID_MASK
        if not (valid_curr_ls and valid_time_to_event):
            return None
        leap_sec = data.curr_ls + GPS_TO_TAI_DIFF + data.ls_change
        if leap_sec == leap_sec_on_file or not file_ls_passed:
            return None
        log.info(
            "Leap Seconds on file outdated: %d on file, %d + %d + %d in GNSS data",
            leap_sec_on_file,
            data.curr_ls,
            GPS_TO_TAI_DIFF,
            data.ls_change,
        )
        if data.ls_change == 0 and data.time_to_ls_event >= 0:
            # Shift the leap date out of the pmc window so no announcement is sent.
            leap_time = current_time - PMC_WINDOW_END
        else:
            hours = data.date_of_ls_gps_wn * 7 * 24 + data.date_of_ls_gps_dn * 24
            leap_time = GPS_EPOCH + timedelta(hours=hours)
        return LeapIndResult(leap_time=leap_time, leap_sec=leap_sec, update_time=current_time)

    def is_leap_in_window(self, now: datetime, start_offset: timedelta, end_offset: timedelta) -> bool:
        """True when ``now`` lies strictly inside the window around the last leap event."""
        try:
            leap_time = self._last_leap_time()
        except LeapError:
            if not self.leap_file.leap_events:
                raise
            return False
        now = _as_utc(now)
        if leap_time + start_offset < now < leap_time + end_offset:
            log.info("Leap in window: %s %s", start_offset, end_offset)
            return True
        return False


def create_leap_manager(client: ConfigMapClient, namespace: str) -> LeapManager:
    """Return the process-wide leap manager, creating and loading it on first use."""
    global _manager
    manager = _manager
    if manager is None:
        with _lock:
            manager = _manager
            if manager is None:
                manager = LeapManager(client=client, namespace=namespace)
                manager.populate_leap_data()
                _manager = manager
    return manager


def get_utc_offset() -> int:
    """Current TAI-UTC offset according to the process-wide leap manager."""
    manager = _manager
    if manager is not None:
        if datetime.now(timezone.utc) > manager.utc_offset_time:
            return manager.utc_offset
        if len(manager.leap_file.leap_events) > 1:
            return manager.leap_file.leap_events[-2].leap_sec
    raise LeapError("failed to get UTC offset")


def mock_leap_file() -> LeapManager:
    """Start a process-wide leap manager backed by an in-memory sample list."""
    os.environ["NODE_NAME"] = _MOCK_NODE_NAME
    client = InMemoryConfigMapClient(
        {(_MOCK_NAMESPACE, LEAP_CONFIGMAP_NAME): {_MOCK_NODE_NAME: _MOCK_LEAP_DATA}}
    )
    manager = create_leap_manager(client, _MOCK_NAMESPACE)
    threading.Thread(target=manager.run, daemon=True).start()
    return manager