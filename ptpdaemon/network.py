"""Discovery of PTP capable network interfaces via ethtool and sysfs."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path

log = logging.getLogger(__name__)

HARDWARE_RECEIVE_CAP = "hardware-receive"
HARDWARE_TRANSMIT_CAP = "hardware-transmit"
HARDWARE_RAW_CLOCK_CAP = "hardware-raw-clock"

_HW_CAPS = frozenset({HARDWARE_RECEIVE_CAP, HARDWARE_TRANSMIT_CAP, HARDWARE_RAW_CLOCK_CAP})
_PHC_REGEX = re.compile(r"PTP Hardware Clock: (\d+)")
_SYS_ROOT = Path("/sys")


class EthtoolError(RuntimeError):
    """ethtool is missing, failed, or reported no usable data."""


def ethtool_installed() -> bool:
    """True when ethtool can be found on the PATH."""
    return shutil.which("ethtool") is not None


def _ethtool_path() -> str:
    path = shutil.which("ethtool")
    if path is None:
        raise EthtoolError("ethtool not installed. Cannot grab NIC capabilities")
    return path


def parse_ethtool_timestamp_feature(output: str) -> bool:
    """True when ``ethtool -T`` output lists all hardware timestamping capabilities."""
    found = {parts[0] for parts in (line.split() for line in output.splitlines()) if parts}
    return _HW_CAPS <= found


def parse_ptp_clock_index(output: str, iface: str) -> int:
    """Extract the PTP hardware clock index from ``ethtool -T`` output."""
    found = _PHC_REGEX.search(output)
    if found is None:
        raise EthtoolError(f"no PTP hardware clock found on {iface}")
    return int(found.group(1))


def _timestamp_output(ethtool: str, name: str) -> str:
    try:
        completed = subprocess.run(
            [ethtool, "-T", name],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
        )
    except OSError as exc:
        log.info("could not grab NIC timestamp capability for %s: %s", name, exc)
        return ""
    if completed.returncode != 0:
        log.info(
            "could not grab NIC timestamp capability for %s: exit status %d",
            name,
            completed.returncode,
        )
    return completed.stdout


def _discover_ptp_devices(ethtool: str, sys_root: Path) -> list[str]:
    net_dir = sys_root / "class" / "net"
    try:
        names = sorted(entry.name for entry in net_dir.iterdir())
    except OSError as exc:
        raise EthtoolError(f"error getting network info: {exc}") from exc

    nics: list[str] = []
    for name in names:
        log.info("grabbing NIC timestamp capability for %s", name)
        output = _timestamp_output(ethtool, name)
        if not parse_ethtool_timestamp_feature(output):
            continue
        try:
            link = os.readlink(net_dir / name)
        except OSError as exc:
            log.info("could not grab NIC PCI address for %s: %s", name, exc)
            continue
        segments = link.split("/")
        if len(segments) - 3 <= 0:
            log.info("unexpected sysfs address for %s: %s", name, link)
            continue
        # e.g. ../../devices/pci0000:17/0000:17:02.0/0000:19:00.5/net/eno1
        pci_addr = segments[-3]
        device_dir = sys_root / "bus" / "pci" / "devices" / pci_addr
        if not device_dir.exists():
            log.info("unexpected device address for device name %s PCI %s", name, pci_addr)
            continue
        # Without physfn the interface is not a virtual function.
        if not (device_dir / "physfn").exists():
            nics.append(name)
    return nics


def discover_ptp_devices() -> list[str]:
    """Names of physical interfaces with full hardware timestamping support."""
    return _discover_ptp_devices(_ethtool_path(), _SYS_ROOT)


def get_ptp_clock_index(iface: str) -> int:
    """Index of the PTP hardware clock behind ``iface``."""
    ethtool = _ethtool_path()
    try:
        completed = subprocess.run(
            [ethtool, "-T", iface],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except OSError as exc:
        raise EthtoolError(f"failed to run ethtool: {exc}") from exc
    if completed.returncode != 0:
        raise EthtoolError(f"failed to run ethtool: exit status {completed.returncode}")
    return parse_ptp_clock_index(completed.stdout, iface)


def get_phc_id(iface: str) -> str:
    """Device path of the interface's PTP clock, or "" when it cannot be found."""
    try:
        index = get_ptp_clock_index(iface)
    except EthtoolError as exc:
        log.error("%s", exc)
        return ""
    return f"/dev/ptp{index}"