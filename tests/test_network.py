import os
import sys
from pathlib import Path
from unittest import mock

import pytest

from ptpdaemon import network

FULL_CAPS = """Time stamping parameters for {name}:
Capabilities:
\thardware-transmit
\tsoftware-transmit
\thardware-receive
\tsoftware-receive
\tsoftware-system-clock
\thardware-raw-clock
PTP Hardware Clock: 4
"""

SOFT_CAPS = """Time stamping parameters for {name}:
Capabilities:
\tsoftware-transmit
\tsoftware-receive
\tsoftware-system-clock
PTP Hardware Clock: none
"""

FAKE_ETHTOOL = """
import sys
name = sys.argv[2]
full = {full!r}
soft = {soft!r}
if name == "fail":
    sys.exit(1)
if name in ("eth2", "none"):
    sys.stdout.write(soft.format(name=name))
else:
    sys.stdout.write(full.format(name=name))
"""


@pytest.fixture
def fake_ethtool(tmp_path):
    script = tmp_path / "ethtool"
    script.write_text(
        f"#!{sys.executable}\n" + FAKE_ETHTOOL.format(full=FULL_CAPS, soft=SOFT_CAPS)
    )
    script.chmod(0o755)
    return str(script)


def test_parse_full_capabilities():
    assert network.parse_ethtool_timestamp_feature(FULL_CAPS.format(name="eth0")) is True


def test_parse_software_only_capabilities():
    assert network.parse_ethtool_timestamp_feature(SOFT_CAPS.format(name="eth0")) is False


def test_parse_ignores_blank_lines():
    text = "\n\thardware-receive\n\n\thardware-transmit\n"
    assert network.parse_ethtool_timestamp_feature(text) is False
    assert network.parse_ethtool_timestamp_feature(text + "\thardware-raw-clock\n") is True


def test_parse_clock_index():
    assert network.parse_ptp_clock_index("PTP Hardware Clock: 2\n", "ens1f0") == 2


def test_parse_clock_index_missing():
    with pytest.raises(network.EthtoolError, match="ens1f0"):
        network.parse_ptp_clock_index("PTP Hardware Clock: none\n", "ens1f0")


def test_ethtool_not_installed():
    with mock.patch("shutil.which", return_value=None):
        assert network.ethtool_installed() is False
        with pytest.raises(network.EthtoolError):
            network.discover_ptp_devices()
        with pytest.raises(network.EthtoolError):
            network.get_ptp_clock_index("eth0")
        assert network.get_phc_id("eth0") == ""


def test_get_clock_index_and_phc_id(fake_ethtool):
    with mock.patch("shutil.which", return_value=fake_ethtool):
        assert network.ethtool_installed() is True
        assert network.get_ptp_clock_index("eth0") == 4
        assert network.get_phc_id("eth0") == "/dev/ptp4"


def test_get_clock_index_failures(fake_ethtool):
    with mock.patch("shutil.which", return_value=fake_ethtool):
        with pytest.raises(network.EthtoolError):
            network.get_ptp_clock_index("fail")
        with pytest.raises(network.EthtoolError):
            network.get_ptp_clock_index("none")
        assert network.get_phc_id("none") == ""


def _make_nic(root: Path, name: str, pci: str, *, pci_dir=True, physfn=False):
    net = root / "class" / "net"
    net.mkdir(parents=True, exist_ok=True)
    target = f"../../devices/pci0000:17/0000:17:02.0/{pci}/net/{name}"
    os.symlink(target, net / name)
    if pci_dir:
        device = root / "bus" / "pci" / "devices" / pci
        device.mkdir(parents=True)
        if physfn:
            (device / "physfn").mkdir()


def test_discover_selects_physical_capable_nics(tmp_path, fake_ethtool):
    root = tmp_path / "sys"
    _make_nic(root, "eth0", "0000:19:00.0")
    _make_nic(root, "eth1", "0000:19:00.1", physfn=True)
    _make_nic(root, "eth2", "0000:19:00.2")
    _make_nic(root, "eth3", "0000:19:00.3", pci_dir=False)
    assert network._discover_ptp_devices(fake_ethtool, root) == ["eth0"]


def test_discover_missing_sysfs(tmp_path, fake_ethtool):
    with pytest.raises(network.EthtoolError):
        network._discover_ptp_devices(fake_ethtool, tmp_path / "absent")