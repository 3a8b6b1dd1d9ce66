import pytest

from ptpdaemon.antenna import AntStatus, GNSSAntStatus, PowerStatus, new_ant_status


def test_antenna_ok_when_ok_and_powered():
    assert new_ant_status(AntStatus.OK, PowerStatus.ON).antenna_ok() is True


@pytest.mark.parametrize(
    ("ant", "power"),
    [
        (AntStatus.OK, PowerStatus.OFF),
        (AntStatus.NOT_OK, PowerStatus.ON),
        (AntStatus.UNKNOWN, PowerStatus.ON),
        (AntStatus.NOT_OK, PowerStatus.OFF),
    ],
)
def test_antenna_not_ok(ant, power):
    assert new_ant_status(ant, power).antenna_ok() is False


def test_new_ant_status_fields():
    status = new_ant_status(AntStatus.UNKNOWN, PowerStatus.OFF)
    assert status == GNSSAntStatus(AntStatus.UNKNOWN, PowerStatus.OFF, block_id=0)


def test_changing_status_changes_result():
    status = new_ant_status(AntStatus.NOT_OK, PowerStatus.OFF)
    status.ant_status = AntStatus.OK
    status.power_status = PowerStatus.ON
    assert status.antenna_ok() is True


def test_string_forms():
    status = new_ant_status(AntStatus.NOT_OK, PowerStatus.ON)
    assert str(status.ant_status) == "NOT_OK"
    assert str(status.power_status) == "ON"


@pytest.mark.parametrize(
    ("ant", "expected"),
    [(AntStatus.NOT_OK, "0"), (AntStatus.UNKNOWN, "1"), (AntStatus.OK, "2")],
)
def test_ant_status_int_string(ant, expected):
    status = new_ant_status(ant, PowerStatus.ON)
    assert status.ant_status.int_string() == expected
    assert AntStatus(int(status.ant_status.int_string())) is ant


@pytest.mark.parametrize(("power", "expected"), [(PowerStatus.OFF, "0"), (PowerStatus.ON, "1")])
def test_power_status_int_string(power, expected):
    status = new_ant_status(AntStatus.OK, power)
    assert status.power_status.int_string() == expected
    assert PowerStatus(int(status.power_status.int_string())) is power