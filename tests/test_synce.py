import pytest

from ptpdaemon import synce
from ptpdaemon.synce import (
    Config,
    EECState,
    LogEntry,
    LogType,
    QualityLevel,
    QualityLevelInfo,
    Relations,
)

OPTION1 = synce.get_quality_level_info_option1()
OPTION2 = synce.get_quality_level_info_option2()


@pytest.mark.parametrize(
    "ssm, ext_ssm, ext_enabled, network_option, expected",
    [
        (OPTION2[QualityLevel.PRTC].ssm, synce.QL_DEFAULT_ENHSSM, 0, 2, "PRS"),
        (OPTION2[QualityLevel.EPRTC].ssm, OPTION2[QualityLevel.EPRTC].extended_ssm, 1, 2, "EPRTC"),
        (OPTION1[QualityLevel.EPRTC].ssm, OPTION1[QualityLevel.EPRTC].extended_ssm, 1, 1, "EPRTC"),
        (OPTION2[QualityLevel.PRS].ssm, OPTION2[QualityLevel.PRS].extended_ssm, 1, 2, "PRS"),
        (OPTION2[QualityLevel.PRS].ssm, OPTION2[QualityLevel.PRS].extended_ssm, 1, 1, "DNU"),
        # EEC1 is not an option 2 level, so its extended code is zero there.
        (OPTION2[QualityLevel.PRS].ssm, 0x00, 1, 2, "DUS"),
    ],
)
def test_clock_quality(ssm, ext_ssm, ext_enabled, network_option, expected):
    device = Config(name="synce1", network_option=network_option, extended_tlv=ext_enabled)
    clock, _ = device.clock_quality(QualityLevelInfo(priority=0, ssm=ssm, extended_ssm=ext_ssm))
    assert clock == expected


def test_clock_quality_returns_table_entry():
    device = Config(network_option=1, extended_tlv=1)
    clock, info = device.clock_quality(QualityLevelInfo(ssm=0x2, extended_ssm=0x20))
    assert clock == "PRTC"
    assert info == QualityLevelInfo(1, 0x2, 0x20)


def test_clock_quality_fallback_info():
    device = Config(network_option=2, extended_tlv=0)
    clock, info = device.clock_quality(QualityLevelInfo(ssm=0x9))
    assert clock == "DUS"
    assert info == QualityLevelInfo(0, 0xF, 0xFF)


def test_clock_quality_unread_extended_code():
    device = Config(network_option=1, extended_tlv=1)
    clock, info = device.clock_quality(QualityLevelInfo(ssm=0x2, extended_ssm=synce.QL_DEFAULT_SSM))
    assert clock == ""
    assert info.ssm == 0x2


def test_clock_quality_unknown_option():
    device = Config(network_option=7, extended_tlv=0)
    assert device.clock_quality(QualityLevelInfo(ssm=0x2)) == ("", QualityLevelInfo())


@pytest.mark.parametrize(
    "output, device, ext_source, source",
    [
        ("synce4l[1225226.278]: [synce4l.0.config] tx_rebuild_tlv: attached new TLV, QL=0x1 on ens7f0",
         None, None, "ens7f0"),
        ("synce4l[622796.479]: [synce4l.0.config] tx_rebuild_tlv: attached new TLV, QL=0x2 on ens7f0",
         None, None, "ens7f0"),
        ("synce4l[622796.479]: [synce4l.0.config] tx_rebuild_tlv: attached new extended TLV, EXT_QL=0x20 on ens7f0",
         None, None, "ens7f0"),
        ("synce4l[627602.540]: [synce4l.0.config]EEC_LOCKED/EEC_LOCKED_HO_ACQ on GNSS of synce1",
         "synce1", "GNSS", None),
        ("synce4l[627602.540]: [synce4l.0.config] EEC_HOLDOVER on synce1",
         "synce1", None, None),
        ("synce4l[627602.593]: [synce4l.0.config] tx_rebuild_tlv: attached new TLV, QL=0x1 on ens7f0",
         None, None, "ens7f0"),
        ("synce4l[627602.593]: [synce4l.0.config] tx_rebuild_tlv: attached new extended TLV, EXT_QL=0xff on ens7f0",
         None, None, "ens7f0"),
        ("synce4l[627685.138]: [synce4l.0.config] EEC_LOCKED/EEC_LOCKED_HO_ACQ on GNSS of synce1",
         "synce1", "GNSS", None),
        ("synce4l[627685.138]: [synce4l.0.config] act on EEC_LOCKED/EEC_LOCKED_HO_ACQ for ens7f0",
         None, None, "ens7f0"),
    ],
)
def test_parse_log(output, device, ext_source, source):
    entry = synce.parse_log(output)
    assert entry.device == device, str(entry)
    assert entry.ext_source == ext_source, str(entry)
    assert entry.source == source, str(entry)


def test_parse_log_ql_values():
    entry = synce.parse_log("tx_rebuild_tlv: attached new TLV, QL=0x2 on ens7f0")
    assert entry.ql == 0x2
    assert entry.ext_ql == synce.QL_DEFAULT_SSM
    assert entry.log_type == LogType.QL_STATE


def test_parse_log_ext_ql_values():
    entry = synce.parse_log("attached new extended TLV, EXT_QL=0xff on ens7f0")
    assert entry.ext_ql == 0xFF
    assert entry.log_type == LogType.EXT_QL_STATE


def test_parse_log_states():
    assert synce.parse_log("EEC_HOLDOVER on synce1").state == "EEC_HOLDOVER"
    entry = synce.parse_log("act on EEC_LOCKED/EEC_LOCKED_HO_ACQ for ens7f0")
    assert entry.state == "EEC_LOCKED_HO_ACQ"
    assert entry.log_type == LogType.SYNCE_STATE


def test_parse_log_no_match():
    entry = synce.parse_log("nothing of interest")
    assert entry == LogEntry(ql=synce.QL_DEFAULT_SSM, ext_ql=synce.QL_DEFAULT_SSM)


def test_log_entry_str():
    entry = LogEntry(state="EEC_LOCKED", device="synce1", ql=0x41, ext_ql=0x42)
    assert str(entry) == "state: EEC_LOCKED\nDevice: synce1\nSource: \nExtSource: \nql: A\nextql: B\n"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("EEC_FREERUN", EECState.EEC_FREERUN),
        ("EEC_LOCKED", EECState.EEC_LOCKED),
        ("EEC_INVALID", EECState.EEC_INVALID),
        ("EEC_LOCKED_HO_ACQ", EECState.EEC_LOCKED_HO_ACQ),
        ("EEC_HOLDOVER", EECState.EEC_HOLDOVER),
        ("bogus", EECState.EEC_UNKNOWN),
    ],
)
def test_string_to_eec_state(text, expected):
    assert synce.string_to_eec_state(text) is expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("EEC_HOLDOVER", "EEC_HOLDOVER"),
        ("EEC_LOCKED_HO_ACQ", "EEC_LOCKED_HO_ACQ"),
        ("bogus", "EEC_UNKNOWN"),
    ],
)
def test_eec_state_str(text, expected):
    assert str(synce.string_to_eec_state(text)) == expected


def test_quality_level_str():
    option2_names = sorted(str(level) for level in synce.get_quality_level_info_option2())
    assert option2_names == sorted(
        ["EPRTC", "PRTC", "PRS", "STU", "ST2", "UNKNOWN", "ST3E", "EEC2", "PROV", "DUS"]
    )
    option1_names = sorted(str(level) for level in synce.get_quality_level_info_option1())
    assert option1_names == sorted(["EPRTC", "PRTC", "PRC", "SSUA", "SSUB", "EEC1", "DNU"])


def test_compare():
    info = QualityLevelInfo(0, 0x2, 0x21)
    assert info.compare(QualityLevelInfo(ssm=0x2, extended_ssm=synce.QL_DEFAULT_SSM))
    assert info.compare(QualityLevelInfo(ssm=0x2, extended_ssm=0x21))
    assert not info.compare(QualityLevelInfo(ssm=0x2, extended_ssm=0xFF))
    assert not info.compare(QualityLevelInfo(ssm=0x1, extended_ssm=0x21))


def test_tables_are_copies():
    table = synce.get_quality_level_info_option1()
    table[QualityLevel.PRC].ssm = 0x9
    assert synce.get_quality_level_info_option1()[QualityLevel.PRC].ssm == 0x2
    assert len(synce.get_quality_level_info_option2()) == 10


def test_print_networks(capsys):
    synce.print_option1_networks()
    synce.print_option2_networks()
    out = capsys.readouterr().out
    assert out.startswith("Option 1 Networks:\n")
    assert "Quality Level: 0, Priority: 0, SSM: 0x2, Extended SSM: 0x21" in out
    assert "\nOption 2 Networks:\n" in out
    assert "Quality Level: 14, Priority: 9, SSM: 0xF, Extended SSM: 0xFF" in out


def test_append_device_config_requires_ifaces():
    rel = Relations()
    rel.append_device_config([], "synce0", 1, 0)
    rel.append_device_config(["ens1f0"], "synce1", 2, 1)
    assert [d.name for d in rel.devices] == ["synce1"]
    assert rel.devices[0].network_option == 2


def test_add_device_config_copies():
    rel = Relations()
    cfg = Config(name="synce1")
    rel.add_device_config(cfg)
    cfg.name = "changed"
    assert rel.devices[0].name == "synce1"


def test_add_clock_ids():
    rel = Relations()
    rel.append_device_config(["ens1f0", "ens1f1"], "synce1", 1, 0)
    rel.add_clock_ids({"other": "x", "clockId[ens1f1]": "12345"})
    assert rel.devices[0].clock_id == "12345"


def test_get_synce_relation():
    rel = Relations()
    rel.add_device_config(Config(name="synce1", ifaces=["ens1f0"], network_option=1,
                                 extended_tlv=0, external_source="GNSS"))
    rel.add_device_config(Config(name="synce2", ifaces=["ens2f0"], network_option=2,
                                 extended_tlv=1, external_source="SMA1"))
    assert rel.get_synce_relation("", "none", "ens2f0") == (2, 1, "synce2", "SMA1", ["ens2f0"])
    assert rel.get_synce_relation("synce1", "none", "") == (1, 0, "synce1", "GNSS", ["ens1f0"])
    assert Relations().get_synce_relation("a", "b", "c") == (0, 0, "", "", [])