# ptpdaemon

Building blocks for a daemon that manages linuxptp (`ptp4l`, `ts2phc`,
`pmc`), SyncE (`synce4l`) and u-blox GNSS receivers on a Linux host.

Only the standard library is required. The functions that talk to the
system run `ethtool`, `pmc` or `ubxtool` and need them on the host.

## Modules

- `ptpdaemon.leap`: leap second list handling. `parse_leap_file` reads
  `leap-seconds.list` text into a `LeapFile` of `LeapEvent`s.
  `LeapManager` renders the list (`render_leap_data`), recomputes its SHA-1
  hash (`rehash_leap_data`), turns GNSS NAV-TIMELS indications into new
  leap events (`process_leap_indication`, `handle_leap_indication`),
  checks whether the last leap event is near (`is_leap_in_window`) and
  keeps a per-node copy in a config map store (`populate_leap_data`,
  `update_leap_configmap`). `run()` serves queued indications from
  `ublox_ls_ind` and, once a minute, retries failed stores and announces
  an upcoming leap second to ptp4l through `pmc`; `close()` stops it.
  `create_leap_manager` and `get_utc_offset` work with one process-wide
  manager; `mock_leap_file` starts one backed by a sample list in memory.
- `ptpdaemon.ublox`: the `UBlox` class drives `ubxtool` (protocol version
  query, NMEA/binary switching, configuration items) and buffers the lines
  of a background polling process (`poll_init`, `poll_pull`, `poll_reset`,
  `poll_stop`). `extract_offset`, `extract_nav_status` and
  `extract_leap_sec` read `tAcc`, `gpsFix` and NAV-TIMELS fields from its
  output.
- `ptpdaemon.antenna`: `AntStatus`, `PowerStatus` and `GNSSAntStatus`.
- `ptpdaemon.pmc`: `run_pmc_exp`, `run_pmc_exp_get_gm_settings` and
  `run_pmc_exp_set_gm_settings` talk to an interactive `pmc` process;
  failures raise `PmcError` or `PmcTimeoutError`.
- `ptpdaemon.protocol`: `GrandmasterSettings` with its `ClockQuality` and
  `TimePropertiesDS`, the text form `pmc` expects and the pattern that
  matches its answers.
- `ptpdaemon.synce`: `parse_log` for `synce4l` log lines, `EECState`,
  `QualityLevel` tables for network options 1 and 2, `Config.clock_quality`
  and the `Relations` between devices, interfaces and external sources.
- `ptpdaemon.network`: `discover_ptp_devices` lists physical interfaces
  under `/sys/class/net` with full hardware timestamping;
  `get_ptp_clock_index` and `get_phc_id` find an interface's PTP hardware
  clock. Failures raise `EthtoolError`.
- `ptpdaemon.plugin`: `Plugin`, a named set of optional hooks.
- `ptpdaemon.utils`: `get_alias` masks interface names for metric labels.

## Examples

```python
from ptpdaemon.utils import get_alias

get_alias("ens1f0")      # "ens1fx"
get_alias("eth1.100")    # "ethx.100"
```

```python
from ptpdaemon.synce import parse_log

entry = parse_log(
    "synce4l[627602.540]: [synce4l.0.config] EEC_HOLDOVER on synce1"
)
entry.state     # "EEC_HOLDOVER"
entry.device    # "synce1"
```

```python
from ptpdaemon.ublox import extract_leap_sec

timels = extract_leap_sec([
    "iTOW 376008000 version 0 reserved2 0 0 0 srcOfCurrLs 2",
    "currLs 18 srcOfLsChange 2 lsChange 0 timeToLsEvent 77643210",
    "dateOfLsGpsWn 2441 dateOfLsGpsDn 7 reserved2 0 0 0",
    "valid x3",
])
timels.curr_ls   # 18
timels.valid     # 3
```

```python
from ptpdaemon.leap import InMemoryConfigMapClient, LeapManager, parse_leap_file

manager = LeapManager(
    client=InMemoryConfigMapClient({("ptp", "leap-configmap"): {}}),
    namespace="ptp",
    leap_file=parse_leap_file("3692217600     37    # 1 Jan 2017\n"),
)
manager.rehash_leap_data()
print(manager.render_leap_data())
```

```python
from ptpdaemon.protocol import GrandmasterSettings

settings = GrandmasterSettings()
settings.update("clockClass", "6")
settings.update("currentUtcOffset", "37")
print(settings)
```

## What it does not do

There is no daemon command and no entry point: the pieces are meant to be
wired together by the application that uses them. The leap manager stores
its list through any object with the `ConfigMapClient` methods `get` and
`update`; the package itself only ships `InMemoryConfigMapClient` and has
no client for a cluster API.

## Tests

The test suite uses pytest; install the `test` extra to get it.