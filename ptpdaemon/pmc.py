"""Interaction with the PTP management client (pmc)."""

from __future__ import annotations

import logging
import queue
import re
import subprocess
import threading
import time
from typing import Optional, Sequence, Union

from ptpdaemon.protocol import GrandmasterSettings

log = logging.getLogger(__name__)

CLOCK_CLASS_CHANGE_REGEX = re.compile(r"gm.ClockClass\s+(\d+)")
CLOCK_CLASS_UPDATE_REGEX = re.compile(r"clockClass\s+(\d+)")
GET_GM_SETTINGS_REGEX = re.compile(r"clockClass\s+(\d+)\s+clockAccuracy\s+(0x\d+)")
CMD_GET_PARENT_DATA_SET = "GET PARENT_DATA_SET"
CMD_GET_GM_SETTINGS = "GET GRANDMASTER_SETTINGS_NP"
CMD_SET_GM_SETTINGS = "SET GRANDMASTER_SETTINGS_NP"
CMD_TIMEOUT = 2.0
SIG_TIMEOUT = 0.5
NUM_RETRY = 6

Pattern = Union[str, "re.Pattern[str]"]


class PmcError(RuntimeError):
    """The management client could not be run or gave no usable answer."""


class PmcTimeoutError(PmcError):
    """The management client did not answer in time."""


def pmc_command(config_file_name: str) -> list[str]:
    """Command line of the management client for a ptp4l configuration."""
    return ["pmc", "-u", "-b", "0", "-f", f"/var/run/{config_file_name}"]


class _PmcSession:
    """An interactive pmc process whose output is matched against patterns."""

    def __init__(self, argv: Sequence[str]) -> None:
        try:
            self._proc = subprocess.Popen(
                list(argv),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            raise PmcError(f"failed to start {' '.join(argv)}: {exc}") from exc
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._buffer = ""
        self._eof = False
        self._reader = threading.Thread(target=self._pump, daemon=True)
        self._reader.start()

    def __enter__(self) -> "_PmcSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _pump(self) -> None:
        try:
            for line in self._proc.stdout:
                self._lines.put(line)
        except (OSError, ValueError):
            pass
        finally:
            self._lines.put(None)

    def send(self, text: str) -> None:
        try:
            self._proc.stdin.write(text)
            self._proc.stdin.flush()
        except (OSError, ValueError) as exc:
            raise PmcError(f"failed to send to pmc: {exc}") from exc

    def expect(self, pattern: "re.Pattern[str]", timeout: float) -> tuple[str, list[str]]:
        """Wait until ``pattern`` appears in the output; return the text and the groups."""
        deadline = time.monotonic() + timeout
        while True:
            found = pattern.search(self._buffer)
            if found is not None:
                result = self._buffer[: found.end()]
                self._buffer = self._buffer[found.end():]
                groups = [g if g is not None else "" for g in found.groups()]
                return result, [found.group(0), *groups]
            if self._eof:
                raise PmcError(f"pmc exited before output matched {pattern.pattern!r}")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PmcTimeoutError(f"timed out waiting for {pattern.pattern!r}")
            try:
                chunk = self._lines.get(timeout=remaining)
            except queue.Empty:
                raise PmcTimeoutError(f"timed out waiting for {pattern.pattern!r}") from None
            if chunk is None:
                self._eof = True
            else:
                self._buffer += chunk

    def close(self) -> None:
        proc = self._proc
        try:
            proc.terminate()
        except OSError:
            pass
        try:
            proc.wait(SIG_TIMEOUT)
        except subprocess.TimeoutExpired:
            try:
                self.send("\x03")
            except PmcError:
                pass
            proc.kill()
            proc.wait()
        try:
            proc.stdin.close()
        except (OSError, ValueError):
            pass
        self._reader.join(SIG_TIMEOUT)
        try:
            proc.stdout.close()
        except (OSError, ValueError):
            pass


def _compile(pattern: Pattern) -> "re.Pattern[str]":
    return pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)


def run_pmc_exp(config_file_name: str, cmd_str: str, prompt_re: Pattern) -> tuple[str, list[str]]:
    """Send one command to pmc and wait for ``prompt_re``.

    Returns the output up to the match and the match with its groups.
    """
    argv = pmc_command(config_file_name)
    log.info('%s "%s"', " ".join(argv), cmd_str)
    with _PmcSession(argv) as session:
        session.send(cmd_str + "\n")
        try:
            result, matches = session.expect(_compile(prompt_re), CMD_TIMEOUT)
        except PmcError as exc:
            log.error("pmc result match error %s", exc)
            raise
        log.info("pmc result: %s", result)
        return result, matches


def run_pmc_exp_get_gm_settings(config_file_name: str) -> GrandmasterSettings:
    """Read the current GRANDMASTER_SETTINGS_NP, retrying on timeouts."""
    settings = GrandmasterSettings()
    pattern = re.compile(settings.regex())
    argv = pmc_command(config_file_name)
    log.info('%s "%s"', " ".join(argv), CMD_GET_GM_SETTINGS)
    with _PmcSession(argv) as session:
        for _ in range(NUM_RETRY):
            session.send(CMD_GET_GM_SETTINGS + "\n")
            try:
                result, matches = session.expect(pattern, CMD_TIMEOUT)
            except PmcTimeoutError:
                continue
            except PmcError as exc:
                log.error("pmc result match error %s", exc)
                raise
            log.info("pmc result: %s", result)
            for key, value in zip(settings.keys(), matches[1:]):
                settings.update(key, value)
            return settings
    raise PmcTimeoutError(
        f"no answer to {CMD_GET_GM_SETTINGS} after {NUM_RETRY} attempts"
    )


def run_pmc_exp_set_gm_settings(config_file_name: str, g: GrandmasterSettings) -> None:
    """Write GRANDMASTER_SETTINGS_NP and wait for pmc to echo the settings."""
    cmd_str = CMD_SET_GM_SETTINGS + str(g).replace("\n", " ")
    with _PmcSession(pmc_command(config_file_name)) as session:
        session.send(cmd_str + "\n")
        try:
            result, _ = session.expect(re.compile(g.regex()), CMD_TIMEOUT)
        except PmcError as exc:
            log.error("pmc result match error %s", exc)
            raise
        log.info("pmc result: %s", result)