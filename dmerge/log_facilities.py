from __future__ import annotations

import logging
import subprocess

from .errors import SourceUnavailable

logger = logging.getLogger(__name__)

# a facility that exits with an error within this many seconds of being
# started is reported as unavailable instead of as an empty source
STARTUP_GRACE_SECONDS = 0.25


class LogFacility:
    """
    External program that writes timestamped kernel log lines to its stdout,
    and keeps following the log until it is terminated.
    """
    name: str | None = None

    @classmethod
    def get_facility(cls, name: str) -> LogFacility:
        for subcls in cls.__subclasses__():
            if subcls.name == name:
                return subcls()
        raise ValueError(f"unknown log facility {name!r}")

    def follow_command(self, full: bool) -> list[str]:
        """Override in subclasses"""
        raise NotImplementedError

    def probe(self) -> None:
        """
        Check that the facility can be read before following it. Raises
        SourceUnavailable if not. Override in subclasses that can check.
        """

    def start(self, full: bool, encoding: str) -> subprocess.Popen:
        self.probe()

        cmd = self.follow_command(full)
        logger.info("Following kernel log with: %s", " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding=encoding,
                errors="replace",
            )
        except OSError as ose:
            raise SourceUnavailable(self.describe(), ose.strerror or str(ose)) from ose

        try:
            returncode = proc.wait(timeout=STARTUP_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            return proc

        if returncode != 0:
            reason = proc.stderr.read()
            proc.stdout.close()
            proc.stderr.close()
            raise SourceUnavailable(self.describe(), reason or f"exited with status {returncode}")

        # exited cleanly right away; whatever it wrote is still in the pipe
        return proc

    def describe(self) -> str:
        return self.name


class Journald(LogFacility):
    name = "journald"

    def follow_command(self, full: bool) -> list[str]:
        cmd = ["journalctl", "-k", "-f", "-o", "short-iso-precise"]
        if full:
            # -f alone only replays the last 10 entries
            cmd.append("--no-tail")
        return cmd

    def probe(self) -> None:
        try:
            result = subprocess.run(
                ["journalctl", "-k", "-n", "1"],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as ose:
            raise SourceUnavailable(self.name, ose.strerror or str(ose)) from ose

        if result.returncode != 0:
            raise SourceUnavailable(self.name, result.stderr or f"exited with status {result.returncode}")


class Dmesg(LogFacility):
    name = "dmesg"

    def follow_command(self, full: bool) -> list[str]:
        # dmesg always replays the whole ring buffer before following
        return ["dmesg", "--time-format", "iso", "-w"]


class CommandFacility(LogFacility):
    """
    Any command whose output lines start with an ISO-8601 timestamp.
    """
    def __init__(self, command: list[str]):
        self.command = list(command)

    def follow_command(self, full: bool) -> list[str]:
        return self.command

    def describe(self) -> str:
        return self.command[0]
