"""
Capture of the two live sources of a dmerge session.

Each source is read by a CaptureTask thread, which writes every accepted
line to its own log file as "<timestamp> <message>". The blocking reads
happen on a nested LineReader thread, so that the task itself only waits on
a queue and can notice cancellation between lines.
"""
from __future__ import annotations

import collections
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
import queue
import subprocess
import sys
import threading
from typing import Optional, TextIO

from rich.console import Console
from rich.style import Style

from .cancellation import CancellationToken
from .errors import DmergeError, LogIOError, SourceUnavailable, TimestampParseError
from .log_facilities import LogFacility
from .timestamp_wrapper import LogRecord, format_timestamp, now, split_timestamped_line

logger = logging.getLogger(__name__)

# how long a capture task waits for a line before checking for cancellation
POLL_INTERVAL_SECONDS = 0.1
TERMINATE_TIMEOUT_SECONDS = 5.0

_EOF = object()

DIM = Style(dim=True)


class LineReader(threading.Thread):
    """
    Reads lines from a blocking text stream and puts them on a queue, followed
    by an end-of-input marker. A read error also ends the input.
    """
    def __init__(self, stream: TextIO, name: str):
        super().__init__(name=name, daemon=True)
        self.stream = stream
        self.lines: queue.Queue = queue.Queue()

    def run(self):
        logger.debug("%s started", self.name)
        try:
            for line in self.stream:
                self.lines.put(line)
        except (OSError, ValueError) as err:
            logger.warning("%s: read failed, treating as end of input: %s", self.name, err)
        finally:
            self.lines.put(_EOF)
            logger.debug("%s finished", self.name)


class StderrTail(threading.Thread):
    """Keeps the last few lines a child process writes to stderr."""
    def __init__(self, stream: TextIO, name: str, max_lines: int = 20):
        super().__init__(name=name, daemon=True)
        self.stream = stream
        self.tail: collections.deque[str] = collections.deque(maxlen=max_lines)

    def run(self):
        try:
            for line in self.stream:
                self.tail.append(line)
        except (OSError, ValueError):
            pass

    @property
    def text(self) -> str:
        return "".join(self.tail)


@dataclass
class CaptureStats:
    source: str
    received: int = 0
    written: int = 0
    dropped: int = 0
    filtered: int = 0


class RecordEcho:
    """
    Mirrors captured records to the console. The lock is shared by both
    capture tasks, so that a record is written to its log and echoed as one
    step, and echoed lines from the two sources never interleave.
    """
    def __init__(self, console: Console = None):
        self.console = console or Console(highlight=False)
        self.lock = threading.Lock()

    def __call__(self, record: LogRecord) -> None:
        # the message is written as is, so the echo shows the same text as the log
        timestamp = format_timestamp(record.timestamp)
        if self.console.color_system is not None:
            timestamp = DIM.render(timestamp)
        self.console.file.write(f"{timestamp} {record.message}\n")
        self.console.file.flush()


class CaptureTask(threading.Thread):
    source_name = ""

    def __init__(
            self,
            log_path: str,
            token: CancellationToken,
            *,
            echo: Optional[RecordEcho] = None,
            encoding: str = "utf-8",
    ):
        super().__init__(name=f"capture-{self.source_name}")
        self.log_path = log_path
        self.token = token
        self.echo = echo
        self.encoding = encoding
        self.stats = CaptureStats(self.source_name)
        self.error: Optional[DmergeError] = None
        self._lock = echo.lock if echo is not None else threading.Lock()

    def _start_source(self) -> LineReader:
        """Override in subclasses"""
        raise NotImplementedError

    def _stop_source(self) -> None:
        """Override in subclasses"""

    def _source_ended(self) -> None:
        """Called when the source reaches end of input without being cancelled"""

    def make_record(self, line: str) -> Optional[LogRecord]:
        """Override in subclasses; return None to skip the line"""
        raise NotImplementedError

    def run(self):
        try:
            reader = self._start_source()
            try:
                self._capture(reader)
            finally:
                self._stop_source()
        except DmergeError as err:
            logger.debug("%s failed: %s", self.name, err)
            self.error = err
        except Exception as err:
            logger.exception("%s failed unexpectedly", self.name)
            self.error = DmergeError(f"{self.source_name} capture failed: {err}")
            self.error.__cause__ = err
        else:
            logger.info(
                "%s: %d lines received, %d written, %d dropped, %d filtered",
                self.source_name,
                self.stats.received, self.stats.written, self.stats.dropped, self.stats.filtered,
            )

    def _capture(self, reader: LineReader) -> None:
        try:
            log_file = open(self.log_path, "w", encoding=self.encoding)
        except OSError as ose:
            raise LogIOError(f"cannot create {self.log_path}: {ose.strerror}") from ose

        with log_file:
            while True:
                try:
                    line = reader.lines.get(timeout=POLL_INTERVAL_SECONDS)
                except queue.Empty:
                    line = None

                if line is _EOF:
                    if not self.token.is_cancelled():
                        self._source_ended()
                    break

                if line is not None:
                    self.stats.received += 1
                    record = self.make_record(line.rstrip("\r\n"))
                    if record is not None:
                        self._persist(log_file, record)

                if self.token.is_cancelled():
                    break

    def _persist(self, log_file: TextIO, record: LogRecord) -> None:
        with self._lock:
            try:
                log_file.write(record.format())
                log_file.write("\n")
                log_file.flush()
            except OSError as ose:
                raise LogIOError(f"cannot write {self.log_path}: {ose.strerror}") from ose
            except ValueError as err:
                # UnicodeEncodeError, for a line the log encoding cannot represent
                raise LogIOError(f"cannot write {self.log_path}: {err}") from err
            if self.echo is not None:
                self.echo(record)
        self.stats.written += 1


class KernelLogCapture(CaptureTask):
    """
    Follows the kernel log through an external facility (journalctl or
    dmesg). Lines are kept with the facility's own timestamps; lines that do
    not start with a timestamp are dropped.

    Unless `full` is set, only events at or after `start_instant` are kept.
    """
    source_name = "kernel"

    def __init__(
            self,
            log_path: str,
            token: CancellationToken,
            facility: LogFacility,
            *,
            start_instant: datetime,
            full: bool = False,
            echo: Optional[RecordEcho] = None,
            encoding: str = "utf-8",
    ):
        super().__init__(log_path, token, echo=echo, encoding=encoding)
        self.facility = facility
        self.start_instant = start_instant
        self.full = full
        self._proc: Optional[subprocess.Popen] = None
        self._stdout_reader: Optional[LineReader] = None
        self._stderr_tail: Optional[StderrTail] = None

    def _start_source(self) -> LineReader:
        self._proc = self.facility.start(self.full, self.encoding)
        self._stderr_tail = StderrTail(self._proc.stderr, name=f"{self.name}-stderr")
        self._stderr_tail.start()
        self._stdout_reader = LineReader(self._proc.stdout, name=f"{self.name}-reader")
        self._stdout_reader.start()
        return self._stdout_reader

    def _stop_source(self) -> None:
        proc = self._proc
        if proc is None:
            return

        if proc.poll() is None:
            logger.debug("terminating %s (pid %d)", self.facility.describe(), proc.pid)
            proc.terminate()
            try:
                proc.wait(timeout=TERMINATE_TIMEOUT_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("%s did not terminate, killing it", self.facility.describe())
                proc.kill()
                proc.wait()

        # the child has exited, so both pipes reach EOF and the readers finish
        self._stdout_reader.join()
        self._stderr_tail.join()
        proc.stdout.close()
        proc.stderr.close()

    def _source_ended(self) -> None:
        # the facility may close its stdout and keep running, so wait for it
        # in short steps and give up once capture is cancelled
        while True:
            try:
                returncode = self._proc.wait(timeout=POLL_INTERVAL_SECONDS)
            except subprocess.TimeoutExpired:
                if self.token.is_cancelled():
                    logger.debug("%s closed its output but is still running", self.facility.describe())
                    return
            else:
                break

        if returncode != 0 and self.stats.received == 0:
            raise SourceUnavailable(
                self.facility.describe(),
                self._stderr_tail_text() or f"exited with status {returncode}",
            )
        logger.info("%s exited with status %d", self.facility.describe(), returncode)

    def _stderr_tail_text(self) -> str:
        self._stderr_tail.join()
        return self._stderr_tail.text

    def make_record(self, line: str) -> Optional[LogRecord]:
        try:
            record = split_timestamped_line(line)
        except TimestampParseError:
            self.stats.dropped += 1
            logger.debug("dropped kernel log line without timestamp: %r", line)
            return None

        if not self.full and record.timestamp < self.start_instant:
            self.stats.filtered += 1
            return None
        return record


class InteractiveCapture(CaptureTask):
    """
    Captures lines typed by the operator, stamping each one with the time it
    was received.
    """
    source_name = "input"

    def __init__(
            self,
            log_path: str,
            token: CancellationToken,
            *,
            stream: TextIO = None,
            clock: Callable[[], datetime] = now,
            echo: Optional[RecordEcho] = None,
            encoding: str = "utf-8",
    ):
        super().__init__(log_path, token, echo=echo, encoding=encoding)
        self.stream = stream if stream is not None else sys.stdin
        self.clock = clock

    def _start_source(self) -> LineReader:
        # a blocked read on a terminal cannot be interrupted, so this reader
        # is left to die with the process once capture is cancelled
        reader = LineReader(self.stream, name=f"{self.name}-reader")
        reader.start()
        return reader

    def make_record(self, line: str) -> LogRecord:
        return LogRecord(self.clock(), line)
