from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import os
import random
import string
import tempfile
import threading
from typing import Optional, TextIO

import littletable as lt

from .cancellation import CancellationBroadcast
from .capture import CaptureStats, CaptureTask, InteractiveCapture, KernelLogCapture, RecordEcho
from .log_facilities import LogFacility
from .merging import CorruptLinePolicy, MergeStats, merge_log_files
from .timestamp_wrapper import now

logger = logging.getLogger(__name__)

TEMP_LOG_PREFIX = "dmerge"
OUTPUT_PREFIX = "dmerged"
SESSION_ID_LENGTH = 16
JOIN_POLL_SECONDS = 0.2


def new_session_id(length: int = SESSION_ID_LENGTH) -> str:
    return "".join(random.choices(string.ascii_letters + string.digits, k=length))


@dataclass(frozen=True)
class CaptureSession:
    session_id: str
    start_instant: datetime
    full_mode: bool = False
    echo_enabled: bool = True

    @classmethod
    def create(cls, *, full_mode: bool = False, echo_enabled: bool = True) -> CaptureSession:
        return cls(new_session_id(), now(), full_mode, echo_enabled)

    def temp_log_path(self, tmpdir: str, source: str) -> str:
        return os.path.join(tmpdir, f"{TEMP_LOG_PREFIX}.{source}.{self.session_id}")

    def default_output_path(self) -> str:
        return f"{OUTPUT_PREFIX}.{self.session_id}"


class SessionController:
    """
    Runs one dmerge session: captures the kernel log and operator input until
    interrupted, merges the two captured logs into the output file, and
    removes the intermediate logs.

    If capture or merge fails, the intermediate logs (and any partial output)
    are removed before the error is raised.
    """
    def __init__(
            self,
            session: CaptureSession,
            facility: LogFacility,
            *,
            output: Optional[str] = None,
            tmpdir: Optional[str] = None,
            stdin: Optional[TextIO] = None,
            echo: Optional[RecordEcho] = None,
            encoding: str = "utf-8",
            policy: CorruptLinePolicy = CorruptLinePolicy.TRUNCATE,
            keep_temp: bool = False,
            broadcast: Optional[CancellationBroadcast] = None,
    ):
        self.session = session
        self.facility = facility
        self.stdin = stdin
        self.encoding = encoding
        self.policy = policy
        self.keep_temp = keep_temp

        if echo is None and session.echo_enabled:
            echo = RecordEcho()
        self.echo = echo if session.echo_enabled else None

        tmpdir = tmpdir or tempfile.gettempdir()
        self.kernel_log_path = session.temp_log_path(tmpdir, KernelLogCapture.source_name)
        self.input_log_path = session.temp_log_path(tmpdir, InteractiveCapture.source_name)
        self.output_path = output or session.default_output_path()

        self.broadcast = broadcast or CancellationBroadcast()
        self.capture_stats: list[CaptureStats] = []
        self.merge_stats: Optional[MergeStats] = None

    def run(self) -> str:
        install_handler = threading.current_thread() is threading.main_thread()
        if install_handler:
            self.broadcast.install()

        succeeded = False
        try:
            self.capture()
            self.merge()
            succeeded = True
        finally:
            if install_handler:
                self.broadcast.uninstall()
            if not succeeded or not self.keep_temp:
                self.cleanup()
            else:
                logger.info("Keeping intermediate logs %s and %s", self.kernel_log_path, self.input_log_path)

        logger.info("Merged log written to %s", self.output_path)
        return self.output_path

    def capture(self) -> None:
        tasks: list[CaptureTask] = [
            KernelLogCapture(
                self.kernel_log_path,
                self.broadcast.subscribe(),
                self.facility,
                start_instant=self.session.start_instant,
                full=self.session.full_mode,
                echo=self.echo,
                encoding=self.encoding,
            ),
            InteractiveCapture(
                self.input_log_path,
                self.broadcast.subscribe(),
                stream=self.stdin,
                echo=self.echo,
                encoding=self.encoding,
            ),
        ]

        logger.info(
            "Session %s: capturing kernel log to %s and input to %s",
            self.session.session_id, self.kernel_log_path, self.input_log_path,
        )
        for task in tasks:
            task.start()
        self._wait_for(tasks)

        self.capture_stats = [task.stats for task in tasks]
        for task in tasks:
            if task.error is not None:
                raise task.error

    def _wait_for(self, tasks: list[CaptureTask]) -> None:
        # join with a timeout, so the main thread keeps handling SIGINT
        while any(task.is_alive() for task in tasks):
            for task in tasks:
                task.join(timeout=JOIN_POLL_SECONDS)
                if task.error is not None and not self.broadcast.cancelled:
                    logger.error("%s capture failed, stopping session", task.source_name)
                    self.broadcast.cancel()

    def merge(self) -> MergeStats:
        output_existed = os.path.exists(self.output_path)
        try:
            self.merge_stats = merge_log_files(
                self.kernel_log_path,
                self.input_log_path,
                self.output_path,
                labels=(KernelLogCapture.source_name, InteractiveCapture.source_name),
                encoding=self.encoding,
                policy=self.policy,
            )
        except Exception:
            if not output_existed:
                self._remove(self.output_path)
            raise
        return self.merge_stats

    def cleanup(self) -> None:
        for path in (self.kernel_log_path, self.input_log_path):
            self._remove(path)

    @staticmethod
    def _remove(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as ose:
            logger.warning("Could not remove %s: %s", path, ose.strerror)
        else:
            logger.debug("Removed %s", path)

    def summary_table(self) -> lt.Table:
        summary = lt.Table(f"dmerge session {self.session.session_id}")
        merged = self.merge_stats.emitted if self.merge_stats is not None else {}
        summary.insert_many(
            {
                "source": stats.source,
                "received": stats.received,
                "written": stats.written,
                "dropped": stats.dropped,
                "filtered": stats.filtered,
                "merged": merged.get(stats.source, 0),
            }
            for stats in self.capture_stats
        )
        return summary
