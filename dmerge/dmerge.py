#
# dmerge.py
#
# Capture the kernel log and operator notes during a live session, and merge
# them into one chronologically ordered log.
#
# Copyright 2026, the dmerge developers
#

import argparse
import logging
import os
import shlex
import sys
import tempfile

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown

from .capture import RecordEcho
from .errors import DmergeError
from .log_facilities import CommandFacility, LogFacility
from .merging import CorruptLinePolicy, merge_log_files
from .session import CaptureSession, SessionController

logger = logging.getLogger(__name__)


def make_argument_parser():
    epilog_notes = """
    Type notes on standard input while dmerge runs; each line is stamped with the time
    it was entered. Press Ctrl-C to stop capturing. Both streams are then merged in
    timestamp order into the output file.
    """

    parser = argparse.ArgumentParser(prog="dmerge", epilog=epilog_notes)
    parser.add_argument(
        "--full", "-f",
        action="store_true",
        help="include the full kernel log, not just events since dmerge started"
    )
    parser.add_argument(
        "--output", "-o",
        help="write merged output to this file (defaults to a generated dmerged.<session> file)"
    )
    parser.add_argument(
        "--console-off", "-c", "--mute", "-m",
        dest="console_off",
        action="store_true",
        help="do not echo captured lines to the console"
    )
    parser.add_argument(
        "--dmesg", "-d", "--use-alternate-source",
        dest="dmesg",
        action="store_true",
        help="read the kernel log with dmesg instead of journalctl"
    )
    parser.add_argument(
        "--source-command",
        help="follow the output of this command instead of the kernel log (lines must start with an ISO timestamp)"
    )
    parser.add_argument(
        "--merge",
        nargs=2,
        metavar=("KERNEL_LOG", "INPUT_LOG"),
        help="merge two existing timestamped logs (plain text or .gz) without capturing"
    )
    parser.add_argument(
        "--on-corrupt",
        choices=[policy.value for policy in CorruptLinePolicy],
        default=CorruptLinePolicy.TRUNCATE.value,
        help="how to merge lines without a valid timestamp (default: %(default)s)"
    )
    parser.add_argument("--keep-temp", action="store_true", help="keep the intermediate capture logs")
    parser.add_argument(
        "--tmpdir",
        default=os.environ.get("DMERGE_TMPDIR", tempfile.gettempdir()),
        help="directory for intermediate capture logs (defaults to $DMERGE_TMPDIR or the system temp dir)"
    )
    parser.add_argument(
        "--encoding", "-enc",
        type=str,
        default="utf-8",
        help="encoding to use for log files (default: %(default)s)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="show debug logging")
    parser.add_argument("--about", action="store_true", help="show usage notes and exit")

    return parser


def configure_logging(verbose: bool = False) -> None:
    # diagnostics go to stderr, echoed log lines go to stdout
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


class DmergeApplication:
    def __init__(self, config: argparse.Namespace, *, stdin=None, console: Console = None):
        self.config = config
        self.stdin = stdin
        self.console = console or Console(highlight=False)

        self.session = CaptureSession.create(
            full_mode=config.full,
            echo_enabled=not config.console_off,
        )
        self.policy = CorruptLinePolicy(config.on_corrupt)
        self.encoding = config.encoding

    def make_facility(self) -> LogFacility:
        if self.config.source_command:
            return CommandFacility(shlex.split(self.config.source_command))
        return LogFacility.get_facility("dmesg" if self.config.dmesg else "journald")

    def run(self) -> str:
        if self.config.merge:
            output = self._merge_existing_logs()
        else:
            output = self._capture_and_merge()

        self._notify_result(output)
        return output

    def _capture_and_merge(self) -> str:
        controller = SessionController(
            self.session,
            self.make_facility(),
            output=self.config.output,
            tmpdir=self.config.tmpdir,
            stdin=self.stdin,
            echo=RecordEcho(self.console) if self.session.echo_enabled else None,
            encoding=self.encoding,
            policy=self.policy,
            keep_temp=self.config.keep_temp,
        )
        output = controller.run()

        if self.session.echo_enabled:
            self.console.print()
            controller.summary_table().present()
        return output

    def _merge_existing_logs(self) -> str:
        kernel_log, input_log = self.config.merge
        output = self.config.output or self.session.default_output_path()
        merge_log_files(
            kernel_log,
            input_log,
            output,
            labels=("kernel", "input"),
            encoding=self.encoding,
            policy=self.policy,
        )
        return output

    def _notify_result(self, output: str) -> None:
        # a generated file name is always reported, since the user can't know it
        if self.session.echo_enabled or not self.config.output:
            self.console.print(f"\n+ Output written to {output}", markup=False)


def main(argv=None) -> int:
    parser = make_argument_parser()
    args_ns = parser.parse_args(argv)

    if args_ns.about:
        from .about import text as about_text

        Console().print(Markdown(about_text))
        return 0

    configure_logging(args_ns.verbose)

    app = DmergeApplication(args_ns)
    try:
        app.run()
    except DmergeError as err:
        logger.error("%s", err)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
