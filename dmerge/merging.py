from __future__ import annotations

from collections.abc import Generator, Iterable, Iterator
from dataclasses import dataclass, field
import enum
import logging
from typing import Union

from .errors import LogIOError, TimestampParseError
from .file_reading import FileReader
from .timestamp_wrapper import LogRecord, split_timestamped_line

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HasNext:
    record: LogRecord
    line: str


@dataclass(frozen=True)
class Exhausted:
    pass


@dataclass(frozen=True)
class Corrupt:
    line: str


SourceState = Union[HasNext, Exhausted, Corrupt]


class CorruptLinePolicy(enum.Enum):
    # stop ordering a source at its first line without a valid timestamp
    TRUNCATE = "truncate"
    # emit the line right after its predecessor and keep ordering the source
    ATTACH = "attach"


@dataclass
class MergeStats:
    emitted: dict[str, int] = field(default_factory=dict)
    corrupt: dict[str, int] = field(default_factory=dict)


class Merger:
    """
    Two-way streaming merge of timestamp-prefixed log lines.

    Iterating a Merger yields (label, line) tuples, taking lines from `seq_a`
    and `seq_b` in timestamp order while holding only one pending line per
    source. When both pending lines have the same timestamp, the line from
    `seq_b` is emitted first.

    A line whose timestamp cannot be parsed is handled according to `policy`:

    - TRUNCATE: the source stops taking part in the ordered merge. The other
      source is drained, then the unparseable line and everything after it are
      appended in file order.
    - ATTACH: the line is emitted right after the line before it in the same
      source, and merging continues with the following line.

    No line is ever dropped or repeated, and lines from the same source are
    always emitted in their original order.
    """
    def __init__(
            self,
            seq_a: Iterable[str],
            seq_b: Iterable[str],
            *,
            labels: tuple[str, str] = ("a", "b"),
            policy: CorruptLinePolicy = CorruptLinePolicy.TRUNCATE,
    ):
        self.label_a, self.label_b = labels
        self.policy = policy
        self.stats = MergeStats(
            emitted={}.fromkeys(labels, 0),
            corrupt={}.fromkeys(labels, 0),
        )
        self._iter_a = iter(seq_a)
        self._iter_b = iter(seq_b)
        self._merged = self._merge()

    def __iter__(self):
        return self

    def __next__(self) -> tuple[str, str]:
        return next(self._merged)

    def _emit(self, label: str, line: str) -> tuple[str, str]:
        self.stats.emitted[label] += 1
        return label, line

    @staticmethod
    def _read_state(line_iter: Iterator[str]) -> SourceState:
        try:
            line = next(line_iter)
        except StopIteration:
            return Exhausted()
        try:
            return HasNext(split_timestamped_line(line), line)
        except TimestampParseError:
            return Corrupt(line)

    def _advance(
            self, label: str, line_iter: Iterator[str]
    ) -> Generator[tuple[str, str], None, SourceState]:
        state = self._read_state(line_iter)
        while isinstance(state, Corrupt):
            self.stats.corrupt[label] += 1
            if self.policy is not CorruptLinePolicy.ATTACH:
                break
            yield self._emit(label, state.line)
            state = self._read_state(line_iter)
        return state

    def _drain(
            self, label: str, state: SourceState, line_iter: Iterator[str]
    ) -> Generator[tuple[str, str], None, None]:
        if isinstance(state, Exhausted):
            return
        yield self._emit(label, state.line)
        for line in line_iter:
            yield self._emit(label, line)

    def _merge(self) -> Generator[tuple[str, str], None, None]:
        state_a = yield from self._advance(self.label_a, self._iter_a)
        state_b = yield from self._advance(self.label_b, self._iter_b)

        while isinstance(state_a, HasNext) and isinstance(state_b, HasNext):
            if state_a.record.timestamp < state_b.record.timestamp:
                yield self._emit(self.label_a, state_a.line)
                state_a = yield from self._advance(self.label_a, self._iter_a)
            else:
                yield self._emit(self.label_b, state_b.line)
                state_b = yield from self._advance(self.label_b, self._iter_b)

        # whichever source is still ordered gets drained first, then the
        # remainder of any source that stopped on a corrupt line
        if isinstance(state_b, HasNext):
            yield from self._drain(self.label_b, state_b, self._iter_b)
            yield from self._drain(self.label_a, state_a, self._iter_a)
        else:
            yield from self._drain(self.label_a, state_a, self._iter_a)
            yield from self._drain(self.label_b, state_b, self._iter_b)


def merge_log_files(
        source_a: str,
        source_b: str,
        output: str,
        *,
        labels: tuple[str, str] = ("a", "b"),
        encoding: str = "utf-8",
        policy: CorruptLinePolicy = CorruptLinePolicy.TRUNCATE,
) -> MergeStats:
    """
    Merge two timestamped log files into `output`, in timestamp order.

    Both inputs are opened before the output file is created, so a missing
    input never leaves an empty output behind. The inputs are not modified.
    """
    readers: list[FileReader] = []
    try:
        for fname in (source_a, source_b):
            readers.append(FileReader.get_reader(fname, encoding))
    except OSError as ose:
        for reader in readers:
            reader.close()
        raise LogIOError(f"cannot open log {ose.filename}: {ose.strerror}") from ose

    reader_a, reader_b = readers
    with reader_a, reader_b:
        merger = Merger(reader_a, reader_b, labels=labels, policy=policy)
        try:
            with open(output, "w", encoding=encoding) as out_file:
                for _, line in merger:
                    out_file.write(line)
                    out_file.write("\n")
        except OSError as ose:
            raise LogIOError(f"merge into {output} failed: {ose.strerror}") from ose

    for label in labels:
        logger.info(
            "merged %d %s lines (%d without a valid timestamp)",
            merger.stats.emitted[label], label, merger.stats.corrupt[label],
        )
    return merger.stats


if __name__ == '__main__':
    kernel_lines = [
        "2024-01-01T00:00:01.000000+0000 sys-a",
    ]
    input_lines = [
        "2024-01-01T00:00:00.000000+0000 in-b",
        "2024-01-01T00:00:02.000000+0000 in-c",
    ]
    for label, line in Merger(kernel_lines, input_lines, labels=("kernel", "input")):
        print(f"{label:6} | {line}")
