import gzip
import random

import pytest

from dmerge.errors import LogIOError
from dmerge.merging import CorruptLinePolicy, Merger, merge_log_files
from dmerge.timestamp_wrapper import split_timestamped_line
from .util import contains_list, log_line, read_log, write_log


def merged_lines(seq_a, seq_b, **kwargs) -> list[str]:
    return [line for _, line in Merger(seq_a, seq_b, **kwargs)]


def test_interleaves_by_timestamp():
    a = ["2024-01-01T00:00:01.000000+0000 sys-a"]
    b = [
        "2024-01-01T00:00:00.000000+0000 in-b",
        "2024-01-01T00:00:02.000000+0000 in-c",
    ]
    result = merged_lines(a, b)
    assert [line.split(" ", 1)[1] for line in result] == ["in-b", "sys-a", "in-c"]


def test_tie_emits_b_first():
    a = [log_line(5, "from a")]
    b = [log_line(5, "from b")]
    assert merged_lines(a, b) == [log_line(5, "from b"), log_line(5, "from a")]


def test_tie_across_offsets_emits_b_first():
    a = ["2024-01-01T02:00:00.000000+0200 from a"]
    b = ["2024-01-01T00:00:00,000000+00:00 from b"]
    assert merged_lines(a, b) == [b[0], a[0]]


def test_labels_identify_source():
    a = [log_line(1, "kernel event")]
    b = [log_line(0, "typed note"), log_line(2, "another note")]
    merger = Merger(a, b, labels=("kernel", "input"))
    assert [label for label, _ in merger] == ["input", "kernel", "input"]
    assert merger.stats.emitted == {"kernel": 1, "input": 2}


@pytest.mark.parametrize(
    "a, b",
    [
        ([log_line(n, f"a{n}") for n in range(5)], []),
        ([], [log_line(n, f"b{n}") for n in range(5)]),
        ([], []),
    ]
)
def test_empty_source_yields_other_verbatim(a, b):
    assert merged_lines(a, b) == a + b


def test_corrupt_line_truncates_ordering():
    a = [
        log_line(1, "a1"),
        log_line(3, "a3"),
        "garbage without timestamp",
        log_line(4, "a4"),
    ]
    b = [
        log_line(2, "b2"),
        log_line(5, "b5"),
        log_line(6, "b6"),
    ]
    merger = Merger(a, b)
    result = [line for _, line in merger]

    # ordered until a's corrupt line, then b is drained, then a's remainder
    assert result == [
        log_line(1, "a1"),
        log_line(2, "b2"),
        log_line(3, "a3"),
        log_line(5, "b5"),
        log_line(6, "b6"),
        "garbage without timestamp",
        log_line(4, "a4"),
    ]
    assert merger.stats.corrupt == {"a": 1, "b": 0}


def test_corrupt_first_line_is_empty_for_ordering():
    a = ["not a timestamp", log_line(0, "a0")]
    b = [log_line(1, "b1"), log_line(2, "b2")]
    assert merged_lines(a, b) == b + a


def test_drained_source_passes_corrupt_lines_through():
    a = [log_line(1, "a1"), log_line(4, "a4"), "trailing junk", log_line(3, "a3")]
    b = [log_line(2, "b2")]
    # b exhausts first, a is then drained verbatim without parsing
    assert merged_lines(a, b) == [
        log_line(1, "a1"),
        log_line(2, "b2"),
        log_line(4, "a4"),
        "trailing junk",
        log_line(3, "a3"),
    ]


def test_both_sources_corrupt_appends_a_then_b():
    a = ["bad a", log_line(9, "a9")]
    b = ["bad b", log_line(8, "b8")]
    assert merged_lines(a, b) == a + b


def test_other_source_drained_raw_after_truncation():
    a = [log_line(1, "a1"), "bad a", log_line(9, "a9")]
    b = [log_line(2, "b2"), "bad b", log_line(8, "b8")]
    assert merged_lines(a, b) == [
        log_line(1, "a1"),
        log_line(2, "b2"),
        "bad b",
        log_line(8, "b8"),
        "bad a",
        log_line(9, "a9"),
    ]


def test_attach_policy_keeps_ordering():
    a = [
        log_line(1, "a1 ERROR"),
        "Traceback (most recent call last):",
        "ValueError: bad",
        log_line(4, "a4"),
    ]
    b = [log_line(0, "b0"), log_line(2, "b2"), log_line(5, "b5")]
    merger = Merger(a, b, policy=CorruptLinePolicy.ATTACH)
    result = [line for _, line in merger]
    assert result == [
        log_line(0, "b0"),
        log_line(1, "a1 ERROR"),
        "Traceback (most recent call last):",
        "ValueError: bad",
        log_line(2, "b2"),
        log_line(4, "a4"),
        log_line(5, "b5"),
    ]
    assert merger.stats.corrupt == {"a": 2, "b": 0}


def test_attach_policy_corrupt_first_line():
    a = ["header", log_line(3, "a3")]
    b = [log_line(1, "b1")]
    assert merged_lines(a, b, policy=CorruptLinePolicy.ATTACH) == [
        "header",
        log_line(1, "b1"),
        log_line(3, "a3"),
    ]


def test_merge_reads_lazily():
    pulled = []

    def source(name, count):
        for n in range(count):
            pulled.append(name)
            yield log_line(n, f"{name}{n}")

    merger = Merger(source("a", 1000), source("b", 1000))
    next(merger)
    # one line of look-ahead per source, plus the refill after the first emit
    assert len(pulled) <= 3


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_random_merge_is_ordered_and_complete(seed):
    rng = random.Random(seed)

    def random_log(name):
        seconds = sorted(rng.randint(0, 50) for _ in range(rng.randint(0, 40)))
        return [log_line(s, f"{name}-{i}") for i, s in enumerate(seconds)]

    a = random_log("a")
    b = random_log("b")
    result = merged_lines(a, b)

    timestamps = [split_timestamped_line(line).timestamp for line in result]
    assert timestamps == sorted(timestamps)
    assert sorted(result) == sorted(a + b)
    assert [line for line in result if " a-" in line] == a
    assert [line for line in result if " b-" in line] == b


def test_merge_log_files(tmp_path):
    kernel_log = write_log(tmp_path / "kernel.log", [
        log_line(1, "myhost kernel: usb 1-1: new high-speed USB device"),
        log_line(3, "myhost kernel: usb 1-1: USB disconnect"),
    ])
    input_log = write_log(tmp_path / "input.log", [
        log_line(0, "plugging in the dock"),
        log_line(2, "unplugging it"),
    ])
    output = tmp_path / "merged.log"

    stats = merge_log_files(kernel_log, input_log, str(output), labels=("kernel", "input"))

    assert read_log(output) == [
        log_line(0, "plugging in the dock"),
        log_line(1, "myhost kernel: usb 1-1: new high-speed USB device"),
        log_line(2, "unplugging it"),
        log_line(3, "myhost kernel: usb 1-1: USB disconnect"),
    ]
    assert output.read_text(encoding="utf-8").endswith("\n")
    assert stats.emitted == {"kernel": 2, "input": 2}
    # inputs are left in place
    assert read_log(kernel_log) and read_log(input_log)


def test_merge_gzipped_log(tmp_path):
    kernel_log = tmp_path / "kernel.log.gz"
    with gzip.open(kernel_log, "wt", encoding="utf-8") as gz:
        gz.write(log_line(1, "compressed kernel line") + "\n")
    input_log = write_log(tmp_path / "input.log", [log_line(0, "note"), log_line(2, "later note")])
    output = tmp_path / "merged.log"

    merge_log_files(str(kernel_log), input_log, str(output))

    assert contains_list(read_log(output), [
        log_line(0, "note"),
        log_line(1, "compressed kernel line"),
        log_line(2, "later note"),
    ])


def test_merge_missing_input_creates_no_output(tmp_path):
    input_log = write_log(tmp_path / "input.log", [log_line(0, "note")])
    output = tmp_path / "merged.log"

    with pytest.raises(LogIOError):
        merge_log_files(str(tmp_path / "missing.log"), input_log, str(output))
    assert not output.exists()


def test_merge_unwritable_output(tmp_path):
    kernel_log = write_log(tmp_path / "kernel.log", [])
    input_log = write_log(tmp_path / "input.log", [log_line(0, "note")])

    with pytest.raises(LogIOError):
        merge_log_files(kernel_log, input_log, str(tmp_path / "no-such-dir" / "merged.log"))
