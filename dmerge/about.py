text = r"""
# dmerge

The `dmerge` utility records the kernel log together with notes that you type while you work, and
merges both into one file in timestamp order. It is helpful when reproducing a problem on a live
system: type what you are doing ("plugged in the dock", "resumed from suspend") and later read your
notes next to the kernel messages they caused.

While `dmerge` runs, two streams are captured at the same time:

| Stream     | Source                                                | Timestamp                          |
|------------|-------------------------------------------------------|------------------------------------|
| kernel     | `journalctl -k -f` (or `dmesg -w` with `--dmesg`)     | taken from the kernel log line     |
| input      | lines typed on standard input                         | time the line was entered          |

Press Ctrl-C to stop capturing. The two streams are then merged and written to the output file.


## Command line options

| Option                              | Description                                                              |
|-------------------------------------|--------------------------------------------------------------------------|
| --full, -f                          | include the full kernel log, not just events since `dmerge` started       |
| --output, -o                        | output file name (default: generated `dmerged.<session>` file)           |
| --console-off, -c, --mute, -m       | do not echo captured lines to the console                                |
| --dmesg, -d, --use-alternate-source | read the kernel log with `dmesg` instead of `journalctl`                 |
| --source-command                    | follow the output of any command whose lines start with an ISO timestamp |
| --merge KERNEL_LOG INPUT_LOG        | merge two existing timestamped logs (plain text or `.gz`) and exit       |
| --on-corrupt truncate/attach        | how to merge lines without a valid timestamp                             |
| --keep-temp                         | keep the intermediate capture logs                                       |
| --tmpdir                            | directory for intermediate logs (default: `$DMERGE_TMPDIR` or system temp dir) |
| --encoding, -enc                    | text encoding of log files (default: UTF-8)                              |
| --verbose, -v                       | show debug logging                                                       |


## Output format

Each line of the merged output is

    2024-01-01T08:00:01.000000+0000 message

with microsecond precision and a numeric UTC offset. `journalctl` and `dmesg` disagree on the decimal
separator (`.` vs `,`) and the offset format (`+0000` vs `+00:00`); both are accepted and written in the
single format above. When two lines have the same timestamp, the typed input line comes first.


## Usage tips

### Permissions

Reading the kernel log with `journalctl` or `dmesg` may require root or membership in the
`systemd-journal`/`adm` group. If the kernel log cannot be read, `dmerge` exits with an error
and does not leave any files behind.

### Lines without timestamps

Kernel log lines that do not start with a timestamp (such as journalctl's `-- Journal begins --`
banner) are not captured. When merging existing logs with `--merge`, a line without a timestamp
stops the time ordering of its file (`--on-corrupt truncate`): the rest of that file is appended after
the other file. With `--on-corrupt attach`, the line is kept right after the line before it.


## About dmerge

dmerge version 0.3.0

MIT License
"""  # noqa
