from __future__ import annotations

from datetime import datetime
from typing import NamedTuple

from .errors import TimestampParseError

# journald short-iso-precise: 2021-09-17T07:24:29.446013+0000
# dmesg --time-format iso:    2021-09-17T07:24:23,364133+00:00
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"


class LogRecord(NamedTuple):
    timestamp: datetime
    message: str

    def format(self) -> str:
        return f"{format_timestamp(self.timestamp)} {self.message}"


def parse_timestamp(token: str | None) -> datetime:
    """
    Convert a leading timestamp token into an offset-aware datetime.

    Either "." or "," may be used as the decimal separator for the fractional
    seconds, and the UTC offset may be given as +HHMM, +HH:MM or Z. Tokens
    without an offset are rejected, since they cannot be placed on an
    absolute timeline.
    """
    if not token:
        raise TimestampParseError("no timestamp token")

    try:
        return datetime.strptime(token.replace(",", "."), TIMESTAMP_FORMAT)
    except ValueError as ve:
        raise TimestampParseError(f"invalid timestamp {token!r}") from ve


def format_timestamp(dt: datetime) -> str:
    return dt.strftime(TIMESTAMP_FORMAT)


def split_timestamped_line(line: str) -> LogRecord:
    """
    Split a "<timestamp> <message>" line into a LogRecord, raising
    TimestampParseError if the line does not start with a valid timestamp.
    """
    line = line.rstrip("\r\n")
    token, _, message = line.partition(" ")
    return LogRecord(parse_timestamp(token), message)


def now() -> datetime:
    # local wall clock, with the local UTC offset attached
    return datetime.now().astimezone()


if __name__ == '__main__':
    for s in [
        "2021-09-17T07:24:29.446013+0000 myhost kernel: usb 1-1: new device",
        "2021-09-17T07:24:23,364133+00:00 usb 1-1: new device",
        "-- Journal begins at Mon 2021-09-13 --",
    ]:
        try:
            print(split_timestamped_line(s))
        except TimestampParseError as tpe:
            print(tpe)
