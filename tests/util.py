from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def contains_list(full_list, sub_list) -> bool:
    sub_len = len(sub_list)
    for offset in range(len(full_list) - len(sub_list) + 1):
        if full_list[offset:offset + sub_len] == sub_list:
            return True
    return False


def ts(seconds: float, base: datetime = BASE_TIME) -> str:
    return (base + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%S.%f%z")


def log_line(seconds: float, message: str) -> str:
    return f"{ts(seconds)} {message}"


def write_log(path: Path, lines: list[str]) -> str:
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return str(path)


def read_log(path) -> list[str]:
    return Path(path).read_text(encoding="utf-8").splitlines()


def read_raw_lines(path) -> list[str]:
    """Lines split on "\\n" only, so a "\\r" inside a message is kept"""
    text = Path(path).read_bytes().decode("utf-8")
    return text.split("\n")[:-1]


def python_command(script: str) -> list[str]:
    """Command line that runs `script` with the current interpreter"""
    return [sys.executable, "-c", script]


def printing_command(lines: list[str]) -> list[str]:
    return python_command(
        "import sys\n"
        f"for line in {lines!r}:\n"
        "    print(line)\n"
        "sys.stdout.flush()\n"
    )


class StepClock:
    """Returns BASE_TIME, then BASE_TIME + step, BASE_TIME + 2*step, ..."""
    def __init__(self, step: float = 1.0, base: datetime = BASE_TIME):
        self.step = timedelta(seconds=step)
        self.current = base - self.step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


if __name__ == '__main__':
    assert(contains_list([1,2,3,4], [3,4]))
    assert(contains_list([1,2,3,4], [1,2,3,4]))
    assert(contains_list([1,2,3,4], [1,]))
    assert(contains_list([1,2,3,4], []))

    assert(not contains_list([1,2,3,4], [1,2,3,4,5]))
    assert(not contains_list([1,2,3,4], [2,2,3,4]))
    assert ts(1.5) == "2024-01-01T00:00:01.500000+0000"
