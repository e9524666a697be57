class DmergeError(Exception):
    """Base class for errors reported to the operator."""


class SourceUnavailable(DmergeError):
    """
    The kernel log facility could not be started, or refused access.
    """
    def __init__(self, facility: str, reason: str):
        self.facility = facility
        self.reason = reason.strip()
        super().__init__(f"cannot capture from {facility}: {self.reason or 'unknown error'}")


class LogIOError(DmergeError):
    """Failure creating, reading or writing an intermediate log or the merged output."""


class TimestampParseError(ValueError):
    pass
