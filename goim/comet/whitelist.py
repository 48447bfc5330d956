"""Debug whitelist: members whose connection steps are written to a log file."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from os import PathLike
from types import TracebackType


class Whitelist:
    """A set of member ids and the file their trace is appended to."""

    def __init__(self, mids: Iterable[int], log_path: str | PathLike[str]) -> None:
        self._file = open(log_path, "a", encoding="utf-8")
        self._mids = frozenset(mids)
        self._lock = threading.Lock()

    def contains(self, mid: int) -> bool:
        """Whether a positive member id is on the list."""
        return mid > 0 and mid in self._mids

    def log(self, message: str) -> None:
        """Append a timestamped line to the log file."""
        line = f"{time.strftime('%Y/%m/%d %H:%M:%S')} {message}"
        if not line.endswith("\n"):
            line += "\n"
        with self._lock:
            self._file.write(line)
            self._file.flush()

    def close(self) -> None:
        """Close the log file."""
        self._file.close()

    def __enter__(self) -> Whitelist:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()