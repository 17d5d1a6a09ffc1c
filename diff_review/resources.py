"""Per-run ownership of temporary files."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from types import TracebackType


class ResourceScope:
    """Context manager that removes the temporary files it created on exit.

    >>> with ResourceScope() as scope:
    ...     path = scope.write_temp_file("diff --git a/x b/x\\n")
    """

    def __init__(self, prefix: str = "diff-review-") -> None:
        self._prefix = prefix
        self._paths: list[Path] = []

    def __enter__(self) -> ResourceScope:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    def write_temp_file(self, content: str, suffix: str = ".diff") -> Path:
        fd, name = tempfile.mkstemp(prefix=self._prefix, suffix=suffix)
        path = Path(name)
        self._paths.append(path)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        return path

    def close(self) -> None:
        while self._paths:
            self._paths.pop().unlink(missing_ok=True)
