"""Per-file splitting and path exclusion for unified diffs."""

from __future__ import annotations

import re
from collections.abc import Sequence

from diff_review.diff_parser import LINE_SPLIT_RE
from diff_review.globs import fnmatch_pathname

FILE_HEADER_RE = re.compile(r"^diff --git a/(.+?) b/(.+)$")
HUNK_START_RE = re.compile(r"^@@\s+-\d+(?:,\d+)?\s+\+(\d+)(?:,\d+)?\s+@@")

COMMON_DIRECTORY_NAMES = frozenset(
    {
        "vendor",
        "node_modules",
        "build",
        "dist",
        "target",
        "bin",
        "obj",
        "tmp",
        "temp",
        "cache",
        "logs",
        "var",
        "public",
        "assets",
        "lib",
        "libs",
        "deps",
        "dependencies",
        "modules",
        "packages",
        "src",
        "test",
        "tests",
        "spec",
        "specs",
        "docs",
        "doc",
        "documentation",
    }
)


class DiffProcessor:
    """Split a multi-file diff into per-file blocks and drop excluded paths."""

    def __init__(self, excludes: Sequence[str] | None = None) -> None:
        self._excludes = list(excludes or [])

    @property
    def excludes(self) -> list[str]:
        return list(self._excludes)

    def extract_file_diffs(self, full_diff: str) -> dict[str, str]:
        """Return ``{"b/<path>": block}`` for every non-excluded file, in diff order."""
        blocks: dict[str, str] = {}
        buffer: list[str] = []
        current: str | None = None

        for line in LINE_SPLIT_RE.split(full_diff):
            header = FILE_HEADER_RE.match(line)
            if header is not None:
                if current is not None:
                    blocks[current] = _finish_block(buffer)
                current = "b/" + header.group(2)
                buffer = [line]
                continue
            if current is not None:
                buffer.append(line)

        if current is not None:
            blocks[current] = _finish_block(buffer)

        return self.filter_excluded_files(blocks)

    def filter_excluded_files(self, file_diffs: dict[str, str]) -> dict[str, str]:
        if not self._excludes:
            return file_diffs
        return {
            file_key: block
            for file_key, block in file_diffs.items()
            if not self.is_excluded(file_key)
        }

    def is_excluded(self, file_path: str) -> bool:
        """True when any exclude pattern matches the path (``b/`` prefix ignored)."""
        clean_path = file_path[2:] if file_path.startswith("b/") else file_path
        return any(
            self.matches_exclude_pattern(clean_path, pattern) for pattern in self._excludes
        )

    def matches_exclude_pattern(self, file_path: str, pattern: str) -> bool:
        if pattern.endswith("/"):
            return matches_directory_pattern(file_path, pattern)

        if "." not in pattern and ("/" in pattern or pattern in COMMON_DIRECTORY_NAMES):
            if matches_directory_pattern(file_path, pattern + "/"):
                return True

        return fnmatch_pathname(pattern, file_path)

    @staticmethod
    def start_line_from_unified_diff(file_diff: str) -> int:
        """Target start line of the first hunk, or 0 when the block has no hunk."""
        for line in LINE_SPLIT_RE.split(file_diff):
            match = HUNK_START_RE.match(line)
            if match is not None:
                return int(match.group(1))
        return 0


def matches_directory_pattern(file_path: str, dir_pattern: str) -> bool:
    directory = dir_pattern.rstrip("/")
    return file_path == directory or file_path.startswith(directory + "/")


def _finish_block(lines: list[str]) -> str:
    return "\n".join(lines).rstrip() + "\n"
