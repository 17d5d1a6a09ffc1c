"""Unified diff parser for added lines."""

from __future__ import annotations

import re
from dataclasses import dataclass

LINE_SPLIT_RE = re.compile(r"\r?\n")
TARGET_HEADER_RE = re.compile(r"^\+\+\+\s+b/(.+)$")
HUNK_HEADER_RE = re.compile(
    r"^@@\s+-\d+(?:,\d+)?\s+\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))?\s+@@"
)


@dataclass(frozen=True, slots=True)
class AddedLine:
    """A line introduced by a diff, numbered in the post-change file."""

    line: int
    content: str

    def to_dict(self) -> dict[str, int | str]:
        return {"line": self.line, "content": self.content}


def parse_added_lines(diff_text: str) -> dict[str, list[AddedLine]]:
    """Map each target file to the lines the diff adds to it.

    Files named by a ``+++ b/<path>`` header are always present in the result,
    even when the diff only deletes lines from them. Context lines do not
    advance the target line counter; only added lines do.
    """
    lines = LINE_SPLIT_RE.split(diff_text)
    last_index = len(lines) - 1
    files: dict[str, list[AddedLine]] = {}
    current_file: str | None = None
    target_line: int | None = None

    for index, raw_line in enumerate(lines):
        header = TARGET_HEADER_RE.match(raw_line)
        if header is not None:
            current_file = header.group(1)
            files.setdefault(current_file, [])
            target_line = None
            continue

        hunk = HUNK_HEADER_RE.match(raw_line)
        if hunk is not None:
            target_line = int(hunk.group("new_start"))
            continue

        if target_line is None:
            continue

        if raw_line == "" and index == last_index:
            break

        if raw_line.startswith("+"):
            if not raw_line.startswith("+++"):
                files.setdefault(current_file or "", []).append(
                    AddedLine(line=target_line, content=raw_line[1:])
                )
            target_line += 1

    return files
