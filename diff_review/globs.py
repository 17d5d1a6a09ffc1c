"""Glob-to-regex translation for path matching."""

from __future__ import annotations

import re
from functools import lru_cache

_GLOBSTAR = "\x00GLOBSTAR\x00"
_STAR = "\x00STAR\x00"
_QMARK = "\x00QMARK\x00"


def glob_match(pattern: str, path: str) -> bool:
    """Anchored match where ``**`` spans directories and ``*`` stays in one segment."""
    return _compile_globstar(_normalize(pattern)).match(_normalize(path)) is not None


def fnmatch_pathname(pattern: str, path: str) -> bool:
    """Shell-style match where no wildcard crosses a ``/`` separator."""
    return _compile_pathname(_normalize(pattern)).match(_normalize(path)) is not None


def _normalize(value: str) -> str:
    return value.replace("\\", "/")


@lru_cache(maxsize=256)
def _compile_globstar(pattern: str) -> re.Pattern[str]:
    # Placeholders go in before escaping so user text never reaches the regex unescaped.
    marked = pattern.replace("**", _GLOBSTAR).replace("*", _STAR).replace("?", _QMARK)
    escaped = re.escape(marked)
    translated = (
        escaped.replace(re.escape(_GLOBSTAR), ".*")
        .replace(re.escape(_STAR), "[^/]*")
        .replace(re.escape(_QMARK), ".")
    )
    return re.compile(f"^{translated}$", re.DOTALL)


@lru_cache(maxsize=256)
def _compile_pathname(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    index = 0
    length = len(pattern)
    while index < length:
        char = pattern[index]
        index += 1
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "[":
            end = _bracket_end(pattern, index)
            if end < 0:
                parts.append(re.escape(char))
                continue
            body = pattern[index:end]
            index = end + 1
            negate = body[:1] in {"!", "^"}
            if negate:
                body = body[1:]
            body = body.replace("\\", "\\\\")
            parts.append(f"[^/{body}]" if negate else f"[{body}]")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def _bracket_end(pattern: str, start: int) -> int:
    index = start
    if index < len(pattern) and pattern[index] in {"!", "^"}:
        index += 1
    if index < len(pattern) and pattern[index] == "]":
        index += 1
    return pattern.find("]", index)
