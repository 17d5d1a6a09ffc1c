"""Provider-aware token estimation and budget enforcement."""

from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Mapping
from typing import Any

from diff_review.diff_parser import LINE_SPLIT_RE

DEFAULT_DIFF_TOKEN_LIMIT = 8000
DEFAULT_PER_FILE_TOKEN_CAP = 2000
DEFAULT_OVERFLOW_STRATEGY = "trim"
DEFAULT_PROVIDER = "openai"

OVERFLOW_STRATEGIES = frozenset({"trim", "keep"})

# Approximate tokens per character for each provider family.
PROVIDER_MULTIPLIERS = {
    "openai": 0.30,
    "anthropic": 0.28,
    "gemini": 0.32,
    "ollama": 0.30,
    "mock": 0.25,
}
FALLBACK_MULTIPLIER = 0.30
MAX_COMPLEXITY_MULTIPLIER = 1.5

COMPRESSION_MARKER = "... [content truncated for token budget] ..."

_CODE_START_RE = re.compile(r"^(\+|-|@@|\s*(class|function|interface|namespace))")
_SYMBOL_RE = re.compile(r"[{}();,\[\]<>]")
_BLANK_RE = re.compile(r"^\s*$")
_INLINE_BLOCK_COMMENT_LINE_RE = re.compile(r"^\+.*/\*.*\*/")
_INLINE_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/")

_TRIVIAL_LINE_RES = (
    re.compile(r"^\+\s*$"),
    re.compile(r"^\+\s*(//|#)\s*(TODO|FIXME|XXX)"),
    re.compile(r"^\+\s*use\s+"),
    re.compile(r"^\+\s*\*\s*@"),
)

_HEADER_LINE_RE = re.compile(r"^(diff --git|@@|\+\+\+|---|\\ No newline)")
_CHANGED_LINE_RE = re.compile(r"^[+-]")
_DECLARATION_RE = re.compile(
    r"^\s*(class|interface|trait|function|public|private|protected|namespace|use)"
)
_COMMENT_RE = re.compile(r"^\s*(//|/\*|\*|#)")


class TokenBudget:
    """Estimate token cost of diff text and keep review input within caps.

    Estimates are a UTF-8 byte-count heuristic scaled per provider and by a
    content-complexity factor. Results are memoized per instance, keyed by
    a content hash; build one budget per review run.
    """

    def __init__(
        self,
        global_cap: int,
        per_file_cap: int,
        overflow_strategy: str = DEFAULT_OVERFLOW_STRATEGY,
        provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self.global_cap = global_cap
        self.per_file_cap = per_file_cap
        self.overflow_strategy = overflow_strategy
        self.provider = provider.lower()
        self._token_cache: dict[str, int] = {}

    @classmethod
    def from_context(cls, context: Mapping[str, Any]) -> TokenBudget:
        return cls(
            int(context.get("diff_token_limit", DEFAULT_DIFF_TOKEN_LIMIT)),
            int(context.get("per_file_token_cap", DEFAULT_PER_FILE_TOKEN_CAP)),
            str(context.get("overflow_strategy", DEFAULT_OVERFLOW_STRATEGY)),
            str(context.get("provider", DEFAULT_PROVIDER)),
        )

    @property
    def max_tokens_per_file(self) -> int:
        return self.per_file_cap

    def estimate_tokens(self, text: str) -> int:
        key = hashlib.md5(text.encode("utf-8"), usedforsecurity=False).hexdigest()
        cached = self._token_cache.get(key)
        if cached is not None:
            return cached
        tokens = self._calculate_tokens(text)
        self._token_cache[key] = tokens
        return tokens

    def should_stop(self, used_tokens: int, incoming_tokens: int) -> bool:
        if used_tokens + incoming_tokens > self.global_cap:
            return self.overflow_strategy == "trim"
        return False

    def remaining_budget(self, used_tokens: int) -> int:
        return max(0, self.global_cap - used_tokens)

    def enforce_per_file_cap(self, content: str) -> str:
        if self.estimate_tokens(content) <= self.per_file_cap:
            return content
        return self._smart_truncate(content)

    def compress_diff(self, diff: str, max_tokens: int) -> str:
        """Drop blank lines and inline block comments, then cut at ``max_tokens``."""
        compressed: list[str] = []
        token_count = 0

        for line in LINE_SPLIT_RE.split(diff):
            if _BLANK_RE.match(line):
                continue

            if _INLINE_BLOCK_COMMENT_LINE_RE.match(line):
                line = _INLINE_BLOCK_COMMENT_RE.sub("/* ... */", line)

            line_tokens = self._calculate_tokens(line)
            if token_count + line_tokens > max_tokens:
                compressed.append(COMPRESSION_MARKER)
                break

            compressed.append(line)
            token_count += line_tokens

        return "\n".join(compressed)

    def filter_trivial_changes(self, diff: str) -> str:
        """Remove added lines that carry no review value; everything else is kept."""
        return "\n".join(
            line
            for line in diff.split("\n")
            if not any(pattern.match(line) for pattern in _TRIVIAL_LINE_RES)
        )

    def cache_stats(self) -> dict[str, Any]:
        return {"cache_size": len(self._token_cache), "provider": self.provider}

    def clear_cache(self) -> None:
        self._token_cache.clear()

    def _calculate_tokens(self, text: str) -> int:
        base = PROVIDER_MULTIPLIERS.get(self.provider, FALLBACK_MULTIPLIER)
        multiplier = base * _complexity_multiplier(text)
        return math.ceil(_byte_length(text) * multiplier)

    def _smart_truncate(self, content: str) -> str:
        important: list[str] = []
        context: list[str] = []
        for line in content.split("\n"):
            priority = line_priority(line)
            if priority >= 3:
                important.append(line)
            elif priority == 2:
                context.append(line)

        result = "\n".join(important)
        result_tokens = self.estimate_tokens(result)

        for line in context:
            candidate = f"{result}\n{line}" if result else line
            candidate_tokens = self.estimate_tokens(candidate)
            if candidate_tokens > self.per_file_cap:
                break
            result = candidate
            result_tokens = candidate_tokens

        while result_tokens > self.per_file_cap:
            target_length = int(len(result) * (self.per_file_cap / result_tokens))
            result = result[: min(target_length, len(result) - 1)]
            result_tokens = self.estimate_tokens(result)

        return result


def line_priority(line: str) -> int:
    """Rank a diff line for truncation: 4 headers, 3 changes/declarations, 2 comments."""
    stripped = line.strip()
    if _HEADER_LINE_RE.match(stripped):
        return 4
    if _CHANGED_LINE_RE.match(stripped):
        return 3
    if _DECLARATION_RE.match(stripped):
        return 3
    if _COMMENT_RE.match(stripped):
        return 2
    if stripped:
        return 1
    return 0


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def _complexity_multiplier(text: str) -> float:
    length = max(1, _byte_length(text))
    multiplier = 1.0

    if _CODE_START_RE.match(text):
        multiplier += 0.1

    if len(_SYMBOL_RE.findall(text)) / length > 0.05:
        multiplier += 0.1

    whitespace = text.count(" ") + text.count("\t") + text.count("\n")
    if whitespace / length > 0.3:
        multiplier += 0.05

    return min(multiplier, MAX_COMPLEXITY_MULTIPLIER)
