"""Block replacement engine for the replace_block_verified tool.

The edit target is located by two literal markers: a start marker that must
be unique in the file, and an end marker whose last occurrence after the
start marker closes the block. Before anything is rewritten, the text around
the markers is checked against the caller's expected context using tiered
whitespace-tolerant matching.
"""

from __future__ import annotations

import json

from .errors import ContextMismatchError, MarkerNotFoundError, MarkerNotUniqueError

SNIPPET_SLACK = 20


def _quote(s: str) -> str:
    return json.dumps(s, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Fuzzy context matching
# ---------------------------------------------------------------------------


def _suffix_tiers(actual: str, expected: str):
    yield lambda: actual.endswith(expected)
    yield lambda: actual.rstrip().endswith(expected.rstrip())
    yield lambda: bool(expected.strip()) and actual.strip().endswith(expected.strip())


def _prefix_tiers(actual: str, expected: str):
    yield lambda: actual.startswith(expected)
    yield lambda: actual.lstrip().startswith(expected.lstrip())
    yield lambda: bool(expected.strip()) and actual.strip().startswith(expected.strip())


def fuzzy_ends_with(actual: str, expected: str) -> bool:
    """True if actual ends with expected, tolerating surrounding whitespace.

    Tiers, most strict first:
      1. exact suffix
      2. trailing whitespace stripped from both sides
      3. both strings fully stripped (expected must stay non-empty)
    """
    return any(tier() for tier in _suffix_tiers(actual, expected))


def fuzzy_starts_with(actual: str, expected: str) -> bool:
    """Mirror of fuzzy_ends_with for prefixes (leading whitespace in tier 2)."""
    return any(tier() for tier in _prefix_tiers(actual, expected))


# ---------------------------------------------------------------------------
# Marker location
# ---------------------------------------------------------------------------


def find_all(haystack: str, needle: str, start: int = 0) -> list[int]:
    """Offsets of non-overlapping occurrences of needle, left to right."""
    positions = []
    i = haystack.find(needle, start)
    while i != -1:
        positions.append(i)
        i = haystack.find(needle, i + len(needle))
    return positions


def locate_block(
    content: str, start_marker: str, end_marker: str, path: str = "file"
) -> tuple[int, int]:
    """Return (start_idx, end_idx) of the start marker and the selected end marker.

    Raises MarkerNotFoundError / MarkerNotUniqueError.
    """
    starts = find_all(content, start_marker)
    if not starts:
        raise MarkerNotFoundError(
            f"Start marker not found in {path}: {_quote(start_marker)}"
        )
    if len(starts) > 1:
        raise MarkerNotUniqueError(
            f"Start marker is not unique in {path}: found {len(starts)} occurrences "
            f"of {_quote(start_marker)}. Use a longer, distinctive start marker."
        )
    start_idx = starts[0]
    after_start = start_idx + len(start_marker)

    ends = find_all(content, end_marker, after_start)
    if not ends:
        raise MarkerNotFoundError(
            f"End marker not found after start marker in {path}: {_quote(end_marker)}"
        )
    # Last match wins so the end marker may recur inside the block.
    return start_idx, ends[-1]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def replace_block(
    content: str,
    start_marker: str,
    end_marker: str,
    pre_context: str,
    post_context: str,
    new_content: str,
    path: str = "file",
) -> str:
    """Replace the text between start_marker and end_marker with new_content.

    Both markers are kept; only the text strictly between them changes.
    Raises ValueError for empty markers, AmbiguousMarkerError subclasses when
    the markers don't resolve, ContextMismatchError when the surrounding text
    doesn't match pre_context / post_context.
    """
    if not start_marker:
        raise ValueError("start_marker must not be empty")
    if not end_marker:
        raise ValueError("end_marker must not be empty")

    start_idx, end_idx = locate_block(content, start_marker, end_marker, path)
    block_start = start_idx + len(start_marker)
    after_end = end_idx + len(end_marker)

    before = content[:start_idx]
    if not fuzzy_ends_with(before, pre_context):
        found = before[-(len(pre_context) + SNIPPET_SLACK) :]
        raise ContextMismatchError(
            f"Pre-marker context mismatch in {path}: expected {_quote(pre_context)} "
            f"before marker {_quote(start_marker)}, found {_quote(found)}",
            side="pre",
        )

    after = content[after_end:]
    if not fuzzy_starts_with(after, post_context):
        found = after[: len(post_context) + SNIPPET_SLACK]
        raise ContextMismatchError(
            f"Post-marker context mismatch in {path}: expected {_quote(post_context)} "
            f"after marker {_quote(end_marker)}, found {_quote(found)}",
            side="post",
        )

    return content[:block_start] + new_content + content[end_idx:]
