"""File diff helpers: summaries, unified diff text and line classification."""

import difflib
from collections.abc import Iterable

from .core import DiffSummary, FileDiff

_META_PREFIXES = ("diff --git", "index ", "+++", "---")


def summarize_diffs(diffs: Iterable[FileDiff]) -> DiffSummary:
    """Total the per-file counters into a DiffSummary."""
    additions = deletions = files = 0
    for diff in diffs:
        additions += diff.additions
        deletions += diff.deletions
        files += 1
    return DiffSummary(additions=additions, deletions=deletions, files=files)


def format_unified_diff(diff: FileDiff) -> str:
    """Render a FileDiff as a unified diff, normalising line endings."""
    before = _normalize_line_endings(diff.before).splitlines(keepends=True)
    after = _normalize_line_endings(diff.after).splitlines(keepends=True)
    lines = list(difflib.unified_diff(before, after, fromfile=diff.file, tofile=diff.file))
    if not lines:
        # identical or empty content still gets a header
        return f"--- {diff.file}\n+++ {diff.file}\n"
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines)


def format_unified_diff_for_clipboard(diff: FileDiff) -> str:
    patch = format_unified_diff(diff)
    if not patch.strip():
        return diff.file
    return f"{diff.file}\n{patch}"


def classify_diff_line(line: str) -> str:
    """Return one of ``hunk``, ``meta``, ``add``, ``remove`` or ``context``."""
    if line.startswith("@@"):
        return "hunk"
    if line.startswith("\\") or line.startswith(_META_PREFIXES):
        return "meta"
    if line.startswith("+"):
        return "add"
    if line.startswith("-"):
        return "remove"
    return "context"


def _normalize_line_endings(value: str) -> str:
    return value.replace("\r\n", "\n").replace("\r", "\n")
