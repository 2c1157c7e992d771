"""
Line-level diffing between two captured versions of a document.

Everything here is pure: no I/O, no database. Outputs are plain dicts and
lists so they can be stored as JSON on a VersionComparison row.
"""
import difflib
import html
import logging
import re
from typing import Any, Dict, List, Optional

from policywatch.config import settings

logger = logging.getLogger(__name__)

UNCHANGED = "unchanged"
ADDED = "added"
REMOVED = "removed"
COLLAPSED = "collapsed"

# Character-level matching is quadratic; above this product we anchor on lines first.
_CHAR_MATCH_LIMIT = 4_000_000

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n+")


# ---------------------------------------------------------------------------
# LCS line diff
# ---------------------------------------------------------------------------

def compute_line_diff(old_lines: List[str], new_lines: List[str]) -> List[Dict[str, Any]]:
    """
    Classic O(m*n) longest-common-subsequence diff over lines.

    Lines are compared after stripping surrounding whitespace. Returns entries
    in document order, each ``{type, old_line, new_line, content}`` with
    1-based line numbers (None on the side the line does not exist).
    """
    m, n = len(old_lines), len(new_lines)
    if m * n > settings.DIFF_MAX_LINE_PRODUCT:
        raise ValueError(
            f"Diff input too large ({m} x {n} lines). Cap document length before diffing."
        )

    old_keys = [line.strip() for line in old_lines]
    new_keys = [line.strip() for line in new_lines]

    lcs = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        row, prev_row = lcs[i], lcs[i - 1]
        old_key = old_keys[i - 1]
        for j in range(1, n + 1):
            if old_key == new_keys[j - 1]:
                row[j] = prev_row[j - 1] + 1
            else:
                row[j] = row[j - 1] if row[j - 1] >= prev_row[j] else prev_row[j]

    entries: List[Dict[str, Any]] = []
    i, j = m, n
    while i > 0 or j > 0:
        if i > 0 and j > 0 and old_keys[i - 1] == new_keys[j - 1]:
            entries.append({"type": UNCHANGED, "old_line": i, "new_line": j, "content": new_lines[j - 1]})
            i -= 1
            j -= 1
        elif j > 0 and (i == 0 or lcs[i][j - 1] >= lcs[i - 1][j]):
            entries.append({"type": ADDED, "old_line": None, "new_line": j, "content": new_lines[j - 1]})
            j -= 1
        else:
            entries.append({"type": REMOVED, "old_line": i, "new_line": None, "content": old_lines[i - 1]})
            i -= 1

    entries.reverse()
    return entries


def group_into_blocks(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Group consecutive entries of the same type into blocks."""
    blocks: List[Dict[str, Any]] = []
    for entry in entries:
        if blocks and blocks[-1]["type"] == entry["type"]:
            blocks[-1]["lines"].append(entry)
            continue
        blocks.append({
            "type": entry["type"],
            "lines": [entry],
            "start_old_line": entry["old_line"],
            "start_new_line": entry["new_line"],
        })
    return blocks


def _sub_block(lines: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "type": UNCHANGED,
        "lines": lines,
        "start_old_line": lines[0]["old_line"],
        "start_new_line": lines[0]["new_line"],
    }


def collapse_unchanged(blocks: List[Dict[str, Any]], context: int = 3) -> List[Dict[str, Any]]:
    """
    Replace long unchanged runs with a ``collapsed`` marker.

    An unchanged block longer than ``2*context + 3`` lines keeps ``context``
    lines next to each neighbouring change block; everything in between is
    reported as ``{"type": "collapsed", "skipped_lines": n}``.
    """
    threshold = 2 * context + 3
    result: List[Dict[str, Any]] = []

    for idx, block in enumerate(blocks):
        lines = block["lines"]
        if block["type"] != UNCHANGED or len(lines) <= threshold:
            result.append(block)
            continue

        prev_is_change = idx > 0 and blocks[idx - 1]["type"] != UNCHANGED
        next_is_change = idx < len(blocks) - 1 and blocks[idx + 1]["type"] != UNCHANGED

        head = lines[:context] if prev_is_change and context > 0 else []
        tail = lines[-context:] if next_is_change and context > 0 else []
        skipped = len(lines) - len(head) - len(tail)

        if head:
            result.append(_sub_block(head))
        if skipped > 0:
            result.append({"type": COLLAPSED, "skipped_lines": skipped})
        if tail:
            result.append(_sub_block(tail))

    return result


def diff_stats(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    added = sum(1 for e in entries if e["type"] == ADDED)
    removed = sum(1 for e in entries if e["type"] == REMOVED)
    unchanged = sum(1 for e in entries if e["type"] == UNCHANGED)
    total = added + removed + unchanged
    return {
        "lines_added": added,
        "lines_removed": removed,
        "lines_unchanged": unchanged,
        "total_lines": total,
        "change_percentage": round((added + removed) / total * 100, 1) if total else 0.0,
    }


def generate_diff(old_text: str, new_text: str, context: Optional[int] = None) -> Dict[str, Any]:
    """Full structured diff: ``{"blocks": [...], "stats": {...}}``."""
    if context is None:
        context = settings.DIFF_CONTEXT_LINES
    entries = compute_line_diff((old_text or "").split("\n"), (new_text or "").split("\n"))
    blocks = collapse_unchanged(group_into_blocks(entries), context)
    return {"blocks": blocks, "stats": diff_stats(entries)}


def identify_change_chunks(blocks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Collect runs of adjacent added/removed blocks into change chunks, e.g. a
    removed paragraph immediately followed by its replacement.
    """
    chunks: List[Dict[str, Any]] = []
    current: Optional[Dict[str, Any]] = None

    for block in blocks:
        if block["type"] in (ADDED, REMOVED):
            if current is None:
                current = {
                    "removed": [],
                    "added": [],
                    "start_old_line": block.get("start_old_line"),
                    "start_new_line": block.get("start_new_line"),
                }
            key = "added" if block["type"] == ADDED else "removed"
            current[key].extend(line["content"] for line in block["lines"])
            if current["start_old_line"] is None:
                current["start_old_line"] = block.get("start_old_line")
            if current["start_new_line"] is None:
                current["start_new_line"] = block.get("start_new_line")
        elif current is not None:
            chunks.append(current)
            current = None

    if current is not None:
        chunks.append(current)

    for chunk in chunks:
        chunk["removed_text"] = "\n".join(chunk.pop("removed"))
        chunk["added_text"] = "\n".join(chunk.pop("added"))
    return chunks


# ---------------------------------------------------------------------------
# Unified diff counts, similarity, severity
# ---------------------------------------------------------------------------

def count_changes(old_text: str, new_text: str) -> Dict[str, int]:
    """
    Count added/removed lines from a unified diff. Paired add/remove lines are
    reported as modifications and subtracted from both sides.
    """
    additions = deletions = 0
    in_hunk = False
    for line in difflib.unified_diff(
        (old_text or "").splitlines(), (new_text or "").splitlines(), lineterm="", n=0
    ):
        # File headers only precede the first hunk; body lines may start with "---"
        if line.startswith("@@"):
            in_hunk = True
            continue
        if not in_hunk:
            continue
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1

    modifications = min(additions, deletions)
    return {
        "additions": additions - modifications,
        "deletions": deletions - modifications,
        "modifications": modifications,
        "total": additions + deletions - modifications,
    }


def _common_length(a: str, b: str, depth: int = 0) -> int:
    """Total length of recursively-found longest common substrings of a and b."""
    if not a or not b:
        return 0
    if len(a) * len(b) <= _CHAR_MATCH_LIMIT or depth > 0:
        matcher = difflib.SequenceMatcher(None, a, b, autojunk=depth > 0)
        return sum(block.size for block in matcher.get_matching_blocks())

    a_lines = a.splitlines(keepends=True)
    b_lines = b.splitlines(keepends=True)
    matcher = difflib.SequenceMatcher(None, a_lines, b_lines, autojunk=False)
    total = 0
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            total += sum(len(line) for line in a_lines[i1:i2])
        elif tag == "replace":
            total += _common_length("".join(a_lines[i1:i2]), "".join(b_lines[j1:j2]), depth + 1)
    return total


def calculate_similarity(old_text: str, new_text: str) -> float:
    """Character-level similarity in [0, 1], rounded to 4 places."""
    if old_text == new_text:
        return 1.0
    if not old_text or not new_text:
        return 0.0
    common = _common_length(old_text, new_text)
    return round(2.0 * common / (len(old_text) + len(new_text)), 4)


def severity_for_similarity(similarity: float) -> str:
    if similarity >= 0.95:
        return "minor"
    if similarity >= 0.80:
        return "moderate"
    if similarity >= 0.50:
        return "major"
    return "critical"


def determine_severity(old_text: str, new_text: str) -> str:
    return severity_for_similarity(calculate_similarity(old_text, new_text))


# ---------------------------------------------------------------------------
# Paragraph view and HTML rendering
# ---------------------------------------------------------------------------

def _paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT.split(text or "") if p.strip()]


def extract_changed_sections(old_text: str, new_text: str) -> List[Dict[str, str]]:
    """Paragraphs present on only one side, by exact trimmed match. Removed first."""
    old_paragraphs = _paragraphs(old_text)
    new_paragraphs = _paragraphs(new_text)
    old_set, new_set = set(old_paragraphs), set(new_paragraphs)

    changes = [{"type": "removed", "content": p} for p in old_paragraphs if p not in new_set]
    changes += [{"type": "added", "content": p} for p in new_paragraphs if p not in old_set]
    return changes


def generate_html_diff(old_text: str, new_text: str) -> str:
    rows = []
    for line in difflib.unified_diff(
        (old_text or "").splitlines(), (new_text or "").splitlines(),
        fromfile="previous", tofile="current", lineterm="",
    ):
        if line.startswith("+++") or line.startswith("---") or line.startswith("@@"):
            css = "diff-header"
        elif line.startswith("+"):
            css = "diff-add"
        elif line.startswith("-"):
            css = "diff-remove"
        else:
            css = "diff-context"
        rows.append(f'<div class="{css}">{html.escape(line)}</div>')
    return '<div class="diff">' + "\n".join(rows) + "</div>"
