"""
Unified diff parsing.

The parser turns raw unified diff text (``jj diff --git``, ``git diff`` or a
plain ``diff -u``) into per-file, per-hunk, per-line records. It is
best-effort: malformed hunk headers are skipped and the file is still
emitted with whatever parsed. Only a ``None`` input is rejected.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from commit_divider.core.models import (
    DiffHunk,
    DiffLine,
    DiffLineType,
    FileDiff,
    FileOperation,
    ParsedFileDiff,
)

logger = logging.getLogger(__name__)

_HUNK_HEADER_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))?"
    r" \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))?"
    r" @@"
)

DEV_NULL = "/dev/null"


def parse_unified_diff(raw_diff: str) -> List[ParsedFileDiff]:
    """
    Parse unified diff text into one ParsedFileDiff per file.

    Empty input yields an empty list.

    Raises:
        TypeError: if ``raw_diff`` is None.
    """
    files: List[ParsedFileDiff] = []
    for block in _split_blocks(_lines_of(raw_diff)):
        parsed = _parse_block(block)
        if parsed is not None:
            files.append(parsed)
    return files


def split_file_diffs(raw_diff: str) -> List[FileDiff]:
    """Split diff text into raw per-file blocks tagged with path and operation."""
    result: List[FileDiff] = []
    for block in _split_blocks(_lines_of(raw_diff)):
        parsed = _parse_block(block)
        if parsed is None:
            continue
        old_path = parsed.old_path if parsed.old_path != parsed.path else None
        result.append(FileDiff(path=parsed.path, change_type=parsed.change_type, diff="\n".join(block) + "\n",
                               old_path=old_path))
    return result


def parse_file_diff(file_diff: FileDiff) -> ParsedFileDiff:
    """Parse the raw block of a FileDiff. The FileDiff's path and operation win."""
    parsed = parse_unified_diff(file_diff.diff)
    if not parsed:
        return ParsedFileDiff(path=file_diff.path, old_path=file_diff.old_path, change_type=file_diff.change_type)
    first = parsed[0]
    first.path = file_diff.path
    first.change_type = file_diff.change_type
    if file_diff.old_path:
        first.old_path = file_diff.old_path
    return first


def _lines_of(raw_diff: str) -> List[str]:
    if raw_diff is None:
        raise TypeError("raw_diff must be a string, not None")
    return raw_diff.splitlines()


def _split_blocks(lines: Sequence[str]) -> List[List[str]]:
    """
    Group lines into per-file blocks.

    A ``diff `` line always opens a block. Without one (plain ``diff -u``
    output) a ``--- `` header opens a block when the current block already
    holds hunks and the last hunk's counted lines are used up. Lines before
    the first block are preamble and dropped.
    """
    blocks: List[List[str]] = []
    current: Optional[List[str]] = None
    plain_mode = False
    seen_hunk = False
    remaining = (0, 0)

    for line in lines:
        if current is not None and any(remaining):
            consumed = _consume(line, remaining)
            if consumed is not None:
                remaining = consumed
                current.append(line)
                continue
            remaining = (0, 0)
        if line.startswith("diff "):
            current = [line]
            blocks.append(current)
            plain_mode = False
            seen_hunk = False
            continue
        if line.startswith("--- ") and (current is None or (plain_mode and seen_hunk)):
            current = [line]
            blocks.append(current)
            plain_mode = True
            seen_hunk = False
            continue
        if current is None:
            continue
        if line.startswith("@@"):
            seen_hunk = True
            hunk = _parse_hunk_header(line)
            if hunk is not None:
                remaining = (hunk.old_count, hunk.new_count)
        current.append(line)

    return blocks


def _consume(line: str, remaining: Tuple[int, int]) -> Optional[Tuple[int, int]]:
    """
    Old and new line counts left in a hunk after ``line``.

    Inside a hunk only the first character classifies a line, so a deleted
    "-- comment" is not a "--- " header. Returns None for a line that cannot
    be hunk content.
    """
    old_left, new_left = remaining
    if line.startswith("+"):
        return old_left, new_left - 1
    if line.startswith("-"):
        return old_left - 1, new_left
    if line.startswith(" ") or line == "":
        return old_left - 1, new_left - 1
    if line.startswith("\\"):
        return remaining
    return None


def _strip_label(label: str) -> str:
    # "--- a/path\t2024-01-01 ..." carries an optional timestamp
    label = label.split("\t", 1)[0].strip()
    if label.startswith('"') and label.endswith('"') and len(label) > 1:
        label = label[1:-1]
    if label == DEV_NULL:
        return label
    if label.startswith("a/") or label.startswith("b/"):
        return label[2:]
    return label


def _paths_from_diff_line(line: str) -> Tuple[Optional[str], Optional[str]]:
    parts = line.split()
    # "diff --git a/x b/y" or "diff -u old new"
    if len(parts) < 3:
        return None, None
    return _strip_label(parts[-2]), _strip_label(parts[-1])


def _parse_hunk_header(line: str) -> Optional[DiffHunk]:
    match = _HUNK_HEADER_RE.match(line)
    if not match:
        return None
    old_count = match.group("old_count")
    new_count = match.group("new_count")
    return DiffHunk(
        old_start=int(match.group("old_start")),
        old_count=int(old_count) if old_count is not None else 1,
        new_start=int(match.group("new_start")),
        new_count=int(new_count) if new_count is not None else 1,
        header=line,
    )


def _parse_block(block: Sequence[str]) -> Optional[ParsedFileDiff]:
    header_old: Optional[str] = None
    header_new: Optional[str] = None
    label_old: Optional[str] = None
    label_new: Optional[str] = None
    rename_from: Optional[str] = None
    rename_to: Optional[str] = None
    explicit: Optional[FileOperation] = None
    is_binary = False

    hunks: List[DiffHunk] = []
    hunk: Optional[DiffHunk] = None
    remaining = (0, 0)
    old_no = new_no = 0
    additions = deletions = 0

    for line in block:
        in_hunk = hunk is not None and any(remaining)
        if in_hunk:
            consumed = _consume(line, remaining)
            in_hunk = consumed is not None
            remaining = consumed if in_hunk else (0, 0)

        if not in_hunk:
            if line.startswith("diff "):
                header_old, header_new = _paths_from_diff_line(line)
                continue
            if line.startswith("--- ") or line.startswith("+++ "):
                # Outside a hunk's counted lines these are always headers
                if not hunks:
                    if line.startswith("--- "):
                        label_old = _strip_label(line[4:])
                    else:
                        label_new = _strip_label(line[4:])
                continue
            if line.startswith("@@"):
                hunk = None if is_binary else _parse_hunk_header(line)
                if hunk is None:
                    logger.debug(f"Skipping malformed hunk header: {line!r}")
                    continue
                hunks.append(hunk)
                remaining = (hunk.old_count, hunk.new_count)
                old_no, new_no = hunk.old_start, hunk.new_start
                continue
            if hunk is None:
                if line.startswith("new file mode"):
                    explicit = FileOperation.ADD
                elif line.startswith("deleted file mode"):
                    explicit = FileOperation.DELETE
                elif line.startswith("rename from "):
                    rename_from = line[len("rename from "):].strip()
                elif line.startswith("rename to "):
                    rename_to = line[len("rename to "):].strip()
                elif (line.startswith("Binary files ") and line.rstrip().endswith("differ")) or line.startswith("GIT binary patch"):
                    is_binary = True
                continue

        if line.startswith("+"):
            hunk.lines.append(DiffLine(DiffLineType.ADD, line[1:], None, new_no))
            new_no += 1
            additions += 1
        elif line.startswith("-"):
            hunk.lines.append(DiffLine(DiffLineType.DELETE, line[1:], old_no, None))
            old_no += 1
            deletions += 1
        elif line.startswith(" ") or (in_hunk and line == ""):
            # editors sometimes strip the leading space of blank context lines
            hunk.lines.append(DiffLine(DiffLineType.CONTEXT, line[1:], old_no, new_no))
            old_no += 1
            new_no += 1
        # "\ No newline at end of file" and anything else is ignored

    old_path = rename_from or label_old or header_old
    new_path = rename_to or label_new or header_new

    if explicit is not None:
        change_type = explicit
    elif old_path == DEV_NULL:
        change_type = FileOperation.ADD
    elif new_path == DEV_NULL:
        change_type = FileOperation.DELETE
    else:
        change_type = FileOperation.MODIFY

    if old_path == DEV_NULL:
        old_path = None
    if new_path == DEV_NULL:
        new_path = None

    path = new_path or old_path
    if not path:
        return None
    if change_type == FileOperation.ADD:
        old_path = None

    return ParsedFileDiff(
        path=path,
        old_path=old_path,
        change_type=change_type,
        is_binary=is_binary,
        additions=additions,
        deletions=deletions,
        hunks=hunks,
    )
