"""Unified diff parsing."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

FILE_HEADER_RE = re.compile(r"^diff --git a/(.+?) b/(.+?)$")
HUNK_HEADER_RE = re.compile(r"^@@\s+-(\d+)(?:,(\d+))?\s+\+(\d+)(?:,(\d+))?\s+@@")

DEV_NULL = "/dev/null"


@dataclass
class DiffChange:
    """One line inside a hunk."""

    type: str  # add, delete or context
    content: str
    line_old: Optional[int] = None
    line_new: Optional[int] = None


@dataclass
class DiffHunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    changes: List[DiffChange] = field(default_factory=list)


@dataclass
class DiffFile:
    """A file touched by a diff."""

    path: str
    status: str  # added, modified, deleted or renamed
    diff: str
    additions: int = 0
    deletions: int = 0
    old_path: Optional[str] = None
    hunks: List[DiffHunk] = field(default_factory=list)

    def added_lines(self) -> List[int]:
        """New-file line numbers of added lines."""
        return [c.line_new for h in self.hunks for c in h.changes if c.type == "add" and c.line_new is not None]

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "path": self.path,
            "status": self.status,
            "additions": self.additions,
            "deletions": self.deletions,
        }
        if self.old_path:
            result["oldPath"] = self.old_path
        return result


def _extract_path(raw: str) -> Optional[str]:
    trimmed = raw.strip()
    if not trimmed:
        return None
    if trimmed == DEV_NULL:
        return DEV_NULL
    if trimmed.startswith("a/") or trimmed.startswith("b/"):
        return trimmed[2:]
    return trimmed


def _detect_status(old_path: str, new_path: str) -> str:
    if old_path in (DEV_NULL, "dev/null"):
        return "added"
    if new_path in (DEV_NULL, "dev/null"):
        return "deleted"
    if old_path != new_path:
        return "renamed"
    return "modified"


def parse_diff(raw_diff: str) -> List[DiffFile]:
    """Parse a unified (git) diff into one DiffFile per touched file.

    Args:
        raw_diff: Diff text as returned by ``git diff`` or the Bitbucket API

    Returns:
        Files in diff order
    """
    files: List[DiffFile] = []
    current: Optional[Dict[str, Any]] = None
    hunk: Optional[DiffHunk] = None
    old_line = new_line = 0

    def flush() -> None:
        if current is None:
            return
        old_path, new_path = current["old_path"], current["new_path"]
        status = _detect_status(old_path, new_path)
        files.append(
            DiffFile(
                path=old_path if new_path == DEV_NULL else new_path,
                status=status,
                diff="\n".join(current["lines"]),
                additions=current["additions"],
                deletions=current["deletions"],
                old_path=old_path if status == "renamed" else None,
                hunks=current["hunks"],
            )
        )

    for line in raw_diff.split("\n"):
        header = FILE_HEADER_RE.match(line)
        if header:
            flush()
            current = {
                "old_path": header.group(1),
                "new_path": header.group(2),
                "lines": [line],
                "hunks": [],
                "additions": 0,
                "deletions": 0,
            }
            hunk = None
            continue

        if current is None:
            continue
        current["lines"].append(line)

        if hunk is None and line.startswith("--- "):
            path = _extract_path(line[4:])
            if path:
                current["old_path"] = path
            continue
        if hunk is None and line.startswith("+++ "):
            path = _extract_path(line[4:])
            if path:
                current["new_path"] = path
            continue

        match = HUNK_HEADER_RE.match(line)
        if match:
            old_line = int(match.group(1))
            new_line = int(match.group(3))
            hunk = DiffHunk(
                old_start=old_line,
                old_lines=int(match.group(2) or 1),
                new_start=new_line,
                new_lines=int(match.group(4) or 1),
            )
            current["hunks"].append(hunk)
            continue

        if hunk is None:
            continue

        if line.startswith("+"):
            hunk.changes.append(DiffChange("add", line[1:], line_new=new_line))
            new_line += 1
            current["additions"] += 1
        elif line.startswith("-"):
            hunk.changes.append(DiffChange("delete", line[1:], line_old=old_line))
            old_line += 1
            current["deletions"] += 1
        elif line.startswith(" ") or line == "":
            hunk.changes.append(DiffChange("context", line[1:] if line else line, old_line, new_line))
            old_line += 1
            new_line += 1
        # "\ No newline at end of file" and similar markers are skipped

    flush()
    return files


def map_diff_line_to_file_line(diff_file: DiffFile, diff_line: int) -> Optional[int]:
    """Map a 1-based position inside the file's diff text to a line of the new file.

    Returns:
        The new-file line number, or None for deleted lines and positions outside hunks
    """
    current_new: Optional[int] = None
    position = 0

    for raw in diff_file.diff.split("\n"):
        position += 1
        match = HUNK_HEADER_RE.match(raw)
        if match:
            current_new = int(match.group(3))
            continue
        if current_new is None:
            continue
        if position == diff_line:
            return None if raw.startswith("-") else current_new
        if not raw.startswith("-"):
            current_new += 1

    return None
