"""Collection of parseable source files from a repository checkout."""

import fnmatch
import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

# File extensions we know how to parse
PARSEABLE_EXTENSIONS = frozenset({".ts", ".tsx", ".js", ".jsx", ".java", ".dart", ".ftl"})

# Directories that are never indexed
ALWAYS_EXCLUDE = frozenset({
    "node_modules", ".git", ".svn", ".hg",
    "__pycache__", ".venv", "venv",
    ".gradle", ".mvn", "target", "build",
    "dist", ".next", ".nuxt", "out",
    ".dart_tool", ".flutter-plugins",
    ".idea", ".vscode",
})

# Maximum file size to parse (512 KiB)
MAX_FILE_SIZE = 512 * 1024


def is_repo_relative(path: str) -> bool:
    """True for a relative path that stays inside the repository root."""
    normalized = path.replace("\\", "/")
    pure = PurePosixPath(normalized)
    if not normalized or pure.is_absolute() or re.match(r"^[A-Za-z]:", normalized):
        return False
    return ".." not in pure.parts


def _is_excluded(name: str, rel_path: str, exclude_patterns: Iterable[str]) -> bool:
    if name in ALWAYS_EXCLUDE:
        return True
    for pattern in exclude_patterns:
        if name == pattern or fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(name, pattern):
            return True
    return False


def _is_parseable(path: Path, max_file_size: int) -> bool:
    if path.suffix.lower() not in PARSEABLE_EXTENSIONS:
        return False
    try:
        return path.stat().st_size <= max_file_size
    except OSError:
        return False


def collect_source_files(
    root: str,
    exclude_patterns: Optional[Iterable[str]] = None,
    max_file_size: int = MAX_FILE_SIZE,
) -> List[str]:
    """Recursively collect parseable files under a directory.

    Args:
        root: Repository root
        exclude_patterns: Directory names or glob patterns (relative to root) to skip
        max_file_size: Files larger than this many bytes are skipped

    Returns:
        Sorted absolute paths of the collected files
    """
    patterns = list(exclude_patterns or [])
    root_path = Path(root).resolve()
    files: List[str] = []

    def walk(current: Path) -> None:
        try:
            entries = list(os.scandir(current))
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {current}: {e}")
            return

        for entry in entries:
            entry_path = Path(entry.path)
            rel_path = entry_path.relative_to(root_path).as_posix()
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not _is_excluded(entry.name, rel_path, patterns):
                        walk(entry_path)
                elif entry.is_file():
                    if _is_parseable(entry_path, max_file_size) and not any(
                        fnmatch.fnmatch(rel_path, p) for p in patterns
                    ):
                        files.append(str(entry_path))
            except OSError:
                continue

    walk(root_path)
    files.sort()
    logger.info(f"Collected {len(files)} source files under {root_path}")
    return files


def filter_changed_files(
    root: str,
    changed_files: Iterable[str],
    max_file_size: int = MAX_FILE_SIZE,
) -> List[str]:
    """Apply the extension and size filters to an explicit list of files.

    Args:
        root: Repository root
        changed_files: Paths relative to the root
        max_file_size: Files larger than this many bytes are skipped

    Returns:
        Absolute paths of the files that exist inside the root and can be parsed
    """
    root_path = Path(root).resolve()
    result = []
    for rel in changed_files:
        if not is_repo_relative(rel):
            logger.warning(f"Skipping changed file outside the repository: {rel}")
            continue
        path = (root_path / rel).resolve()
        # Symlinks may still point outside the checkout
        if not path.is_relative_to(root_path):
            logger.warning(f"Skipping changed file outside the repository: {rel}")
            continue
        if path.is_file() and _is_parseable(path, max_file_size):
            result.append(str(path))
    return result
