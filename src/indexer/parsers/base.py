"""Parser contract, tree-sitter backend probing and brace matching."""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from tree_sitter import Language, Parser

from ..models import ParsedFile

logger = logging.getLogger(__name__)

# Grammar module and entry point per tree-sitter language
LANGUAGE_MODULES: Dict[str, Tuple[str, str]] = {
    "java": ("tree_sitter_java", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
    "dart": ("tree_sitter_dart", "language"),
}

# Upper bound on how far a block may extend past its opening line
MAX_BLOCK_LINES = 100


def find_closing_brace(lines: List[str], start: int) -> int:
    """Find the line holding the brace that closes the block opened at ``start``.

    Args:
        lines: Source lines
        start: 0-based index of the line that opens the block

    Returns:
        0-based index of the closing line, or the scan cap when no balanced
        brace is found. Always within ``[start, start + MAX_BLOCK_LINES]``.
    """
    if not lines or start >= len(lines):
        return start

    depth = 0
    found = False
    limit = min(start + MAX_BLOCK_LINES, len(lines) - 1)
    for i in range(start, limit + 1):
        for ch in lines[i]:
            if ch == "{":
                depth += 1
                found = True
            elif ch == "}":
                depth -= 1
                if found and depth == 0:
                    return i
    return limit


def node_text(node: Any) -> str:
    """Decode the source text of a tree-sitter node."""
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def start_line(node: Any) -> int:
    return node.start_point[0] + 1


def end_line(node: Any) -> int:
    return node.end_point[0] + 1


class BackendProbe:
    """Resolves once per process whether a tree-sitter grammar is loadable.

    The outcome is cached and never changes afterwards; a failed probe makes
    the owning parser use its regex extractor for every file.
    """

    def __init__(self, language: str):
        self.language = language
        self._lock = threading.Lock()
        self._resolved = False
        self._grammar: Optional[Language] = None

    def load(self) -> Optional[Language]:
        """Resolve the grammar synchronously.

        Returns:
            Loaded Language, or None when the grammar is unavailable
        """
        if self._resolved:
            return self._grammar

        with self._lock:
            if self._resolved:
                return self._grammar

            module_name, func_name = LANGUAGE_MODULES.get(self.language, (None, None))
            if module_name:
                try:
                    module = __import__(module_name)
                    self._grammar = Language(getattr(module, func_name)())
                    logger.debug(f"Loaded tree-sitter grammar for {self.language}")
                except Exception as e:
                    logger.info(
                        f"tree-sitter grammar for {self.language} unavailable, "
                        f"using regex extraction: {e}"
                    )
                    self._grammar = None
            self._resolved = True
            return self._grammar

    async def ensure_loaded(self) -> bool:
        """Resolve the grammar without blocking the event loop.

        Returns:
            True if the native backend is available
        """
        grammar = await asyncio.to_thread(self.load)
        return grammar is not None

    @property
    def available(self) -> bool:
        return self.load() is not None

    def new_parser(self) -> Optional[Parser]:
        """Create a parser bound to the grammar.

        Parser instances are not shared between threads, so each parse gets its own.
        """
        grammar = self.load()
        if grammar is None:
            return None
        parser = Parser()
        parser.language = grammar
        return parser


_probes: Dict[str, BackendProbe] = {}
_probes_lock = threading.Lock()


def get_backend_probe(language: str) -> BackendProbe:
    """Get the process-wide probe for a tree-sitter language."""
    with _probes_lock:
        probe = _probes.get(language)
        if probe is None:
            probe = BackendProbe(language)
            _probes[language] = probe
        return probe


class CodeParser(ABC):
    """Extracts a ParsedFile from the source of one file.

    Subclasses try their native AST extractor first and fall back to the
    line-wise regex extractor when the grammar is missing or extraction fails.
    """

    language: str = ""
    file_extensions: List[str] = []

    def language_for(self, file_path: str) -> str:
        return self.language

    def grammar_for(self, file_path: str) -> Optional[str]:
        """Name of the tree-sitter grammar used for this file, if any."""
        return None

    def parse(self, code: str, file_path: str) -> ParsedFile:
        """Parse source code into a ParsedFile. Never raises.

        Args:
            code: File content
            file_path: Path used for the result and for language selection

        Returns:
            Parsed structure, empty when nothing could be extracted
        """
        language = self.language_for(file_path)
        grammar = self.grammar_for(file_path)

        if grammar:
            parser = get_backend_probe(grammar).new_parser()
            if parser is not None:
                try:
                    tree = parser.parse(code.encode("utf-8"))
                    return self.parse_with_tree_sitter(tree.root_node, code, file_path)
                except Exception as e:
                    logger.debug(f"AST extraction failed for {file_path}, falling back to regex: {e}")

        try:
            return self.parse_with_regex(code, file_path)
        except Exception as e:
            logger.warning(f"Failed to parse {file_path}: {e}")
            return ParsedFile.empty(file_path, language)

    def parse_with_tree_sitter(self, root: Any, code: str, file_path: str) -> ParsedFile:
        raise NotImplementedError(f"{self.language} has no AST extractor")

    @abstractmethod
    def parse_with_regex(self, code: str, file_path: str) -> ParsedFile:
        """Line-wise regex extraction."""
