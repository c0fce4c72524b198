"""Extension-based parser lookup."""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..models import ParsedFile
from .base import CodeParser, get_backend_probe
from .dart import DartParser
from .ftl import FtlParser
from .java import JavaParser
from .typescript import TypeScriptParser

logger = logging.getLogger(__name__)

# Extensions handled by a parser that does not list them itself
EXTENSION_OVERRIDES = {
    ".js": "typescript",
    ".jsx": "typescript",
}


class ParserRegistry:
    """Static set of language parsers keyed by lower-cased file extension."""

    def __init__(self, parsers: Optional[List[CodeParser]] = None):
        """Initialize parser registry.

        Args:
            parsers: Parsers to register (defaults to TypeScript, Java, Dart and FTL)
        """
        self.parsers: List[CodeParser] = parsers or [
            TypeScriptParser(),
            JavaParser(),
            DartParser(),
            FtlParser(),
        ]
        self.extension_map: Dict[str, CodeParser] = {}
        by_language = {p.language: p for p in self.parsers}

        for parser in self.parsers:
            for ext in parser.file_extensions:
                self.extension_map[ext.lower()] = parser
        for ext, language in EXTENSION_OVERRIDES.items():
            if language in by_language:
                self.extension_map[ext] = by_language[language]

    def get_parser(self, file_path: str) -> Optional[CodeParser]:
        return self.extension_map.get(Path(file_path).suffix.lower())

    def get_supported_extensions(self) -> List[str]:
        return sorted(self.extension_map.keys())

    def is_supported_file(self, file_path: str) -> bool:
        return self.get_parser(file_path) is not None

    async def ensure_backends_loaded(self) -> Dict[str, bool]:
        """Resolve every tree-sitter grammar once, off the event loop.

        Returns:
            Mapping of grammar name to availability
        """
        grammars = set()
        for parser in self.parsers:
            for ext in parser.file_extensions + [e for e, lang in EXTENSION_OVERRIDES.items()
                                                  if lang == parser.language]:
                grammar = parser.grammar_for(f"file{ext}")
                if grammar:
                    grammars.add(grammar)

        status = {}
        for grammar in sorted(grammars):
            status[grammar] = await get_backend_probe(grammar).ensure_loaded()
        logger.info(f"Parser backends: {status}")
        return status

    def parse_file(self, code: str, file_path: str) -> Optional[ParsedFile]:
        """Parse a file with the parser registered for its extension.

        Never raises: failures produce an empty ParsedFile.

        Args:
            code: File content
            file_path: Path of the file (its extension selects the parser)

        Returns:
            ParsedFile, or None when no parser handles the extension
        """
        parser = self.get_parser(file_path)
        if parser is None:
            return None
        try:
            return parser.parse(code, file_path)
        except Exception as e:
            logger.warning(f"Parser {parser.language} failed on {file_path}: {e}")
            return ParsedFile.empty(file_path, parser.language_for(file_path))


# Global registry instance
_registry: Optional[ParserRegistry] = None


def get_parser_registry() -> ParserRegistry:
    """Get the global parser registry instance."""
    global _registry
    if _registry is None:
        _registry = ParserRegistry()
    return _registry
