"""MCP tool for extracting symbols from code files."""

import logging
from typing import Optional

from ..indexer.parsers.registry import ParserRegistry, get_parser_registry

logger = logging.getLogger(__name__)

SYMBOL_TYPES = ("function", "class", "method", "import", "export")


class SymbolTool:
    """Tool for structural symbol extraction."""

    def __init__(self, registry: Optional[ParserRegistry] = None):
        """Initialize symbol tool.

        Args:
            registry: Parser registry (defaults to the shared one)
        """
        self.registry = registry or get_parser_registry()

    def get_symbols(self, file_path: str, symbol_type: Optional[str] = None) -> dict:
        """Extract symbols (functions, classes, methods, imports, exports) from a file.

        Args:
            file_path: Path to the file
            symbol_type: Only return symbols of this type

        Returns:
            Dictionary with extracted symbols
        """
        if symbol_type and symbol_type.lower() not in SYMBOL_TYPES:
            return {"success": False, "error": f"Unknown symbol type: {symbol_type}"}

        try:
            with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                code = f.read()
        except OSError as e:
            logger.error(f"Error reading {file_path}: {e}")
            return {"success": False, "error": str(e)}

        parsed = self.registry.parse_file(code, file_path)
        if parsed is None:
            return {"success": False, "error": f"Unsupported file type: {file_path}"}

        symbols = []
        for fn in parsed.functions:
            symbols.append({"name": fn.name, "type": "function", "start_line": fn.start_line,
                            "end_line": fn.end_line, "exported": fn.is_exported})
        for cls in parsed.classes:
            symbols.append({"name": cls.name, "type": "class", "start_line": cls.start_line,
                            "end_line": cls.end_line, "exported": cls.is_exported, "extends": cls.extends})
            for method in cls.methods:
                symbols.append({"name": f"{cls.name}.{method.name}", "type": "method",
                                "start_line": method.start_line, "end_line": method.end_line})
        for imp in parsed.imports:
            symbols.append({"name": imp.source, "type": "import", "start_line": imp.line, "end_line": imp.line,
                            "specifiers": [s.name for s in imp.specifiers]})
        for exp in parsed.exports:
            symbols.append({"name": exp.name, "type": "export", "start_line": exp.line, "end_line": exp.line})

        if symbol_type:
            symbols = [s for s in symbols if s["type"] == symbol_type.lower()]

        return {
            "success": True,
            "file_path": file_path,
            "language": parsed.language,
            "total_symbols": len(symbols),
            "symbols": symbols,
            "filter": symbol_type,
        }
