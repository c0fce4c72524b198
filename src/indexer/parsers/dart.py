"""Dart/Flutter parser.

The tree-sitter-dart grammar is optional; without it every file goes through
the regex extractor. Names starting with ``_`` are library-private.
"""

import logging
import re
from typing import Any, List, Optional

from ..models import (
    ClassInfo,
    ExportInfo,
    FunctionInfo,
    ImportInfo,
    ImportSpecifier,
    ParsedFile,
    PropertyInfo,
)
from .base import CodeParser, end_line, find_closing_brace, node_text, start_line

logger = logging.getLogger(__name__)

IMPORT_RE = re.compile(
    r"""^import\s+['"]([^'"]+)['"](?:\s+as\s+(\w+))?(?:\s+show\s+([\w,\s]+))?(?:\s+hide\s+[\w,\s]+)?\s*;"""
)
EXPORT_RE = re.compile(r"""^export\s+['"]([^'"]+)['"]""")
FUNC_RE = re.compile(
    r"^(?:(?:static|final|const|external)\s+)*(?:([\w<>,\s?]+?)\s+)?(\w+)\s*\(([^)]*)\)\s*(?:async\s*)?(?:\{|=>)"
)
CLASS_RE = re.compile(
    r"^(?:abstract\s+)?class\s+(\w+)(?:\s+extends\s+(\w+))?(?:\s+with\s+([\w,\s]+))?"
    r"(?:\s+implements\s+([\w,\s]+))?\s*\{"
)
METHOD_RE = re.compile(
    r"^\s+(?:@\w+\s*(?:\([^)]*\))?\s*)*(?:(?:static|final|const|external)\s+)*(?:([\w<>,\s?]+?)\s+)?"
    r"(\w+)\s*\(([^)]*)\)\s*(?:async\s*)?(?:\{|=>)"
)
PROP_RE = re.compile(r"^\s+(?:(?:static|final|const|late)\s+)*(?:(\w[\w<>,\s?]*?)\s+)?(\w+)\s*[;=]")

_NOT_FUNCTIONS = {"if", "for", "while", "switch", "catch", "class", "return", "new"}
_COMMENT_PREFIXES = ("//", "/*", "*")


def _split_names(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


def _import_info(source: str, alias: Optional[str], show: Optional[str], line: int) -> ImportInfo:
    if show:
        specifiers = [ImportSpecifier(name=name) for name in _split_names(show)]
    elif alias:
        specifiers = [ImportSpecifier(name="*", alias=alias)]
    else:
        file_name = source.rsplit("/", 1)[-1]
        specifiers = [ImportSpecifier(name=file_name.replace(".dart", ""), is_default=True)]
    return ImportInfo(source=source, line=line, specifiers=specifiers)


class DartParser(CodeParser):
    language = "dart"
    file_extensions = [".dart"]

    def grammar_for(self, file_path: str) -> str:
        return "dart"

    def parse_with_tree_sitter(self, root: Any, code: str, file_path: str) -> ParsedFile:
        functions: List[FunctionInfo] = []
        classes: List[ClassInfo] = []
        imports: List[ImportInfo] = []
        exports: List[ExportInfo] = []

        def walk(node: Any) -> None:
            kind = node.type
            if kind in ("import_or_export", "import_specification"):
                text = node_text(node)
                source = re.search(r"""['"]([^'"]+)['"]""", text)
                if source:
                    if text.startswith("export"):
                        exports.append(ExportInfo(name=source.group(1), line=start_line(node)))
                    else:
                        alias = re.search(r"\bas\s+(\w+)", text)
                        show = re.search(r"\bshow\s+([\w,\s]+)", text)
                        imports.append(
                            _import_info(
                                source.group(1),
                                alias.group(1) if alias else None,
                                show.group(1) if show else None,
                                start_line(node),
                            )
                        )
                return

            if kind in ("function_signature", "function_definition"):
                name = node_text(node.child_by_field_name("name")) or "<anonymous>"
                params = node.child_by_field_name("parameters") or next(
                    (c for c in node.named_children if c.type == "formal_parameter_list"), None
                )
                functions.append(
                    FunctionInfo(
                        name=name,
                        params=node_text(params) or "()",
                        return_type=node_text(node.child_by_field_name("return_type")),
                        body=node_text(node.child_by_field_name("body")),
                        start_line=start_line(node),
                        end_line=end_line(node),
                        is_exported=not name.startswith("_"),
                        is_async="async" in node_text(node),
                    )
                )
                return

            if kind == "class_definition":
                classes.append(self._class_from_node(node))
                return

            for child in node.named_children:
                walk(child)

        walk(root)
        return ParsedFile(
            file_path=file_path,
            language=self.language,
            functions=functions,
            classes=classes,
            imports=imports,
            exports=exports,
        )

    def _class_from_node(self, node: Any) -> ClassInfo:
        text = node_text(node)
        header = text.split("{", 1)[0]
        name = node_text(node.child_by_field_name("name")) or "<anonymous>"

        extends_match = re.search(r"\bextends\s+(\w+)", header)
        with_match = re.search(r"\bwith\s+([\w,\s]+?)(?:\bimplements\b|$)", header)
        implements_match = re.search(r"\bimplements\s+([\w,\s]+)", header)
        implements = _split_names(with_match.group(1) if with_match else None)
        implements += _split_names(implements_match.group(1) if implements_match else None)

        methods: List[FunctionInfo] = []
        properties: List[PropertyInfo] = []
        body = node.child_by_field_name("body") or next(
            (c for c in node.named_children if c.type == "class_body"), None
        )
        if body is not None:
            for member in body.named_children:
                if member.type in ("method_signature", "function_definition", "method_definition"):
                    params = member.child_by_field_name("parameters") or next(
                        (c for c in member.named_children if c.type == "formal_parameter_list"), None
                    )
                    methods.append(
                        FunctionInfo(
                            name=node_text(member.child_by_field_name("name")) or "<anonymous>",
                            params=node_text(params) or "()",
                            return_type=node_text(member.child_by_field_name("return_type")),
                            body=node_text(member.child_by_field_name("body")),
                            start_line=start_line(member),
                            end_line=end_line(member),
                            is_async="async" in node_text(member),
                        )
                    )
                elif member.type in ("declaration", "field_declaration"):
                    type_node = next(
                        (c for c in member.named_children if c.type in ("type_identifier", "built_in_type")), None
                    )
                    name_node = next((c for c in member.named_children if c.type == "identifier"), None)
                    properties.append(PropertyInfo(name=node_text(name_node), type=node_text(type_node)))

        return ClassInfo(
            name=name,
            start_line=start_line(node),
            end_line=end_line(node),
            methods=methods,
            properties=properties,
            is_exported=not name.startswith("_"),
            extends=extends_match.group(1) if extends_match else None,
            implements=implements,
        )

    def parse_with_regex(self, code: str, file_path: str) -> ParsedFile:
        lines = code.split("\n")
        functions: List[FunctionInfo] = []
        classes: List[ClassInfo] = []
        imports: List[ImportInfo] = []
        exports: List[ExportInfo] = []

        for i, raw in enumerate(lines):
            line = raw.strip()
            export_match = EXPORT_RE.match(line)
            if export_match:
                exports.append(ExportInfo(name=export_match.group(1), line=i + 1))
                continue
            import_match = IMPORT_RE.match(line)
            if import_match:
                source, alias, show = import_match.groups()
                imports.append(_import_info(source, alias, show, i + 1))

        for i, raw in enumerate(lines):
            line = raw.strip()
            # Only unindented declarations are top-level functions
            if re.match(r"^\s{2,}", raw) or line.startswith(("import", "export")):
                continue
            if line.startswith(("class ", "abstract ", "mixin ")) or line.startswith(_COMMENT_PREFIXES):
                continue

            match = FUNC_RE.match(line)
            if not match or match.group(2) in _NOT_FUNCTIONS:
                continue
            name = match.group(2)
            close = find_closing_brace(lines, i) if "{" in line else i
            functions.append(
                FunctionInfo(
                    name=name,
                    params=f"({match.group(3) or ''})",
                    return_type=(match.group(1) or "").strip(),
                    body="\n".join(lines[i:close + 1]),
                    start_line=i + 1,
                    end_line=close + 1,
                    is_exported=not name.startswith("_"),
                    is_async="async" in line,
                )
            )

        for i, raw in enumerate(lines):
            match = CLASS_RE.match(raw.strip())
            if not match:
                continue

            close = find_closing_brace(lines, i)
            name = match.group(1)
            methods: List[FunctionInfo] = []
            properties: List[PropertyInfo] = []

            j = i + 1
            while j < close:
                member = lines[j]
                trimmed = member.strip()
                if trimmed.startswith(_COMMENT_PREFIXES):
                    j += 1
                    continue

                method = METHOD_RE.match(member)
                if method and method.group(2) not in _NOT_FUNCTIONS:
                    m_close = find_closing_brace(lines, j) if "{" in member else j
                    methods.append(
                        FunctionInfo(
                            name=method.group(2),
                            params=f"({method.group(3) or ''})",
                            return_type=(method.group(1) or "").strip(),
                            body="\n".join(lines[j:m_close + 1]),
                            start_line=j + 1,
                            end_line=m_close + 1,
                            is_async="async" in member,
                        )
                    )
                    j = max(m_close, j) + 1
                    continue

                prop = PROP_RE.match(member)
                if prop and "(" not in trimmed:
                    properties.append(PropertyInfo(name=prop.group(2), type=(prop.group(1) or "").strip()))
                j += 1

            classes.append(
                ClassInfo(
                    name=name,
                    start_line=i + 1,
                    end_line=close + 1,
                    methods=methods,
                    properties=properties,
                    is_exported=not name.startswith("_"),
                    extends=match.group(2),
                    implements=_split_names(match.group(3)) + _split_names(match.group(4)),
                )
            )

        return ParsedFile(
            file_path=file_path,
            language=self.language,
            functions=functions,
            classes=classes,
            imports=imports,
            exports=exports,
        )
