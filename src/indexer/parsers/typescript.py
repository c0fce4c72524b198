"""TypeScript/JavaScript parser: tree-sitter-typescript AST walk with a regex fallback."""

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
    r"""^import\s+(?:(?:type\s+)?(?:(\w+)(?:\s*,\s*)?)?(?:\{([^}]*)\})?\s+from\s+)?['"]([^'"]+)['"]"""
)
IMPORT_STAR_RE = re.compile(r"""^import\s+\*\s+as\s+(\w+)\s+from\s+['"]([^'"]+)['"]""")
EXPORT_NAMED_RE = re.compile(
    r"^export\s+(?:const|let|var|function|class|type|interface|enum|async\s+function)\s+(\w+)"
)
EXPORT_DEFAULT_RE = re.compile(r"^export\s+default\s+")
FUNC_DECL_RE = re.compile(
    r"^(export\s+)?(?:default\s+)?(async\s+)?function\s+(\w+)\s*(\([^)]*\))\s*(?::\s*([^\s{]+))?\s*\{"
)
ARROW_RE = re.compile(
    r"^(export\s+)?(?:const|let|var)\s+(\w+)\s*(?::\s*\S+\s*)?=\s*(async\s+)?(?:\([^)]*\)|[^=]*)"
    r"(?::\s*([^\s=]+))?\s*=>\s*[{(]"
)
ARROW_SIMPLE_RE = re.compile(
    r"^(export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(async\s+)?\(([^)]*)\)\s*(?::\s*([^\s=]+))?\s*=>"
)
CLASS_RE = re.compile(
    r"^(export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)(?:\s+extends\s+(\w+))?"
    r"(?:\s+implements\s+([\w,\s]+))?\s*\{"
)
METHOD_RE = re.compile(
    r"^\s*(public|private|protected|static|async|readonly|\s)*\s*(\w+)\s*(\([^)]*\))\s*"
    r"(?::\s*([^\s{]+))?\s*\{"
)
PROP_RE = re.compile(r"^\s*(public|private|protected|static|readonly|\s)*\s*(\w+)\s*(?:\?\s*)?:\s*([^;=]+)")

_NOT_METHODS = {"constructor", "if", "for", "while", "switch", "catch", "return", "function"}


def _strip_type_annotation(text: str) -> str:
    return re.sub(r"^:\s*", "", text)


def _is_async(code_bytes: bytes, node: Any) -> bool:
    return b"async" in code_bytes[node.start_byte:node.start_byte + 30]


class TypeScriptParser(CodeParser):
    """Parser for ``.ts``/``.tsx`` sources; the registry also routes ``.js``/``.jsx`` here."""

    language = "typescript"
    file_extensions = [".ts", ".tsx"]

    def language_for(self, file_path: str) -> str:
        return "tsx" if file_path.endswith(".tsx") else "typescript"

    def grammar_for(self, file_path: str) -> str:
        return "tsx" if file_path.endswith((".tsx", ".jsx")) else "typescript"

    def parse_with_tree_sitter(self, root: Any, code: str, file_path: str) -> ParsedFile:
        code_bytes = code.encode("utf-8")
        functions: List[FunctionInfo] = []
        classes: List[ClassInfo] = []
        imports: List[ImportInfo] = []
        exports: List[ExportInfo] = []

        def is_exported(node: Any, export_context: bool) -> bool:
            return export_context or (node.parent is not None and node.parent.type == "export_statement")

        def walk(node: Any, export_context: bool = False) -> None:
            kind = node.type

            if kind in ("function_declaration", "generator_function_declaration"):
                functions.append(
                    FunctionInfo(
                        name=node_text(node.child_by_field_name("name")) or "<anonymous>",
                        params=node_text(node.child_by_field_name("parameters")) or "()",
                        return_type=_strip_type_annotation(node_text(node.child_by_field_name("return_type"))),
                        body=node_text(node.child_by_field_name("body")),
                        start_line=start_line(node),
                        end_line=end_line(node),
                        is_exported=is_exported(node, export_context),
                        is_async=_is_async(code_bytes, node),
                    )
                )

            elif kind in ("lexical_declaration", "variable_declaration"):
                for declarator in node.named_children:
                    if declarator.type != "variable_declarator":
                        continue
                    value = declarator.child_by_field_name("value")
                    if value is None or value.type not in ("arrow_function", "function_expression", "function"):
                        continue
                    params = value.child_by_field_name("parameters")
                    if params is None:
                        # Single bare parameter, e.g. `x => x * 2`
                        params = value.child_by_field_name("parameter")
                    params_text = node_text(params) or "()"
                    if not params_text.startswith("("):
                        params_text = f"({params_text})"
                    functions.append(
                        FunctionInfo(
                            name=node_text(declarator.child_by_field_name("name")) or "<anonymous>",
                            params=params_text,
                            return_type=_strip_type_annotation(node_text(value.child_by_field_name("return_type"))),
                            body=node_text(value.child_by_field_name("body")),
                            start_line=start_line(node),
                            end_line=end_line(node),
                            is_exported=is_exported(node, export_context),
                            is_async=_is_async(code_bytes, value),
                        )
                    )

            elif kind in ("class_declaration", "abstract_class_declaration", "class"):
                if kind != "class" or node.child_by_field_name("name") is not None:
                    classes.append(self._class_from_node(node, code_bytes, is_exported(node, export_context)))
                return

            elif kind == "import_statement":
                imports.append(self._import_from_node(node))
                return

            elif kind == "export_statement":
                is_default = any(c.type == "default" for c in node.children)
                declaration = node.child_by_field_name("declaration")
                line = start_line(node)
                if declaration is not None:
                    walk(declaration, True)
                    name = node_text(declaration.child_by_field_name("name"))
                    if not name and declaration.type in ("lexical_declaration", "variable_declaration"):
                        for declarator in declaration.named_children:
                            if declarator.type == "variable_declarator":
                                name = node_text(declarator.child_by_field_name("name"))
                                break
                    exports.append(ExportInfo(name=name or "default", line=line, is_default=is_default))
                    return

                export_clause = next((c for c in node.children if c.type == "export_clause"), None)
                if export_clause is not None:
                    for spec in export_clause.named_children:
                        if spec.type == "export_specifier":
                            name = node_text(spec.child_by_field_name("name")) or node_text(spec)
                            exports.append(ExportInfo(name=name, line=line))
                    return

                # `export default <expr>`; a named class/function after default is still walked
                name = "default"
                for child in node.named_children:
                    if child.type in ("class", "function_expression", "function", "class_declaration",
                                      "function_declaration"):
                        walk(child, True)
                        name = node_text(child.child_by_field_name("name")) or "default"
                exports.append(ExportInfo(name=name, line=line, is_default=True))
                return

            for child in node.named_children:
                walk(child)

        walk(root)

        return ParsedFile(
            file_path=file_path,
            language=self.language_for(file_path),
            functions=functions,
            classes=classes,
            imports=imports,
            exports=exports,
        )

    def _class_from_node(self, node: Any, code_bytes: bytes, exported: bool) -> ClassInfo:
        extends_name: Optional[str] = None
        implements: List[str] = []

        heritage = next((c for c in node.children if c.type == "class_heritage"), None)
        if heritage is not None:
            for clause in heritage.children:
                if clause.type == "extends_clause" and clause.named_children:
                    extends_name = node_text(clause.named_children[0])
                elif clause.type == "implements_clause":
                    implements.extend(node_text(c) for c in clause.named_children)

        methods: List[FunctionInfo] = []
        properties: List[PropertyInfo] = []
        body = node.child_by_field_name("body")
        if body is not None:
            for member in body.named_children:
                if member.type in ("method_definition", "method_signature", "abstract_method_signature"):
                    name = node_text(member.child_by_field_name("name")) or "<anonymous>"
                    if name == "constructor":
                        continue
                    methods.append(
                        FunctionInfo(
                            name=name,
                            params=node_text(member.child_by_field_name("parameters")) or "()",
                            return_type=_strip_type_annotation(node_text(member.child_by_field_name("return_type"))),
                            body=node_text(member.child_by_field_name("body")),
                            start_line=start_line(member),
                            end_line=end_line(member),
                            is_async=_is_async(code_bytes, member),
                        )
                    )
                elif member.type in ("public_field_definition", "property_declaration", "property_signature"):
                    properties.append(
                        PropertyInfo(
                            name=node_text(member.child_by_field_name("name")),
                            type=_strip_type_annotation(node_text(member.child_by_field_name("type"))),
                        )
                    )

        return ClassInfo(
            name=node_text(node.child_by_field_name("name")) or "<anonymous>",
            start_line=start_line(node),
            end_line=end_line(node),
            methods=methods,
            properties=properties,
            is_exported=exported,
            extends=extends_name,
            implements=implements,
        )

    def _import_from_node(self, node: Any) -> ImportInfo:
        source = node_text(node.child_by_field_name("source")).strip("'\"")
        specifiers: List[ImportSpecifier] = []

        for child in node.named_children:
            if child.type != "import_clause":
                continue
            for inner in child.named_children:
                if inner.type == "identifier":
                    specifiers.append(ImportSpecifier(name=node_text(inner), is_default=True))
                elif inner.type == "named_imports":
                    for spec in inner.named_children:
                        if spec.type == "import_specifier":
                            name = node_text(spec.child_by_field_name("name")) or node_text(spec)
                            alias = node_text(spec.child_by_field_name("alias")) or None
                            specifiers.append(ImportSpecifier(name=name, alias=alias))
                elif inner.type == "namespace_import":
                    alias_node = inner.named_children[0] if inner.named_children else None
                    specifiers.append(ImportSpecifier(name="*", alias=node_text(alias_node) or None))

        return ImportInfo(source=source, line=start_line(node), specifiers=specifiers)

    def parse_with_regex(self, code: str, file_path: str) -> ParsedFile:
        lines = code.split("\n")
        functions: List[FunctionInfo] = []
        classes: List[ClassInfo] = []
        imports: List[ImportInfo] = []
        exports: List[ExportInfo] = []

        for i, raw in enumerate(lines):
            line = raw.strip()

            star = IMPORT_STAR_RE.match(line)
            if star:
                imports.append(
                    ImportInfo(
                        source=star.group(2),
                        line=i + 1,
                        specifiers=[ImportSpecifier(name="*", alias=star.group(1))],
                    )
                )
                continue

            match = IMPORT_RE.match(line)
            if match:
                default_name, named_raw, source = match.groups()
                specifiers: List[ImportSpecifier] = []
                if default_name:
                    specifiers.append(ImportSpecifier(name=default_name, is_default=True))
                if named_raw:
                    for entry in (s.strip() for s in named_raw.split(",")):
                        if not entry:
                            continue
                        parts = re.split(r"\s+as\s+", entry)
                        specifiers.append(
                            ImportSpecifier(
                                name=re.sub(r"^type\s+", "", parts[0]).strip(),
                                alias=parts[1].strip() if len(parts) > 1 else None,
                            )
                        )
                imports.append(ImportInfo(source=source, line=i + 1, specifiers=specifiers))

        for i, raw in enumerate(lines):
            line = raw.strip()
            named = EXPORT_NAMED_RE.match(line)
            if named:
                exports.append(ExportInfo(name=named.group(1), line=i + 1))
            elif EXPORT_DEFAULT_RE.match(line):
                after = EXPORT_DEFAULT_RE.sub("", line).strip()
                name_match = re.match(r"^(?:class|function)\s+(\w+)", after)
                exports.append(
                    ExportInfo(name=name_match.group(1) if name_match else "default", line=i + 1, is_default=True)
                )

        for i, raw in enumerate(lines):
            line = raw.strip()

            func = FUNC_DECL_RE.match(line)
            if func:
                close = find_closing_brace(lines, i)
                functions.append(
                    FunctionInfo(
                        name=func.group(3),
                        params=func.group(4),
                        return_type=func.group(5) or "",
                        body="\n".join(lines[i:close + 1]),
                        start_line=i + 1,
                        end_line=close + 1,
                        is_exported=bool(func.group(1)),
                        is_async=bool(func.group(2)),
                    )
                )
                continue

            arrow = ARROW_RE.match(line)
            simple = ARROW_SIMPLE_RE.match(line)
            if arrow or simple:
                close = find_closing_brace(lines, i) if "{" in line else i
                params = simple.group(4) if simple else None
                matched = arrow or simple
                functions.append(
                    FunctionInfo(
                        name=matched.group(2),
                        params=f"({params})" if params is not None else "()",
                        return_type=(simple.group(5) if simple else arrow.group(4)) or "",
                        body="\n".join(lines[i:close + 1]),
                        start_line=i + 1,
                        end_line=close + 1,
                        is_exported=bool(matched.group(1)),
                        is_async=bool(matched.group(3)),
                    )
                )

        for i, raw in enumerate(lines):
            line = raw.strip()
            match = CLASS_RE.match(line)
            if not match:
                continue

            close = find_closing_brace(lines, i)
            implements_raw = match.group(4)
            methods: List[FunctionInfo] = []
            properties: List[PropertyInfo] = []

            j = i + 1
            while j <= close and j < len(lines):
                member = lines[j].strip()
                method = METHOD_RE.match(member)
                if method and method.group(2) not in _NOT_METHODS:
                    m_close = find_closing_brace(lines, j)
                    methods.append(
                        FunctionInfo(
                            name=method.group(2),
                            params=method.group(3),
                            return_type=method.group(4) or "",
                            body="\n".join(lines[j:m_close + 1]),
                            start_line=j + 1,
                            end_line=m_close + 1,
                            is_async="async" in member,
                        )
                    )
                    j = m_close + 1
                    continue
                if method and method.group(2) == "constructor":
                    # Constructor bodies hold statements, not members
                    j = find_closing_brace(lines, j) + 1
                    continue

                prop = PROP_RE.match(member)
                if prop and "(" not in member:
                    properties.append(PropertyInfo(name=prop.group(2), type=prop.group(3).strip().rstrip(";")))
                j += 1

            classes.append(
                ClassInfo(
                    name=match.group(2),
                    start_line=i + 1,
                    end_line=close + 1,
                    methods=methods,
                    properties=properties,
                    is_exported=bool(match.group(1)),
                    extends=match.group(3),
                    implements=[s.strip() for s in implements_raw.split(",") if s.strip()] if implements_raw else [],
                )
            )

        return ParsedFile(
            file_path=file_path,
            language=self.language_for(file_path),
            functions=functions,
            classes=classes,
            imports=imports,
            exports=exports,
        )
