"""Java parser: tree-sitter-java AST walk with a regex fallback."""

import logging
import re
from typing import Any, List

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

IMPORT_RE = re.compile(r"^import\s+(static\s+)?([\w.]+(?:\.\*)?)\s*;")
CLASS_RE = re.compile(
    r"^(?:\s*@\w+(?:\([^)]*\))?\s*)*\s*(public|private|protected)?\s*(?:static\s+)?"
    r"(?:abstract\s+)?(?:final\s+)?(?:class|interface|enum)\s+(\w+)"
    r"(?:\s+extends\s+(\w+))?(?:\s+implements\s+([\w,\s]+))?\s*\{"
)
METHOD_RE = re.compile(
    r"^\s*(?:@\w+(?:\([^)]*\))?\s*)*\s*(?:public|private|protected)?\s*(?:static\s+)?"
    r"(?:final\s+)?(?:synchronized\s+)?(?:<[\w\s,?]+>\s+)?(\w[\w<>\[\],\s]*?)\s+(\w+)\s*"
    r"\(([^)]*)\)\s*(?:throws\s+[\w,\s]+)?\s*\{"
)
FIELD_RE = re.compile(
    r"^\s*(?:public|private|protected)?\s*(?:static\s+)?(?:final\s+)?"
    r"(\w[\w<>\[\],\s]*?)\s+(\w+)\s*[;=]"
)

# Statements that look like method headers to the regex
_NOT_METHODS = {"if", "for", "while", "switch", "catch", "return", "new", "else"}


def _import_name(source: str) -> str:
    return source.rsplit(".", 1)[-1]


class JavaParser(CodeParser):
    """Parser for ``.java`` sources. ``public`` types count as exported."""

    language = "java"
    file_extensions = [".java"]

    def grammar_for(self, file_path: str) -> str:
        return "java"

    def parse_with_tree_sitter(self, root: Any, code: str, file_path: str) -> ParsedFile:
        classes: List[ClassInfo] = []
        imports: List[ImportInfo] = []

        def walk(node: Any) -> None:
            if node.type == "import_declaration":
                source = node_text(node)
                source = re.sub(r"^import\s+", "", source)
                source = re.sub(r"^static\s+", "", source).rstrip(";").strip()
                source = re.sub(r"\s+", "", source)
                imports.append(
                    ImportInfo(
                        source=source,
                        line=start_line(node),
                        specifiers=[ImportSpecifier(name=_import_name(source))],
                    )
                )
                return

            if node.type in ("class_declaration", "interface_declaration", "enum_declaration"):
                classes.append(self._class_from_node(node))
                # Members were collected above; nested bodies are not walked again
                return

            for child in node.named_children:
                walk(child)

        walk(root)
        return ParsedFile(file_path=file_path, language=self.language, classes=classes, imports=imports)

    def _class_from_node(self, node: Any) -> ClassInfo:
        name_node = node.child_by_field_name("name")
        body_node = node.child_by_field_name("body")

        extends_name = None
        superclass = node.child_by_field_name("superclass")
        if superclass is not None and superclass.named_children:
            extends_name = node_text(superclass.named_children[-1])

        implements: List[str] = []
        for child in node.children:
            if child.type in ("super_interfaces", "extends_interfaces"):
                for type_list in child.named_children:
                    targets = type_list.named_children if type_list.type == "type_list" else [type_list]
                    implements.extend(node_text(t) for t in targets)

        is_public = False
        for child in node.children:
            if child.type == "modifiers":
                is_public = any(node_text(m) == "public" for m in child.children)

        methods: List[FunctionInfo] = []
        properties: List[PropertyInfo] = []
        if body_node is not None:
            for member in body_node.named_children:
                if member.type in ("method_declaration", "constructor_declaration"):
                    m_name = member.child_by_field_name("name")
                    m_params = member.child_by_field_name("parameters")
                    m_type = member.child_by_field_name("type")
                    m_body = member.child_by_field_name("body")
                    methods.append(
                        FunctionInfo(
                            name=node_text(m_name)
                            or ("<init>" if member.type == "constructor_declaration" else "<anonymous>"),
                            params=node_text(m_params) or "()",
                            return_type=node_text(m_type) or "void",
                            body=node_text(m_body),
                            start_line=start_line(member),
                            end_line=end_line(member),
                        )
                    )
                elif member.type == "field_declaration":
                    f_type = node_text(member.child_by_field_name("type"))
                    for decl in member.named_children:
                        if decl.type == "variable_declarator":
                            properties.append(
                                PropertyInfo(name=node_text(decl.child_by_field_name("name")), type=f_type)
                            )

        return ClassInfo(
            name=node_text(name_node) or "<anonymous>",
            start_line=start_line(node),
            end_line=end_line(node),
            methods=methods,
            properties=properties,
            is_exported=is_public,
            extends=extends_name,
            implements=implements,
        )

    def parse_with_regex(self, code: str, file_path: str) -> ParsedFile:
        lines = code.split("\n")
        classes: List[ClassInfo] = []
        imports: List[ImportInfo] = []
        exports: List[ExportInfo] = []

        for i, raw in enumerate(lines):
            match = IMPORT_RE.match(raw.strip())
            if match:
                source = match.group(2)
                imports.append(
                    ImportInfo(source=source, line=i + 1, specifiers=[ImportSpecifier(name=_import_name(source))])
                )

        for i, raw in enumerate(lines):
            line = raw.strip()
            match = CLASS_RE.match(line)
            if not match:
                continue

            # Annotations directly above the declaration belong to the class
            annotation_start = i
            while annotation_start > 0 and lines[annotation_start - 1].strip().startswith("@"):
                annotation_start -= 1

            close = find_closing_brace(lines, i)
            implements_raw = match.group(4)
            implements = [s.strip() for s in implements_raw.split(",") if s.strip()] if implements_raw else []

            methods: List[FunctionInfo] = []
            properties: List[PropertyInfo] = []

            # Members declared on the header line itself, e.g. `class Foo { void bar() {} }`
            remainder = line[line.index("{") + 1:].strip()
            header_method = METHOD_RE.match(remainder)
            if header_method and header_method.group(2) not in _NOT_METHODS:
                methods.append(
                    FunctionInfo(
                        name=header_method.group(2),
                        params=f"({header_method.group(3)})",
                        return_type=header_method.group(1),
                        body=remainder,
                        start_line=i + 1,
                        end_line=i + 1,
                    )
                )

            j = i + 1
            while j < close:
                member = lines[j].strip()
                method_match = METHOD_RE.match(member)
                if method_match and method_match.group(2) not in _NOT_METHODS:
                    m_close = find_closing_brace(lines, j)
                    methods.append(
                        FunctionInfo(
                            name=method_match.group(2),
                            params=f"({method_match.group(3)})",
                            return_type=method_match.group(1),
                            body="\n".join(lines[j:m_close + 1]),
                            start_line=j + 1,
                            end_line=m_close + 1,
                        )
                    )
                    j = m_close + 1
                    continue

                field_match = FIELD_RE.match(member)
                if field_match and "(" not in member:
                    properties.append(PropertyInfo(name=field_match.group(2), type=field_match.group(1)))
                j += 1

            classes.append(
                ClassInfo(
                    name=match.group(2),
                    start_line=annotation_start + 1,
                    end_line=close + 1,
                    methods=methods,
                    properties=properties,
                    is_exported=match.group(1) == "public",
                    extends=match.group(3),
                    implements=implements,
                )
            )

        return ParsedFile(
            file_path=file_path,
            language=self.language,
            classes=classes,
            imports=imports,
            exports=exports,
        )
