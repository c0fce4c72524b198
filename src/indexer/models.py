"""Data models for parsed source structure and the knowledge graph."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class FunctionInfo:
    """A top-level function or a class method."""

    name: str
    params: str
    return_type: Optional[str]
    body: str
    start_line: int  # 1-based
    end_line: int
    is_exported: bool = False
    is_async: bool = False


@dataclass
class PropertyInfo:
    """A typed class member."""

    name: str
    type: str


@dataclass
class ClassInfo:
    """A class, interface, enum or mixin declaration."""

    name: str
    start_line: int
    end_line: int
    methods: List[FunctionInfo] = field(default_factory=list)
    properties: List[PropertyInfo] = field(default_factory=list)
    is_exported: bool = False
    extends: Optional[str] = None  # single parent
    implements: List[str] = field(default_factory=list)  # interfaces and mixins


@dataclass
class ImportSpecifier:
    """A single name brought in by an import."""

    name: str
    alias: Optional[str] = None
    is_default: bool = False


@dataclass
class ImportInfo:
    """An import statement."""

    source: str
    line: int
    specifiers: List[ImportSpecifier] = field(default_factory=list)


@dataclass
class ExportInfo:
    """An exported name."""

    name: str
    line: int
    is_default: bool = False


@dataclass
class ParsedFile:
    """Structural summary of one source file.

    Built fresh by a parser and never mutated afterwards.
    """

    file_path: str
    language: str
    functions: List[FunctionInfo] = field(default_factory=list)
    classes: List[ClassInfo] = field(default_factory=list)
    imports: List[ImportInfo] = field(default_factory=list)
    exports: List[ExportInfo] = field(default_factory=list)

    @classmethod
    def empty(cls, file_path: str, language: str) -> "ParsedFile":
        return cls(file_path=file_path, language=language)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CodeSnippet:
    """An embeddable unit: a function, a method or a method-less class."""

    name: str
    code: str
    file: str
    start_line: int
    end_line: int


@dataclass
class GraphNode:
    """A node of the knowledge graph.

    ``key`` is the stable identity (path plus qualified name); ``id`` is the
    opaque surrogate derived from it.
    """

    id: str
    key: str
    label: str  # File, Function or Class
    name: str
    file: str  # origin file path
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "label": self.label,
            "name": self.name,
            "path": self.file,
        }
        result.update(self.attributes)
        return result


@dataclass
class GraphLink:
    """A typed, directed edge owned by the file it was derived from."""

    source: str
    target: str
    type: str  # CONTAINS, CALLS, IMPORTS, HAS_METHOD, EXTENDS, IMPLEMENTS
    origin: str
    weight: Optional[int] = None
    line: Optional[int] = None
    symbols: Optional[List[str]] = None

    @property
    def identity(self) -> tuple:
        return (self.source, self.target, self.type)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"source": self.source, "target": self.target, "type": self.type}
        if self.weight is not None:
            result["weight"] = self.weight
        if self.line is not None:
            result["line"] = self.line
        if self.symbols:
            result["symbols"] = list(self.symbols)
        return result
