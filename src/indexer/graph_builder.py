"""Knowledge graph assembly from parsed files.

Nodes:
    File     key ``File:<path>``
    Function key ``Function:<path>::<qualified name>`` (methods are ``Class.method``)
    Class    key ``Class:<path>::<name>``

Edges:
    (File)-[:CONTAINS]->(Function|Class)
    (Class)-[:HAS_METHOD]->(Function)
    (Function)-[:CALLS]->(Function)
    (File)-[:IMPORTS]->(File)
    (Class)-[:EXTENDS]->(Class)
    (Class)-[:IMPLEMENTS]->(Class)

Node ids are a hash of the repo id and key, so re-parsing a file yields the
same ids. Every node and link is owned by the file it was derived from;
incremental updates replace exactly the nodes and links owned by the changed
files and leave everything else untouched.
"""

import logging
import posixpath
import re
import threading
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import blake3

from .models import ClassInfo, FunctionInfo, GraphLink, GraphNode, ParsedFile

logger = logging.getLogger(__name__)

FILE = "File"
FUNCTION = "Function"
CLASS = "Class"

# Edge types that survive aggregation into the file-level overview
OVERVIEW_LINK_TYPES = ("CALLS", "IMPORTS", "EXTENDS", "IMPLEMENTS")

IMPORT_EXTENSIONS = ["", ".ts", ".tsx", ".js", ".jsx", ".java", ".dart", "/index.ts", "/index.js"]
SUFFIX_EXTENSIONS = ["", ".ts", ".tsx", ".js", ".jsx", ".java", ".dart"]

CALL_RE = re.compile(r"(?<![.\w])(\w+)\s*\(")
MEMBER_CALL_RE = re.compile(r"(?<![\w])(\w+)\.(\w+)\s*\(")

# Identifiers that look like calls but never name project functions
NOISE_IDENTIFIERS = frozenset({
    # JS/TS keywords and built-ins
    "if", "else", "for", "while", "do", "switch", "case", "return", "throw",
    "try", "catch", "finally", "new", "delete", "typeof", "void", "in",
    "instanceof", "break", "continue", "default", "yield", "await",
    "import", "export", "from", "as", "class", "extends", "super", "this",
    "constructor", "get", "set", "static", "async",
    "console", "log", "warn", "error", "info", "debug",
    "require", "module", "exports",
    "Array", "Object", "String", "Number", "Boolean", "Date", "Math",
    "JSON", "Promise", "Map", "Set", "RegExp", "Error", "Symbol",
    "parseInt", "parseFloat", "isNaN", "isFinite", "undefined", "null",
    "true", "false", "NaN", "Infinity",
    # Java
    "System", "Override", "public", "private", "protected", "synchronized",
    # Dart
    "print", "setState", "assert",
})


def make_node_id(repo_id: str, key: str) -> str:
    """Opaque node id derived from the stable key only."""
    return blake3.blake3(f"{repo_id}:{key}".encode()).hexdigest()[:16]


def file_key(path: str) -> str:
    return f"{FILE}:{path}"


def function_key(path: str, qualified_name: str) -> str:
    return f"{FUNCTION}:{path}::{qualified_name}"


def class_key(path: str, name: str) -> str:
    return f"{CLASS}:{path}::{name}"


class KnowledgeGraph:
    """In-memory code knowledge graph of one repository."""

    def __init__(self, repo_id: str):
        self.repo_id = repo_id
        self.nodes: Dict[str, GraphNode] = {}
        self.links: Dict[Tuple[str, str, str], GraphLink] = {}
        self._symbols: Optional[Dict[str, Dict[str, List[GraphNode]]]] = None
        # Guards swapping nodes and links together; published dicts are never mutated
        self._swap_lock = threading.Lock()

    def _swap(self, nodes: Dict[str, GraphNode], links: Dict[Tuple[str, str, str], GraphLink]) -> None:
        with self._swap_lock:
            self.nodes, self.links, self._symbols = nodes, links, None

    def _snapshot(self) -> Tuple[Dict[str, GraphNode], Dict[Tuple[str, str, str], GraphLink]]:
        with self._swap_lock:
            return self.nodes, self.links

    def _staged(self, drop: Set[str]) -> "KnowledgeGraph":
        """A private copy of this graph without the nodes and links owned by the dropped paths."""
        nodes, links = self._snapshot()
        staged = KnowledgeGraph(self.repo_id)
        staged.nodes = {nid: n for nid, n in nodes.items() if n.file not in drop}
        staged.links = {lid: link for lid, link in links.items() if link.origin not in drop}
        return staged

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build(self, parsed_files: Iterable[ParsedFile]) -> None:
        """Replace the whole graph with one built from the given files."""
        files = sorted(parsed_files, key=lambda f: f.file_path)
        staged = KnowledgeGraph(self.repo_id)
        staged._insert(files)
        self._swap(staged.nodes, staged.links)
        logger.info(f"Built graph for {self.repo_id}: {self.counts()}")

    def apply_incremental(self, parsed_files: Iterable[ParsedFile], changed_paths: Iterable[str]) -> None:
        """Replace the nodes and links owned by the changed files.

        The new contents are assembled off to the side and published in one
        swap, so concurrent readers see either the old graph or the new one.

        Args:
            parsed_files: Fresh parse results for the changed files that still exist
            changed_paths: Every changed path, including deleted files
        """
        files = sorted(parsed_files, key=lambda f: f.file_path)
        paths = set(changed_paths) | {f.file_path for f in files}
        staged = self._staged(paths)
        staged._insert(files)
        self._swap(staged.nodes, staged.links)
        logger.info(f"Merged {len(paths)} changed files into graph for {self.repo_id}: {self.counts()}")

    def remove_files(self, paths: Iterable[str]) -> None:
        """Drop every node and link whose origin is one of the paths.

        Links owned by other files are kept even if their target disappears;
        views only render links whose endpoints both exist.
        """
        doomed = set(paths)
        if not doomed:
            return
        staged = self._staged(doomed)
        self._swap(staged.nodes, staged.links)

    def _insert(self, files: List[ParsedFile]) -> None:
        for parsed in files:
            for node in self._nodes_for_file(parsed):
                # First declaration wins for duplicate keys (e.g. Java overloads)
                self.nodes.setdefault(node.id, node)
        self._symbols = None

        for parsed in files:
            for link in self._links_for_file(parsed):
                existing = self.links.get(link.identity)
                if existing is not None and existing.origin == link.origin and link.symbols:
                    merged = list(existing.symbols or [])
                    merged.extend(s for s in link.symbols if s not in merged)
                    existing.symbols = merged
                    continue
                self.links.setdefault(link.identity, link)

    def _node(self, key: str, label: str, name: str, path: str, attributes: Dict[str, Any]) -> GraphNode:
        return GraphNode(
            id=make_node_id(self.repo_id, key),
            key=key,
            label=label,
            name=name,
            file=path,
            attributes=attributes,
        )

    def _function_attributes(self, fn: FunctionInfo) -> Dict[str, Any]:
        return {
            "startLine": fn.start_line,
            "endLine": fn.end_line,
            "isExported": fn.is_exported,
            "isAsync": fn.is_async,
            "params": fn.params,
            "returnType": fn.return_type,
        }

    def _nodes_for_file(self, parsed: ParsedFile) -> List[GraphNode]:
        path = parsed.file_path
        nodes = [self._node(file_key(path), FILE, path, path, {"language": parsed.language})]

        for fn in parsed.functions:
            nodes.append(self._node(function_key(path, fn.name), FUNCTION, fn.name, path,
                                    self._function_attributes(fn)))

        for cls in parsed.classes:
            nodes.append(
                self._node(
                    class_key(path, cls.name),
                    CLASS,
                    cls.name,
                    path,
                    {
                        "startLine": cls.start_line,
                        "endLine": cls.end_line,
                        "isExported": cls.is_exported,
                        "extendsName": cls.extends,
                        "propertyCount": len(cls.properties),
                        "methodCount": len(cls.methods),
                    },
                )
            )
            for method in cls.methods:
                qualified = f"{cls.name}.{method.name}"
                nodes.append(self._node(function_key(path, qualified), FUNCTION, qualified, path,
                                        self._function_attributes(method)))
        return nodes

    # ------------------------------------------------------------------
    # Symbol resolution
    # ------------------------------------------------------------------

    def _symbol_table(self) -> Dict[str, Dict[str, List[GraphNode]]]:
        symbols = self._symbols
        if symbols is None:
            nodes, _ = self._snapshot()
            symbols = {FILE: {}, FUNCTION: {}, CLASS: {}}
            for node in sorted(nodes.values(), key=lambda n: n.key):
                symbols[node.label].setdefault(node.name, []).append(node)
            with self._swap_lock:
                if self.nodes is nodes:
                    self._symbols = symbols
        return symbols

    def _pick(self, candidates: List[GraphNode], path: str, imported: Set[str]) -> Optional[GraphNode]:
        """Prefer a candidate in the same file, then one in an imported file, then the first by path."""
        if not candidates:
            return None
        for node in candidates:
            if node.file == path:
                return node
        for node in candidates:
            if node.file in imported:
                return node
        return candidates[0]

    def resolve_import(self, source: str, current_file: str) -> Optional[str]:
        """Resolve an import source to a known file path, or None."""
        # Keys are in path order since the table is built from key-sorted nodes
        path_set = self._symbol_table()[FILE]
        paths = path_set.keys()

        if source.startswith(".") or source.startswith("/"):
            base = posixpath.dirname(current_file)
            resolved = posixpath.normpath(posixpath.join(base, source)) if source.startswith(".") else source.lstrip("/")
            for ext in IMPORT_EXTENSIONS:
                candidate = resolved + ext
                if candidate in path_set:
                    return candidate
            return None

        cleaned = re.sub(r"^package:[^/]+/", "", source)
        cleaned = cleaned.lstrip("@/")
        if "/" not in cleaned and "." in cleaned and not cleaned.endswith(".dart"):
            # Java dotted import; wildcard imports name a package, not a file
            if cleaned.endswith(".*"):
                return None
            cleaned = cleaned.replace(".", "/")

        for ext in SUFFIX_EXTENSIONS:
            target = cleaned + ext
            for path in paths:
                if path == target or path.endswith("/" + target):
                    return path
        return None

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def _links_for_file(self, parsed: ParsedFile) -> List[GraphLink]:
        path = parsed.file_path
        origin = path
        file_id = make_node_id(self.repo_id, file_key(path))
        links: List[GraphLink] = []

        def link(source: str, target: str, kind: str, **extra: Any) -> None:
            links.append(GraphLink(source=source, target=target, type=kind, origin=origin, **extra))

        imported: Set[str] = set()
        for imp in parsed.imports:
            resolved = self.resolve_import(imp.source, path)
            if resolved and resolved != path:
                imported.add(resolved)
                link(file_id, make_node_id(self.repo_id, file_key(resolved)), "IMPORTS",
                     symbols=[s.name for s in imp.specifiers])

        for fn in parsed.functions:
            link(file_id, make_node_id(self.repo_id, function_key(path, fn.name)), "CONTAINS")

        for cls in parsed.classes:
            class_id = make_node_id(self.repo_id, class_key(path, cls.name))
            link(file_id, class_id, "CONTAINS")
            for method in cls.methods:
                link(class_id, make_node_id(self.repo_id, function_key(path, f"{cls.name}.{method.name}")),
                     "HAS_METHOD")
            links.extend(self._inheritance_links(cls, class_id, path, origin, imported))

        callers: List[Tuple[str, Optional[ClassInfo], FunctionInfo]] = [(fn.name, None, fn) for fn in parsed.functions]
        for cls in parsed.classes:
            callers.extend((f"{cls.name}.{m.name}", cls, m) for m in cls.methods)
        for qualified, cls, fn in callers:
            links.extend(self._call_links(qualified, cls, fn, path, origin, imported))

        return links

    def _inheritance_links(
        self, cls: ClassInfo, class_id: str, path: str, origin: str, imported: Set[str]
    ) -> List[GraphLink]:
        classes = self._symbol_table()[CLASS]
        links = []
        parents = [("EXTENDS", cls.extends)] if cls.extends else []
        parents += [("IMPLEMENTS", name) for name in cls.implements]
        for kind, name in parents:
            target = self._pick(classes.get(name, []), path, imported)
            if target is not None and target.id != class_id:
                links.append(GraphLink(source=class_id, target=target.id, type=kind, origin=origin))
        return links

    def _call_links(
        self,
        qualified: str,
        cls: Optional[ClassInfo],
        fn: FunctionInfo,
        path: str,
        origin: str,
        imported: Set[str],
    ) -> List[GraphLink]:
        if not fn.body:
            return []

        functions = self._symbol_table()[FUNCTION]
        caller_id = make_node_id(self.repo_id, function_key(path, qualified))
        # target id -> [first line, call-site count]
        sites: Dict[str, List[int]] = {}
        order: List[str] = []

        def record(target: Optional[GraphNode], offset: int) -> None:
            if target is None or target.id == caller_id:
                return
            line = fn.start_line + fn.body.count("\n", 0, offset)
            if target.id not in sites:
                sites[target.id] = [line, 0]
                order.append(target.id)
            sites[target.id][1] += 1

        def same_file(name: str) -> Optional[GraphNode]:
            return next((n for n in functions.get(name, []) if n.file == path), None)

        for match in CALL_RE.finditer(fn.body):
            name = match.group(1)
            if name in NOISE_IDENTIFIERS or name == fn.name:
                continue
            target = same_file(name)
            if target is None and cls is not None:
                target = same_file(f"{cls.name}.{name}")
            if target is None:
                target = self._pick(functions.get(name, []), path, imported)
            record(target, match.start())

        for match in MEMBER_CALL_RE.finditer(fn.body):
            obj, method = match.group(1), match.group(2)
            if method in NOISE_IDENTIFIERS:
                continue
            target = None
            if obj == "this" and cls is not None:
                target = same_file(f"{cls.name}.{method}")
            elif obj == "super" and cls is not None and cls.extends:
                target = self._pick(functions.get(f"{cls.extends}.{method}", []), path, imported)
            elif obj not in ("this", "super"):
                target = self._pick(functions.get(f"{obj}.{method}", []), path, imported)
            record(target, match.start())

        return [
            GraphLink(source=caller_id, target=tid, type="CALLS", origin=origin,
                      line=sites[tid][0], weight=sites[tid][1])
            for tid in order
        ]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    # Each view reads one snapshot so a concurrent merge never shows through.

    def counts(self) -> Dict[str, int]:
        nodes, _ = self._snapshot()
        result = {"files": 0, "functions": 0, "classes": 0}
        for node in nodes.values():
            if node.label == FILE:
                result["files"] += 1
            elif node.label == FUNCTION:
                result["functions"] += 1
            elif node.label == CLASS:
                result["classes"] += 1
        return result

    @staticmethod
    def _live(nodes: Dict[str, GraphNode], links: Dict[Tuple[str, str, str], GraphLink]) -> List[GraphLink]:
        return sorted(
            (link for link in links.values() if link.source in nodes and link.target in nodes),
            key=lambda link: (link.origin, link.type, link.source, link.target),
        )

    def live_links(self) -> List[GraphLink]:
        """Links whose endpoints both exist, in a stable order."""
        return self._live(*self._snapshot())

    def full(self) -> Dict[str, List[Dict[str, Any]]]:
        """Every node and every renderable link, with connection counts."""
        all_nodes, all_links = self._snapshot()
        links = self._live(all_nodes, all_links)
        degree: Dict[str, int] = defaultdict(int)
        for link in links:
            degree[link.source] += 1
            degree[link.target] += 1

        nodes = []
        for node in sorted(all_nodes.values(), key=lambda n: n.key):
            item = node.to_dict()
            item["connectionCount"] = degree[node.id]
            nodes.append(item)
        return {"nodes": nodes, "links": [link.to_dict() for link in links]}

    def overview(self) -> Dict[str, List[Dict[str, Any]]]:
        """File nodes only, with cross-file links aggregated per file pair and type."""
        all_nodes, all_links = self._snapshot()
        aggregated: Dict[Tuple[str, str, str], int] = defaultdict(int)
        for link in self._live(all_nodes, all_links):
            if link.type not in OVERVIEW_LINK_TYPES:
                continue
            source_file = make_node_id(self.repo_id, file_key(all_nodes[link.source].file))
            target_file = make_node_id(self.repo_id, file_key(all_nodes[link.target].file))
            if source_file == target_file or source_file not in all_nodes or target_file not in all_nodes:
                continue
            aggregated[(source_file, target_file, link.type)] += link.weight or 1

        degree: Dict[str, int] = defaultdict(int)
        links = []
        for (source, target, kind), weight in sorted(aggregated.items()):
            degree[source] += 1
            degree[target] += 1
            links.append({"source": source, "target": target, "type": kind, "weight": weight})

        nodes = []
        for node in sorted(all_nodes.values(), key=lambda n: n.key):
            if node.label != FILE:
                continue
            item = node.to_dict()
            item["connectionCount"] = degree[node.id]
            nodes.append(item)
        return {"nodes": nodes, "links": links}

    def file_snapshot(self, path: str) -> Dict[str, Any]:
        """Nodes and links owned by one file, in a stable order."""
        nodes, links = self._snapshot()
        return {
            "nodes": [n.to_dict() for n in sorted(nodes.values(), key=lambda n: n.key) if n.file == path],
            "links": [
                link.to_dict()
                for link in sorted(links.values(), key=lambda l: (l.type, l.source, l.target))
                if link.origin == path
            ],
        }

    def neighborhood(self, paths: Iterable[str]) -> Dict[str, Any]:
        """Symbols in the given files plus the functions that call into them or are called by them."""
        nodes, links = self._snapshot()
        wanted = set(paths)
        inside = {nid for nid, n in nodes.items() if n.file in wanted}
        related: Set[str] = set()
        for link in self._live(nodes, links):
            if link.type != "CALLS":
                continue
            if link.target in inside and link.source not in inside:
                related.add(link.source)
            elif link.source in inside and link.target not in inside:
                related.add(link.target)
        return {
            "symbols": [nodes[nid].to_dict() for nid in sorted(inside, key=lambda i: nodes[i].key)],
            "related": [nodes[nid].to_dict() for nid in sorted(related, key=lambda i: nodes[i].key)],
        }

    def nodes_for_files(self, paths: Iterable[str]) -> List[GraphNode]:
        nodes, _ = self._snapshot()
        wanted = set(paths)
        return [n for n in nodes.values() if n.file in wanted]

    def links_for_files(self, paths: Iterable[str]) -> List[GraphLink]:
        _, links = self._snapshot()
        wanted = set(paths)
        return [link for link in links.values() if link.origin in wanted]

    def load(self, nodes: Iterable[GraphNode], links: Iterable[GraphLink]) -> None:
        """Replace the graph contents with previously persisted nodes and links."""
        self._swap({n.id: n for n in nodes}, {link.identity: link for link in links})
