"""Tests for knowledge graph assembly, incremental merges and views."""

import threading

from src.indexer.graph_builder import (
    KnowledgeGraph,
    file_key,
    function_key,
    make_node_id,
)
from src.indexer.models import FunctionInfo, ParsedFile

REPO = "acme/shop"


def _graph(parsed_files) -> KnowledgeGraph:
    graph = KnowledgeGraph(REPO)
    graph.build(parsed_files)
    return graph


def _links_of_type(graph: KnowledgeGraph, kind: str):
    return [link for link in graph.live_links() if link.type == kind]


def test_build_counts(parsed_sample):
    graph = _graph(parsed_sample)
    assert graph.counts() == {"files": 3, "functions": 4, "classes": 1}


def test_node_ids_are_stable(parsed_sample):
    """The same input produces the same ids in a fresh graph."""
    first = _graph(parsed_sample)
    second = _graph(parsed_sample)
    assert set(first.nodes) == set(second.nodes)
    assert make_node_id(REPO, file_key("src/main.ts")) in first.nodes
    assert make_node_id("other/repo", file_key("src/main.ts")) not in first.nodes


def test_imports_resolve_relative_paths(parsed_sample):
    graph = _graph(parsed_sample)
    imports = {(graph.nodes[l.source].file, graph.nodes[l.target].file) for l in _links_of_type(graph, "IMPORTS")}
    assert imports == {
        ("src/services/user.ts", "src/utils/format.ts"),
        ("src/main.ts", "src/services/user.ts"),
    }
    user_import = next(l for l in _links_of_type(graph, "IMPORTS") if l.origin == "src/services/user.ts")
    assert user_import.symbols == ["formatName"]


def test_method_call_into_imported_file(parsed_sample):
    """UserService.greet calls formatName in the imported helper module."""
    graph = _graph(parsed_sample)
    calls = _links_of_type(graph, "CALLS")
    greet = make_node_id(REPO, function_key("src/services/user.ts", "UserService.greet"))
    format_name = make_node_id(REPO, function_key("src/utils/format.ts", "formatName"))
    assert [(l.source, l.target) for l in calls] == [(greet, format_name)]
    assert calls[0].weight == 1
    assert calls[0].line == 5


def test_class_has_method(parsed_sample):
    graph = _graph(parsed_sample)
    has_method = _links_of_type(graph, "HAS_METHOD")
    assert len(has_method) == 1
    assert graph.nodes[has_method[0].target].name == "UserService.greet"


def test_resolve_import_variants(parsed_sample):
    graph = _graph(parsed_sample)
    assert graph.resolve_import("./utils/format", "src/main.ts") == "src/utils/format.ts"
    assert graph.resolve_import("@/services/user", "src/main.ts") == "src/services/user.ts"
    assert graph.resolve_import("react", "src/main.ts") is None
    assert graph.resolve_import("com.example.*", "src/main.ts") is None


def test_incremental_leaves_unchanged_files_identical(registry, sample_sources, parsed_sample):
    """Editing the helper module leaves the nodes and links of other files untouched."""
    graph = _graph(parsed_sample)
    before = {path: graph.file_snapshot(path) for path in ("src/main.ts", "src/services/user.ts")}

    edited = sample_sources["src/utils/format.ts"] + (
        "\nexport function whisper(text: string): string {\n  return text.toLowerCase();\n}\n"
    )
    changed = registry.parse_file(edited, "src/utils/format.ts")
    graph.apply_incremental([changed], ["src/utils/format.ts"])

    for path, snapshot in before.items():
        assert graph.file_snapshot(path) == snapshot
    assert graph.counts() == {"files": 3, "functions": 5, "classes": 1}


def test_incremental_matches_full_rebuild(registry, sample_sources, parsed_sample):
    edited_sources = dict(sample_sources)
    edited_sources["src/main.ts"] = (
        "import { shout } from './utils/format';\n"
        "\n"
        "export function main(): void {\n"
        "  shout('hi');\n"
        "}\n"
    )
    incremental = _graph(parsed_sample)
    incremental.apply_incremental([registry.parse_file(edited_sources["src/main.ts"], "src/main.ts")], ["src/main.ts"])

    full = _graph([registry.parse_file(code, path) for path, code in sorted(edited_sources.items())])
    assert incremental.full() == full.full()


def test_deleted_file_is_removed(parsed_sample):
    graph = _graph(parsed_sample)
    graph.apply_incremental([], ["src/utils/format.ts"])
    assert graph.counts() == {"files": 2, "functions": 2, "classes": 1}
    # The dangling call from greet stays owned by user.ts but is no longer rendered
    assert _links_of_type(graph, "CALLS") == []
    assert any(l.type == "CALLS" for l in graph.links.values())


def test_rebuild_is_idempotent(parsed_sample):
    graph = _graph(parsed_sample)
    first = graph.full()
    graph.build(parsed_sample)
    assert graph.full() == first


def test_full_view_connection_counts(parsed_sample):
    view = _graph(parsed_sample).full()
    assert len(view["nodes"]) == 8
    by_name = {n["name"]: n for n in view["nodes"]}
    # format.ts: CONTAINS x2 plus the IMPORTS from user.ts
    assert by_name["src/utils/format.ts"]["connectionCount"] == 3
    assert by_name["formatName"]["label"] == "Function"
    assert by_name["formatName"]["isExported"] is True
    assert all(l["source"] and l["target"] for l in view["links"])


def test_overview_aggregates_per_file_pair(parsed_sample):
    graph = _graph(parsed_sample)
    view = graph.overview()
    assert {n["label"] for n in view["nodes"]} == {"File"}
    assert len(view["nodes"]) == 3

    user = make_node_id(REPO, file_key("src/services/user.ts"))
    fmt = make_node_id(REPO, file_key("src/utils/format.ts"))
    main = make_node_id(REPO, file_key("src/main.ts"))
    edges = {(l["source"], l["target"], l["type"]): l["weight"] for l in view["links"]}
    assert edges == {
        (user, fmt, "IMPORTS"): 1,
        (user, fmt, "CALLS"): 1,
        (main, user, "IMPORTS"): 1,
    }


def test_neighborhood_includes_callers(parsed_sample):
    graph = _graph(parsed_sample)
    result = graph.neighborhood(["src/utils/format.ts"])
    assert {s["name"] for s in result["symbols"]} == {"src/utils/format.ts", "formatName", "shout"}
    assert [r["name"] for r in result["related"]] == ["UserService.greet"]


def test_load_restores_persisted_graph(parsed_sample):
    graph = _graph(parsed_sample)
    restored = KnowledgeGraph(REPO)
    restored.load(list(graph.nodes.values()), list(graph.links.values()))
    assert restored.full() == graph.full()
    assert restored.counts() == graph.counts()


def _bulk_files(file_count: int, function_count: int):
    files = []
    for i in range(file_count):
        functions = [
            FunctionInfo(
                name=f"fn{i}_{j}",
                params="()",
                return_type=None,
                body=f"{{ fn{i}_{(j + 1) % function_count}(); }}",
                start_line=j + 1,
                end_line=j + 1,
            )
            for j in range(function_count)
        ]
        files.append(ParsedFile(file_path=f"src/mod{i}.ts", language="typescript", functions=functions))
    return files


def test_readers_never_see_a_partial_merge():
    """Views read during an incremental merge show either the old graph or the new one."""
    files = _bulk_files(20, 100)
    graph = _graph(files)
    expected_counts = graph.counts()
    expected_links = len(graph.live_links())
    paths = [f.file_path for f in files]

    done = threading.Event()
    seen = []

    def merge():
        try:
            for _ in range(3):
                graph.apply_incremental(files, paths)
        finally:
            done.set()

    worker = threading.Thread(target=merge)
    worker.start()
    while not done.is_set():
        seen.append((graph.counts(), len(graph.live_links())))
    worker.join()

    assert all(entry == (expected_counts, expected_links) for entry in seen)
    assert graph.counts() == expected_counts
