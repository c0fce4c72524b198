"""Tests for source collection, snippets, repo ids, framework detection and repo metadata."""

from pathlib import Path

import pytest

from src.indexer.framework_detector import (
    FRAMEWORK_IDS,
    detect_frameworks,
    detect_primary_framework,
    normalize_framework,
)
from src.indexer.repo_identity import derive_repo_id_from_url, parse_bitbucket_pr_url
from src.indexer.repo_meta import RepoMeta, RepoMetaStore
from src.indexer.snippets import extract_snippets
from src.indexer.source_collector import collect_source_files, filter_changed_files, is_repo_relative


def _write(root: Path, files: dict) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


# ----------------------------------------------------------------------
# Source collection
# ----------------------------------------------------------------------


def test_collect_skips_dependencies_and_unknown_extensions(sample_repo):
    _write(
        sample_repo,
        {
            "node_modules/lib/index.js": "export const x = 1;",
            "dist/bundle.js": "var a;",
            "README.md": "# readme",
            "templates/page.ftl": "<p/>",
        },
    )
    files = collect_source_files(str(sample_repo))
    rel = [Path(f).relative_to(sample_repo.resolve()).as_posix() for f in files]
    assert rel == [
        "src/main.ts",
        "src/services/user.ts",
        "src/utils/format.ts",
        "templates/page.ftl",
    ]
    assert all(Path(f).is_absolute() for f in files)


def test_collect_honours_exclude_patterns(sample_repo):
    files = collect_source_files(str(sample_repo), exclude_patterns=["src/utils", "*main.ts"])
    assert [Path(f).name for f in files] == ["user.ts"]


def test_collect_skips_large_files(sample_repo):
    files = collect_source_files(str(sample_repo), max_file_size=100)
    assert "format.ts" not in [Path(f).name for f in files]


def test_filter_changed_files(sample_repo):
    result = filter_changed_files(
        str(sample_repo),
        ["src/main.ts", "src/deleted.ts", "README.md", "src/services/user.ts"],
    )
    assert [Path(p).name for p in result] == ["main.ts", "user.ts"]


def test_filter_changed_files_stays_inside_root(sample_repo):
    outside = sample_repo.parent / "outside.ts"
    outside.write_text("export function leak() {}\n")
    (sample_repo / "src" / "linked.ts").symlink_to(outside)

    result = filter_changed_files(
        str(sample_repo),
        ["../outside.ts", str(outside), "src/../../outside.ts", "src/linked.ts", "src/main.ts"],
    )
    assert result == [str(sample_repo.resolve() / "src" / "main.ts")]


@pytest.mark.parametrize(
    "path,expected",
    [
        ("src/main.ts", True),
        ("./src/main.ts", True),
        ("../outside.ts", False),
        ("src/../../outside.ts", False),
        ("/etc/passwd.ts", False),
        ("C:\\repo\\main.ts", False),
        ("", False),
    ],
)
def test_is_repo_relative(path, expected):
    assert is_repo_relative(path) is expected


# ----------------------------------------------------------------------
# Snippets
# ----------------------------------------------------------------------


def test_snippets_name_methods_by_class(parsed_sample):
    snippets = extract_snippets(parsed_sample)
    assert [s.name for s in snippets] == ["main", "UserService.greet", "formatName", "shout"]
    greet = snippets[1]
    assert greet.file == "src/services/user.ts"
    assert "formatName(first, last)" in greet.code


def test_methodless_class_becomes_declaration(registry):
    parsed = registry.parse_file("export class Empty extends Base {}\n", "empty.ts")
    snippets = extract_snippets([parsed])
    assert [(s.name, s.code) for s in snippets] == [("Empty", "class Empty extends Base")]


# ----------------------------------------------------------------------
# Repository identity
# ----------------------------------------------------------------------


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://bitbucket.org/acme/shop.git", "acme/shop"),
        ("https://user@bitbucket.org/acme/shop", "acme/shop"),
        ("git@bitbucket.org:acme/shop.git", "acme/shop"),
        ("https://github.com/octo/hello-world.git", "github.com/octo/hello-world"),
        ("ssh://git@gitlab.example.com/team/api.git", "gitlab.example.com/team/api"),
        ("not a url", "not a url"),
    ],
)
def test_derive_repo_id(url, expected):
    assert derive_repo_id_from_url(url).repo_id == expected


def test_derive_repo_id_bitbucket_parts():
    identity = derive_repo_id_from_url("https://bitbucket.org/acme/shop.git")
    assert identity.workspace == "acme"
    assert identity.repo_slug == "shop"


def test_derive_repo_id_local_directory(sample_repo):
    assert derive_repo_id_from_url(str(sample_repo)).repo_id == "local/sample-repo"
    assert derive_repo_id_from_url(f"file://{sample_repo}").repo_id == "local/sample-repo"


def test_parse_bitbucket_pr_url():
    assert parse_bitbucket_pr_url("https://bitbucket.org/acme/shop/pull-requests/42") == ("acme", "shop", 42)
    assert parse_bitbucket_pr_url("https://github.com/acme/shop/pull/42") is None


# ----------------------------------------------------------------------
# Framework detection
# ----------------------------------------------------------------------


def test_detect_react_over_typescript(temp_dir):
    _write(
        temp_dir,
        {
            "package.json": '{"dependencies": {"react": "^18", "react-dom": "^18"}}',
            "tsconfig.json": "{}",
            "src/App.tsx": "export const App = () => null;",
        },
    )
    detections = detect_frameworks(str(temp_dir))
    assert detections[0].framework == "react"
    assert detections[0].confidence == 0.8
    typescript = next(d for d in detections if d.framework == "typescript")
    assert typescript.confidence == 0.3
    assert "node_modules" in detections[0].exclude_patterns


def test_detect_flutter(temp_dir):
    _write(
        temp_dir,
        {"pubspec.yaml": "dependencies:\n  flutter:\n    sdk: flutter\ndev_dependencies:\n  flutter_test:\n"},
    )
    assert detect_primary_framework(str(temp_dir)) == "flutter"


def test_detect_java_with_spring(temp_dir):
    _write(
        temp_dir,
        {
            "pom.xml": "<project><parent>org.springframework.boot</parent></project>",
            "src/main/java/App.java": "public class App {}",
        },
    )
    detections = detect_frameworks(str(temp_dir))
    assert detections[0].framework == "java"
    assert detections[0].confidence == 0.6


def test_detect_templates_only(temp_dir):
    _write(temp_dir, {"views/home.ftl": "<p/>"})
    assert detect_primary_framework(str(temp_dir)) == "ftl"


def test_detect_unknown(temp_dir):
    assert detect_frameworks(str(temp_dir)) == []
    assert detect_primary_framework(str(temp_dir)) == "unknown"


def test_normalize_framework():
    assert normalize_framework(" React ") == "react"
    assert normalize_framework("spring-boot") == "spring-boot"
    assert normalize_framework("rails") is None
    assert normalize_framework(None) is None
    assert len(FRAMEWORK_IDS) == 6


# ----------------------------------------------------------------------
# Repository metadata
# ----------------------------------------------------------------------


def test_repo_meta_persists(temp_dir):
    store = RepoMetaStore(temp_dir / "index")
    store.set(RepoMeta(repo_id="acme/shop", repo_url="https://bitbucket.org/acme/shop.git", branch="dev"))
    store.set(RepoMeta(repo_id="acme/api", repo_url="https://bitbucket.org/acme/api.git", updated_at=1.0))

    reopened = RepoMetaStore(temp_dir / "index")
    meta = reopened.get("acme/shop")
    assert meta.branch == "dev"
    assert meta.updated_at is not None
    assert [m.repo_id for m in reopened.list()] == ["acme/shop", "acme/api"]
    assert meta.to_dict()["repoUrl"] == "https://bitbucket.org/acme/shop.git"


def test_repo_meta_in_memory():
    store = RepoMetaStore()
    store.set(RepoMeta(repo_id="local/app", repo_url="/srv/app"))
    assert store.get("local/app").repo_url == "/srv/app"
    assert store.get("local/none") is None
