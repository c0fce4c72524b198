"""Tests for unified diff parsing."""

from src.vcs.diff_parser import map_diff_line_to_file_line, parse_diff

SAMPLE_DIFF = """diff --git a/src/app.ts b/src/app.ts
index 1111111..2222222 100644
--- a/src/app.ts
+++ b/src/app.ts
@@ -1,4 +1,5 @@
 import { a } from './a';
-const x = 1;
+const x = 2;
+const y = 3;
 export function run() {
   return x;
diff --git a/src/new.ts b/src/new.ts
new file mode 100644
--- /dev/null
+++ b/src/new.ts
@@ -0,0 +1,2 @@
+export const created = true;
+export const other = false;
diff --git a/src/old.ts b/src/old.ts
deleted file mode 100644
--- a/src/old.ts
+++ /dev/null
@@ -1 +0,0 @@
-export const gone = 1;
diff --git a/src/before.ts b/src/after.ts
similarity index 90%
rename from src/before.ts
rename to src/after.ts
"""


def test_parses_every_file_in_order():
    files = parse_diff(SAMPLE_DIFF)
    assert [(f.path, f.status) for f in files] == [
        ("src/app.ts", "modified"),
        ("src/new.ts", "added"),
        ("src/old.ts", "deleted"),
        ("src/after.ts", "renamed"),
    ]
    assert files[3].old_path == "src/before.ts"
    assert files[3].to_dict()["oldPath"] == "src/before.ts"


def test_counts_additions_and_deletions():
    modified, added, deleted, _ = parse_diff(SAMPLE_DIFF)
    assert (modified.additions, modified.deletions) == (2, 1)
    assert (added.additions, added.deletions) == (2, 0)
    assert (deleted.additions, deleted.deletions) == (0, 1)


def test_hunk_line_numbers():
    modified = parse_diff(SAMPLE_DIFF)[0]
    hunk = modified.hunks[0]
    assert (hunk.old_start, hunk.old_lines, hunk.new_start, hunk.new_lines) == (1, 4, 1, 5)
    assert modified.added_lines() == [2, 3]

    deleted_hunk = parse_diff(SAMPLE_DIFF)[2].hunks[0]
    # A missing count defaults to one line
    assert deleted_hunk.old_lines == 1


def test_map_diff_line_to_file_line():
    modified = parse_diff(SAMPLE_DIFF)[0]
    lines = modified.diff.split("\n")
    position = lines.index("+const y = 3;") + 1
    assert map_diff_line_to_file_line(modified, position) == 3

    deleted_position = lines.index("-const x = 1;") + 1
    assert map_diff_line_to_file_line(modified, deleted_position) is None
    # Header lines sit outside every hunk
    assert map_diff_line_to_file_line(modified, 1) is None


def test_empty_and_garbage_input():
    assert parse_diff("") == []
    assert parse_diff("not a diff\n+++ nothing\n") == []
