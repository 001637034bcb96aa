import unittest

from commit_sage.diff.diff_source import (
    DiffContent,
    capture_diff,
    parse_file_summaries,
    render_untracked,
)
from commit_sage.errors import NoChanges, RepoAccessFailure


STAGED = (
    "diff --git a/src/app.py b/src/app.py\n"
    "index 1111111..2222222 100644\n"
    "--- a/src/app.py\n"
    "+++ b/src/app.py\n"
    "@@ -1,2 +1,3 @@\n"
    " import os\n"
    "-x = 1\n"
    "+x = 2\n"
    "+def helper():\n"
    "diff --git a/README.md b/README.md\n"
    "new file mode 100644\n"
    "--- /dev/null\n"
    "+++ b/README.md\n"
    "@@ -0,0 +1 @@\n"
    "+# Title\n"
)


class DummyClient:
    def __init__(self, staged="", untracked=None, files=None, head=True):
        self.staged = staged
        self.untracked = untracked or []
        self.files = files or {}
        self.head = head

    def get_staged_diff(self):
        return self.staged

    def has_head(self):
        return self.head

    def list_untracked(self):
        return list(self.untracked)

    def read_file(self, path):
        return self.files[path]


class TestParseFileSummaries(unittest.TestCase):
    def test_sections_are_summarised(self) -> None:
        summaries = parse_file_summaries(STAGED)
        self.assertEqual([s.path for s in summaries], ["src/app.py", "README.md"])
        app, readme = summaries
        self.assertEqual((app.status, app.additions, app.deletions), ("modified", 2, 1))
        self.assertEqual((readme.status, readme.additions, readme.deletions), ("added", 1, 0))
        self.assertEqual(readme.suggested_type, "docs")

    def test_deleted_file(self) -> None:
        text = (
            "diff --git a/old.py b/old.py\n"
            "deleted file mode 100644\n"
            "--- a/old.py\n"
            "+++ /dev/null\n"
            "@@ -1 +0,0 @@\n"
            "-print('bye')\n"
        )
        (summary,) = parse_file_summaries(text)
        self.assertEqual(summary.path, "old.py")
        self.assertEqual(summary.status, "deleted")
        self.assertEqual(summary.deletions, 1)

    def test_empty_text(self) -> None:
        self.assertEqual(parse_file_summaries(""), [])


class TestRenderUntracked(unittest.TestCase):
    def test_text_file(self) -> None:
        section = render_untracked("notes.py", b"a = 1\nb = 2\n")
        self.assertIn("diff --git a/notes.py b/notes.py\n", section)
        self.assertIn("@@ -0,0 +1,2 @@\n+a = 1\n+b = 2\n", section)
        self.assertNotIn("No newline", section)

    def test_missing_trailing_newline(self) -> None:
        section = render_untracked("a.txt", b"last")
        self.assertTrue(section.endswith("+last\n\\ No newline at end of file\n"))

    def test_binary_file(self) -> None:
        section = render_untracked("logo.png", b"\x89PNG\x00\x01")
        self.assertIn("Binary files /dev/null and b/logo.png differ", section)
        self.assertNotIn("@@", section)

    def test_empty_file(self) -> None:
        section = render_untracked("empty.txt", b"")
        self.assertIn("+++ b/empty.txt", section)
        self.assertNotIn("@@", section)

    def test_invalid_utf8_is_replaced(self) -> None:
        section = render_untracked("latin.txt", b"caf\xe9\n")
        self.assertIn("+caf\ufffd", section)


class TestCaptureDiff(unittest.TestCase):
    def test_staged_changes(self) -> None:
        diff = capture_diff(DummyClient(staged=STAGED))
        self.assertIsInstance(diff, DiffContent)
        self.assertEqual(diff.text, STAGED)
        self.assertEqual(diff.file_count, 2)
        self.assertEqual(diff.byte_length, len(STAGED.encode("utf-8")))
        self.assertFalse(diff.truncated)

    def test_untracked_ignored_unless_requested(self) -> None:
        client = DummyClient(staged=STAGED, untracked=["new.py"], files={"new.py": b"x = 1\n"})
        self.assertNotIn("new.py", capture_diff(client).text)
        diff = capture_diff(client, include_untracked=True)
        self.assertIn("diff --git a/new.py b/new.py", diff.text)
        self.assertEqual(diff.file_count, 3)
        self.assertEqual(diff.files[-1].status, "untracked")
        self.assertEqual(diff.files[-1].additions, 1)

    def test_untracked_only_for_suggestions(self) -> None:
        client = DummyClient(staged="", untracked=["a.md"], files={"a.md": b"# A\n"})
        diff = capture_diff(client, include_untracked=True, require_staged=False)
        self.assertTrue(diff.text.startswith("diff --git a/a.md b/a.md"))
        self.assertEqual(diff.files[0].suggested_type, "docs")

    def test_untracked_only_needs_staged_changes_to_commit(self) -> None:
        client = DummyClient(staged="", untracked=["a.md"], files={"a.md": b"# A\n"}, head=False)
        with self.assertRaises(NoChanges) as ctx:
            capture_diff(client, include_untracked=True)
        self.assertEqual(ctx.exception.reason, NoChanges.NO_COMMITS)

    def test_nothing_staged(self) -> None:
        with self.assertRaises(NoChanges) as ctx:
            capture_diff(DummyClient(staged="", head=True))
        self.assertEqual(ctx.exception.reason, NoChanges.NOTHING_STAGED)

    def test_fresh_repository(self) -> None:
        with self.assertRaises(NoChanges) as ctx:
            capture_diff(DummyClient(staged="\n", head=False))
        self.assertEqual(ctx.exception.reason, NoChanges.NO_COMMITS)
        self.assertNotEqual(str(ctx.exception), str(NoChanges(NoChanges.NOTHING_STAGED)))

    def test_repository_errors_propagate(self) -> None:
        class BrokenClient(DummyClient):
            def get_staged_diff(self):
                raise RepoAccessFailure("cannot read index")

        with self.assertRaises(RepoAccessFailure):
            capture_diff(BrokenClient())


if __name__ == "__main__":
    unittest.main()
