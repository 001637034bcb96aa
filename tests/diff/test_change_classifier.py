import unittest

from commit_sage.diff.change_classifier import classify_change, suggest_commit_type


class TestChangeClassifier(unittest.TestCase):
    def test_classify_change_by_path(self) -> None:
        cases = [
            ("README.md", "", "modified", "docs"),
            ("docs/guide.rst", "", "added", "docs"),
            ("tests/test_api.py", "+assert True", "modified", "test"),
            ("pkg/test_utils.py", "", "modified", "test"),
            (".github/workflows/ci.yml", "+runs-on: ubuntu", "modified", "ci"),
            ("pyproject.toml", "+version = 2", "modified", "build"),
            ("Dockerfile", "+FROM python", "modified", "build"),
        ]
        for path, diff, status, expected in cases:
            with self.subTest(path=path):
                self.assertEqual(classify_change(path, diff, status), expected)

    def test_classify_change_by_content(self) -> None:
        cases = [
            ("-x=1\n+x = 1\n", "modified", "style"),
            ("+# fix crash on empty input\n", "modified", "fix"),
            ("+# refactor loop\n", "modified", "refactor"),
            ("+# perf: cache lookups\n", "modified", "perf"),
            ("+def new_feature():\n", "modified", "feat"),
            ("+x = 1\n", "added", "feat"),
            ("+x = 1\n", "untracked", "feat"),
            ("-x = 1\n", "deleted", "refactor"),
            ("-x = 1\n+x = 2\n", "modified", "chore"),
        ]
        for diff, status, expected in cases:
            with self.subTest(diff=diff, status=status):
                self.assertEqual(classify_change("src/module.py", diff, status), expected)

    def test_headers_are_not_content(self) -> None:
        diff = "--- a/src/fix.py\n+++ b/src/fix.py\n-a = 1\n+a = 2\n"
        self.assertEqual(classify_change("src/fix.py", diff), "chore")

    def test_suggest_commit_type(self) -> None:
        self.assertEqual(suggest_commit_type(["feat", "fix", "fix"]), "fix")
        self.assertEqual(suggest_commit_type(["docs", "feat"]), "docs")
        self.assertEqual(suggest_commit_type([]), "chore")


if __name__ == "__main__":
    unittest.main()
