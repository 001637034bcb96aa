import unittest
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import commit_sage.orchestrator as orchestrator_module
from commit_sage.config.loader import AiSettings, CommitPolicy, Config, GitSettings
from commit_sage.errors import (
    AuthenticationFailure,
    CommitWriteFailure,
    FormatViolation,
    NoChanges,
    RateLimited,
    TemplateError,
    TransportFailure,
    UserDeclined,
)
from commit_sage.llm.provider import GenerationConfig, ModelProvider
from commit_sage.orchestrator import CommitOrchestrator, PipelineObserver, PipelineState
from commit_sage.prompt.token_budget import TRUNCATION_MARKER, TokenBudgeter
from commit_sage.vcs.git_client import GitError


DIFF = (
    "diff --git a/src/auth.py b/src/auth.py\n"
    "--- a/src/auth.py\n"
    "+++ b/src/auth.py\n"
    "@@ -1 +1,2 @@\n"
    " import os\n"
    "+def login():\n"
)


class FakeProvider(ModelProvider):
    """Replays scripted responses; exceptions in the script are raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.contexts = []

    def generate(self, context):
        self.contexts.append(context)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def model_id(self):
        return "fake/model"

    def default_config(self):
        return GenerationConfig(temperature=0.3, max_tokens=100, stop_sequences=("\n",))


class DummyGitClient:
    def __init__(self, staged=DIFF, head=True, commit_error=None, untracked=None):
        self.staged = staged
        self.untracked = untracked or {}
        self.head = head
        self.commit_error = commit_error
        self.commit_called = []

    def get_staged_diff(self):
        return self.staged

    def has_head(self):
        return self.head

    def list_untracked(self):
        return list(self.untracked)

    def read_file(self, path):
        return self.untracked[path]

    def commit(self, message):
        self.commit_called.append(message)
        if self.commit_error is not None:
            raise self.commit_error


class RecordingObserver(PipelineObserver):
    def __init__(self):
        self.events = []

    def on_state(self, state):
        self.events.append(("state", state))

    def on_captured(self, diff):
        self.events.append(("captured", diff.file_count))

    def on_diff(self, diff):
        self.events.append(("diff", diff.text))

    def on_truncated(self, original_tokens, budget):
        self.events.append(("truncated", original_tokens, budget))

    def on_retry(self, attempt, delay, error):
        self.events.append(("retry", attempt, delay, type(error)))

    def on_message(self, message):
        self.events.append(("message", message.raw_text))


def make_config(**policy):
    return replace(Config(), commit=replace(CommitPolicy(), **policy))


class TestCommitOrchestrator(unittest.TestCase):
    def run_pipeline(self, responses, config=None, git=None, confirm=None, observer=None):
        self.provider = FakeProvider(responses)
        self.git = git or DummyGitClient()
        self.sleeps = []
        orchestrator = CommitOrchestrator(
            config or make_config(),
            self.provider,
            self.git,
            confirm=confirm,
            observer=observer,
            sleep=self.sleeps.append,
        )
        return orchestrator.run()

    def test_no_changes_never_calls_provider(self) -> None:
        result = self.run_pipeline(["feat: x"], git=DummyGitClient(staged=""))
        self.assertEqual(result.state, PipelineState.ABORTED)
        self.assertIsInstance(result.error, NoChanges)
        self.assertEqual(result.error.reason, NoChanges.NOTHING_STAGED)
        self.assertEqual(self.provider.contexts, [])
        self.assertEqual(result.history, [PipelineState.IDLE, PipelineState.ABORTED])

    def test_no_commits_yet(self) -> None:
        result = self.run_pipeline(["feat: x"], git=DummyGitClient(staged="", head=False))
        self.assertEqual(result.error.reason, NoChanges.NO_COMMITS)

    def test_confirmed_commit(self) -> None:
        prompts = []

        def confirm(message):
            prompts.append(message)
            return True

        result = self.run_pipeline(["feat(auth): implement OAuth2 login flow"], confirm=confirm)
        self.assertTrue(result.ok)
        self.assertTrue(result.committed)
        self.assertEqual(result.message.type, "feat")
        self.assertEqual(result.message.scope, "auth")
        self.assertEqual(result.message.description, "implement OAuth2 login flow")
        self.assertEqual(prompts, [result.message])
        self.assertEqual(self.git.commit_called, ["feat(auth): implement OAuth2 login flow"])
        self.assertEqual(
            result.history,
            [
                PipelineState.IDLE,
                PipelineState.DIFF_CAPTURED,
                PipelineState.PROMPT_READY,
                PipelineState.RESPONSE_RECEIVED,
                PipelineState.VALIDATED,
                PipelineState.AWAITING_CONFIRMATION,
                PipelineState.COMMITTING,
                PipelineState.DONE,
            ],
        )

    def test_over_long_message_is_repaired(self) -> None:
        raw = "fix(parser): " + "z" * 79
        result = self.run_pipeline([raw], config=make_config(auto_commit=True))
        self.assertTrue(result.ok)
        self.assertEqual(len(result.message.raw_text), 72)
        self.assertTrue(result.message.raw_text.startswith("fix(parser): "))
        self.assertEqual(self.git.commit_called, [result.message.raw_text])

    def test_rate_limited_twice_then_success(self) -> None:
        result = self.run_pipeline(
            [RateLimited("slow"), RateLimited("slow"), "feat: add login"],
            confirm=lambda message: True,
        )
        self.assertTrue(result.ok)
        self.assertIn(PipelineState.VALIDATED, result.history)
        self.assertEqual(result.message.raw_text, "feat: add login")
        self.assertEqual(result.attempts, 3)
        self.assertEqual(self.sleeps, [1.0, 2.0])

    def test_retry_after_hint_is_used(self) -> None:
        self.run_pipeline([RateLimited("slow", retry_after=5.0), "feat: x"], confirm=lambda m: True)
        self.assertEqual(self.sleeps, [5.0])

    def test_retries_are_bounded(self) -> None:
        result = self.run_pipeline(
            [TransportFailure("down"), TransportFailure("down"), TransportFailure("down"), "feat: x"]
        )
        self.assertEqual(result.state, PipelineState.ABORTED)
        self.assertIsInstance(result.error, TransportFailure)
        self.assertEqual(result.attempts, 3)
        self.assertEqual(len(self.provider.contexts), 3)

    def test_authentication_failure_is_not_retried(self) -> None:
        result = self.run_pipeline([AuthenticationFailure("bad key"), "feat: x"])
        self.assertIsInstance(result.error, AuthenticationFailure)
        self.assertEqual(result.attempts, 1)
        self.assertEqual(self.sleeps, [])

    def test_declined_confirmation(self) -> None:
        result = self.run_pipeline(["feat: add login"], confirm=lambda message: False)
        self.assertEqual(result.state, PipelineState.ABORTED)
        self.assertIsInstance(result.error, UserDeclined)
        self.assertEqual(self.git.commit_called, [])
        self.assertFalse(result.committed)

    def test_missing_confirm_callback_counts_as_declined(self) -> None:
        result = self.run_pipeline(["feat: add login"])
        self.assertIsInstance(result.error, UserDeclined)
        self.assertEqual(self.git.commit_called, [])

    def test_auto_commit_skips_confirmation(self) -> None:
        def confirm(message):
            raise AssertionError("confirmation must not be requested")

        result = self.run_pipeline(["docs: update readme"], config=make_config(auto_commit=True), confirm=confirm)
        self.assertTrue(result.committed)
        self.assertNotIn(PipelineState.AWAITING_CONFIRMATION, result.history)

    def test_suggest_only(self) -> None:
        result = self.run_pipeline(["docs: update readme"], config=make_config(require_confirmation=False))
        self.assertTrue(result.ok)
        self.assertFalse(result.committed)
        self.assertEqual(self.git.commit_called, [])
        self.assertEqual(result.history[-2:], [PipelineState.VALIDATED, PipelineState.DONE])

    def test_format_violation_regenerates(self) -> None:
        observer = RecordingObserver()
        result = self.run_pipeline(
            ["I added a login function", "feat: add login function"],
            config=make_config(auto_commit=True),
            observer=observer,
        )
        self.assertTrue(result.ok)
        self.assertEqual(result.attempts, 2)
        self.assertEqual(result.history.count(PipelineState.PROMPT_READY), 2)
        self.assertIn(("retry", 1, 0.0, FormatViolation), observer.events)

    def test_format_regenerations_are_bounded(self) -> None:
        result = self.run_pipeline(["nope", "still nope", "feat: x"], config=make_config(auto_commit=True))
        self.assertIsInstance(result.error, FormatViolation)
        self.assertEqual(result.attempts, 2)
        self.assertEqual(self.git.commit_called, [])

    def test_verify_format_disabled(self) -> None:
        result = self.run_pipeline(
            ["Just some words"], config=make_config(verify_format=False, auto_commit=True)
        )
        self.assertTrue(result.ok)
        self.assertEqual(self.git.commit_called, ["Just some words"])

    def test_commit_failure_is_not_retried(self) -> None:
        git = DummyGitClient(commit_error=GitError("hook rejected"))
        result = self.run_pipeline(["feat: x"], config=make_config(auto_commit=True), git=git)
        self.assertEqual(result.state, PipelineState.ABORTED)
        self.assertIsInstance(result.error, CommitWriteFailure)
        self.assertIsInstance(result.error.__cause__, GitError)
        self.assertEqual(git.commit_called, ["feat: x"])
        self.assertFalse(result.committed)

    def test_template_error_aborts_before_generation(self) -> None:
        config = replace(make_config(), ai=AiSettings(user_prompt_template="no placeholder"))
        result = self.run_pipeline(["feat: x"], config=config)
        self.assertIsInstance(result.error, TemplateError)
        self.assertEqual(self.provider.contexts, [])

    def test_generation_config_merges_overrides(self) -> None:
        config = replace(make_config(auto_commit=True), ai=AiSettings(temperature=0.9, stop_sequences=()))
        self.run_pipeline(["feat: x"], config=config)
        sent = self.provider.contexts[0].config
        self.assertEqual(sent, GenerationConfig(temperature=0.9, max_tokens=100, stop_sequences=()))

    def test_untracked_only_cannot_be_committed(self) -> None:
        git = DummyGitClient(staged="", untracked={"notes.md": b"# Notes\n"})
        config = replace(make_config(auto_commit=True), git=GitSettings(include_untracked=True))
        result = self.run_pipeline(["docs: add notes"], config=config, git=git)
        self.assertIsInstance(result.error, NoChanges)
        self.assertEqual(result.error.reason, NoChanges.NOTHING_STAGED)
        self.assertEqual(self.provider.contexts, [])
        self.assertEqual(git.commit_called, [])

    def test_untracked_only_can_be_suggested(self) -> None:
        git = DummyGitClient(staged="", untracked={"notes.md": b"# Notes\n"})
        config = replace(
            make_config(require_confirmation=False), git=GitSettings(include_untracked=True)
        )
        result = self.run_pipeline(["docs: add notes"], config=config, git=git)
        self.assertTrue(result.ok)
        self.assertIn("diff --git a/notes.md b/notes.md", self.provider.contexts[0].user_prompt)
        self.assertEqual(git.commit_called, [])

    def test_budgeter_is_built_after_capture(self) -> None:
        too_early = AssertionError("budgeter built before a diff was captured")
        with patch.object(orchestrator_module, "TokenBudgeter", side_effect=too_early):
            result = self.run_pipeline(["feat: x"], git=DummyGitClient(staged=""))
        self.assertIsInstance(result.error, NoChanges)

        ranks = Path("/tmp/ranks.tiktoken")
        config = replace(make_config(auto_commit=True), ai=AiSettings(encoding_file=ranks))
        with patch.object(orchestrator_module, "TokenBudgeter", return_value=TokenBudgeter()) as factory:
            self.run_pipeline(["feat: x"], config=config)
        factory.assert_called_once_with(encoding_file=ranks)

    def test_prompt_contains_diff(self) -> None:
        self.run_pipeline(["feat: x"], config=make_config(auto_commit=True))
        context = self.provider.contexts[0]
        self.assertIn(DIFF, context.user_prompt)
        self.assertEqual(context.system_prompt, AiSettings().system_prompt)

    def test_large_diff_is_truncated(self) -> None:
        big = DIFF + "".join(f"+line_{i} = {i} * {i}\n" for i in range(2000))
        config = replace(
            make_config(auto_commit=True),
            ai=AiSettings(system_prompt="s", user_prompt_template="{diff}", context_window=300),
        )
        observer = RecordingObserver()
        result = self.run_pipeline(["feat: x"], config=config, git=DummyGitClient(staged=big), observer=observer)
        self.assertTrue(result.ok)
        self.assertTrue(self.provider.contexts[0].user_prompt.endswith(TRUNCATION_MARKER))
        self.assertTrue(any(event[0] == "truncated" for event in observer.events))
        self.assertTrue(result.diff.truncated)
        self.assertTrue(result.diff.text.endswith(TRUNCATION_MARKER))
        self.assertLess(len(result.diff.text), len(big))

    def test_observer_sees_progress(self) -> None:
        observer = RecordingObserver()
        config = replace(
            make_config(auto_commit=True), git=GitSettings(show_diff=True)
        )
        self.run_pipeline(["feat: x"], config=config, observer=observer)
        kinds = [event[0] for event in observer.events]
        self.assertLess(kinds.index("captured"), kinds.index("diff"))
        self.assertIn(("message", "feat: x"), observer.events)
        self.assertEqual(observer.events[-1], ("state", PipelineState.DONE))


if __name__ == "__main__":
    unittest.main()
