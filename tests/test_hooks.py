from __future__ import annotations

import unittest

from app.services.hooks import PostCommitHooks


class PostCommitHooksTests(unittest.TestCase):
    def test_runs_hooks_in_order(self) -> None:
        calls: list[str] = []
        hooks = PostCommitHooks()
        hooks.add("first", lambda: calls.append("first"))
        hooks.add("second", lambda: calls.append("second"))

        failed = hooks.run()

        self.assertEqual(calls, ["first", "second"])
        self.assertEqual(failed, [])
        self.assertEqual(len(hooks), 0)

    def test_failure_is_logged_and_does_not_stop_other_hooks(self) -> None:
        calls: list[str] = []

        def _boom() -> None:
            raise RuntimeError("notification backend down")

        hooks = PostCommitHooks()
        hooks.add("broken", _boom)
        hooks.add("after", lambda: calls.append("after"))

        with self.assertLogs("app.hooks", level="ERROR") as logs:
            failed = hooks.run()

        self.assertEqual(failed, ["broken"])
        self.assertEqual(calls, ["after"])
        self.assertIn("post_commit_hook_failed", logs.output[0])


if __name__ == "__main__":
    unittest.main()
