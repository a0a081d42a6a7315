from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger("app.hooks")


class PostCommitHooks:
    """Side effects queued during a transition and run after its commit.

    A failing hook is logged and skipped; it never changes the outcome of
    the request that queued it.
    """

    def __init__(self) -> None:
        self._hooks: list[tuple[str, Callable[[], object]]] = []

    def __len__(self) -> int:
        return len(self._hooks)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._hooks]

    def add(self, name: str, callback: Callable[[], object]) -> None:
        self._hooks.append((name, callback))

    def clear(self) -> None:
        self._hooks.clear()

    def run(self) -> list[str]:
        failed: list[str] = []
        pending, self._hooks = self._hooks, []
        for name, callback in pending:
            try:
                callback()
            except Exception:
                failed.append(name)
                logger.exception("post_commit_hook_failed", extra={"hook": name})
        return failed
