"""Compensation log for operations that span the database and the filesystem.

Each forward step that changes the filesystem pushes its inverse. If the block
fails, the inverses run newest-first; a failing inverse is logged and the rest
still run. Once the database transaction has committed, ``release()`` drops the
log so nothing is undone on exit.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from types import TracebackType
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UndoAction:
    description: str
    action: Callable[[], None]


class UndoStack:
    def __init__(self, label: str):
        self.label = label
        self._actions: list[UndoAction] = []

    def __len__(self) -> int:
        return len(self._actions)

    def __enter__(self) -> "UndoStack":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc_type is not None and self._actions:
            logger.warning("%s failed (%s); undoing %d step(s)", self.label, exc, len(self._actions))
            self.unwind()
        return False

    def push(self, description: str, action: Callable[[], None]) -> None:
        self._actions.append(UndoAction(description, action))

    def unwind(self) -> list[str]:
        """Run every pending inverse newest-first and return those that failed."""
        failed: list[str] = []
        while self._actions:
            step = self._actions.pop()
            try:
                step.action()
            except Exception:
                logger.exception("%s: undo step failed: %s", self.label, step.description)
                failed.append(step.description)
        return failed

    def release(self) -> None:
        self._actions.clear()


def remove_file(path: Path) -> Callable[[], None]:
    def _undo() -> None:
        path.unlink(missing_ok=True)

    return _undo


def remove_empty_dir(path: Path) -> Callable[[], None]:
    def _undo() -> None:
        path.rmdir()

    return _undo
