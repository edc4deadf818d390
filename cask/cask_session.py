"""
Session-scoped state owned by an Evaluator: execution history, the active
grammar, the per-submission payload buffer and the nested-input queue.
"""

from collections import deque
from typing import Any, Callable, List, Optional, Tuple

from cask.cask_datatypes import Mode, Page, SetNextInput


class HistoryStore:
    """Append-only record of submitted blocks and their result lists."""

    def __init__(self):
        self.inputs: List[str] = []
        self.outputs: List[list] = []

    def record_input(self, text: str) -> None:
        self.inputs.append(text)

    def record_output(self, results: list) -> None:
        self.outputs.append(list(results))

    @property
    def next_execution_count(self) -> int:
        return len(self.inputs) + 1

    def input(self, n: int) -> str:
        """The block submitted as execution `n` (1-based)."""
        if n < 1 or n > len(self.inputs):
            raise IndexError(f"no input with execution count {n}")
        return self.inputs[n - 1]

    def output(self, n: int) -> list:
        if n < 1 or n > len(self.outputs):
            raise IndexError(f"no output with execution count {n}")
        return self.outputs[n - 1]

    def tail(self, n: Optional[int] = None) -> List[Tuple[int, str]]:
        pairs = list(enumerate(self.inputs, start=1))
        if n is None:
            return pairs
        return pairs[-n:] if n > 0 else []

    def __len__(self):
        return len(self.inputs)


class ModeController:
    """Tracks which grammar is active. `switch` is the only way to change it."""

    def __init__(self, initial: Mode = Mode.EMBEDDED):
        self._mode = initial
        self.switch_count = 0

    @property
    def mode(self) -> Mode:
        return self._mode

    def switch(self, target: Mode) -> Mode:
        """Make `target` the active grammar and return the previous one."""
        if not isinstance(target, Mode):
            raise TypeError(f"not a mode: {target!r}")
        previous = self._mode
        self._mode = target
        self.switch_count += 1
        return previous


class PayloadBuffer:
    """Deferred UI actions delivered alongside the reply of one submission."""

    def __init__(self):
        self.entries: list = []

    def request_page(self, data: Any, start: int = 0) -> None:
        self.entries.append(Page(data, start))

    def request_next_input(self, text: str, replace: bool = False) -> None:
        self.entries.append(SetNextInput(text, replace))

    def to_messages(self) -> List[dict]:
        return [e.to_message() for e in self.entries]

    def clear(self) -> None:
        self.entries.clear()

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)


class InputQueue:
    """FIFO of text fragments answering nested interactive reads."""

    def __init__(self, provider: Optional[Callable[[str], str]] = None):
        self._pending = deque()
        self.provider = provider

    def enqueue(self, text: str) -> None:
        self._pending.append(text)

    def has_pending(self) -> bool:
        return bool(self._pending)

    def pop(self) -> Optional[str]:
        return self._pending.popleft() if self._pending else None

    def __len__(self):
        return len(self._pending)
