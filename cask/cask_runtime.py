"""
The session evaluator: reads statements from a submitted block, evaluates
them through the computation engine, classifies failures and dispatches every
result as soon as it is produced.
"""

import sys
from typing import Any, Callable, List, Optional, Tuple

from cask.cask_datatypes import (
    Mode, CompletenessStatus, Value, Error, NoMoreCode, StateChange, Statement,
    CasError, Quit, AbortEvaluation,
)
from cask.cask_config import KernelConfig
from cask.cask_session import HistoryStore, ModeController, PayloadBuffer, InputQueue
from cask.cask_reader import SourceStream, probe_text
from cask.cask_errors import classify_failure
from cask.cask_dispatch import KernelTransport, ResultDispatcher
from cask.cask_printer import Renderer
from cask.cask_interpreter import Interpreter
from cask.cask_commands import run_command


class Evaluator:
    """One per session. Owns history, the active mode and the side channels."""

    def __init__(self, transport: Optional[KernelTransport] = None, engine: Optional[Interpreter] = None,
                 config: Optional[KernelConfig] = None, input_provider: Optional[Callable[[str], str]] = None):
        self.config = config or KernelConfig()
        self.engine = engine or Interpreter()
        self.history = HistoryStore()
        self.modes = ModeController(self.config.initial_mode)
        self.payload_buffer = PayloadBuffer()
        self.input_queue = InputQueue(input_provider)
        self.renderer = Renderer(unicode=self.config.unicode, latex=self.config.latex)
        self.dispatcher = ResultDispatcher(transport, self.renderer)
        self.side_effects: List[dict] = []
        self.quit_requested = False
        self._context: Any = None
        self._running = False
        self._results: Optional[list] = None
        self._count: Optional[int] = None

    # --- Session accessors ---

    @property
    def mode(self) -> Mode:
        return self.modes.mode

    @property
    def transport(self) -> Optional[KernelTransport]:
        return self.dispatcher.transport

    @property
    def context(self) -> Any:
        """The message context passed to every transport call."""
        return self._context

    @context.setter
    def context(self, value: Any):
        self._context = value

    @property
    def payload(self) -> list:
        return list(self.payload_buffer)

    def clear_payload(self) -> None:
        self.payload_buffer.clear()

    def _dbg(self, *parts):
        if self.config.debug:
            try:
                print("[DBG]", *parts, file=sys.stderr)
            except Exception:
                pass

    # --- Side channels ---

    def request_page(self, data: Any, start: int = 0) -> None:
        self.payload_buffer.request_page(data, start)

    def request_next_input(self, text: str, replace: bool = False) -> None:
        self.payload_buffer.request_next_input(text, replace)

    def enqueue_input(self, text: str) -> None:
        self.input_queue.enqueue(text)

    def read_input(self, prompt: str = "") -> str:
        """Answer a nested interactive read: queued input first, then the provider."""
        if self.input_queue.has_pending():
            text = self.input_queue.pop()
            self._dbg("INPUT", "queue", repr(text))
            return text
        provider = self.input_queue.provider
        if provider is None:
            raise CasError("No input available for prompt {{prompt}}", prompt=prompt or "(none)")
        try:
            return provider(prompt)
        except (EOFError, KeyboardInterrupt):
            raise AbortEvaluation() from None

    def emit_display(self, value: Any) -> None:
        """Broadcast a side-effect display while a statement is running."""
        self._publish(Value(value, display=True))

    def _publish(self, outcome) -> None:
        self.dispatcher.dispatch(self._context, self._count, outcome)
        if self._results is not None:
            self._results.append(outcome)

    # --- Probing ---

    def probe_completeness(self, text: str) -> CompletenessStatus:
        return probe_text(text, self.mode)

    # --- Read-eval loop ---

    async def _step(self, stream: SourceStream, text: str) -> Tuple[Optional[Statement], Any]:
        statement = None
        try:
            statement = self.engine.read_statement(stream, self.mode)
            if statement is NoMoreCode:
                return None, NoMoreCode
            self._dbg("EVAL", statement.mode.value, self.engine.pretty_print(statement))
            if statement.is_meta:
                raw = await run_command(self, statement.tree)
            else:
                raw = await self.engine.evaluate(statement, self)
        except AbortEvaluation:
            raise
        except KeyboardInterrupt:
            raise AbortEvaluation() from None
        except (Exception, SystemExit, Quit) as e:
            return statement, classify_failure(e, self.side_effects, text)

        if isinstance(raw, StateChange):
            previous = self.modes.switch(raw.target)
            self._dbg("MODE", previous.value, "->", raw.target.value)
            return statement, raw
        if statement.is_meta:
            return statement, Value(raw)
        if statement.mode is Mode.EMBEDDED:
            return statement, Value(raw, silent=statement.terminator == "$")
        return statement, Value(raw)

    async def evaluate_block(self, text: str) -> Tuple[int, list]:
        """Evaluate every statement of `text`. Returns (execution count, results)."""
        if self._running:
            raise RuntimeError("a block is already being evaluated in this session")
        self._running = True
        self.side_effects.clear()
        count = self.history.next_execution_count
        self.history.record_input(text)
        results: list = []
        self._results, self._count = results, count
        stream = SourceStream(text)
        try:
            while True:
                statement, outcome = await self._step(stream, text)
                if outcome is NoMoreCode:
                    break
                if isinstance(outcome, StateChange):
                    continue
                if (isinstance(outcome, Value) and statement is not None and not statement.is_meta
                        and statement.mode is Mode.EMBEDDED):
                    self.engine.last_answer = outcome.payload
                self._publish(outcome)
                if isinstance(outcome, Error):
                    if outcome.quit:
                        self.quit_requested = True
                        break
                    if self.config.stop_on_error:
                        break
        except AbortEvaluation:
            self._dbg("ABORT", count)
            self.side_effects.append({"topics": ["stderr"], "message": "Evaluation aborted"})
        finally:
            self.history.record_output(results)
            self._results = None
            self._count = None
            self._running = False
        return count, results


# ------------------------------------------------------------
# Entry points for an embedding kernel session
# ------------------------------------------------------------

async def evaluate_block(evaluator: Evaluator, text: str) -> Tuple[int, list]:
    return await evaluator.evaluate_block(text)


def probe_completeness(evaluator: Evaluator, text: str) -> CompletenessStatus:
    return evaluator.probe_completeness(text)


def enqueue_input(evaluator: Evaluator, text: str) -> None:
    evaluator.enqueue_input(text)
