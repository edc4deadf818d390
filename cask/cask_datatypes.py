"""
Defines the core data types shared by the cask evaluator.

This module provides the evaluation modes, the outcome variants produced
for each statement, the side-channel payload entries and the condition
hierarchy raised by the computation engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Mode(Enum):
    """The two mutually exclusive grammars a session can read statements in."""
    HOST = "host"
    EMBEDDED = "embedded"


class CompletenessStatus(Enum):
    # Values follow the Jupyter is_complete_reply status names.
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    INVALID = "invalid"
    UNKNOWN = "unknown"


# =================================================================
# Outcomes
# =================================================================

@dataclass
class Value:
    """A successfully evaluated statement.

    `display` marks a side-effect display (broadcast) rather than a reply
    value. `silent` marks a value whose statement requested no output; it
    still counts as a result and still becomes the last answer.
    """
    payload: Any
    display: bool = False
    silent: bool = False


@dataclass
class Error:
    """A classified failure. `quit` requests that the session shut down."""
    kind: str
    message: str
    quit: bool = False


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self):
        return self._name


NoMoreCode = _Sentinel("NoMoreCode")


@dataclass(frozen=True)
class StateChange:
    """A mode switch happened; the statement produced no output."""
    target: Mode


# =================================================================
# Side-channel payloads
# =================================================================

@dataclass
class Page:
    data: Any
    start: int = 0

    def to_message(self) -> Dict[str, Any]:
        data = self.data if isinstance(self.data, dict) else {"text/plain": str(self.data)}
        return {"source": "page", "data": data, "start": self.start}


@dataclass
class SetNextInput:
    text: str
    replace: bool = False

    def to_message(self) -> Dict[str, Any]:
        return {"source": "set_next_input", "text": self.text, "replace": self.replace}


# =================================================================
# Statements
# =================================================================

@dataclass
class MetaCommand:
    """A keyword-prefixed directive such as `:history 5`."""
    name: str
    argument: str = ""


@dataclass
class Statement:
    """One unit of source read from a block.

    `tree` is a Lark tree for embedded statements, an `ast.Module` for host
    statements and a `MetaCommand` for directives. `terminator` is `;` or `$`
    for embedded statements and empty otherwise. `start` is the offset of the
    statement in the block it was read from.
    """
    mode: Mode
    source: str
    tree: Any
    terminator: str = ""
    start: int = 0
    loc: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_meta(self) -> bool:
        return isinstance(self.tree, MetaCommand)


# =================================================================
# Conditions
# =================================================================

class Quit(BaseException):
    """An explicit shutdown request. Like SystemExit, not caught by `except Exception`."""
    def __init__(self, message: str = "Quit requested"):
        super().__init__(message)
        self.message = message


class CasError(Exception):
    """A failure carrying a message template and its arguments.

    Templates use mustache tags, e.g. `CasError("{{name}} is not a list", name="x")`.
    """
    kind: Optional[str] = None

    def __init__(self, template: str, **args):
        super().__init__(template)
        self.template = template
        self.args_map = args

    @property
    def condition_kind(self) -> str:
        return self.kind or type(self).__name__

    def __str__(self):
        from cask.cask_errors import render_template
        return render_template(self.template, self.args_map)


class ParseError(CasError):
    """The reader could not turn source text into a statement."""
    kind = "ParseError"

    def __init__(self, template: str, line: Optional[int] = None, col: Optional[int] = None, **args):
        super().__init__(template, **args)
        self.line = line
        self.col = col


class IncompleteInput(ParseError):
    """The input ended in the middle of a statement."""


class InvalidInput(ParseError):
    """The input is structurally malformed."""


class ArgumentError(CasError):
    kind = "ArgumentError"


class UnknownCommand(CasError):
    kind = "UnknownCommand"


class AbortEvaluation(BaseException):
    """Abandon the current top-level block without reporting an error."""
