"""
Incremental statement readers for both session grammars, and the
side-effect free completeness prober built on top of them.

The embedded grammar is a small Maxima-flavoured expression language whose
statements end in `;` (show the result) or `$` (suppress it). The host grammar
is Python. Lines starting with `:name` are meta commands in either grammar.
"""

import ast
import codeop
import contextlib
import io
import re
from typing import Optional, Tuple, Union

from lark import Lark, Tree
from lark.exceptions import UnexpectedEOF, UnexpectedInput, UnexpectedToken

from cask.cask_datatypes import (
    Mode, CompletenessStatus, Statement, MetaCommand, NoMoreCode,
    IncompleteInput, InvalidInput, ParseError,
)

# Calls that request a grammar switch, keyed by the grammar they are read in.
SWITCH_TO_HOST = "to_python"
SWITCH_TO_EMBEDDED = "to_cas"

# ============================================================
# Embedded grammar (Lark, LALR)
# ============================================================

GRAMMAR = r"""
    ?start: expr

    ?expr: NAME ":" expr                              -> assign
         | call ":=" expr                             -> define
         | "if" expr "then" or_expr "else" or_expr    -> if_else
         | "if" expr "then" or_expr                   -> if_then
         | or_expr

    ?or_expr: and_expr
            | or_expr "or" and_expr                   -> or_
    ?and_expr: not_expr
             | and_expr "and" not_expr                -> and_
    ?not_expr: comparison
             | "not" not_expr                         -> not_
    ?comparison: sum
               | sum COMP_OP sum                      -> compare
    ?sum: product
        | sum "+" product                             -> add
        | sum "-" product                             -> sub
    ?product: unary
            | product "*" unary                       -> mul
            | product "/" unary                       -> div
    ?unary: power
          | "-" unary                                 -> neg
          | "+" unary
    ?power: postfix
          | postfix "^" unary                         -> pow
    ?postfix: atom
            | postfix "[" args "]"                    -> index
    ?atom: NUMBER                                     -> number
         | STRING                                     -> string
         | NAME                                       -> symbol
         | "%"                                        -> last
         | call
         | "[" [args] "]"                             -> list
         | "(" expr ")"
         | "(" expr ("," expr)+ ")"                   -> sequence

    call: NAME "(" [args] ")"
    args: expr ("," expr)*

    COMP_OP: "<=" | ">=" | "<" | ">" | "=" | "#"
    NAME: /%?[A-Za-z_][A-Za-z0-9_]*/
    NUMBER: /(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?/
    STRING: /"(\\.|[^"\\])*"/
    COMMENT: /\/\*(.|\n)*?\*\//

    %ignore COMMENT
    %ignore /\s+/
"""

parser = Lark(GRAMMAR, parser="lalr", propagate_positions=True)

_META = re.compile(r":([A-Za-z][A-Za-z0-9_-]*)[ \t]*([^\n]*)")
_HOST_CONTINUATION = re.compile(r"(elif|else|except|finally)\b")


class SourceStream:
    """A block of text plus a read position."""

    def __init__(self, text: str, pos: int = 0):
        self.text = text
        self.pos = pos

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def location(self, offset: int) -> Tuple[int, int]:
        """1-based (line, col) of an absolute offset."""
        line = self.text.count("\n", 0, offset) + 1
        col = offset - (self.text.rfind("\n", 0, offset) + 1) + 1
        return line, col


def read_statement(stream: SourceStream, mode: Mode) -> Union[Statement, object]:
    """Read the next statement in `mode`, or return `NoMoreCode`.

    Raises `IncompleteInput` when the text ends inside a statement and
    `InvalidInput` for any other structural problem. In both cases the stream
    is moved past the offending text.
    """
    if mode is Mode.HOST:
        return _read_host(stream)
    return _read_embedded(stream)


def _read_meta(stream: SourceStream, pos: int, mode: Mode) -> Optional[Statement]:
    m = _META.match(stream.text, pos)
    if not m:
        return None
    stream.pos = m.end()
    line, col = stream.location(pos)
    return Statement(mode, m.group(0), MetaCommand(m.group(1).lower(), m.group(2).strip()),
                     start=pos, loc={"line": line, "col": col})


# ------------------------------------------------------------
# Embedded statements
# ------------------------------------------------------------

def _skip_embedded_blank(text: str, pos: int) -> int:
    n = len(text)
    while pos < n:
        if text[pos].isspace():
            pos += 1
            continue
        if text.startswith("/*", pos):
            end = text.find("*/", pos + 2)
            if end < 0:
                return pos
            pos = end + 2
            continue
        break
    return pos


def _scan_terminator(text: str, pos: int) -> Tuple[Optional[int], Optional[str]]:
    """Find the next `;` or `$` outside strings and comments.

    Returns (index, terminator). When none is found, index is None and the
    second item names the construct left open ('string', 'comment') or is None.
    """
    n = len(text)
    i = pos
    while i < n:
        c = text[i]
        if c == '"':
            i += 1
            while i < n and text[i] != '"':
                if text[i] == "\\":
                    i += 1
                i += 1
            if i >= n:
                return None, "string"
            i += 1
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end < 0:
                return None, "comment"
            i = end + 2
            continue
        if c in ";$":
            return i, c
        i += 1
    return None, None


def _ends_early(e: UnexpectedInput) -> bool:
    if isinstance(e, UnexpectedEOF):
        return True
    return isinstance(e, UnexpectedToken) and e.token.type == "$END"


def _error_location(stream: SourceStream, start: int, e: UnexpectedInput) -> Tuple[Optional[int], Optional[int]]:
    line = getattr(e, "line", None)
    col = getattr(e, "column", None)
    if not isinstance(line, int) or line < 1 or not isinstance(col, int) or col < 1:
        return stream.location(start)
    base_line, base_col = stream.location(start)
    if line == 1:
        return base_line, base_col + col - 1
    return base_line + line - 1, col


def _describe_unexpected(e: UnexpectedInput) -> str:
    if isinstance(e, UnexpectedToken):
        if e.token.type == "$END":
            return "unexpected end of statement"
        return f"unexpected {e.token!s}"
    char = getattr(e, "char", None)
    if char is not None:
        return f"unexpected character {char}"
    return "syntax error"


def _read_embedded(stream: SourceStream):
    text = stream.text
    while True:
        pos = _skip_embedded_blank(text, stream.pos)
        if pos >= len(text):
            stream.pos = pos
            return NoMoreCode
        meta = _read_meta(stream, pos, Mode.EMBEDDED)
        if meta is not None:
            return meta

        end, term = _scan_terminator(text, pos)
        if end is None:
            stream.pos = len(text)
            line, col = stream.location(pos)
            if term is not None:
                raise IncompleteInput("Unterminated {{what}}", line=line, col=col, what=term)
            body = text[pos:]
            try:
                parser.parse(body)
            except UnexpectedInput as e:
                if not _ends_early(e):
                    eline, ecol = _error_location(stream, pos, e)
                    raise InvalidInput("Syntax error: {{detail}}", line=eline, col=ecol,
                                       detail=_describe_unexpected(e)) from None
            raise IncompleteInput("Statement is missing a terminator (; or $)", line=line, col=col)

        body = text[pos:end]
        stream.pos = end + 1
        if _skip_embedded_blank(body, 0) >= len(body):
            # Empty statement, e.g. ";;" or a lone comment.
            continue
        try:
            tree = parser.parse(body)
        except UnexpectedInput as e:
            eline, ecol = _error_location(stream, pos, e)
            raise InvalidInput("Syntax error: {{detail}}", line=eline, col=ecol,
                               detail=_describe_unexpected(e)) from None
        line, col = stream.location(pos)
        return Statement(Mode.EMBEDDED, body, tree, terminator=term, start=pos,
                         loc={"line": line, "col": col})


# ------------------------------------------------------------
# Host (Python) statements
# ------------------------------------------------------------

def _skip_host_blank(text: str, pos: int) -> int:
    n = len(text)
    while pos < n:
        c = text[pos]
        if c in " \t\r\n":
            pos += 1
        elif c == "#":
            end = text.find("\n", pos)
            pos = n if end < 0 else end + 1
        else:
            break
    return pos


def _continues(lines, k: int) -> bool:
    """True when lines[k:] carries on the statement in lines[:k]."""
    for line in lines[k:]:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if line[0] in " \t":
            return True
        return bool(_HOST_CONTINUATION.match(stripped))
    return False


def _first_simple_statement(chunk: str, tree: ast.Module) -> Optional[str]:
    """For `a(); b()` on one line, return the text of `a();` only."""
    body = tree.body
    if len(body) < 2 or body[0].end_lineno != 1 or body[1].lineno != 1:
        return None
    first_line = chunk.splitlines(keepends=True)[0]
    cut = len(first_line.encode("utf-8")[:body[0].end_col_offset].decode("utf-8", errors="ignore"))
    m = re.compile(r"[ \t]*;?").match(first_line, cut)
    return first_line[:m.end()]


def _read_host(stream: SourceStream):
    text = stream.text
    pos = _skip_host_blank(text, stream.pos)
    if pos >= len(text):
        stream.pos = pos
        return NoMoreCode
    meta = _read_meta(stream, pos, Mode.HOST)
    if meta is not None:
        return meta

    rest = text[pos:]
    line, col = stream.location(pos)
    loc = {"line": line, "col": col}
    lines = rest.splitlines(keepends=True)
    for k in range(1, len(lines) + 1):
        if _continues(lines, k):
            continue
        chunk = "".join(lines[:k])
        try:
            tree = ast.parse(chunk, mode="exec")
        except SyntaxError:
            continue
        first = _first_simple_statement(chunk, tree)
        if first is not None:
            chunk = first
            tree = ast.parse(chunk, mode="exec")
        stream.pos = pos + len(chunk)
        return Statement(Mode.HOST, chunk, tree, start=pos, loc=loc)

    stream.pos = len(text)
    try:
        code = codeop.compile_command(rest, "<cell>", "exec")
    except (SyntaxError, ValueError, OverflowError) as e:
        err_line = getattr(e, "lineno", None)
        err_col = getattr(e, "offset", None)
        if isinstance(err_line, int):
            err_line = line + err_line - 1
        raise InvalidInput("SyntaxError: {{msg}}", line=err_line, col=err_col,
                           msg=getattr(e, "msg", None) or str(e)) from None
    if code is None:
        raise IncompleteInput("Incomplete Python statement", line=line, col=col)
    # compile_command accepted it once padded with newlines
    tree = ast.parse(rest + "\n", mode="exec")
    return Statement(Mode.HOST, rest, tree, start=pos, loc=loc)


# ============================================================
# Mode-switch detection and probing
# ============================================================

def requests_mode_switch(statement: Statement) -> bool:
    """True when a switch sentinel call occurs anywhere in the statement."""
    tree = statement.tree
    if isinstance(tree, MetaCommand):
        # :python runs its argument as host code
        if tree.name not in ("python", "py"):
            return False
        try:
            tree = ast.parse(tree.argument, mode="exec")
        except (SyntaxError, ValueError):
            return False
    if isinstance(tree, Tree):
        for sub in tree.iter_subtrees():
            if sub.data == "call" and sub.children and sub.children[0] == SWITCH_TO_HOST:
                return True
        return False
    if isinstance(tree, ast.AST):
        for node in ast.walk(tree):
            if (isinstance(node, ast.Call) and isinstance(node.func, ast.Name)
                    and node.func.id == SWITCH_TO_EMBEDDED):
                return True
    return False


def probe_text(text: str, mode: Mode) -> CompletenessStatus:
    """Classify `text` without evaluating any of it."""
    sink = io.StringIO()
    with contextlib.redirect_stdout(sink), contextlib.redirect_stderr(sink):
        stream = SourceStream(text)
        while True:
            try:
                statement = read_statement(stream, mode)
            except IncompleteInput:
                return CompletenessStatus.INCOMPLETE
            except ParseError:
                return CompletenessStatus.INVALID
            if statement is NoMoreCode:
                return CompletenessStatus.COMPLETE
            if requests_mode_switch(statement):
                return CompletenessStatus.UNKNOWN
