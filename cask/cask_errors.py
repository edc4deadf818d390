"""
Failure classification for the read-eval loop.

Every statement runs inside a boundary that converts whatever it raises into
an `Error` outcome. Categories are matched in precedence order: quit
requests, formatted conditions (`CasError`), then anything else.
"""

from typing import Any, Dict, List, Optional

import pystache

from cask.cask_datatypes import Error, Quit, CasError, ParseError

QUIT_KIND = "Quit"

_renderer = pystache.Renderer(escape=lambda u: u, missing_tags="ignore")


def render_template(template: str, args: Optional[Dict[str, Any]] = None) -> str:
    """Substitute condition arguments into a mustache message template."""
    if not args:
        return template
    return _renderer.render(template, {k: _tmpl_value(v) for k, v in args.items()})


def _tmpl_value(v):
    # Mustache treats lists as sections; keep them as text in messages.
    if isinstance(v, (list, tuple)):
        return ", ".join(str(x) for x in v)
    return v if isinstance(v, (str, int, float)) else str(v)


def source_context(source: str, line: Optional[int], col: Optional[int], radius: int = 2) -> str:
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
        if i == line and col is not None:
            out.append(f"  {' ' * width} | {' ' * max(col - 1, 0)}^")
    return "\n".join(out)


def _message_of(exc: BaseException) -> str:
    try:
        msg = str(exc)
    except Exception:
        msg = ""
    return msg or repr(exc)


def classify_failure(exc: BaseException, sink: Optional[List[Dict]] = None, source: Optional[str] = None) -> Error:
    """Turn a failure raised while reading or evaluating a statement into an `Error`.

    The message is logged to `sink` (the session's side effects) as a
    `stderr` effect before the result is returned. `source` is the block the
    failure came from; parse errors use it for a caret excerpt.
    """
    if isinstance(exc, (Quit, SystemExit)):
        if isinstance(exc, SystemExit):
            code = exc.code
            message = f"Quit requested (exit code {code})" if code not in (None, 0) else "Quit requested"
        else:
            message = exc.message
        err = Error(QUIT_KIND, message, quit=True)
    elif isinstance(exc, CasError):
        message = render_template(exc.template, exc.args_map)
        if isinstance(exc, ParseError) and source is not None:
            if exc.line is not None:
                where = f" (line {exc.line}" + (f", col {exc.col})" if exc.col is not None else ")")
                message += where
            excerpt = source_context(source, exc.line, exc.col)
            if excerpt:
                message += "\n" + excerpt
        err = Error(exc.condition_kind, message)
    else:
        err = Error(type(exc).__name__, _message_of(exc))

    if sink is not None:
        sink.append({"topics": ["stderr"], "message": f"{err.kind}: {err.message}"})
    return err
