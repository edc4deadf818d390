"""
Meta commands: keyword-prefixed lines such as `:history 5` that are handled
by the session instead of the computation engine.
"""

import ast
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict

import pystache

from cask.cask_datatypes import Mode, Statement, MetaCommand, Quit, CasError, ArgumentError, UnknownCommand
from cask.cask_interpreter import BUILTIN_DOCS

_renderer = pystache.Renderer(escape=lambda u: u)

HELP_TEMPLATE = """\
cask, {{mode}} mode

Meta commands:
{{#commands}}
  :{{name}} {{usage}}
      {{summary}}
{{/commands}}

Builtins: {{builtins}}
Use :help <name> for details.
"""


@dataclass
class Command:
    handler: Callable
    usage: str
    summary: str


def _int_argument(name: str, argument: str, default=None):
    if not argument:
        return default
    try:
        return int(argument)
    except ValueError:
        raise ArgumentError(":{{name}} expects a number, got {{arg}}", name=name, arg=argument) from None


async def _python(evaluator, argument: str):
    if not argument:
        raise ArgumentError(":python needs code to run")
    tree = ast.parse(argument, mode="exec")
    statement = Statement(Mode.HOST, argument, tree)
    return await evaluator.engine.evaluate(statement, evaluator)


def _history(evaluator, argument: str):
    n = _int_argument("history", argument)
    lines = [f"{count}: {text.rstrip()}" for count, text in evaluator.history.tail(n)]
    return "\n".join(lines)


def _recall(evaluator, argument: str):
    n = _int_argument("recall", argument, default=len(evaluator.history) - 1)
    try:
        text = evaluator.history.input(n)
    except IndexError:
        raise CasError("No input with execution count {{n}}", n=n) from None
    evaluator.request_next_input(text, replace=False)
    return None


def _help(evaluator, argument: str):
    topic = argument.strip().lstrip(":")
    if not topic:
        text = _renderer.render(HELP_TEMPLATE, {
            "mode": evaluator.mode.value,
            "commands": [{"name": name, "usage": cmd.usage, "summary": cmd.summary}
                         for name, cmd in sorted(COMMANDS.items())],
            "builtins": ", ".join(sorted(BUILTIN_DOCS)),
        })
    elif topic in COMMANDS:
        cmd = COMMANDS[topic]
        text = f":{topic} {cmd.usage}\n    {cmd.summary}"
    elif topic in BUILTIN_DOCS:
        text = BUILTIN_DOCS[topic]
    else:
        raise CasError("No help for {{topic}}", topic=topic)
    evaluator.request_page(text)
    return None


def _mode(evaluator, argument: str):
    return evaluator.mode.value


def _quit(evaluator, argument: str):
    raise Quit("Quit requested by :quit")


COMMANDS: Dict[str, Command] = {
    "python": Command(_python, "<code>", "Evaluate one line of Python without leaving the current mode."),
    "history": Command(_history, "[n]", "List the last n submitted blocks (all by default)."),
    "recall": Command(_recall, "[n]", "Put block n (the previous one by default) into the next input cell."),
    "help": Command(_help, "[topic]", "Show help for a command or builtin."),
    "mode": Command(_mode, "", "Show the active grammar."),
    "quit": Command(_quit, "", "End the session."),
}

ALIASES = {"py": "python", "h": "help", "q": "quit"}


async def run_command(evaluator, command: MetaCommand) -> Any:
    name = ALIASES.get(command.name, command.name)
    entry = COMMANDS.get(name)
    if entry is None:
        raise UnknownCommand("Unknown command :{{name}}. Try :help", name=command.name)
    result = entry.handler(evaluator, command.argument)
    if inspect.isawaitable(result):
        result = await result
    return result
