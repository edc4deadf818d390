"""
Printers for cask: source text for embedded parse trees, and the rendering
service that turns outcomes into MIME bundles.
"""

import ast
from typing import Any, Dict

import sympy
from lark import Tree, Token

from cask.cask_datatypes import Value, Error, Statement, MetaCommand

_PRECEDENCE = {
    "assign": 0, "define": 0, "if_else": 0, "if_then": 0,
    "or_": 1, "and_": 2, "not_": 3, "compare": 4,
    "add": 5, "sub": 5, "mul": 6, "div": 6, "neg": 7, "pow": 8,
}
_BINARY = {"add": "+", "sub": "-", "mul": "*", "div": "/", "pow": "^", "or_": "or", "and_": "and"}


class CasPrinter:
    """Formats embedded-language parse trees back into readable source."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, node: Any) -> str:
        if isinstance(node, Token):
            return str(node)
        if node is None:
            return ""
        handler = self._handlers.get(node.data)
        if handler is None:
            return " ".join(self.pformat(c) for c in node.children)
        return handler(node)

    def _create_handlers(self):
        handlers = {
            "number": self._pformat_leaf,
            "string": self._pformat_leaf,
            "symbol": self._pformat_leaf,
            "last": lambda n: "%",
            "call": self._pformat_call,
            "args": lambda n: ", ".join(self.pformat(c) for c in n.children),
            "list": lambda n: "[" + self.pformat(n.children[0]) + "]",
            "index": lambda n: self._child(n, n.children[0], 10) + "[" + self.pformat(n.children[1]) + "]",
            "sequence": lambda n: "(" + ", ".join(self.pformat(c) for c in n.children) + ")",
            "assign": lambda n: f"{n.children[0]}: {self.pformat(n.children[1])}",
            "define": lambda n: f"{self.pformat(n.children[0])} := {self.pformat(n.children[1])}",
            "if_then": lambda n: f"if {self.pformat(n.children[0])} then {self.pformat(n.children[1])}",
            "if_else": lambda n: (f"if {self.pformat(n.children[0])} then {self.pformat(n.children[1])}"
                                  f" else {self.pformat(n.children[2])}"),
            "not_": lambda n: "not " + self._child(n, n.children[0], 3),
            "neg": lambda n: "-" + self._child(n, n.children[0], 7),
            "compare": lambda n: (f"{self._child(n, n.children[0], 5)} {n.children[1]} "
                                  f"{self._child(n, n.children[2], 5)}"),
        }
        for tag in _BINARY:
            handlers[tag] = self._pformat_binary
        return handlers

    def _pformat_leaf(self, node):
        return str(node.children[0])

    def _pformat_call(self, node):
        name, args = node.children
        return f"{name}({self.pformat(args)})"

    def _pformat_binary(self, node):
        op = _BINARY[node.data]
        prec = _PRECEDENCE[node.data]
        left, right = node.children
        if node.data == "pow":
            # right associative
            return f"{self._child(node, left, prec + 1)}^{self._child(node, right, prec)}"
        return f"{self._child(node, left, prec)} {op} {self._child(node, right, prec + 1)}"

    def _child(self, parent, child, min_prec):
        text = self.pformat(child)
        if isinstance(child, Tree) and _PRECEDENCE.get(child.data, 10) < min_prec:
            return f"({text})"
        return text


def pretty_print_statement(statement: Statement) -> str:
    tree = statement.tree
    if isinstance(tree, MetaCommand):
        return f":{tree.name} {tree.argument}".rstrip()
    if isinstance(tree, ast.AST):
        return ast.unparse(tree)
    if isinstance(tree, Tree):
        return CasPrinter().pformat(tree) + (statement.terminator or ";")
    return statement.source.strip()


# ------------------------------------------------------------
# Rendering service
# ------------------------------------------------------------

def _is_symbolic(v) -> bool:
    if isinstance(v, bool):
        return False
    if isinstance(v, (sympy.Basic, sympy.MatrixBase, int, float)):
        return True
    if isinstance(v, (list, tuple)) and v:
        return all(_is_symbolic(x) for x in v)
    return False


class Renderer:
    """Renders outcomes into MIME bundles. An empty bundle means "send nothing"."""

    def __init__(self, unicode: bool = True, latex: bool = True):
        self.unicode = unicode
        self.latex = latex

    def render(self, outcome: Any) -> Dict[str, str]:
        if isinstance(outcome, Error):
            return {"text/plain": f"{outcome.kind}: {outcome.message}"}
        if not isinstance(outcome, Value) or outcome.silent:
            return {}
        return self.render_value(outcome.payload)

    def render_value(self, value: Any) -> Dict[str, str]:
        if value is None:
            return {}
        if isinstance(value, str):
            return {"text/plain": value}
        if isinstance(value, bool):
            return {"text/plain": "true" if value else "false"}
        if _is_symbolic(value):
            data = {"text/plain": sympy.pretty(value, use_unicode=self.unicode)}
            if self.latex:
                data["text/latex"] = f"$${sympy.latex(value)}$$"
            return data
        bundle = getattr(value, "_repr_mimebundle_", None)
        if callable(bundle):
            data = bundle()
            if isinstance(data, tuple):
                data = data[0]
            return dict(data or {})
        return {"text/plain": str(value) if getattr(value, "__cas_text__", False) else repr(value)}
