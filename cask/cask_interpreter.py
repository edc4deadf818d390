"""
The computation engine behind a cask session.

`Interpreter` evaluates statements produced by `cask_reader`: embedded
statements are walked directly over their Lark trees and computed with SymPy;
host statements are compiled and run as Python in a namespace that persists
across blocks. The evaluator reaches the engine only through
`read_statement`, `evaluate`, `pretty_print` and `last_answer`.
"""

import ast
import inspect
from collections import ChainMap
from typing import Any, Callable, Dict, List, Optional

import sympy
from lark import Tree, Token
from lark.exceptions import UnexpectedInput

from cask.cask_datatypes import (
    Mode, Statement, StateChange, Quit, CasError, ArgumentError, InvalidInput,
)
from cask.cask_reader import read_statement, parser, SWITCH_TO_HOST, SWITCH_TO_EMBEDDED
from cask.cask_printer import CasPrinter, Renderer, pretty_print_statement

CONSTANTS = {
    "%pi": sympy.pi,
    "%e": sympy.E,
    "%i": sympy.I,
    "%phi": sympy.GoldenRatio,
    "inf": sympy.oo,
    "minf": -sympy.oo,
    "true": sympy.true,
    "false": sympy.false,
}

BUILTIN_DOCS = {
    "sin": "sin(x): sine of x.",
    "cos": "cos(x): cosine of x.",
    "tan": "tan(x): tangent of x.",
    "asin": "asin(x): arc sine of x.",
    "acos": "acos(x): arc cosine of x.",
    "atan": "atan(x): arc tangent of x.",
    "exp": "exp(x): the exponential function.",
    "log": "log(x): natural logarithm of x.",
    "sqrt": "sqrt(x): square root of x.",
    "abs": "abs(x): absolute value of x.",
    "factorial": "factorial(n): n!",
    "expand": "expand(expr): multiply out products and powers.",
    "factor": "factor(expr): factor a polynomial over the rationals.",
    "simplify": "simplify(expr): heuristic simplification.",
    "ratsimp": "ratsimp(expr): simplify a rational expression.",
    "trigsimp": "trigsimp(expr): simplify trigonometric expressions.",
    "diff": "diff(expr, x, n): n-th derivative of expr with respect to x (n defaults to 1).",
    "integrate": "integrate(expr, x) or integrate(expr, x, a, b): indefinite or definite integral.",
    "limit": "limit(expr, x, val): limit of expr as x approaches val.",
    "solve": "solve(eqn, x): solutions of an equation or a list of equations.",
    "subst": "subst(a, x, expr) or subst(x = a, expr): substitute a for x in expr.",
    "float": "float(expr): numeric approximation of expr.",
    "sum": "sum(expr, i, a, b): sum of expr for i from a to b.",
    "length": "length(list): number of elements of a list or operands of an expression.",
    "first": "first(list): the first element of a list.",
    "last": "last(list): the last element of a list.",
    "print": "print(a, b, ...): display the arguments on one line and return the last one.",
    "display": "display(a, b, ...): display each argument as its own output.",
    "read": "read(prompt): read an expression from the input queue and evaluate it.",
    "describe": "describe(name): show documentation for a builtin.",
    "kill": "kill(a, b, ...): remove bindings.",
    "quit": "quit(): end the session.",
    SWITCH_TO_HOST: f"{SWITCH_TO_HOST}(): switch the session to Python; {SWITCH_TO_EMBEDDED}() switches back.",
}


# Builtins that receive their arguments as unevaluated names.
_QUOTING = {"kill", "describe"}


class UserFunction:
    """A function defined with `f(x) := body`."""
    __cas_text__ = True

    def __init__(self, name: str, params: List[str], body: Tree):
        self.name = name
        self.params = params
        self.body = body

    def __str__(self):
        return f"{self.name}({', '.join(self.params)}) := {CasPrinter().pformat(self.body)}"

    def __repr__(self):
        return f"<UserFunction {self}>"


class _ModeSwitch(BaseException):
    def __init__(self, target: Mode):
        super().__init__(target)
        self.target = target


def _truth(value, expr_text: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is sympy.true:
        return True
    if value is sympy.false:
        return False
    raise CasError("Unable to evaluate predicate {{expr}}", expr=expr_text)


class Interpreter:
    """Evaluates embedded and host statements for one session."""

    def __init__(self):
        self.env: Dict[str, Any] = {}
        self.printer = CasPrinter()
        self.session = None
        self._last_answer = None
        self._has_last_answer = False
        self.builtins = self._create_builtins()
        self.host_ns = self._create_host_namespace()

    # --- Contract used by the evaluator ---

    def read_statement(self, stream, mode: Mode):
        return read_statement(stream, mode)

    def pretty_print(self, statement: Statement) -> str:
        return pretty_print_statement(statement)

    @property
    def last_answer(self):
        return self._last_answer

    @last_answer.setter
    def last_answer(self, value):
        self._last_answer = value
        self._has_last_answer = True

    async def evaluate(self, statement: Statement, session=None) -> Any:
        """Evaluate one statement.

        Returns the raw result, or a `StateChange` when the statement asked to
        switch grammars (the rest of the statement is abandoned).
        """
        self.session = session
        try:
            if statement.mode is Mode.HOST:
                return await self._eval_host(statement.tree)
            return self.eval_tree(statement.tree, self.env)
        except _ModeSwitch as sw:
            return StateChange(sw.target)

    # --- Host (Python) evaluation ---

    def _create_host_namespace(self) -> Dict[str, Any]:
        def _quit(*_):
            raise Quit()

        return {
            "__name__": "__cask__",
            "sympy": sympy,
            "env": self.env,
            "last_answer": lambda: self._last_answer,
            "display": self._host_display,
            "input": self._host_input,
            "quit": _quit,
            "exit": _quit,
            SWITCH_TO_EMBEDDED: self._switch_to_embedded,
        }

    def _switch_to_embedded(self):
        raise _ModeSwitch(Mode.EMBEDDED)

    def _host_display(self, *values):
        for v in values:
            self._require_session().emit_display(v)

    def _host_input(self, prompt: str = "") -> str:
        return self._require_session().read_input(str(prompt))

    async def _eval_host(self, module: ast.Module) -> Any:
        body = list(module.body)
        if not body:
            return None
        last_expr = None
        if isinstance(body[-1], ast.Expr):
            last_expr = ast.Expression(body.pop().value)
        flags = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT
        if body:
            code = compile(ast.Module(body=body, type_ignores=[]), "<cell>", "exec", flags=flags)
            await self._run_code(code)
        if last_expr is not None:
            code = compile(last_expr, "<cell>", "eval", flags=flags)
            return await self._run_code(code)
        return None

    async def _run_code(self, code) -> Any:
        result = eval(code, self.host_ns)
        if code.co_flags & inspect.CO_COROUTINE:
            result = await result
        return result

    # --- Embedded evaluation ---

    def _require_session(self):
        if self.session is None:
            raise CasError("No session is attached to the interpreter")
        return self.session

    def eval_tree(self, node: Any, env) -> Any:
        if isinstance(node, Token):
            return str(node)
        children = node.children
        match node.data:
            case "number":
                text = str(children[0])
                if any(c in text for c in ".eE"):
                    return sympy.Float(text)
                return sympy.Integer(text)
            case "string":
                return ast.literal_eval(str(children[0]))
            case "symbol":
                return self._lookup(str(children[0]), env)
            case "last":
                if not self._has_last_answer:
                    raise CasError("There is no previous result to refer to with %")
                return self._last_answer
            case "assign":
                return self._assign(str(children[0]), self.eval_tree(children[1], env), env)
            case "define":
                return self._define(children[0], children[1])
            case "if_then" | "if_else":
                cond = self.eval_tree(children[0], env)
                if _truth(cond, self.printer.pformat(children[0])):
                    return self.eval_tree(children[1], env)
                if node.data == "if_else":
                    return self.eval_tree(children[2], env)
                return False
            case "or_":
                left = self.eval_tree(children[0], env)
                if _truth(left, self.printer.pformat(children[0])):
                    return True
                return _truth(self.eval_tree(children[1], env), self.printer.pformat(children[1]))
            case "and_":
                left = self.eval_tree(children[0], env)
                if not _truth(left, self.printer.pformat(children[0])):
                    return False
                return _truth(self.eval_tree(children[1], env), self.printer.pformat(children[1]))
            case "not_":
                return not _truth(self.eval_tree(children[0], env), self.printer.pformat(children[0]))
            case "compare":
                return self._compare(self.eval_tree(children[0], env), str(children[1]),
                                     self.eval_tree(children[2], env))
            case "add":
                return self.eval_tree(children[0], env) + self.eval_tree(children[1], env)
            case "sub":
                return self.eval_tree(children[0], env) - self.eval_tree(children[1], env)
            case "mul":
                return self.eval_tree(children[0], env) * self.eval_tree(children[1], env)
            case "div":
                num = self.eval_tree(children[0], env)
                den = self.eval_tree(children[1], env)
                if isinstance(den, sympy.Basic) and den.is_zero:
                    raise CasError("Division by 0")
                return num / den
            case "pow":
                return self.eval_tree(children[0], env) ** self.eval_tree(children[1], env)
            case "neg":
                return -self.eval_tree(children[0], env)
            case "call":
                name = str(children[0])
                if name in _QUOTING and name not in env:
                    raw = children[1].children if children[1] is not None else []
                    return self.builtins[name](*[self.printer.pformat(c) for c in raw])
                args = self._eval_args(children[1], env)
                return self._call(name, args, env)
            case "list":
                return self._eval_args(children[0], env)
            case "index":
                return self._index(self.eval_tree(children[0], env), self._eval_args(children[1], env))
            case "sequence":
                result = None
                for child in children:
                    result = self.eval_tree(child, env)
                return result
            case _:
                raise CasError("Cannot evaluate {{tag}}", tag=node.data)

    def _eval_args(self, args_node: Optional[Tree], env) -> list:
        if args_node is None:
            return []
        return [self.eval_tree(c, env) for c in args_node.children]

    def _lookup(self, name: str, env):
        if name in env:
            return env[name]
        if name in CONSTANTS:
            return CONSTANTS[name]
        return sympy.Symbol(name)

    def _assign(self, name: str, value, env):
        if name in CONSTANTS:
            raise CasError("Cannot assign to the constant {{name}}", name=name)
        if isinstance(env, ChainMap) and name in env.maps[0]:
            env.maps[0][name] = value
        else:
            self.env[name] = value
        return value

    def _define(self, call: Tree, body: Tree) -> UserFunction:
        name_tok, args = call.children
        params = []
        for arg in (args.children if args is not None else []):
            if not (isinstance(arg, Tree) and arg.data == "symbol"):
                raise ArgumentError("Function parameters must be plain names, got {{param}}",
                                    param=self.printer.pformat(arg))
            params.append(str(arg.children[0]))
        fn = UserFunction(str(name_tok), params, body)
        self.env[fn.name] = fn
        return fn

    def _compare(self, left, op: str, right):
        match op:
            case "=":
                return sympy.Eq(left, right)
            case "#":
                return sympy.Ne(left, right)
            case "<":
                return sympy.Lt(left, right)
            case "<=":
                return sympy.Le(left, right)
            case ">":
                return sympy.Gt(left, right)
            case ">=":
                return sympy.Ge(left, right)
        raise CasError("Unknown comparison {{op}}", op=op)

    def _index(self, base, indices: list):
        if not isinstance(base, list):
            raise CasError("Cannot index {{value}}: not a list", value=base)
        value = base
        for idx in indices:
            if not isinstance(value, list):
                raise CasError("Cannot index {{value}}: not a list", value=value)
            if not (isinstance(idx, sympy.Integer) and 1 <= int(idx) <= len(value)):
                raise CasError("Index {{index}} out of range for a list of length {{length}}",
                               index=idx, length=len(value))
            value = value[int(idx) - 1]
        return value

    def _call(self, name: str, args: list, env):
        target = env.get(name) if name in env else None
        if isinstance(target, UserFunction):
            return self._apply(target, args)
        if target is not None and callable(target):
            return target(*args)
        builtin = self.builtins.get(name)
        if builtin is not None:
            return builtin(*args)
        return sympy.Function(name)(*args)

    def _apply(self, fn: UserFunction, args: list):
        if len(args) != len(fn.params):
            raise ArgumentError("{{name}} expects {{expected}} arguments but got {{got}}",
                                name=fn.name, expected=len(fn.params), got=len(args))
        scope = ChainMap(dict(zip(fn.params, args)), self.env)
        return self.eval_tree(fn.body, scope)

    # --- Builtins ---

    def _create_builtins(self) -> Dict[str, Callable]:
        return {
            "sin": sympy.sin, "cos": sympy.cos, "tan": sympy.tan,
            "asin": sympy.asin, "acos": sympy.acos, "atan": sympy.atan,
            "exp": sympy.exp, "log": sympy.log, "sqrt": sympy.sqrt,
            "abs": sympy.Abs, "factorial": sympy.factorial,
            "expand": sympy.expand, "factor": sympy.factor,
            "simplify": sympy.simplify, "ratsimp": sympy.ratsimp, "trigsimp": sympy.trigsimp,
            "diff": self._diff,
            "integrate": self._integrate,
            "limit": sympy.limit,
            "solve": self._solve,
            "subst": self._subst,
            "float": self._float,
            "sum": self._sum,
            "length": self._length,
            "first": lambda lst: self._end_of(lst, "first"),
            "last": lambda lst: self._end_of(lst, "last"),
            "print": self._print,
            "display": self._display,
            "read": self._read,
            "describe": self._describe,
            "kill": self._kill,
            "quit": self._quit,
            SWITCH_TO_HOST: self._switch_to_host,
        }

    def _diff(self, expr, var=None, n=1):
        if var is None:
            return sympy.diff(expr)
        return sympy.diff(expr, var, int(n))

    def _integrate(self, expr, var, *bounds):
        if len(bounds) == 0:
            return sympy.integrate(expr, var)
        if len(bounds) == 2:
            return sympy.integrate(expr, (var, bounds[0], bounds[1]))
        raise ArgumentError("integrate expects 2 or 4 arguments but got {{got}}", got=len(bounds) + 2)

    def _solve(self, eqs, var=None):
        single = not isinstance(var, list)
        if var is None:
            target = eqs if isinstance(eqs, list) else [eqs]
            symbols = sorted(set().union(*(sympy.sympify(e).free_symbols for e in target)), key=str)
            if len(symbols) != 1:
                raise ArgumentError("solve needs the unknowns when the equation has {{n}} variables",
                                    n=len(symbols))
            var = symbols[0]
        solutions = sympy.solve(eqs, var, dict=True)
        if single:
            return [sympy.Eq(var, sol[var], evaluate=False) for sol in solutions if var in sol]
        return [[sympy.Eq(k, v, evaluate=False) for k, v in sol.items()] for sol in solutions]

    def _subst(self, *args):
        if len(args) == 3:
            value, var, expr = args
            return sympy.sympify(expr).subs(var, value)
        if len(args) == 2 and isinstance(args[0], sympy.Eq):
            eq, expr = args
            return sympy.sympify(expr).subs(eq.lhs, eq.rhs)
        raise ArgumentError("subst expects subst(a, x, expr) or subst(x = a, expr)")

    def _float(self, expr):
        if isinstance(expr, list):
            return [self._float(e) for e in expr]
        return sympy.N(expr)

    def _sum(self, expr, index, lo, hi):
        return sympy.summation(expr, (index, lo, hi))

    def _length(self, value):
        if isinstance(value, (list, str)):
            return sympy.Integer(len(value))
        if isinstance(value, sympy.Basic):
            return sympy.Integer(len(value.args))
        raise ArgumentError("length: {{value}} has no length", value=value)

    def _end_of(self, lst, which: str):
        if not isinstance(lst, list):
            raise ArgumentError("{{which}}: argument must be a list, got {{value}}", which=which, value=lst)
        if not lst:
            raise CasError("{{which}}: empty list", which=which)
        return lst[0] if which == "first" else lst[-1]

    def _print(self, *values):
        session = self._require_session()
        renderer = getattr(session, "renderer", None) or Renderer()
        parts = []
        for v in values:
            data = renderer.render_value(v)
            parts.append(data.get("text/plain", "") if data else str(v))
        session.emit_display(" ".join(parts))
        return values[-1] if values else None

    def _display(self, *values):
        session = self._require_session()
        for v in values:
            session.emit_display(v)
        return sympy.Symbol("done")

    def _read(self, *prompt):
        session = self._require_session()
        text = session.read_input(" ".join(str(p) for p in prompt)).strip()
        if text.endswith((";", "$")):
            text = text[:-1]
        try:
            tree = parser.parse(text)
        except UnexpectedInput:
            raise InvalidInput("read: cannot parse {{text}}", text=text) from None
        return self.eval_tree(tree, self.env)

    def _describe(self, topic):
        name = str(topic)
        doc = BUILTIN_DOCS.get(name)
        if doc is None:
            fn = self.env.get(name)
            if isinstance(fn, UserFunction):
                doc = str(fn)
        if doc is None:
            raise CasError("No documentation found for {{topic}}", topic=name)
        self._require_session().request_page(doc)
        return None

    def _kill(self, *names):
        for n in names:
            self.env.pop(str(n), None)
        return sympy.Symbol("done")

    def _quit(self, *_):
        raise Quit()

    def _switch_to_host(self):
        raise _ModeSwitch(Mode.HOST)
