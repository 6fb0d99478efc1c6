from __future__ import annotations

import ast
from dataclasses import dataclass
from typing import Iterator, Union

from jinjamux.errors import GrammarError


@dataclass(frozen=True)
class Identifier:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class CallExpression:
    callee: str
    args: tuple[Argument, ...] = ()

    def __str__(self) -> str:
        return f"{self.callee}({', '.join(str(a) for a in self.args)})"

    def walk(self) -> Iterator[CallExpression]:
        """Yield nested calls innermost first, this call last."""
        for arg in self.args:
            if isinstance(arg, CallExpression):
                yield from arg.walk()
        yield self

    def identifiers(self) -> Iterator[Identifier]:
        for arg in self.args:
            if isinstance(arg, CallExpression):
                yield from arg.identifiers()
            else:
                yield arg

    def mentions(self, name: str) -> bool:
        return any(i.name == name for i in self.identifiers())


Argument = Union[Identifier, CallExpression]


def parse_call(text: str) -> CallExpression:
    try:
        tree = ast.parse(text.strip(), mode="eval")
    except SyntaxError as err:
        raise GrammarError(f"failed to parse call expression {text!r}: {err.msg}") from None
    if not isinstance(tree.body, ast.Call):
        raise GrammarError(f"expected call expression, got {ast.unparse(tree.body)!r}")
    return _call_from_node(tree.body)


def _call_from_node(node: ast.Call) -> CallExpression:
    if not isinstance(node.func, ast.Name):
        raise GrammarError(f"expected function identifier, got {ast.unparse(node.func)!r}")
    if node.keywords:
        raise GrammarError(f"call {node.func.id} must not use keyword arguments")

    args: list[Argument] = []
    for i, arg in enumerate(node.args):
        if isinstance(arg, ast.Name):
            args.append(Identifier(arg.id))
        elif isinstance(arg, ast.Call):
            args.append(_call_from_node(arg))
        else:
            raise GrammarError(
                "expected only identifier or call expressions as arguments, "
                f"argument at index {i} is: {ast.unparse(arg)}"
            )
    return CallExpression(callee=node.func.id, args=tuple(args))


def check_call_scope(call: CallExpression, scope: frozenset[str]) -> None:
    """Every identifier, at any nesting depth, must be bound by ``scope``."""
    for i, arg in enumerate(call.args):
        try:
            if isinstance(arg, CallExpression):
                check_call_scope(arg, scope)
            elif arg.name not in scope:
                raise GrammarError(f"unknown argument {arg.name} at index {i}")
        except GrammarError as err:
            raise GrammarError(f"call {call.callee} argument error: {err}") from err
