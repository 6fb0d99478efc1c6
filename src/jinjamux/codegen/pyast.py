from __future__ import annotations

import ast
import copy
from typing import Any, Iterable, Union

ExprLike = Union[ast.expr, str]

HEADER = "# Code generated by jinjamux. DO NOT EDIT."


def name(ident: str) -> ast.Name:
    return ast.Name(id=ident, ctx=ast.Load())


def store(ident: str) -> ast.Name:
    return ast.Name(id=ident, ctx=ast.Store())


def const(value: Any) -> ast.Constant:
    return ast.Constant(value=value)


def _expr(value: ExprLike) -> ast.expr:
    return name(value) if isinstance(value, str) else value


def attr(value: ExprLike, *attrs: str) -> ast.expr:
    node = _expr(value)
    for a in attrs:
        node = ast.Attribute(value=node, attr=a, ctx=ast.Load())
    return node


def call(func: ExprLike, *args: ast.expr, **kwargs: ast.expr) -> ast.Call:
    return ast.Call(
        func=_expr(func),
        args=list(args),
        keywords=[ast.keyword(arg=k, value=v) for k, v in kwargs.items()],
    )


def assign(target: str, value: ast.expr) -> ast.Assign:
    return ast.Assign(targets=[store(target)], value=value)


class _Substitute(ast.NodeTransformer):
    def __init__(self, subs: dict[str, Any]) -> None:
        self.subs = subs

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.subs:
            value = self.subs[node.id]
            if isinstance(value, str):
                return ast.copy_location(ast.Name(id=value, ctx=node.ctx), node)
            return copy.deepcopy(value)
        return node

    def visit_Expr(self, node: ast.Expr) -> Any:
        # a bare placeholder statement expands to a list of statements
        if isinstance(node.value, ast.Name) and isinstance(self.subs.get(node.value.id), list):
            return [copy.deepcopy(s) for s in self.subs[node.value.id]]
        return self.generic_visit(node)


def snippet(source: str, **subs: Any) -> list[ast.stmt]:
    """
    Parse ``source`` and replace upper-case placeholder names.

    A ``str`` value renames the placeholder, an ``ast.expr`` replaces it and a
    list of statements replaces a placeholder that stands alone on a line.
    """
    tree = ast.parse(source)
    tree = _Substitute(subs).visit(tree)
    return tree.body


def render_module(body: Iterable[ast.stmt], header: str = HEADER) -> str:
    """Render statements the way a person would lay them out: two blank lines around defs."""
    chunks: list[str] = [header, ""]
    previous: ast.stmt | None = None
    for stmt in body:
        ast.fix_missing_locations(stmt)
        is_def = isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
        if previous is not None:
            prev_def = isinstance(previous, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
            prev_import = isinstance(previous, (ast.Import, ast.ImportFrom))
            if is_def or prev_def:
                chunks.extend(["", ""])
            elif prev_import and not isinstance(stmt, (ast.Import, ast.ImportFrom)):
                chunks.append("")
        chunks.append(ast.unparse(stmt))
        previous = stmt
    return "\n".join(chunks) + "\n"
