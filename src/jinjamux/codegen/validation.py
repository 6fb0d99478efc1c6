from __future__ import annotations

import ast
from typing import Any

from jinjamux.analysis.constraints import ValidationRule
from jinjamux.codegen.imports import ImportManager
from jinjamux.codegen.pyast import attr, call, const, name, snippet
from jinjamux.hosttypes.types import ConversionKind

_COMPARE = {
    "min": ast.Lt,
    "max": ast.Gt,
    "minlength": ast.Lt,
    "maxlength": ast.Gt,
}


def fail(imports: ImportManager, error: ast.expr) -> list[ast.stmt]:
    """Record ``error`` on the template data and answer 400."""
    return snippet(
        "_td._errors.append(ERROR)\n_td._err_status_code = STATUS.BAD_REQUEST",
        ERROR=error,
        STATUS=imports.ref("http", "HTTPStatus"),
    )


def convert(imports: ImportManager, kind: ConversionKind, target: Any, text: ast.expr) -> ast.expr:
    """Expression turning request text into a ``target`` value."""
    if kind == "int":
        return call("int", text, const(10))
    if kind == "float":
        return call("float", text)
    if kind == "bool":
        return call("_parse_bool", text)
    if kind == "text":
        return call(attr(imports.type_expr(target), "from_text"), text)
    return text


def guards(imports: ImportManager, rules: list[ValidationRule], value: str) -> list[ast.stmt]:
    """One ``if`` per rule, in rule order, each failing the request with the rule's message."""
    out: list[ast.stmt] = []
    for rule in rules:
        if rule.kind == "pattern":
            test: ast.expr = ast.Compare(
                left=call(attr(imports.module("re"), "fullmatch"), const(rule.value), name(value)),
                ops=[ast.Is()],
                comparators=[const(None)],
            )
        else:
            subject: ast.expr = name(value)
            if rule.kind in ("minlength", "maxlength"):
                subject = call("len", subject)
            test = ast.Compare(left=subject, ops=[_COMPARE[rule.kind]()], comparators=[const(rule.value)])
        body = fail(imports, call("ValueError", const(rule.message)))
        out.append(ast.If(test=test, body=body, orelse=[]))
    return out


def bind_converted(
    imports: ImportManager,
    target: str,
    kind: ConversionKind,
    value_type: Any,
    text: ast.expr,
    rules: list[ValidationRule],
    then: list[ast.stmt],
) -> list[ast.stmt]:
    """
    Convert ``text`` into local ``target``, run the validation guards, then ``then``.

    A conversion failure records the ValueError and answers 400; guards and
    ``then`` only run once the value converted.
    """
    checks = guards(imports, rules, target)
    if kind == "str":
        return [ast.Assign(targets=[ast.Name(id=target, ctx=ast.Store())], value=text), *checks, *then]
    return [
        ast.Try(
            body=[ast.Assign(targets=[ast.Name(id=target, ctx=ast.Store())], value=convert(imports, kind, value_type, text))],
            handlers=[
                ast.ExceptHandler(
                    type=name("ValueError"),
                    name="_err",
                    body=fail(imports, name("_err")),
                )
            ],
            orelse=[*checks, *then],
            finalbody=[],
        )
    ]
