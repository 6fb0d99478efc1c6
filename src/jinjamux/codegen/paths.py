from __future__ import annotations

import ast
from typing import Any, Sequence

from jinjamux.codegen.imports import ImportManager
from jinjamux.codegen.pyast import attr, call, const, name, snippet
from jinjamux.definitions.definition import EndpointDefinition
from jinjamux.errors import ResolutionError
from jinjamux.hosttypes.types import is_text_encodable, type_name, unwrap_optional


def _encode(imports: ImportManager, value: str, value_type: Any) -> ast.expr:
    """Canonical text for a basic path value."""
    value_type = unwrap_optional(value_type)
    if value_type is str:
        return name(value)
    if value_type is bool:
        return ast.IfExp(test=name(value), body=const("true"), orelse=const("false"))
    if value_type in (int, float):
        return ast.JoinedStr(values=[ast.FormattedValue(value=name(value), conversion=-1, format_spec=None)])
    raise ResolutionError(f"unsupported type {type_name(value_type)} for path parameter {value}")


def route_path_method(imports: ImportManager, definition: EndpointDefinition) -> ast.FunctionDef:
    """
    ``TemplateRoutePaths`` method building the URL of one route.

    Parameters whose type encodes itself with ``to_text`` make the method
    fallible: it then returns ``(path, None)`` or ``("", error)``.
    """
    label = definition.label
    args = [ast.arg(arg="self")]
    body: list[ast.stmt] = []
    parts: list[ast.expr] = [attr("self", "paths_prefix")]
    fallible = False

    literal: list[str] = []

    def flush_literal() -> None:
        if literal:
            parts.append(const("/".join(literal)))
            literal.clear()

    if label.path not in ("/", "/{$}"):
        for index, segment in enumerate(label.segments, start=1):
            if segment.kind == "literal":
                literal.append(segment.value)
                continue
            if segment.kind == "end":
                continue
            flush_literal()

            param = segment.value
            param_type = definition.path_type(param)
            args.append(ast.arg(arg=param, annotation=imports.type_expr(param_type)))
            safe = [const("/")] if segment.kind == "wildcard" else []

            if is_text_encodable(unwrap_optional(param_type)):
                fallible = True
                text = f"_segment{index}"
                message = f"failed to encode path value {{{param}}} (segment {index}) in {label.path}"
                body.extend(
                    snippet(
                        "TEXT, _err = _encode_text(PARAM, MESSAGE)\n"
                        "if _err is not None:\n"
                        "    return ('', _err)",
                        TEXT=text,
                        PARAM=param,
                        MESSAGE=const(message),
                    )
                )
                parts.append(call("_segment", name(text), *safe))
            else:
                parts.append(call("_segment", _encode(imports, param, param_type), *safe))
        flush_literal()

    joined: ast.expr = call("_join", *parts)
    if label.exact and label.path != "/{$}":
        joined = ast.BinOp(left=joined, op=ast.Add(), right=const("/"))

    str_annotation = name("str")
    if fallible:
        returns: ast.expr = ast.Subscript(
            value=name("tuple"),
            slice=ast.Tuple(
                elts=[name("str"), ast.BinOp(left=name("Exception"), op=ast.BitOr(), right=const(None))],
                ctx=ast.Load(),
            ),
            ctx=ast.Load(),
        )
        body.append(ast.Return(value=ast.Tuple(elts=[joined, const(None)], ctx=ast.Load())))
    else:
        returns = str_annotation
        body.append(ast.Return(value=joined))

    return ast.FunctionDef(
        name=definition.identifier,
        args=ast.arguments(posonlyargs=[], args=args, vararg=None, kwonlyargs=[], kw_defaults=[], kwarg=None, defaults=[]),
        body=body,
        decorator_list=[],
        returns=returns,
        type_params=[],
    )


def route_paths_class(
    imports: ImportManager, class_name: str, definitions: Sequence[EndpointDefinition]
) -> ast.ClassDef:
    init = snippet(
        "def __init__(self, paths_prefix: str = '') -> None:\n"
        "    self.paths_prefix = paths_prefix"
    )
    methods: list[ast.stmt] = [route_path_method(imports, d) for d in definitions]
    return ast.ClassDef(
        name=class_name,
        bases=[],
        keywords=[],
        body=[
            ast.Expr(value=const("URL builders for every route, relative to ``paths_prefix``.")),
            *init,
            *methods,
        ],
        decorator_list=[],
        type_params=[],
    )
