from __future__ import annotations

import ast
import logging
from http import HTTPStatus
from typing import Any, Iterator, Mapping, Optional, get_origin

from pydantic import BaseModel

from jinjamux.analysis.constraints import ValidationRule, parse_rules
from jinjamux.codegen.imports import ImportManager
from jinjamux.codegen.pyast import assign, attr, call, const, name, snippet
from jinjamux.codegen.validation import bind_converted
from jinjamux.definitions.call import CallExpression, Identifier
from jinjamux.definitions.definition import EndpointDefinition
from jinjamux.domain.models import RoutesConfig
from jinjamux.errors import GrammarError, ResolutionError
from jinjamux.fragments.fragment_set import FragmentSet
from jinjamux.hosttypes.signatures import Parameter, ResultShape, Signature
from jinjamux.hosttypes.types import (
    StructField,
    accepts,
    conversion_kind,
    is_struct,
    sequence_item,
    status_accessor,
    struct_fields,
    type_name,
    unwrap_optional,
)

log = logging.getLogger(__name__)

_RENDER = """
try:
    _body = TEMPLATES.get_template(NAME).render(data=_td)
except Exception:
    LOGGER.exception('failed to render page', extra={'pattern': PATTERN, 'path': request.url.path})
    return PlainTextResponse('failed to render page', status_code=HTTPStatus.INTERNAL_SERVER_ERROR)
"""

_REDIRECT = """
if _td._redirect_url:
    response.redirect(_td._redirect_url, _status)
    return response.to_response()
"""

_FLUSH = """
if 'content-type' not in response.headers:
    response.headers['content-type'] = 'text/html; charset=utf-8'
_data = _body.encode('utf-8')
response.headers['content-length'] = str(len(_data))
response.write_header(_status)
response.write(_data)
return response.to_response()
"""


def path_local(param: str) -> str:
    """Handler local holding a path value; path parameter names never start with an underscore."""
    return f"_p_{param}"


def status_expr(code: int) -> ast.expr:
    try:
        return attr("HTTPStatus", HTTPStatus(code).name)
    except ValueError:
        return const(code)


def _arguments(
    call_expr: CallExpression, signatures: Mapping[str, Signature]
) -> Iterator[tuple[Parameter, Identifier]]:
    """Identifier arguments left to right, nested calls expanded in place, with the parameter each binds to."""
    signature = signatures[call_expr.callee]
    for param, arg in zip(signature.params, call_expr.args):
        if isinstance(arg, CallExpression):
            yield from _arguments(arg, signatures)
        else:
            yield param, arg


class HandlerBuilder:
    """
    Emit the ``async def`` Starlette endpoint for one route.

    The handler binds arguments, invokes the route's call, renders the
    fragment and writes the response, recording every failure on the
    template data it hands to the fragment.
    """

    def __init__(
        self,
        config: RoutesConfig,
        imports: ImportManager,
        fragments: FragmentSet,
        signatures: Mapping[str, Signature],
        templates: ast.expr,
    ) -> None:
        self.config = config
        self.imports = imports
        self.fragments = fragments
        self.signatures = signatures
        self.templates = templates

    def build(self, definition: EndpointDefinition) -> ast.AsyncFunctionDef:
        body: list[ast.stmt] = snippet(
            "response = ResponseWriter()\n_td = TEMPLATE_DATA(receiver, response, request, _paths)",
            TEMPLATE_DATA=self.config.template_data_type,
        )
        if self.config.logger:
            body.extend(
                snippet(
                    "logger.debug('handling request', extra={'pattern': PATTERN, 'path': request.url.path})",
                    PATTERN=const(definition.pattern),
                )
            )
        if definition.call is not None:
            bound = self._bind_arguments(definition, body)
            self._invoke(definition, bound, body)
        self._render(definition, body)
        self._finish(definition, body)

        log.debug("generated handler for %r", definition.name)
        return ast.AsyncFunctionDef(
            name=handler_name(definition),
            args=ast.arguments(
                posonlyargs=[],
                args=[ast.arg(arg="request", annotation=name("Request"))],
                vararg=None,
                kwonlyargs=[],
                kw_defaults=[],
                kwarg=None,
                defaults=[],
            ),
            body=body,
            decorator_list=[],
            returns=name("Response"),
            type_params=[],
        )

    # binding

    def _bind_arguments(self, definition: EndpointDefinition, body: list[ast.stmt]) -> dict[str, ast.expr]:
        assert definition.call is not None
        bound: dict[str, ast.expr] = {
            "ctx": attr("request", "scope"),
            "request": name("request"),
            "response": name("response"),
        }
        bound_types: dict[str, Any] = {}
        path_params = set(definition.path_params)
        form_parsed = False

        for param, arg in _arguments(definition.call, self.signatures):
            if arg.name in path_params:
                if arg.name in bound:
                    self._check_rebind(definition, param, arg.name, bound_types[arg.name])
                    continue
                kind = conversion_kind(param.annotation)
                if kind is None:
                    raise ResolutionError(
                        f"method expects type {type_name(param.annotation)} but {arg.name} is str"
                    )
                value_type = str if kind == "str" else unwrap_optional(param.annotation)
                text = ast.Subscript(value=attr("request", "path_params"), slice=const(arg.name), ctx=ast.Load())
                local = path_local(arg.name)
                body.extend(bind_converted(self.imports, local, kind, value_type, text, [], []))
                bound[arg.name] = name(local)
                bound_types[arg.name] = value_type
                continue

            if arg.name != "form":
                continue
            if not form_parsed:
                body.append(assign("_form", ast.Await(value=call("_read_form", name("request")))))
                form_parsed = True
            if is_struct(param.annotation):
                if "form" in bound:
                    if bound_types["form"] is not param.annotation:
                        raise ResolutionError(
                            f"form is bound to both {type_name(bound_types['form'])} "
                            f"and {type_name(param.annotation)} in {definition.name!r}"
                        )
                    continue
                bound["form"] = self._bind_struct(definition, param.annotation, body)
                bound_types["form"] = param.annotation
            elif "form" not in bound:
                bound["form"] = name("_form")
                bound_types["form"] = Any
        return bound

    def _check_rebind(self, definition: EndpointDefinition, param: Parameter, arg: str, bound_type: Any) -> None:
        if not accepts(param.annotation, bound_type):
            raise ResolutionError(
                f"method expects type {type_name(param.annotation)} but {arg} is {type_name(bound_type)} "
                f"(in {definition.name!r})"
            )

    def _bind_struct(self, definition: EndpointDefinition, struct: type, body: list[ast.stmt]) -> ast.expr:
        body.append(assign("_form_fields", ast.Dict(keys=[], values=[])))
        for field in struct_fields(struct):
            item = sequence_item(field.annotation)
            value_type = unwrap_optional(item if item is not None else field.annotation)
            kind = conversion_kind(value_type)
            if kind is None:
                raise ResolutionError(
                    f"unsupported type {type_name(field.annotation)} for form field "
                    f"{field.attribute} of {type_name(struct)} (in {definition.name!r})"
                )
            if kind == "str":
                value_type = str
            rules = self._rules(definition, field, value_type)
            key = ast.Subscript(value=name("_form_fields"), slice=const(field.attribute), ctx=ast.Store())

            if item is None:
                text = call(attr("_form", "get"), const(field.external_name), const(""))
                store = ast.Assign(targets=[key], value=name("_value"))
                body.extend(bind_converted(self.imports, "_value", kind, value_type, text, rules, [store]))
                continue

            append = ast.Expr(value=call(attr("_values", "append"), name("_value")))
            body.append(assign("_values", ast.List(elts=[], ctx=ast.Load())))
            body.append(
                ast.For(
                    target=ast.Name(id="_text", ctx=ast.Store()),
                    iter=call(attr("_form", "getlist"), const(field.external_name)),
                    body=bind_converted(self.imports, "_value", kind, value_type, name("_text"), rules, [append]),
                    orelse=[],
                )
            )
            values: ast.expr = name("_values")
            if get_origin(field.annotation) is tuple:
                values = call("tuple", values)
            body.append(ast.Assign(targets=[key], value=values))

        constructor = self.imports.type_expr(struct)
        if issubclass(struct, BaseModel):
            constructor = attr(constructor, "model_construct")
        return ast.Call(func=constructor, args=[], keywords=[ast.keyword(arg=None, value=name("_form_fields"))])

    def _rules(self, definition: EndpointDefinition, field: StructField, value_type: Any) -> list[ValidationRule]:
        """Constraints from the field's own template, else from the route's fragment."""
        source_name = field.template or definition.name
        fragment = self.fragments.get(source_name)
        if fragment is None:
            raise ResolutionError(
                f"form field {field.attribute} names template {source_name!r} which does not exist"
            )
        try:
            return parse_rules(fragment.source, field.external_name, value_type)
        except GrammarError as err:
            raise GrammarError(str(err), label=definition.name) from err

    # invocation

    def _invoke(self, definition: EndpointDefinition, bound: dict[str, ast.expr], body: list[ast.stmt]) -> None:
        assert definition.call is not None
        results: dict[int, str] = {}
        nested = 0
        for call_expr in definition.call.walk():
            signature = self.signatures[call_expr.callee]
            outer = call_expr is definition.call
            if outer:
                target = "_result"
            else:
                nested += 1
                target = f"_result{nested}"
            results[id(call_expr)] = target

            args: list[ast.expr] = []
            for arg in call_expr.args:
                if isinstance(arg, CallExpression):
                    args.append(name(results[id(arg)]))
                else:
                    args.append(bound[arg.name])

            if signature.in_interface:
                func = attr("receiver", signature.name)
            else:
                func = self.imports.ref(signature.module, signature.name)
            invocation: ast.expr = call(func, *args)
            if signature.is_async:
                invocation = ast.Await(value=invocation)

            block = self._result_statements(signature, target, invocation, outer)
            body.append(
                ast.If(
                    test=ast.UnaryOp(op=ast.Not(), operand=attr("_td", "_errors")),
                    body=block,
                    orelse=[],
                )
            )

    def _result_statements(self, signature: Signature, target: str, invocation: ast.expr, outer: bool) -> list[ast.stmt]:
        store_result = snippet("_td._result = TARGET\n_td._ok = True", TARGET=target) if outer else []

        if signature.shape is ResultShape.VALUE:
            return [assign(target, invocation), *store_result]

        if signature.shape is ResultShape.ERROR:
            out = snippet("TARGET, _err = CALL", TARGET=target, CALL=invocation)
            failure = snippet(
                "_td._errors.append(_err)\n_td._err_status_code = _error_status(_err)"
            )
            if outer:
                out.extend(snippet("_td._result = TARGET", TARGET=target))
                success = snippet("_td._ok = True")
            else:
                success = []
            test = ast.Compare(left=name("_err"), ops=[ast.IsNot()], comparators=[const(None)])
            out.append(ast.If(test=test, body=failure, orelse=success))
            return out

        out = snippet("TARGET, _ok = CALL", TARGET=target, CALL=invocation)
        out.extend(snippet("if not _ok:\n    return response.to_response()"))
        out.extend(store_result)
        return out

    # rendering

    def _render(self, definition: EndpointDefinition, body: list[ast.stmt]) -> None:
        render = snippet(
            _RENDER,
            TEMPLATES=self.templates,
            NAME=const(definition.name),
            LOGGER="logger" if self.config.logger else "_logger",
            PATTERN=const(definition.pattern),
        )
        if self.config.render_errors:
            body.extend(render)
            return
        body.append(
            ast.If(
                test=ast.UnaryOp(op=ast.Not(), operand=attr("_td", "_errors")),
                body=render,
                orelse=[assign("_body", call("_error_text", attr("_td", "_errors")))],
            )
        )

    def _finish(self, definition: EndpointDefinition, body: list[ast.stmt]) -> None:
        if definition.has_response_writer_arg:
            body.extend(snippet("response.write(_body)\nreturn response.to_response()"))
            return

        chain: list[ast.expr] = [attr("_td", "_status_code"), attr("_td", "_err_status_code")]
        accessor = self._status_accessor(definition.signature)
        if accessor is not None:
            chain.append(ast.IfExp(test=attr("_td", "_ok"), body=accessor, orelse=const(0)))
        chain.append(status_expr(definition.status_code))
        body.append(assign("_status", ast.BoolOp(op=ast.Or(), values=chain)))

        if definition.can_redirect:
            body.extend(snippet(_REDIRECT))
        body.extend(snippet(_FLUSH))

    def _status_accessor(self, signature: Optional[Signature]) -> Optional[ast.expr]:
        if signature is None:
            return None
        access = status_accessor(signature.result)
        if access == "method":
            return call(attr("_td", "_result", "status_code"))
        if access == "attribute":
            return attr("_td", "_result", "status_code")
        return None


def handler_name(definition: EndpointDefinition) -> str:
    return f"handle_{definition.identifier}"
