from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from itertools import groupby
from typing import Mapping, Optional, Sequence

from jinjamux.analysis.redirects import annotate_redirects
from jinjamux.codegen.handlers import HandlerBuilder, handler_name
from jinjamux.codegen.imports import ImportManager
from jinjamux.codegen.paths import route_paths_class
from jinjamux.codegen.pyast import attr, call, const, name, render_module, snippet
from jinjamux.codegen.support import class_statements, helper_statements, register_imports
from jinjamux.definitions.definition import EndpointDefinition, build_definitions
from jinjamux.definitions.naming import assign_identifiers, group_identifier, pascal_case
from jinjamux.definitions.pattern import GENERATED_NAMES, RESERVED_SCOPE, RouteLabel
from jinjamux.domain.models import GeneratedFile, RoutesConfig
from jinjamux.fragments.fragment_set import FragmentSet
from jinjamux.hosttypes.signatures import Signature, SignatureResolver
from jinjamux.hosttypes.types import HostTypes

log = logging.getLogger(__name__)

_ENTRIES = "list[tuple[int, str, BaseRoute]]"


@dataclass(frozen=True)
class RoutesModule:
    file: GeneratedFile
    definitions: list[EndpointDefinition]
    signatures: Mapping[str, Signature]


def analyze(
    fragments: FragmentSet, host: Optional[HostTypes] = None
) -> tuple[list[EndpointDefinition], Mapping[str, Signature]]:
    """Run every pass over the fragments; nothing is emitted yet."""
    definitions = build_definitions(fragments)
    assign_identifiers(definitions)
    signatures = SignatureResolver(host).resolve_all(definitions)
    annotate_redirects(definitions, fragments)
    return definitions, signatures


def starlette_path(label: RouteLabel) -> str:
    """
    Translate a route path to Starlette syntax.

    ``{name...}`` becomes ``{name:path}``, ``/x/{$}`` matches ``/x/`` only,
    and any other path ending in ``/`` matches everything below it.
    """
    parts: list[str] = []
    for segment in label.segments:
        if segment.kind == "literal":
            parts.append(segment.value)
        elif segment.kind == "param":
            parts.append("{" + segment.value + "}")
        elif segment.kind == "wildcard":
            parts.append("{" + segment.value + ":path}")
    path = "/" + "/".join(parts)
    if label.exact:
        return path + "/" if parts else "/"
    if label.subtree:
        return path.rstrip("/") + "/{_subtree:path}"
    return path


def registration_ranks(definitions: Sequence[EndpointDefinition]) -> dict[int, int]:
    """
    Order in which routes are added to the router.

    Starlette takes the first match, so host routes come first, then literal
    paths before parameters, method-specific routes before any-method ones
    and catch-all routes last, longest prefix first.
    """

    def key(i: int) -> tuple[object, ...]:
        d = definitions[i]
        catch_all = d.label.subtree or any(s.kind == "wildcard" for s in d.label.segments)
        return (
            0 if d.host else 1,
            d.host,
            1 if catch_all else 0,
            -len(d.path) if catch_all else 0,
            d.path,
            0 if d.method else 1,
            d.method,
            d.name,
        )

    order = sorted(range(len(definitions)), key=key)
    return {i: rank for rank, i in enumerate(order)}


class RoutesFileBuilder:
    def __init__(
        self,
        config: RoutesConfig,
        fragments: FragmentSet,
        definitions: list[EndpointDefinition],
        signatures: Mapping[str, Signature],
        templates_attribute: str = "",
    ) -> None:
        self.config = config
        self.fragments = fragments
        self.definitions = definitions
        self.signatures = signatures
        self.imports = ImportManager()
        register_imports(self.imports, config)
        self.imports.reserve(*RESERVED_SCOPE, *GENERATED_NAMES)
        for d in definitions:
            self.imports.reserve(handler_name(d), *d.path_params)

        templates = self.imports.ref(config.templates_module, config.templates_variable)
        if templates_attribute:
            templates = attr(templates, templates_attribute)
        self.handlers = HandlerBuilder(config, self.imports, fragments, signatures, templates)
        self.ranks = registration_ranks(definitions)

    def groups(self) -> list[tuple[str, list[tuple[int, EndpointDefinition]]]]:
        indexed = sorted(enumerate(self.definitions), key=lambda item: group_identifier(item[1].group))
        return [(ident, list(items)) for ident, items in groupby(indexed, key=lambda item: group_identifier(item[1].group))]

    def group_function_name(self, ident: str) -> str:
        return f"{ident}_{self.config.routes_function}" if ident else f"_{self.config.routes_function}"

    def group_protocol_name(self, ident: str) -> str:
        return pascal_case(ident) + self.config.receiver_interface if ident else self.config.receiver_interface

    def build(self) -> str:
        groups = self.groups()
        for ident, _ in groups:
            self.imports.reserve(self.group_function_name(ident), self.group_protocol_name(ident))

        body: list[ast.stmt] = []
        body.extend(helper_statements())
        body.extend(self._protocols(groups))
        body.extend(class_statements(self.config))
        body.append(self._main_function(groups))
        for ident, items in groups:
            body.append(self._group_function(ident, [d for _, d in items], [i for i, _ in items]))
        body.append(route_paths_class(self.imports, self.config.route_paths_type, self.definitions))

        return render_module([*self.imports.statements(), *body])

    # receiver protocols

    def _protocol_methods(self, definitions: list[EndpointDefinition]) -> list[ast.stmt]:
        methods: dict[str, Signature] = {}
        for d in definitions:
            if d.call is None:
                continue
            for c in d.call.walk():
                signature = self.signatures[c.callee]
                if signature.in_interface:
                    methods.setdefault(signature.name, signature)
        return [self._protocol_method(methods[n]) for n in sorted(methods)]

    def _protocol_method(self, signature: Signature) -> ast.stmt:
        args = [ast.arg(arg="self")]
        args.extend(ast.arg(arg=p.name, annotation=self.imports.type_expr(p.annotation)) for p in signature.params)
        arguments = ast.arguments(
            posonlyargs=[], args=args, vararg=None, kwonlyargs=[], kw_defaults=[], kwarg=None, defaults=[]
        )
        body: list[ast.stmt] = [ast.Expr(value=const(...))]
        returns = self.imports.type_expr(signature.returns)
        if signature.is_async:
            return ast.AsyncFunctionDef(
                name=signature.name, args=arguments, body=body, decorator_list=[], returns=returns, type_params=[]
            )
        return ast.FunctionDef(
            name=signature.name, args=arguments, body=body, decorator_list=[], returns=returns, type_params=[]
        )

    def _protocols(self, groups: list[tuple[str, list[tuple[int, EndpointDefinition]]]]) -> list[ast.stmt]:
        protocol = self.imports.ref("typing", "Protocol")
        out: list[ast.stmt] = []
        bases: list[ast.expr] = []
        main_methods: list[ast.stmt] = []
        for ident, items in groups:
            methods = self._protocol_methods([d for _, d in items])
            if not ident:
                main_methods = methods
                continue
            class_name = self.group_protocol_name(ident)
            out.append(
                ast.ClassDef(
                    name=class_name,
                    bases=[protocol],
                    keywords=[],
                    body=methods or [ast.Pass()],
                    decorator_list=[],
                    type_params=[],
                )
            )
            bases.append(name(class_name))

        doc = ast.Expr(value=const("Everything the generated handlers call on the receiver."))
        out.append(
            ast.ClassDef(
                name=self.config.receiver_interface,
                bases=[*bases, protocol],
                keywords=[],
                body=[doc, *main_methods],
                decorator_list=[],
                type_params=[],
            )
        )
        return out

    # registration

    def _function_args(self, with_router: bool, keyword_only: bool, receiver_type: str) -> ast.arguments:
        args: list[ast.arg] = []
        if with_router:
            args.append(ast.arg(arg="router", annotation=name("Router")))
        args.append(ast.arg(arg="receiver", annotation=name(receiver_type)))

        extra: list[ast.arg] = []
        defaults: list[ast.expr] = []
        if self.config.path_prefix or not with_router:
            extra.append(ast.arg(arg="paths_prefix", annotation=name("str")))
            defaults.append(const(""))
        if self.config.logger:
            logger_type = ast.BinOp(
                left=attr(self.imports.module("logging"), "Logger"), op=ast.BitOr(), right=const(None)
            )
            extra.append(ast.arg(arg="logger", annotation=logger_type))
            defaults.append(const(None))

        if keyword_only:
            return ast.arguments(
                posonlyargs=[], args=args, vararg=None, kwonlyargs=extra, kw_defaults=defaults, kwarg=None, defaults=[]
            )
        return ast.arguments(
            posonlyargs=[], args=[*args, *extra], vararg=None, kwonlyargs=[], kw_defaults=[], kwarg=None, defaults=defaults
        )

    def _main_function(self, groups: list[tuple[str, list[tuple[int, EndpointDefinition]]]]) -> ast.FunctionDef:
        body: list[ast.stmt] = [
            ast.Expr(
                value=const(
                    "Register a handler for every route template on ``router`` and return the URL builders."
                )
            )
        ]
        body.extend(snippet(f"_entries: {_ENTRIES} = []"))
        prefix = name("paths_prefix") if self.config.path_prefix else const("")
        for ident, _ in groups:
            args: list[ast.expr] = [name("receiver"), prefix]
            if self.config.logger:
                args.append(name("logger"))
            body.append(ast.Expr(value=call(attr("_entries", "extend"), call(self.group_function_name(ident), *args))))
        body.extend(snippet("_register_routes(router, _entries)"))
        paths_args = [name("paths_prefix")] if self.config.path_prefix else []
        body.append(ast.Return(value=call(self.config.route_paths_type, *paths_args)))

        return ast.FunctionDef(
            name=self.config.routes_function,
            args=self._function_args(with_router=True, keyword_only=True, receiver_type=self.config.receiver_interface),
            body=body,
            decorator_list=[],
            returns=name(self.config.route_paths_type),
            type_params=[],
        )

    def _group_function(self, ident: str, definitions: list[EndpointDefinition], indexes: list[int]) -> ast.FunctionDef:
        body: list[ast.stmt] = []
        if self.config.logger:
            body.extend(snippet("logger = logger or _logger"))
        body.extend(snippet("_paths = PATHS(paths_prefix)", PATHS=self.config.route_paths_type))

        entries: list[ast.expr] = []
        for i, d in zip(indexes, definitions):
            body.append(self.handlers.build(d))
            keywords = [ast.keyword(arg="name", value=const(d.identifier))]
            if d.method:
                keywords.insert(0, ast.keyword(arg="methods", value=ast.List(elts=[const(d.method)], ctx=ast.Load())))
            route = ast.Call(
                func=name("Route"),
                args=[const(starlette_path(d.label)), name(handler_name(d))],
                keywords=keywords,
            )
            entries.append(ast.Tuple(elts=[const(self.ranks[i]), const(d.host), route], ctx=ast.Load()))
        body.append(ast.Return(value=ast.List(elts=entries, ctx=ast.Load())))

        return ast.FunctionDef(
            name=self.group_function_name(ident),
            args=self._function_args(with_router=False, keyword_only=False, receiver_type=self.group_protocol_name(ident)),
            body=body,
            decorator_list=[],
            returns=ast.parse(_ENTRIES, mode="eval").body,
            type_params=[],
        )


def generate_routes_module(
    config: RoutesConfig,
    fragments: FragmentSet,
    host: Optional[HostTypes] = None,
    templates_attribute: str = "",
) -> RoutesModule:
    """Parse, resolve and analyze every route fragment and render the routes module."""
    definitions, signatures = analyze(fragments, host)
    builder = RoutesFileBuilder(config, fragments, definitions, signatures, templates_attribute)
    content = builder.build()
    log.debug("generated %d routes into %s", len(definitions), config.output_file)
    generated = GeneratedFile(path=config.output_file, content=content, routes=[d.pattern for d in definitions])
    return RoutesModule(file=generated, definitions=definitions, signatures=signatures)
