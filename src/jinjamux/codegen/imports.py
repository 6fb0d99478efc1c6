from __future__ import annotations

import ast
import collections.abc
import logging
import types
from typing import Annotated, Any, Literal, TypeVar, Union, get_args, get_origin

from jinjamux.codegen.pyast import attr, const, name
from jinjamux.hosttypes.types import GeneratedType, NoneType

log = logging.getLogger(__name__)


class ImportManager:
    """
    Collect the imports a generated module needs and hand out local names for them.

    Local names never collide: a second object wanting a taken name gets an
    alias derived from its module.
    """

    def __init__(self, module_name: str = "") -> None:
        self.module_name = module_name
        self._modules: set[str] = set()
        self._from: dict[str, dict[str, str]] = {}  # module -> {name: local}
        self._owners: dict[str, tuple[str, str]] = {}  # local -> (module, name)

    def reserve(self, *locals_: str) -> None:
        """Names the generated module defines itself."""
        for local in locals_:
            self._owners.setdefault(local, ("", local))

    def module(self, module: str) -> ast.expr:
        """``import a.b`` and return an expression for ``a.b``."""
        self._modules.add(module)
        head, *rest = module.split(".")
        self._owners.setdefault(head, (module, ""))
        return attr(head, *rest)

    def name(self, module: str, symbol: str) -> str:
        """``from module import symbol`` and return the local name to use."""
        if module == self.module_name:
            return symbol
        existing = self._from.get(module, {}).get(symbol)
        if existing is not None:
            return existing
        local = symbol
        if self._owners.get(local, (module, symbol)) != (module, symbol):
            prefix = module.rsplit(".", 1)[-1].strip("_")
            local = f"{prefix}_{symbol}"
            n = 2
            while self._owners.get(local, (module, symbol)) != (module, symbol):
                local = f"{prefix}_{symbol}{n}"
                n += 1
        self._owners[local] = (module, symbol)
        self._from.setdefault(module, {})[symbol] = local
        return local

    def ref(self, module: str, symbol: str) -> ast.expr:
        return name(self.name(module, symbol))

    def type_expr(self, tp: Any) -> ast.expr:
        """An annotation expression for ``tp``, importing whatever it names."""
        if tp is Any or isinstance(tp, TypeVar):
            return self.ref("typing", "Any")
        if tp is None or tp is NoneType:
            return const(None)
        if tp is Ellipsis:
            return const(...)
        if isinstance(tp, GeneratedType):
            return name(tp.name)
        if isinstance(tp, (list, tuple)):
            return ast.List(elts=[self.type_expr(t) for t in tp], ctx=ast.Load())

        origin = get_origin(tp)
        args = get_args(tp)
        if origin in (Union, types.UnionType):
            node = self.type_expr(args[0])
            for arg in args[1:]:
                node = ast.BinOp(left=node, op=ast.BitOr(), right=self.type_expr(arg))
            return node
        if origin is Annotated:
            return self.type_expr(args[0])
        if origin is Literal:
            elts = [const(a) for a in args]
            return ast.Subscript(
                value=self.ref("typing", "Literal"),
                slice=elts[0] if len(elts) == 1 else ast.Tuple(elts=elts, ctx=ast.Load()),
                ctx=ast.Load(),
            )
        if origin is not None and isinstance(origin, type):
            base = self._class(origin)
            if origin is collections.abc.Callable and args and isinstance(args[0], list):
                elts = [self.type_expr(args[0]), self.type_expr(args[1])]
            else:
                elts = [self.type_expr(a) for a in args]
            if not elts:
                return base
            return ast.Subscript(
                value=base,
                slice=elts[0] if len(elts) == 1 else ast.Tuple(elts=elts, ctx=ast.Load()),
                ctx=ast.Load(),
            )
        if isinstance(tp, type):
            return self._class(tp)
        log.debug("no annotation for %r, using Any", tp)
        return self.ref("typing", "Any")

    def _class(self, cls: type) -> ast.expr:
        module, qualname = cls.__module__, cls.__qualname__
        if module == "builtins":
            return name(qualname)
        if module == "__main__" or "<locals>" in qualname:
            log.debug("%s.%s is not importable, using Any", module, qualname)
            return self.ref("typing", "Any")
        head, *rest = qualname.split(".")
        return attr(self.name(module, head), *rest)

    def statements(self) -> list[ast.stmt]:
        out: list[ast.stmt] = [ast.ImportFrom(module="__future__", names=[ast.alias(name="annotations")], level=0)]
        for module in sorted(self._modules):
            out.append(ast.Import(names=[ast.alias(name=module)]))
        for module in sorted(self._from):
            aliases = [
                ast.alias(name=symbol, asname=None if local == symbol else local)
                for symbol, local in sorted(self._from[module].items())
            ]
            out.append(ast.ImportFrom(module=module, names=aliases, level=0))
        return out
