from __future__ import annotations

import dataclasses
import enum
import inspect
import keyword
import logging
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, get_args, get_origin, get_type_hints

from starlette.datastructures import FormData
from starlette.requests import Request

from jinjamux.definitions.call import CallExpression, Identifier
from jinjamux.definitions.definition import EndpointDefinition
from jinjamux.definitions.naming import snake_case
from jinjamux.errors import ResolutionError
from jinjamux.hosttypes.types import (
    RESPONSE_WRITER,
    HostTypes,
    NoneType,
    accepts,
    conversion_kind,
    is_error_like,
    is_struct,
    type_name,
    unwrap_optional,
)

log = logging.getLogger(__name__)

# Types the generated handler binds reserved argument names to.
RESERVED_TYPES: Mapping[str, Any] = {
    "ctx": MutableMapping[str, Any],
    "request": Request,
    "response": RESPONSE_WRITER,
    "form": FormData,
}


class ResultShape(enum.Enum):
    VALUE = "value"
    ERROR = "value+error"
    OK = "value+ok"


class Origin(enum.Enum):
    METHOD = "method"
    FUNCTION = "function"
    SYNTHESIZED = "synthesized"


@dataclass(frozen=True)
class Parameter:
    name: str
    annotation: Any = Any


@dataclass(frozen=True)
class Signature:
    name: str
    params: tuple[Parameter, ...]
    result: Any
    shape: ResultShape
    origin: Origin
    is_async: bool = False
    returns: Any = Any  # the full return annotation, e.g. tuple[User, bool]
    module: str = ""  # defining module of free functions

    @property
    def in_interface(self) -> bool:
        """Free functions are called directly, everything else is a receiver requirement."""
        return self.origin is not Origin.FUNCTION

    def structure(self) -> tuple[Any, ...]:
        return (tuple(p.annotation for p in self.params), self.result, self.shape, self.is_async)

    def __str__(self) -> str:
        params = ", ".join(f"{p.name}: {type_name(p.annotation)}" for p in self.params)
        return f"{self.name}({params}) -> {type_name(self.returns)}"


def result_shape(returns: Any) -> tuple[Any, ResultShape]:
    """Split a return annotation into the value type and how the handler branches on it."""
    if get_origin(returns) is tuple:
        args = get_args(returns)
        if len(args) == 2 and args[1] is not Ellipsis:
            if is_error_like(args[1]):
                return args[0], ResultShape.ERROR
            if args[1] is bool:
                return args[0], ResultShape.OK
    return returns, ResultShape.VALUE


def signature_from_callable(name: str, fn: Callable[..., Any], drop_first: bool, origin: Origin) -> Signature:
    try:
        hints = get_type_hints(fn)
    except (NameError, TypeError) as err:
        raise ResolutionError(f"failed to resolve annotations of {name}: {err}") from err

    params: list[Parameter] = []
    sig_params = list(inspect.signature(fn).parameters.values())
    if drop_first:
        sig_params = sig_params[1:]
    for p in sig_params:
        if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
            raise ResolutionError(f"{name}: unsupported variadic parameter {p}")
        if p.kind is p.KEYWORD_ONLY:
            if p.default is p.empty:
                raise ResolutionError(f"{name}: unsupported keyword-only parameter {p.name} without a default")
            continue
        params.append(Parameter(p.name, hints.get(p.name, Any)))

    returns = hints.get("return", Any)
    if returns is NoneType:
        raise ResolutionError(f"{name}: method must return a value")
    result, shape = result_shape(returns)
    return Signature(
        name=name,
        params=tuple(params),
        result=result,
        shape=shape,
        origin=origin,
        is_async=inspect.iscoroutinefunction(fn),
        returns=returns,
    )


class SignatureResolver:
    """
    Attach a signature to every call in every definition.

    Callees are looked up on the receiver class, then among free functions;
    anything else gets a synthesized signature that the generated receiver
    Protocol then requires. Results are memoized per callee name.
    """

    def __init__(self, host: Optional[HostTypes] = None) -> None:
        self.host = host or HostTypes()
        self._signatures: dict[str, Signature] = {}

    @property
    def signatures(self) -> Mapping[str, Signature]:
        return dict(self._signatures)

    def lookup(self, callee: str) -> Optional[Signature]:
        known = self._signatures.get(callee)
        if known is not None:
            return known
        method = self.host.method(callee)
        if method is not None:
            fn, drop_first = method
            return self._remember(signature_from_callable(callee, fn, drop_first, Origin.METHOD))
        fn = self.host.function(callee)
        if fn is not None:
            signature = signature_from_callable(callee, fn, False, Origin.FUNCTION)
            return self._remember(dataclasses.replace(signature, module=fn.__module__))
        return None

    def resolve_all(self, definitions: list[EndpointDefinition]) -> Mapping[str, Signature]:
        for definition in definitions:
            self.resolve(definition)
        return self.signatures

    def resolve(self, definition: EndpointDefinition) -> Optional[Signature]:
        if definition.call is None:
            return None
        for call in definition.call.walk():
            signature = self.lookup(call.callee)
            if signature is None:
                signature = self._remember(self.synthesize(call, definition))
                log.debug("synthesized %s for %r", signature, definition.name)
            self._check_call(signature, call, definition)
        definition.signature = self._signatures[definition.call.callee]
        return definition.signature

    def argument_type(self, arg: Identifier | CallExpression) -> Any:
        """Static type of what the handler has bound for ``arg`` before any conversion."""
        if isinstance(arg, CallExpression):
            return self._signatures[arg.callee].result
        return RESERVED_TYPES.get(arg.name, str)

    def synthesize(self, call: CallExpression, definition: EndpointDefinition) -> Signature:
        params: list[Parameter] = []
        used: set[str] = set()
        for i, arg in enumerate(call.args):
            if isinstance(arg, CallExpression):
                base = snake_case(arg.callee) or f"arg{i}"
            else:
                base = arg.name
            if keyword.iskeyword(base) or not base.isidentifier():
                base = f"arg{i}"
            name, n = base, 2
            while name in used:
                name = f"{base}_{n}"
                n += 1
            used.add(name)
            params.append(Parameter(name, self.argument_type(arg)))
        return Signature(
            name=call.callee,
            params=tuple(params),
            result=Any,
            shape=ResultShape.VALUE,
            origin=Origin.SYNTHESIZED,
            returns=Any,
        )

    def _remember(self, signature: Signature) -> Signature:
        known = self._signatures.get(signature.name)
        if known is not None:
            assert known.structure() == signature.structure(), (
                f"signature for {signature.name} changed from {known} to {signature}"
            )
            return known
        self._signatures[signature.name] = signature
        return signature

    def _check_call(self, signature: Signature, call: CallExpression, definition: EndpointDefinition) -> None:
        if len(signature.params) != len(call.args):
            raise ResolutionError(
                f"handler func {signature} expects {len(signature.params)} arguments "
                f"but call {call} has {len(call.args)} (in {definition.name!r})"
            )
        path_params = set(definition.path_params)
        for param, arg in zip(signature.params, call.args):
            if isinstance(arg, Identifier) and arg.name in path_params:
                kind = conversion_kind(param.annotation)
                if kind is None:
                    raise ResolutionError(
                        f"method expects type {type_name(param.annotation)} but {arg.name} is str "
                        f"(in {definition.name!r})"
                    )
                target = str if kind == "str" else unwrap_optional(param.annotation)
                recorded = definition.path_types.setdefault(arg.name, target)
                if recorded != target:
                    raise ResolutionError(
                        f"path parameter {arg.name} is bound as both {type_name(recorded)} "
                        f"and {type_name(target)} (in {definition.name!r})"
                    )
                continue
            if isinstance(arg, Identifier) and arg.name == "form" and is_struct(param.annotation):
                continue
            arg_type = self.argument_type(arg)
            if not accepts(param.annotation, arg_type):
                raise ResolutionError(
                    f"method expects type {type_name(param.annotation)} but {arg} is {type_name(arg_type)} "
                    f"(in {definition.name!r})"
                )
