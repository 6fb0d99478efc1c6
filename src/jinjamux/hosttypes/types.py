from __future__ import annotations

import collections.abc
import dataclasses
import inspect
import types
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Callable, Literal, Mapping, Optional, TypeVar, Union, get_args, get_origin, get_type_hints

from pydantic import BaseModel

NoneType = type(None)

ConversionKind = Literal["str", "int", "float", "bool", "text"]
StatusAccess = Literal["method", "attribute"]

_SEQUENCE_ORIGINS = (
    list,
    tuple,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
)


class GeneratedType:
    """A type that only exists once the routes module has been written, e.g. ``ResponseWriter``."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return self.name

    def __eq__(self, other: object) -> bool:
        return isinstance(other, GeneratedType) and other.name == self.name

    def __hash__(self) -> int:
        return hash(("generated", self.name))


RESPONSE_WRITER = GeneratedType("ResponseWriter")


@dataclass(frozen=True)
class StructField:
    attribute: str
    external_name: str
    annotation: Any
    template: Optional[str] = None


def type_name(tp: Any) -> str:
    if tp is Any:
        return "Any"
    if tp is NoneType:
        return "None"
    if isinstance(tp, type) and not get_args(tp):
        return tp.__qualname__
    return repr(tp).replace("typing.", "").replace("collections.abc.", "")


def union_members(tp: Any) -> tuple[Any, ...]:
    if get_origin(tp) in (Union, types.UnionType):
        return get_args(tp)
    return ()


def unwrap_optional(tp: Any) -> Any:
    members = union_members(tp)
    if members and NoneType in members:
        rest = tuple(m for m in members if m is not NoneType)
        if len(rest) == 1:
            return rest[0]
    return tp


def is_error_like(tp: Any) -> bool:
    members = union_members(tp)
    if members:
        rest = [m for m in members if m is not NoneType]
        return bool(rest) and all(is_error_like(m) for m in rest)
    return isinstance(tp, type) and issubclass(tp, BaseException)


def is_text_decodable(tp: Any) -> bool:
    """Classes with a ``from_text(text)`` classmethod or staticmethod."""
    if not isinstance(tp, type):
        return False
    attr = inspect.getattr_static(tp, "from_text", None)
    return isinstance(attr, (classmethod, staticmethod))


def is_text_encodable(tp: Any) -> bool:
    if not isinstance(tp, type) or issubclass(tp, str):
        return False
    return inspect.isfunction(inspect.getattr_static(tp, "to_text", None))


def status_accessor(tp: Any) -> Optional[StatusAccess]:
    """How a value of ``tp`` exposes its own HTTP status, if it does."""
    tp = unwrap_optional(tp)
    if not isinstance(tp, type) or tp in (int, str, float, bool, bytes, NoneType):
        return None
    attr = inspect.getattr_static(tp, "status_code", None)
    if attr is None:
        if is_struct(tp) and "status_code" in {f.attribute for f in struct_fields(tp)}:
            return "attribute"
        return None
    if inspect.isfunction(attr):
        return "method"
    if isinstance(attr, (property, int)):
        return "attribute"
    return None


def is_struct(tp: Any) -> bool:
    if not isinstance(tp, type):
        return False
    return dataclasses.is_dataclass(tp) or issubclass(tp, BaseModel)


def struct_fields(tp: type) -> list[StructField]:
    """Fields of a dataclass or pydantic model, with the form name and markup template they bind to."""
    out: list[StructField] = []
    if isinstance(tp, type) and issubclass(tp, BaseModel):
        for name, info in tp.model_fields.items():
            extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
            template = extra.get("template")
            out.append(
                StructField(
                    attribute=name,
                    external_name=info.alias or name,
                    annotation=info.annotation if info.annotation is not None else Any,
                    template=template if isinstance(template, str) else None,
                )
            )
        return out

    hints = get_type_hints(tp)
    for f in dataclasses.fields(tp):
        if not f.init:
            continue
        template = f.metadata.get("template")
        out.append(
            StructField(
                attribute=f.name,
                external_name=f.metadata.get("name", f.name),
                annotation=hints.get(f.name, Any),
                template=template if isinstance(template, str) else None,
            )
        )
    return out


def sequence_item(tp: Any) -> Optional[Any]:
    """Element type of ``list[T]``, ``tuple[T, ...]`` or ``Sequence[T]``; None for anything else."""
    origin = get_origin(tp)
    if origin not in _SEQUENCE_ORIGINS:
        return None
    args = get_args(tp)
    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:
            return args[0]
        return None
    return args[0] if args else str


def conversion_kind(tp: Any) -> Optional[ConversionKind]:
    """How text from a URL or form is turned into a ``tp`` value."""
    tp = unwrap_optional(tp)
    if tp is bool:
        return "bool"
    if tp is int:
        return "int"
    if tp is float:
        return "float"
    if tp is str or tp is Any or tp is object:
        return "str"
    if is_text_decodable(tp):
        return "text"
    return None


def _is_protocol(tp: Any) -> bool:
    return isinstance(tp, type) and bool(getattr(tp, "_is_protocol", False))


def accepts(param: Any, arg: Any) -> bool:
    """Whether a value typed ``arg`` may be passed to a parameter annotated ``param``."""
    if param is Any or param is object or param is inspect.Parameter.empty or arg is Any:
        return True
    if isinstance(param, TypeVar):
        return True
    members = union_members(param)
    if members:
        return any(accepts(m, arg) for m in members)
    arg_members = union_members(arg)
    if arg_members:
        return all(accepts(param, m) for m in arg_members)
    if isinstance(arg, GeneratedType):
        if isinstance(param, GeneratedType):
            return param == arg
        return getattr(param, "__name__", None) == arg.name or _is_protocol(param)
    if isinstance(param, GeneratedType):
        return False
    if param == arg:
        return True

    p_origin = get_origin(param) or param
    a_origin = get_origin(arg) or arg
    if not isinstance(p_origin, type) or not isinstance(a_origin, type):
        return False
    if _is_protocol(p_origin) and not getattr(p_origin, "_is_runtime_protocol", False):
        return True
    try:
        if not issubclass(a_origin, p_origin):
            return False
    except TypeError:
        return False
    p_args, a_args = get_args(param), get_args(arg)
    if not p_args or not a_args or len(p_args) != len(a_args):
        return True
    return all(accepts(p, a) for p, a in zip(p_args, a_args) if p is not Ellipsis and a is not Ellipsis)


class HostTypes:
    """
    Read-only view of the application's Python types.

    ``receiver`` is the class whose methods handle routes. ``functions`` are
    free functions the generated module may call directly.
    """

    def __init__(
        self,
        receiver: Optional[type] = None,
        functions: Optional[Mapping[str, Callable[..., Any]]] = None,
    ) -> None:
        self.receiver = receiver
        self.functions = dict(functions or {})

    @classmethod
    def from_module(cls, module: ModuleType, receiver: Optional[type] = None) -> HostTypes:
        functions = {
            name: obj
            for name, obj in vars(module).items()
            if inspect.isfunction(obj) and obj.__module__ == module.__name__ and not name.startswith("_")
        }
        return cls(receiver=receiver, functions=functions)

    def method(self, name: str) -> Optional[tuple[Callable[..., Any], bool]]:
        """Receiver method ``name`` as ``(function, drops_first_argument)``."""
        if self.receiver is None or name.startswith("_"):
            return None
        attr = inspect.getattr_static(self.receiver, name, None)
        if isinstance(attr, staticmethod):
            return attr.__func__, False
        if isinstance(attr, classmethod):
            return attr.__func__, True
        if inspect.isfunction(attr):
            return attr, True
        return None

    def function(self, name: str) -> Optional[Callable[..., Any]]:
        return self.functions.get(name)
