from __future__ import annotations

import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any, Literal, Optional, Union

from jinjamux.errors import GrammarError
from jinjamux.hosttypes.types import type_name, unwrap_optional

RuleKind = Literal["min", "max", "pattern", "minlength", "maxlength"]

# Guards are always emitted in this order.
RULE_ORDER: tuple[RuleKind, ...] = ("min", "max", "pattern", "minlength", "maxlength")

_FORM_CONTROLS = ("input", "textarea", "select")


@dataclass(frozen=True)
class ValidationRule:
    kind: RuleKind
    field: str
    value: Union[int, float, str]

    @property
    def message(self) -> str:
        if self.kind == "min":
            return f"{self.field} must not be less than {self.value}"
        if self.kind == "max":
            return f"{self.field} must not be more than {self.value}"
        if self.kind == "pattern":
            return f"{self.field} must match {self.value!r}"
        if self.kind == "minlength":
            return f"{self.field} is too short (the min length is {self.value})"
        return f"{self.field} is too long (the max length is {self.value})"


class _ControlFinder(HTMLParser):
    def __init__(self, name: str) -> None:
        super().__init__(convert_charrefs=True)
        self.name = name
        self.attrs: Optional[dict[str, Optional[str]]] = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, Optional[str]]]) -> None:
        if self.attrs is not None or tag not in _FORM_CONTROLS:
            return
        found = dict(attrs)
        if found.get("name") == self.name:
            self.attrs = found


def find_control(markup: str, name: str) -> Optional[dict[str, Optional[str]]]:
    """Attributes of the first ``<input>``/``<textarea>``/``<select>`` named ``name``."""
    finder = _ControlFinder(name)
    finder.feed(markup)
    finder.close()
    return finder.attrs


def _is_dynamic(value: str) -> bool:
    return "{{" in value or "{%" in value


def parse_rules(markup: str, field: str, field_type: Any) -> list[ValidationRule]:
    """Validation rules the markup declares for form field ``field`` holding ``field_type`` values."""
    attrs = find_control(markup, field)
    if attrs is None:
        return []

    field_type = unwrap_optional(field_type)
    rules: list[ValidationRule] = []
    for kind in RULE_ORDER:
        raw = attrs.get(kind)
        if raw is None or _is_dynamic(raw):
            continue
        raw = raw.strip()

        if kind in ("min", "max"):
            if field_type not in (int, float):
                raise GrammarError(f"{kind} attribute on {field} requires an int or float field, got {type_name(field_type)}")
            try:
                value: Union[int, float, str] = field_type(raw)
            except ValueError:
                raise GrammarError(f"failed to parse {kind} attribute {raw!r} on {field} as {type_name(field_type)}") from None
            rules.append(ValidationRule(kind, field, value))
            continue

        if field_type is not str:
            raise GrammarError(f"{kind} attribute on {field} requires a str field, got {type_name(field_type)}")

        if kind == "pattern":
            try:
                re.compile(raw)
            except re.error as err:
                raise GrammarError(f"invalid pattern attribute {raw!r} on {field}: {err}") from None
            rules.append(ValidationRule(kind, field, raw))
            continue

        try:
            length = int(raw, 10)
        except ValueError:
            raise GrammarError(f"failed to parse {kind} attribute {raw!r} on {field}") from None
        if length < 0:
            raise GrammarError(f"{kind} attribute on {field} must not be negative")
        rules.append(ValidationRule(kind, field, length))
    return rules
